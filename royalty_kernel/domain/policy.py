"""
RoyaltyPolicy -- the business policy a run is calculated under.

Responsibility:
    Holds threshold, grace period, platform fee, usage-revenue convention and
    validation tunables as one frozen value.  The policy is passed explicitly
    into the threshold manager and the validation engine, and a snapshot is
    stored with each run so a historical run is always validated against the
    policy that produced it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Loaded from YAML by
    ``royalty_config``; never read from globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from royalty_kernel.domain.dtos import UsageRevenueBasis
from royalty_kernel.domain.money import validate_basis_points

UNRESOLVABLE_EXCLUDE = "exclude"
UNRESOLVABLE_FAIL = "fail"


@dataclass(frozen=True)
class RoyaltyPolicy:
    """
    Immutable royalty policy.

    Guarantees:
        - Thresholds and amounts are integer cents; rates are basis points.
        - ``to_snapshot()`` / ``from_snapshot()`` round-trip exactly.
    """

    minimum_payout_threshold_cents: int = 2000
    creator_threshold_overrides: dict[str, int] = field(default_factory=dict)
    grace_period_months: int = 12
    platform_fee_bps: int = 0
    usage_revenue_basis: UsageRevenueBasis = UsageRevenueBasis.NET
    unresolvable_asset_mode: str = UNRESOLVABLE_EXCLUDE
    outlier_multiplier: int = 3
    prorated_warning_ratio_bps: int = 5000
    stuck_run_timeout_minutes: int = 60
    dispute_reason_min_length: int = 10
    dispute_reason_max_length: int = 2000
    justification_min_length: int = 10
    adjustment_approval_threshold_cents: int = 10000
    name: str = "default"
    version: int = 1

    def __post_init__(self) -> None:
        if self.minimum_payout_threshold_cents < 0:
            raise ValueError("minimum_payout_threshold_cents cannot be negative")
        for creator_id, cents in self.creator_threshold_overrides.items():
            if cents < 0:
                raise ValueError(f"threshold override for {creator_id} is negative")
        if self.grace_period_months < 0:
            raise ValueError("grace_period_months cannot be negative")
        validate_basis_points(self.platform_fee_bps, "platform_fee_bps")
        validate_basis_points(self.prorated_warning_ratio_bps, "prorated_warning_ratio_bps")
        if self.unresolvable_asset_mode not in (UNRESOLVABLE_EXCLUDE, UNRESOLVABLE_FAIL):
            raise ValueError(
                f"unresolvable_asset_mode must be '{UNRESOLVABLE_EXCLUDE}' "
                f"or '{UNRESOLVABLE_FAIL}'"
            )
        if self.outlier_multiplier < 1:
            raise ValueError("outlier_multiplier must be at least 1")
        if self.dispute_reason_min_length > self.dispute_reason_max_length:
            raise ValueError("dispute reason min length exceeds max length")
        # Accept plain strings from YAML or snapshots.
        object.__setattr__(
            self, "usage_revenue_basis", UsageRevenueBasis(self.usage_revenue_basis)
        )

    def threshold_for(self, creator_id: str) -> int:
        """Payout threshold for ``creator_id`` (override, else the default)."""
        return self.creator_threshold_overrides.get(
            creator_id, self.minimum_payout_threshold_cents
        )

    def to_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, UsageRevenueBasis):
                value = value.value
            elif isinstance(value, dict):
                value = dict(sorted(value.items()))
            snapshot[f.name] = value
        return snapshot

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any] | None) -> RoyaltyPolicy:
        if not snapshot:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in snapshot.items() if k in known})
