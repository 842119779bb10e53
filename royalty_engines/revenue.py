"""
Module: royalty_engines.revenue
Responsibility:
    Compute the revenue a license earned during a run period: the
    pro-rated flat fee plus usage-based revenue from reported events.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import royalty_kernel/domain and sibling engine modules.

Invariants enforced:
    - Integer cents only.  The flat fee share is
      ``floor(fee_cents * days_active / contract_days)``; both day counts are
      inclusive of their end dates.
    - The denominator is the license's contracted interval, not the run
      period.  Open-ended licenses earn their full fee for any overlap.
    - Usage events count only when their UTC date falls inside the overlap
      window.  In NET mode amounts are summed as reported; in GROSS mode the
      sum is scaled once by ``rev_share_bps`` with banker's rounding.
    - A license with no overlap yields None; a license with overlap always
      yields a result, even at zero revenue.

Failure modes:
    - ValueError if period_end precedes period_start.

Audit relevance:
    LicenseRevenue keeps every intermediate (days, fee share, usage sum,
    event counts, scope violations) and is copied into line details so a
    statement can be traced back to its inputs.

Usage:
    from royalty_engines.revenue import RevenueAggregator

    aggregator = RevenueAggregator(UsageRevenueBasis.NET)
    revenue = aggregator.aggregate(
        license=lic, events=events,
        period_start=date(2024, 1, 1), period_end=date(2024, 1, 31),
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone

from royalty_engines.scope import ScopeViolation, check_event_scope
from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.clock import ensure_aware
from royalty_kernel.domain.dtos import License, UsageEvent, UsageRevenueBasis
from royalty_kernel.domain.money import bps_share
from royalty_kernel.domain.periods import inclusive_days, overlap_window


def event_date(occurred_at: datetime | date) -> date:
    """UTC calendar date of a usage event."""
    if isinstance(occurred_at, datetime):
        return ensure_aware(occurred_at).astimezone(timezone.utc).date()
    return occurred_at


@dataclass(frozen=True)
class LicenseRevenue:
    """
    A license's revenue for one run period.

    ``revenue_cents == flat_fee_cents + usage_cents``.
    """

    license_id: str
    asset_id: str
    window_start: date
    window_end: date
    days_active: int
    contract_days: int | None
    flat_fee_cents: int
    usage_gross_cents: int
    usage_cents: int
    usage_event_count: int
    revenue_cents: int
    scope_violations: tuple[ScopeViolation, ...] = ()

    @property
    def prorated(self) -> bool:
        return self.contract_days is not None and self.days_active < self.contract_days

    def audit_details(self) -> dict:
        """Per-line provenance copied onto every standard line of this unit."""
        return {
            "days_active": self.days_active,
            "contract_days": self.contract_days,
            "prorated": self.prorated,
            "flat_fee_cents": self.flat_fee_cents,
            "usage_cents": self.usage_cents,
            "usage_event_count": self.usage_event_count,
            "scope_violation_count": len(self.scope_violations),
            "scope_violations": [v.to_dict() for v in self.scope_violations],
        }


class RevenueAggregator:
    """
    Stateless per-license revenue calculation.

    Contract:
        ``aggregate`` is deterministic for identical inputs and never reads
        a clock.

    Non-goals:
        - Does NOT fetch licenses or events; the orchestrator supplies them.
        - Does NOT split revenue between owners; see split.py.
    """

    def __init__(self, usage_basis: UsageRevenueBasis = UsageRevenueBasis.NET):
        self._usage_basis = UsageRevenueBasis(usage_basis)

    @staticmethod
    def flat_fee_share(
        fee_cents: int, days_active: int, contract_days: int | None
    ) -> int:
        """Pro-rated fee, floored.  ``contract_days`` None means open-ended."""
        if days_active <= 0:
            return 0
        if contract_days is None:
            return fee_cents
        days_active = min(days_active, contract_days)
        return (fee_cents * days_active) // contract_days

    @traced_engine(
        "revenue",
        "1.0",
        fingerprint_fields=("license", "period_start", "period_end"),
    )
    def aggregate(
        self,
        *,
        license: License,
        events: Sequence[UsageEvent],
        period_start: date,
        period_end: date,
    ) -> LicenseRevenue | None:
        if period_end < period_start:
            raise ValueError("period_end precedes period_start")

        window = overlap_window(
            license.start_date, license.end_date, period_start, period_end
        )
        if window is None:
            return None

        contract_days = (
            None
            if license.is_open_ended
            else inclusive_days(license.start_date, license.end_date)
        )
        flat_fee = self.flat_fee_share(license.fee_cents, window.days, contract_days)

        in_window = [
            e for e in events if window.start <= event_date(e.occurred_at) <= window.end
        ]
        gross = sum(e.amount_cents for e in in_window)
        match self._usage_basis:
            case UsageRevenueBasis.GROSS:
                usage = bps_share(gross, license.rev_share_bps)
            case _:
                usage = gross

        violations: list[ScopeViolation] = []
        for event in in_window:
            violations.extend(check_event_scope(license.license_id, license.scope, event))

        return LicenseRevenue(
            license_id=license.license_id,
            asset_id=license.asset_id,
            window_start=window.start,
            window_end=window.end,
            days_active=window.days,
            contract_days=contract_days,
            flat_fee_cents=flat_fee,
            usage_gross_cents=gross,
            usage_cents=usage,
            usage_event_count=len(in_window),
            revenue_cents=flat_fee + usage,
            scope_violations=tuple(violations),
        )
