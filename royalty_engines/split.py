"""
Module: royalty_engines.split
Responsibility:
    Distribute one (asset, license) revenue unit across the asset's
    ownership shares, producing one standard line per creator.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every split goes through ``allocate`` (largest remainder), including
      single-owner assets, so ``sum(line cents) == revenue_cents`` exactly.
    - Shares are ordered by creator id before allocation; remainder ties
      therefore go to the lexically first creator, independent of the
      order the provider returned them in.
    - Duplicate entries for one creator are merged into a single share.
    - Each line records the pre-split unit revenue and its ``share_bps``.

Failure modes:
    - UnresolvableAssetError: the asset has no ownership shares.
    - OwnershipSplitError: shares do not sum to 10000 bps and the unit has
      non-zero revenue.
    - InvalidBasisPointsError: a share outside 0..10000.

Audit relevance:
    The RoundingReconciliation returned with each split measures the
    drift between exact and allocated cents and feeds the validation report.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from royalty_engines.revenue import LicenseRevenue
from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.dtos import LineDraft, LineType, OwnershipShare
from royalty_kernel.domain.money import (
    BPS_DENOMINATOR,
    RoundingReconciliation,
    allocate,
    reconcile_rounding,
    validate_basis_points,
)
from royalty_kernel.exceptions import OwnershipSplitError, UnresolvableAssetError


@dataclass(frozen=True)
class SplitResult:
    asset_id: str
    license_id: str
    revenue_cents: int
    lines: tuple[LineDraft, ...]
    reconciliation: RoundingReconciliation

    @property
    def allocated_cents(self) -> int:
        return sum(line.calculated_royalty_cents for line in self.lines)


def merge_shares(shares: Sequence[OwnershipShare]) -> list[OwnershipShare]:
    """Combine duplicate creators and order by creator id."""
    merged: dict[str, int] = {}
    for share in shares:
        validate_basis_points(share.share_bps)
        merged[share.creator_id] = merged.get(share.creator_id, 0) + share.share_bps
    return [OwnershipShare(cid, bps) for cid, bps in sorted(merged.items())]


class OwnershipSplitCalculator:
    """Splits revenue units between owners."""

    @traced_engine("split", "1.0", fingerprint_fields=("revenue", "shares"))
    def split(
        self,
        *,
        revenue: LicenseRevenue,
        shares: Sequence[OwnershipShare],
    ) -> SplitResult:
        if not shares:
            raise UnresolvableAssetError(revenue.asset_id, revenue.license_id)

        ordered = merge_shares(shares)
        weights = [s.share_bps for s in ordered]
        total_bps = sum(weights)
        if total_bps != BPS_DENOMINATOR and revenue.revenue_cents != 0:
            raise OwnershipSplitError(revenue.asset_id, total_bps, revenue.license_id)

        amounts = allocate(revenue.revenue_cents, weights)

        details = revenue.audit_details()
        details["ownership_total_bps"] = total_bps
        lines = tuple(
            LineDraft(
                line_type=LineType.STANDARD,
                creator_id=share.creator_id,
                calculated_royalty_cents=cents,
                asset_id=revenue.asset_id,
                license_id=revenue.license_id,
                revenue_cents=revenue.revenue_cents,
                share_bps=share.share_bps,
                period_start=revenue.window_start,
                period_end=revenue.window_end,
                details=dict(details),
            )
            for share, cents in zip(ordered, amounts)
        )
        return SplitResult(
            asset_id=revenue.asset_id,
            license_id=revenue.license_id,
            revenue_cents=revenue.revenue_cents,
            lines=lines,
            reconciliation=reconcile_rounding(revenue.revenue_cents, weights, amounts),
        )
