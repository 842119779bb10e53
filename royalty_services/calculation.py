"""
royalty_services.calculation -- The calculation pipeline for one run.

Responsibility:
    Pulls licenses, ownership and usage from the collaborators and drives
    the pure engines in order: revenue aggregation per license, ownership
    split per revenue unit, then the threshold manager per creator.  The
    result is a set of StatementDrafts plus run totals and exclusions; it
    writes nothing.

Architecture position:
    Services -- stateful orchestration over engines.  Called by
    RoyaltyRunOrchestrator inside the calculation savepoint.

Invariants enforced:
    - Licenses are processed in license_id order and creators in
      creator_id order, so identical inputs give identical drafts.
    - Each (asset, license) revenue unit is counted exactly once in
      ``total_revenue_cents``; excluded units are not counted.
    - ``total_royalties_cents`` is the sum of this run's standard lines;
      carried balances are not counted again.
    - A creator with a non-zero prior balance gets a statement even when
      they earned nothing this run.

Failure modes:
    - OwnershipSplitError propagates (the run FAILS).
    - UnresolvableAssetError propagates when the policy's
      ``unresolvable_asset_mode`` is ``fail``; otherwise the license is
      recorded as an exclusion.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date

from royalty_engines.revenue import RevenueAggregator
from royalty_engines.split import OwnershipSplitCalculator
from royalty_engines.threshold import ThresholdManager
from royalty_kernel.domain.dtos import ExcludedLicense, LineDraft, StatementDraft
from royalty_kernel.domain.money import format_cents, sum_cents
from royalty_kernel.domain.policy import UNRESOLVABLE_FAIL, RoyaltyPolicy
from royalty_kernel.exceptions import UnresolvableAssetError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.selectors.statement_selector import PriorBalance
from royalty_services.collaborators import LicenseOwnershipProvider, UsageEventSource

logger = get_logger("services.calculation")


@dataclass(frozen=True)
class CalculationResult:
    drafts: tuple[StatementDraft, ...]
    total_revenue_cents: int
    total_royalties_cents: int
    exclusions: tuple[ExcludedLicense, ...]
    license_count: int
    revenue_unit_count: int

    @property
    def payable_count(self) -> int:
        return sum(1 for d in self.drafts if d.is_payable)

    def summary_text(self) -> str:
        text = (
            f"Calculated {len(self.drafts)} statement(s) from "
            f"{self.revenue_unit_count} revenue unit(s): revenue "
            f"{format_cents(self.total_revenue_cents)}, royalties "
            f"{format_cents(self.total_royalties_cents)}, "
            f"{self.payable_count} payable"
        )
        if self.exclusions:
            text += f", {len(self.exclusions)} license(s) excluded"
        return text


class RoyaltyCalculator:
    """
    Runs the engine pipeline for one period.

    Contract:
        ``calculate`` is deterministic for identical collaborator data and
        prior balances.

    Non-goals:
        - Does NOT persist drafts; see RunOutputWriter.
        - Does NOT change run status.
    """

    def __init__(
        self,
        provider: LicenseOwnershipProvider,
        usage_source: UsageEventSource,
        policy: RoyaltyPolicy,
    ):
        self._provider = provider
        self._usage_source = usage_source
        self._policy = policy
        self._aggregator = RevenueAggregator(policy.usage_revenue_basis)
        self._splitter = OwnershipSplitCalculator()
        self._threshold = ThresholdManager(policy)

    def calculate(
        self,
        period_start: date,
        period_end: date,
        prior_balances: Mapping[str, PriorBalance],
    ) -> CalculationResult:
        licenses = sorted(
            self._provider.list_active_licenses(period_start, period_end),
            key=lambda lic: lic.license_id,
        )

        lines_by_creator: dict[str, list[LineDraft]] = defaultdict(list)
        exclusions: list[ExcludedLicense] = []
        total_revenue = 0
        unit_count = 0

        for lic in licenses:
            events = self._usage_source.list_usage_events(
                lic.license_id, period_start, period_end
            )
            revenue = self._aggregator.aggregate(
                license=lic,
                events=events,
                period_start=period_start,
                period_end=period_end,
            )
            if revenue is None:
                continue

            shares = self._provider.get_ownership_shares(lic.asset_id)
            try:
                split = self._splitter.split(revenue=revenue, shares=shares)
            except UnresolvableAssetError as exc:
                if self._policy.unresolvable_asset_mode == UNRESOLVABLE_FAIL:
                    raise
                logger.warning(
                    "license_excluded",
                    extra={
                        "license_id": lic.license_id,
                        "asset_id": lic.asset_id,
                        "revenue_cents": revenue.revenue_cents,
                        "reason_code": exc.code,
                    },
                )
                exclusions.append(
                    ExcludedLicense(
                        license_id=lic.license_id,
                        asset_id=lic.asset_id,
                        revenue_cents=revenue.revenue_cents,
                        reason_code=exc.code,
                        message=str(exc),
                    )
                )
                continue

            total_revenue += revenue.revenue_cents
            unit_count += 1
            for line in split.lines:
                lines_by_creator[line.creator_id].append(line)

        creators = sorted(set(lines_by_creator) | set(prior_balances))
        drafts = []
        for creator_id in creators:
            prior = prior_balances.get(creator_id)
            drafts.append(
                self._threshold.build_statement(
                    creator_id=creator_id,
                    standard_lines=lines_by_creator.get(creator_id, []),
                    prior_balance_cents=prior.carryover_cents if prior else 0,
                    prior_unpaid_since=prior.unpaid_since if prior else None,
                    period_start=period_start,
                    period_end=period_end,
                )
            )

        result = CalculationResult(
            drafts=tuple(drafts),
            total_revenue_cents=total_revenue,
            total_royalties_cents=sum_cents(d.total_earnings_cents for d in drafts),
            exclusions=tuple(exclusions),
            license_count=len(licenses),
            revenue_unit_count=unit_count,
        )
        logger.info(
            "calculation_pipeline_completed",
            extra={
                "period_start": period_start,
                "period_end": period_end,
                "license_count": result.license_count,
                "revenue_unit_count": unit_count,
                "statement_count": len(drafts),
                "total_revenue_cents": total_revenue,
                "total_royalties_cents": result.total_royalties_cents,
                "excluded_count": len(exclusions),
            },
        )
        return result
