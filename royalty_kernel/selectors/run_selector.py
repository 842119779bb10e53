"""
Module: royalty_kernel.selectors.run_selector
Responsibility: Read-only access to royalty runs as RunInfo DTOs.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; results ordered by period_start descending then id so
      pagination is stable.

Failure modes:
    - ``get_run`` returns None for an unknown id (never raises).
"""

from uuid import UUID

from sqlalchemy import func, select

from royalty_kernel.domain.clock import ensure_aware
from royalty_kernel.domain.dtos import RunFilters, RunInfo, RunStatus
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.selectors.base import BaseSelector


def run_to_info(run: RoyaltyRun, statement_count: int = 0) -> RunInfo:
    return RunInfo(
        id=run.id,
        period_start=run.period_start,
        period_end=run.period_end,
        status=RunStatus(run.status),
        total_revenue_cents=run.total_revenue_cents,
        total_royalties_cents=run.total_royalties_cents,
        notes=run.notes,
        created_by=run.created_by_id,
        version=run.version,
        locked_at=ensure_aware(run.locked_at),
        locked_by=run.locked_by_id,
        calculated_at=ensure_aware(run.calculated_at),
        rolled_back_at=ensure_aware(run.rolled_back_at),
        failure_code=run.failure_code,
        failure_reason=run.failure_reason,
        policy_checksum=run.policy_checksum,
        statement_count=statement_count,
    )


class RunSelector(BaseSelector[RoyaltyRun]):
    """Queries over royalty runs."""

    def _statement_counts(self, run_ids: list[UUID]) -> dict[UUID, int]:
        if not run_ids:
            return {}
        rows = self.session.execute(
            select(RoyaltyStatement.run_id, func.count(RoyaltyStatement.id))
            .where(RoyaltyStatement.run_id.in_(run_ids))
            .group_by(RoyaltyStatement.run_id)
        ).all()
        return {run_id: count for run_id, count in rows}

    def get_run(self, run_id: UUID) -> RunInfo | None:
        run = self.session.get(RoyaltyRun, run_id)
        if run is None:
            return None
        return run_to_info(run, self._statement_counts([run.id]).get(run.id, 0))

    def list_runs(self, filters: RunFilters | None = None) -> list[RunInfo]:
        """Runs matching ``filters``, newest period first."""
        filters = filters or RunFilters()
        stmt = select(RoyaltyRun)
        if filters.status is not None:
            stmt = stmt.where(RoyaltyRun.status == RunStatus(filters.status).value)
        if filters.period_from is not None:
            stmt = stmt.where(RoyaltyRun.period_end >= filters.period_from)
        if filters.period_to is not None:
            stmt = stmt.where(RoyaltyRun.period_start <= filters.period_to)
        stmt = (
            stmt.order_by(RoyaltyRun.period_start.desc(), RoyaltyRun.id)
            .limit(filters.limit)
            .offset(filters.offset)
        )

        runs = self.session.execute(stmt).scalars().all()
        counts = self._statement_counts([r.id for r in runs])
        return [run_to_info(r, counts.get(r.id, 0)) for r in runs]
