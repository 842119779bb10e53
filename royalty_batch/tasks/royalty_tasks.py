"""
Batch tasks: royalty run calculation and the stuck-run sweep.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_batch.domain.types import BatchItemStatus
from royalty_batch.tasks.base import BatchItemInput, BatchTaskResult
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import RunStatus
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.exceptions import RoyaltyKernelError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.services.run_service import RunService
from royalty_services.run_orchestrator import RoyaltyRunOrchestrator

logger = get_logger("batch.royalty_tasks")

CALCULATE_RUNS = "royalty.calculate_runs"
SWEEP_STUCK_RUNS = "royalty.sweep_stuck_runs"


class CalculateQueuedRunsTask:
    """Claims and calculates runs queued by ``request_calculation``.

    A queued run is PROCESSING with no ``processing_owner``.  The claim is a
    conditional UPDATE, so a run taken by another worker is SKIPPED.  A
    calculation error leaves the run FAILED and still counts as a processed
    item; only unexpected exceptions fail the item.
    """

    def __init__(
        self,
        orchestrator_factory: Callable[[Session], RoyaltyRunOrchestrator],
        worker_id: str,
        clock: Clock | None = None,
    ):
        self._orchestrator_factory = orchestrator_factory
        self._worker_id = worker_id
        self._clock = clock or SystemClock()

    @property
    def task_type(self) -> str:
        return CALCULATE_RUNS

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        limit = int(parameters.get("limit", 10))
        run_ids = session.execute(
            select(RoyaltyRun.id)
            .where(
                RoyaltyRun.status == RunStatus.PROCESSING.value,
                RoyaltyRun.processing_owner.is_(None),
            )
            .order_by(RoyaltyRun.processing_started_at, RoyaltyRun.period_start)
            .limit(limit)
        ).scalars().all()

        return tuple(
            BatchItemInput(item_index=i, item_key=str(run_id))
            for i, run_id in enumerate(run_ids)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        run_id = UUID(item.item_key)
        runs = RunService(session, self._clock)
        if not runs.claim_processing(run_id, self._worker_id):
            return BatchTaskResult(
                status=BatchItemStatus.SKIPPED,
                result_data={"reason": "claimed_by_another_worker"},
            )

        orchestrator = self._orchestrator_factory(session)
        try:
            info = orchestrator.execute_calculation(run_id, self._worker_id)
        except RoyaltyKernelError as exc:
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
            )

        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "run_id": str(run_id),
                "run_status": info.status.value,
                "failure_code": info.failure_code,
                "statement_count": info.statement_count,
            },
        )


class SweepStuckRunsTask:
    """Moves PROCESSING runs older than the timeout to FAILED."""

    def __init__(self, policy: RoyaltyPolicy | None = None, clock: Clock | None = None):
        self._policy = policy or RoyaltyPolicy()
        self._clock = clock or SystemClock()

    @property
    def task_type(self) -> str:
        return SWEEP_STUCK_RUNS

    def _timeout(self, parameters: dict[str, Any]) -> int:
        return int(
            parameters.get("timeout_minutes", self._policy.stuck_run_timeout_minutes)
        )

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        timeout = self._timeout(parameters)
        return (
            BatchItemInput(
                item_index=0,
                item_key=f"sweep:{timeout}",
                payload={"timeout_minutes": timeout},
            ),
        )

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        swept = RunService(session, self._clock).sweep_stuck_runs(
            item.payload["timeout_minutes"],
            actor_id=parameters.get("actor_id", "system"),
        )
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={"swept_run_ids": [str(r) for r in swept]},
        )
