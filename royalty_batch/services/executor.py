"""
BatchExecutor -- SAVEPOINT-per-item batch execution engine.

Contract:
    Prepares the items of a registered task and executes each one inside
    its own SAVEPOINT.

Invariants enforced:
    - SAVEPOINT isolation per item: one failure doesn't abort the batch.
    - All timestamps come from the injected Clock.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from royalty_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
)
from royalty_batch.tasks.base import TaskRegistry
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")


class BatchExecutor:
    """Batch execution engine with SAVEPOINT-per-item isolation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT manage background threads -- that is the worker's job.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()

    def execute(
        self,
        task_type: str,
        parameters: dict[str, Any] | None = None,
    ) -> BatchRunResult:
        """Run every prepared item of ``task_type``.

        Raises:
            KeyError: If task_type is not registered.
        """
        task = self._task_registry.get(task_type)
        parameters = parameters or {}
        correlation_id = str(uuid4())
        start_time = time.monotonic()
        started_at = self._clock.now()

        with LogContext.bind(correlation_id=correlation_id):
            items = task.prepare_items(
                parameters=parameters, session=self._session, as_of=started_at
            )
            logger.info(
                "batch_started",
                extra={"task_type": task_type, "total_items": len(items)},
            )

            succeeded = 0
            failed = 0
            skipped = 0
            item_results: list[BatchItemResult] = []

            for batch_item in items:
                item_start = time.monotonic()
                item_started_at = self._clock.now()

                savepoint = self._session.begin_nested()
                try:
                    result = task.execute_item(
                        item=batch_item,
                        parameters=parameters,
                        session=self._session,
                        as_of=started_at,
                    )
                    if result.status == BatchItemStatus.SUCCEEDED:
                        savepoint.commit()
                        succeeded += 1
                    elif result.status == BatchItemStatus.SKIPPED:
                        savepoint.rollback()
                        skipped += 1
                    else:
                        savepoint.rollback()
                        failed += 1
                        logger.warning(
                            "batch_item_failed",
                            extra={
                                "task_type": task_type,
                                "item_key": batch_item.item_key,
                                "error_code": result.error_code,
                                "error": result.error_message,
                            },
                        )
                    item_result = BatchItemResult(
                        item_index=batch_item.item_index,
                        item_key=batch_item.item_key,
                        status=result.status,
                        error_code=result.error_code,
                        error_message=result.error_message,
                        result_data=result.result_data,
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                        started_at=item_started_at,
                        completed_at=self._clock.now(),
                    )
                except Exception as exc:
                    savepoint.rollback()
                    failed += 1
                    logger.error(
                        "batch_item_crashed",
                        extra={"task_type": task_type, "item_key": batch_item.item_key},
                        exc_info=True,
                    )
                    item_result = BatchItemResult(
                        item_index=batch_item.item_index,
                        item_key=batch_item.item_key,
                        status=BatchItemStatus.FAILED,
                        error_code="UNHANDLED_EXCEPTION",
                        error_message=str(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                        started_at=item_started_at,
                        completed_at=self._clock.now(),
                    )

                item_results.append(item_result)

            if failed == 0:
                status = BatchJobStatus.COMPLETED
            elif succeeded == 0 and skipped == 0:
                status = BatchJobStatus.FAILED
            else:
                status = BatchJobStatus.PARTIALLY_COMPLETED

            total_duration = int((time.monotonic() - start_time) * 1000)
            logger.info(
                "batch_completed",
                extra={
                    "task_type": task_type,
                    "status": status.value,
                    "succeeded": succeeded,
                    "failed": failed,
                    "skipped": skipped,
                    "duration_ms": total_duration,
                },
            )

        return BatchRunResult(
            task_type=task_type,
            status=status,
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(item_results),
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=total_duration,
            correlation_id=correlation_id,
        )
