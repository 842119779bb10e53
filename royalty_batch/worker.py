"""
RoyaltyWorker -- In-process polling worker for royalty runs.

Contract:
    ``run_once()`` sweeps stuck runs and then calculates queued runs, each
    task in its own transaction.  ``start()``/``stop()`` run the cycle on a
    background thread.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Graceful shutdown: the stop signal is checked between cycles.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from royalty_batch.domain.types import BatchRunResult
from royalty_batch.services.executor import BatchExecutor
from royalty_batch.tasks.base import TaskRegistry
from royalty_batch.tasks.royalty_tasks import (
    CALCULATE_RUNS,
    SWEEP_STUCK_RUNS,
    CalculateQueuedRunsTask,
    SweepStuckRunsTask,
)
from royalty_config import get_active_policy
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_services.collaborators import (
    LicenseOwnershipProvider,
    NotificationSink,
    UsageEventSource,
)
from royalty_services.run_orchestrator import RoyaltyRunOrchestrator

logger = get_logger("batch.worker")

CYCLE_ORDER = (SWEEP_STUCK_RUNS, CALCULATE_RUNS)


class RoyaltyWorker:
    """Polling worker for queued royalty calculations.

    Non-goals:
        - NOT a distributed scheduler; several workers may run, and the
          per-run claim keeps them from computing the same run.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider: LicenseOwnershipProvider,
        usage_source: UsageEventSource,
        notifier: NotificationSink | None = None,
        policy: RoyaltyPolicy | None = None,
        clock: Clock | None = None,
        worker_id: str | None = None,
        poll_interval_seconds: int = 30,
        batch_size: int = 10,
    ):
        self._session_factory = session_factory
        self._policy = policy or get_active_policy()
        self._clock = clock or SystemClock()
        self.worker_id = worker_id or f"worker-{uuid4().hex[:8]}"
        self._poll_interval = poll_interval_seconds
        self._batch_size = batch_size
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        def orchestrator_factory(session: Session) -> RoyaltyRunOrchestrator:
            return RoyaltyRunOrchestrator(
                session,
                provider,
                usage_source,
                notifier=notifier,
                policy=self._policy,
                clock=self._clock,
                auto_commit=False,
            )

        self.registry = TaskRegistry()
        self.registry.register(SweepStuckRunsTask(self._policy, self._clock))
        self.registry.register(
            CalculateQueuedRunsTask(orchestrator_factory, self.worker_id, self._clock)
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run_once(self) -> dict[str, BatchRunResult]:
        """Run one cycle (public for testing).  Commits each task separately."""
        results: dict[str, BatchRunResult] = {}
        with LogContext.bind(worker_id=self.worker_id):
            for task_type in CYCLE_ORDER:
                parameters = (
                    {"limit": self._batch_size} if task_type == CALCULATE_RUNS else {}
                )
                session = self._session_factory()
                try:
                    executor = BatchExecutor(session, self.registry, self._clock)
                    results[task_type] = executor.execute(task_type, parameters)
                    session.commit()
                except Exception:
                    session.rollback()
                    logger.exception("worker_task_failed", extra={"task_type": task_type})
                finally:
                    session.close()
        return results

    def start(self) -> None:
        """Start the worker in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"royalty-{self.worker_id}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "worker_started",
            extra={"worker_id": self.worker_id, "poll_interval": self._poll_interval},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current cycle to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped", extra={"worker_id": self.worker_id})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self._poll_interval)
