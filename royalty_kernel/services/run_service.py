"""
RunService -- royalty run persistence and the run-row mutex.

Responsibility:
    Creates runs (period validation and overlap check), loads and locks run
    rows, and performs every run status transition as a conditional
    status-check-and-set that also bumps the optimistic ``version`` column.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the orchestrator,
    StatementService, AdjustmentService, RollbackService and the batch tasks.

Invariants enforced:
    - At most one non-FAILED run covers any day.
    - Transitions are ``UPDATE ... WHERE id = :id AND status IN (:expected)``;
      exactly one row must change or the caller gets RunConflictError (the
      run is held by someone else) or RunStateError (wrong state).
    - Only one caller can move a run into PROCESSING.
    - No run is created or calculated over a period that a later
      CALCULATED or LOCKED run has already carried balances past.

Failure modes:
    - InvalidPeriodError / RunPeriodOverlapError on create or reset.
    - CarryoverChainError on create or calculate out of period order.
    - RunNotFoundError, RunStateError, RunConflictError on transitions.
    - OptimisticLockError when an ORM flush loses a version race.

Audit relevance:
    Every transition records an AuditEvent with from/to status.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, text, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import RunStatus
from royalty_kernel.domain.periods import validate_period_dates
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.exceptions import (
    CarryoverChainError,
    OptimisticLockError,
    RunConflictError,
    RunNotFoundError,
    RunPeriodOverlapError,
    RunStateError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService
from royalty_kernel.utils.hashing import hash_payload

logger = get_logger("services.run")

SYSTEM_ACTOR = "system"


def _values(statuses: Iterable[RunStatus]) -> tuple[str, ...]:
    return tuple(s.value for s in statuses)


class RunService(BaseService[RoyaltyRun]):
    """
    Royalty run lifecycle persistence.

    Contract:
        All transitions go through ``_transition`` so that the status check,
        the status write and the version bump happen in one UPDATE.

    Non-goals:
        - Does NOT calculate anything; see the orchestrator.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> RoyaltyRun:
        run = self.session.get(RoyaltyRun, run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    def get_for_update(self, run_id: UUID) -> RoyaltyRun:
        """Load the run row with ``SELECT ... FOR UPDATE`` and fresh state."""
        run = self.session.execute(
            select(RoyaltyRun)
            .where(RoyaltyRun.id == run_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    def _reload(self, run_id: UUID) -> RoyaltyRun:
        return self.session.execute(
            select(RoyaltyRun)
            .where(RoyaltyRun.id == run_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    def find_overlapping(
        self,
        period_start: date,
        period_end: date,
        exclude_run_id: UUID | None = None,
    ) -> RoyaltyRun | None:
        """First non-FAILED run whose inclusive period intersects the given one."""
        stmt = select(RoyaltyRun).where(
            RoyaltyRun.status != RunStatus.FAILED.value,
            RoyaltyRun.period_start <= period_end,
            RoyaltyRun.period_end >= period_start,
        )
        if exclude_run_id is not None:
            stmt = stmt.where(RoyaltyRun.id != exclude_run_id)
        return self.session.execute(
            stmt.order_by(RoyaltyRun.period_start).limit(1)
        ).scalar_one_or_none()

    def _serialize_run_periods(self) -> None:
        # SQLite serializes writers already; PostgreSQL needs a table lock
        # so two callers cannot both pass the overlap or carryover check.
        if self.session.get_bind().dialect.name == "postgresql":
            self.session.execute(
                text("LOCK TABLE royalty_runs IN SHARE ROW EXCLUSIVE MODE")
            )

    def find_later_with_output(self, period_end: date) -> RoyaltyRun | None:
        """Earliest CALCULATED or LOCKED run starting after ``period_end``."""
        return self.session.execute(
            select(RoyaltyRun)
            .where(
                RoyaltyRun.status.in_(
                    (RunStatus.CALCULATED.value, RunStatus.LOCKED.value)
                ),
                RoyaltyRun.period_start > period_end,
            )
            .order_by(RoyaltyRun.period_start)
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def check_carryover_chain(
        self,
        period_start: date,
        period_end: date,
        operation: str,
        run_id: UUID | None = None,
    ) -> None:
        """
        Refuse to touch a period whose balances a later run has already
        carried forward.

        Carryover is read from the latest earlier statement, so the chain
        only stays conserved when runs are calculated in period order and
        unwound from the newest end.

        Raises:
            CarryoverChainError: a later run is CALCULATED or LOCKED.
        """
        self._serialize_run_periods()
        later = self.find_later_with_output(period_end)
        if later is None:
            return
        logger.warning(
            "carryover_chain_conflict",
            extra={
                "run_id": str(run_id) if run_id else None,
                "operation": operation,
                "period_start": period_start,
                "period_end": period_end,
                "later_run_id": str(later.id),
                "later_status": later.status,
            },
        )
        raise CarryoverChainError(
            period_start,
            period_end,
            str(later.id),
            later.status,
            operation,
            run_id=str(run_id) if run_id else None,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_run(
        self,
        period_start: date,
        period_end: date,
        actor_id: str,
        notes: str | None = None,
        policy: RoyaltyPolicy | None = None,
    ) -> RoyaltyRun:
        """
        Create a DRAFT run.

        Raises:
            InvalidPeriodError: period_end is not after period_start.
            RunPeriodOverlapError: another non-FAILED run covers a day of
                the period.
        """
        validate_period_dates(period_start, period_end)
        self._serialize_run_periods()

        conflict = self.find_overlapping(period_start, period_end)
        if conflict is not None:
            logger.warning(
                "run_period_overlap_rejected",
                extra={
                    "period_start": period_start,
                    "period_end": period_end,
                    "conflicting_run_id": str(conflict.id),
                },
            )
            raise RunPeriodOverlapError(period_start, period_end, str(conflict.id))
        self.check_carryover_chain(period_start, period_end, "create")

        policy = policy or RoyaltyPolicy()
        snapshot = policy.to_snapshot()
        run = RoyaltyRun(
            id=uuid4(),
            period_start=period_start,
            period_end=period_end,
            status=RunStatus.DRAFT.value,
            notes=notes,
            created_by_id=str(actor_id),
            policy_snapshot=snapshot,
            policy_checksum=hash_payload(snapshot),
        )
        self.session.add(run)
        self.flush(run)

        self._auditor.record_run_created(run.id, period_start, period_end, actor_id)
        logger.info(
            "run_created",
            extra={
                "run_id": str(run.id),
                "period_start": period_start,
                "period_end": period_end,
                "policy_checksum": run.policy_checksum,
            },
        )
        return run

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        run_id: UUID,
        expected: tuple[RunStatus, ...],
        target: RunStatus,
        actor_id: str,
        operation: str,
        values: dict[str, Any] | None = None,
        conflict_on: tuple[RunStatus, ...] = (),
        extra_criteria: tuple = (),
    ) -> RoyaltyRun:
        stmt = (
            update(RoyaltyRun)
            .where(
                RoyaltyRun.id == run_id,
                RoyaltyRun.status.in_(_values(expected)),
                *extra_criteria,
            )
            .values(
                status=target.value,
                version=RoyaltyRun.version + 1,
                updated_by_id=str(actor_id),
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount != 1:
            current = self.session.execute(
                select(RoyaltyRun.status).where(RoyaltyRun.id == run_id)
            ).scalar_one_or_none()
            if current is None:
                raise RunNotFoundError(str(run_id))
            logger.warning(
                "run_transition_rejected",
                extra={
                    "run_id": str(run_id),
                    "operation": operation,
                    "current_status": current,
                    "expected": list(_values(expected)),
                },
            )
            if current in _values(conflict_on):
                raise RunConflictError(str(run_id), current, operation)
            raise RunStateError(str(run_id), current, _values(expected), operation)

        run = self._reload(run_id)
        logger.info(
            "run_status_changed",
            extra={
                "run_id": str(run_id),
                "operation": operation,
                "to_status": target.value,
                "version": run.version,
            },
        )
        return run

    def begin_processing(
        self,
        run_id: UUID,
        actor_id: str,
        owner: str | None = None,
        allow_from: tuple[RunStatus, ...] = (RunStatus.DRAFT, RunStatus.CALCULATED),
    ) -> RoyaltyRun:
        """
        Claim the run for calculation (-> PROCESSING).

        ``owner`` records who is computing; None leaves the run queued for a
        worker to claim with ``claim_processing``.

        Raises:
            RunConflictError: the run is already PROCESSING.
            RunStateError: the run is LOCKED or FAILED.
            CarryoverChainError: a later run is already CALCULATED or LOCKED.
        """
        current = self.get_run(run_id)
        before = current.status
        if before in _values(allow_from):
            self.check_carryover_chain(
                current.period_start, current.period_end, "calculate", run_id
            )
        run = self._transition(
            run_id,
            allow_from,
            RunStatus.PROCESSING,
            actor_id,
            operation="calculate",
            values={
                "processing_started_at": self._clock.now(),
                "processing_owner": owner,
                "failure_code": None,
                "failure_reason": None,
            },
            conflict_on=(RunStatus.PROCESSING,),
        )
        self._auditor.record_run_transition(
            run_id,
            AuditAction.RUN_CALCULATION_STARTED,
            before,
            RunStatus.PROCESSING.value,
            actor_id,
            owner=owner,
        )
        return run

    def claim_processing(self, run_id: UUID, owner: str) -> bool:
        """Take ownership of a queued PROCESSING run.  False if already owned."""
        result = self.session.execute(
            update(RoyaltyRun)
            .where(
                RoyaltyRun.id == run_id,
                RoyaltyRun.status == RunStatus.PROCESSING.value,
                RoyaltyRun.processing_owner.is_(None),
            )
            .values(
                processing_owner=owner,
                processing_started_at=self._clock.now(),
                version=RoyaltyRun.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        logger.info(
            "run_claim_attempted",
            extra={"run_id": str(run_id), "owner": owner, "claimed": claimed},
        )
        if claimed:
            self._reload(run_id)
        return claimed

    def mark_calculated(
        self,
        run_id: UUID,
        actor_id: str,
        total_revenue_cents: int,
        total_royalties_cents: int,
        notes: str | None,
        exclusions: list[dict],
        fingerprint: str,
        statement_count: int,
    ) -> RoyaltyRun:
        run = self._transition(
            run_id,
            (RunStatus.PROCESSING,),
            RunStatus.CALCULATED,
            actor_id,
            operation="complete_calculation",
            values={
                "total_revenue_cents": total_revenue_cents,
                "total_royalties_cents": total_royalties_cents,
                "notes": notes,
                "exclusions": exclusions,
                "calculation_fingerprint": fingerprint,
                "calculated_at": self._clock.now(),
                "processing_owner": None,
                "validation_summary": None,
            },
        )
        self._auditor.record_run_transition(
            run_id,
            AuditAction.RUN_CALCULATED,
            RunStatus.PROCESSING.value,
            RunStatus.CALCULATED.value,
            actor_id,
            total_revenue_cents=total_revenue_cents,
            total_royalties_cents=total_royalties_cents,
            statement_count=statement_count,
            fingerprint=fingerprint,
        )
        return run

    def mark_failed(
        self,
        run_id: UUID,
        actor_id: str,
        failure_code: str,
        failure_reason: str,
        action: AuditAction = AuditAction.RUN_FAILED,
    ) -> RoyaltyRun:
        run = self._transition(
            run_id,
            (RunStatus.PROCESSING,),
            RunStatus.FAILED,
            actor_id,
            operation="fail",
            values={
                "failure_code": failure_code,
                "failure_reason": failure_reason,
                "processing_owner": None,
            },
        )
        self._auditor.record_run_transition(
            run_id,
            action,
            RunStatus.PROCESSING.value,
            RunStatus.FAILED.value,
            actor_id,
            failure_code=failure_code,
            failure_reason=failure_reason,
        )
        logger.error(
            "run_failed",
            extra={
                "run_id": str(run_id),
                "failure_code": failure_code,
                "failure_reason": failure_reason,
            },
        )
        return run

    def lock_run(
        self,
        run_id: UUID,
        actor_id: str,
        validation_summary: dict[str, Any],
        notes: str | None,
    ) -> RoyaltyRun:
        run = self._transition(
            run_id,
            (RunStatus.CALCULATED,),
            RunStatus.LOCKED,
            actor_id,
            operation="lock",
            values={
                "locked_at": self._clock.now(),
                "locked_by_id": str(actor_id),
                "validation_summary": validation_summary,
                "notes": notes,
            },
            conflict_on=(RunStatus.PROCESSING,),
        )
        self._auditor.record_run_transition(
            run_id,
            AuditAction.RUN_LOCKED,
            RunStatus.CALCULATED.value,
            RunStatus.LOCKED.value,
            actor_id,
            validation_summary=validation_summary,
        )
        return run

    def reset_after_rollback(
        self,
        run_id: UUID,
        prior_status: str,
        actor_id: str,
    ) -> RoyaltyRun:
        return self._transition(
            run_id,
            (RunStatus(prior_status),),
            RunStatus.DRAFT,
            actor_id,
            operation="rollback",
            values={
                "total_revenue_cents": 0,
                "total_royalties_cents": 0,
                "locked_at": None,
                "locked_by_id": None,
                "calculated_at": None,
                "exclusions": None,
                "validation_summary": None,
                "calculation_fingerprint": None,
                "rolled_back_at": self._clock.now(),
            },
        )

    def reset_failed_run(self, run_id: UUID, actor_id: str) -> RoyaltyRun:
        """
        FAILED -> DRAFT.  The period is re-checked because a new run may
        have been created over it while this one was FAILED.
        """
        run = self.get_for_update(run_id)
        if run.status != RunStatus.FAILED.value:
            raise RunStateError(
                str(run_id), run.status, (RunStatus.FAILED.value,), "reset"
            )
        self._serialize_run_periods()
        conflict = self.find_overlapping(
            run.period_start, run.period_end, exclude_run_id=run.id
        )
        if conflict is not None:
            raise RunPeriodOverlapError(
                run.period_start, run.period_end, str(conflict.id)
            )

        previous_code = run.failure_code
        run = self._transition(
            run_id,
            (RunStatus.FAILED,),
            RunStatus.DRAFT,
            actor_id,
            operation="reset",
            values={
                "failure_code": None,
                "failure_reason": None,
                "processing_started_at": None,
            },
        )
        self._auditor.record_run_transition(
            run_id,
            AuditAction.RUN_RESET,
            RunStatus.FAILED.value,
            RunStatus.DRAFT.value,
            actor_id,
            previous_failure_code=previous_code,
        )
        return run

    def sweep_stuck_runs(
        self,
        timeout_minutes: int,
        actor_id: str = SYSTEM_ACTOR,
    ) -> list[UUID]:
        """Move PROCESSING runs older than ``timeout_minutes`` to FAILED."""
        cutoff = self._clock.now() - timedelta(minutes=timeout_minutes)
        stuck_ids = self.session.execute(
            select(RoyaltyRun.id).where(
                RoyaltyRun.status == RunStatus.PROCESSING.value,
                RoyaltyRun.processing_started_at < cutoff,
            )
        ).scalars().all()

        swept: list[UUID] = []
        for run_id in stuck_ids:
            try:
                self.mark_failed(
                    run_id,
                    actor_id,
                    failure_code="PROCESSING_TIMEOUT",
                    failure_reason=(
                        f"Run exceeded the {timeout_minutes} minute processing "
                        "timeout and was marked FAILED by the supervisory sweep"
                    ),
                    action=AuditAction.RUN_TIMED_OUT,
                )
            except (RunStateError, RunConflictError):
                # Finished between the scan and the update.
                continue
            swept.append(run_id)

        logger.info(
            "stuck_runs_swept",
            extra={
                "timeout_minutes": timeout_minutes,
                "swept_count": len(swept),
                "run_ids": [str(r) for r in swept],
            },
        )
        return swept

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def flush(self, run: RoyaltyRun | None = None) -> None:
        """Flush, translating version conflicts into OptimisticLockError."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            entity_id = str(run.id) if run is not None else "unknown"
            logger.warning(
                "optimistic_lock_conflict",
                extra={"entity_type": "RoyaltyRun", "entity_id": entity_id},
            )
            raise OptimisticLockError("RoyaltyRun", entity_id) from exc
