"""
royalty_services.run_orchestrator -- Royalty run lifecycle.

Responsibility:
    The public entry point for royalty runs: create, calculate (inline or
    queued for the worker), recalculate, validate, review/lock, roll back,
    and the statement and adjustment operations that must respect the run
    mutex.  Business rules live in the kernel services and the engines; the
    orchestrator adds sequencing, transaction boundaries, log context and
    notifications.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes RunService, StatementService, AdjustmentService,
    RollbackService, RunOutputWriter, the selectors and RoyaltyCalculator.

Invariants enforced:
    - Transaction boundaries: with ``auto_commit`` every public operation
      commits on success and rolls back on failure.  Kernel services only
      flush.
    - Calculation is all-or-nothing: output is written inside a SAVEPOINT;
      a RoyaltyCalculationError rolls it back, removes any earlier output
      and leaves the run FAILED with the error code and message.
    - Recalculation replaces the run's output; it never merges.
    - Runs are calculated in period order: a run is never created,
      calculated or rolled back once a later run holds calculated output,
      so a carried balance is consumed by exactly one later statement.
    - A run is validated against the policy snapshot it was created with.
    - Locking requires zero validation errors, no DISPUTED statements and,
      when warnings exist, ``override_warnings``.

Failure modes:
    - Input, state and concurrency errors from the kernel propagate after
      the transaction is rolled back.
    - Unexpected exceptions during calculation mark the run FAILED with
      code ``UNEXPECTED_ERROR`` and are re-raised.
    - Notification failures are logged and never propagate.

Audit relevance:
    Every operation runs under ``LogContext.bind`` with a fresh
    correlation id, the run id and the actor id, so every log line of the
    nested services can be tied back to the request.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from royalty_engines.validation import ValidationEngine, ValidationReport
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentType,
    LineInfo,
    RunFilters,
    RunInfo,
    RunStatus,
    StatementFilters,
    StatementInfo,
    StatementStatus,
)
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.exceptions import (
    CarryoverChainError,
    RoyaltyCalculationError,
    RunConflictError,
    RunNotFoundError,
    RunStateError,
    StatementNotFoundError,
    UnresolvedDisputesError,
    ValidationGateError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.selectors.run_selector import RunSelector, run_to_info
from royalty_kernel.selectors.statement_selector import (
    StatementSelector,
    line_to_info,
)
from royalty_kernel.services.adjustment_service import (
    AdjustmentRequest,
    AdjustmentResult,
    AdjustmentService,
)
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.rollback_service import RollbackResult, RollbackService
from royalty_kernel.services.run_service import RunService
from royalty_kernel.services.statement_service import StatementService, require_text
from royalty_kernel.services.statement_writer import RunOutputWriter
from royalty_kernel.utils.hashing import canonicalize_json
from royalty_services.calculation import CalculationResult, RoyaltyCalculator
from royalty_services.collaborators import (
    DISPUTE_RESOLVED,
    STATEMENT_READY,
    LicenseOwnershipProvider,
    NotificationSink,
    NullNotificationSink,
    UsageEventSource,
)

logger = get_logger("services.run_orchestrator")

UNEXPECTED_ERROR_CODE = "UNEXPECTED_ERROR"


def _append_notes(existing: str | None, addition: str | None) -> str | None:
    if not addition:
        return existing
    if not existing:
        return addition
    return f"{existing}\n{addition}"


class RoyaltyRunOrchestrator:
    """
    Royalty run state machine and the operations guarded by it.

    Contract:
        Receives the session and the upstream collaborators via constructor
        injection.  All returned values are frozen DTOs, never ORM objects.

    Guarantees:
        - ``create_run(..., auto_calculate=True)`` returns a CALCULATED or
          FAILED run.
        - ``recalculate`` on an unchanged upstream produces the same
          ``calculation_fingerprint``.
        - ``review_run(approve=False)`` leaves the run CALCULATED.

    Non-goals:
        - Does not fetch upstream data itself; collaborators do.
        - Does not render documents; see StatementExportService.
    """

    def __init__(
        self,
        session: Session,
        provider: LicenseOwnershipProvider,
        usage_source: UsageEventSource,
        notifier: NotificationSink | None = None,
        policy: RoyaltyPolicy | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self.session = session
        self.policy = policy or RoyaltyPolicy()
        self.clock = clock or SystemClock()
        self._provider = provider
        self._usage_source = usage_source
        self._notifier: NotificationSink = notifier or NullNotificationSink()
        self._auto_commit = auto_commit

        self.auditor = AuditorService(session, self.clock)
        self.runs = RunService(session, self.clock, self.auditor)
        self.statements = StatementService(session, self.policy, self.clock, self.auditor)
        self.adjustments = AdjustmentService(
            session, self.policy, self.clock, self.auditor
        )
        self.rollbacks = RollbackService(session, self.policy, self.clock, self.auditor)
        self._writer = RunOutputWriter(session)
        self._run_selector = RunSelector(session)
        self._statement_selector = StatementSelector(session)

    # ------------------------------------------------------------------
    # Transaction and context plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(
        self,
        name: str,
        actor_id: str | None = None,
        run_id: UUID | None = None,
        statement_id: UUID | None = None,
    ) -> Iterator[None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            run_id=run_id,
            statement_id=statement_id,
            actor_id=actor_id,
        ):
            t0 = time.monotonic()
            try:
                yield
                if self._auto_commit:
                    self.session.commit()
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self.session.rollback()
                logger.warning(
                    "operation_failed",
                    extra={"operation": name, "duration_ms": duration_ms},
                    exc_info=True,
                )
                raise
            logger.info(
                "operation_completed",
                extra={
                    "operation": name,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )

    def _commit(self) -> None:
        if self._auto_commit:
            self.session.commit()

    def _notify(self, creator_id: str, statement_id: UUID, event: str) -> None:
        try:
            self._notifier.notify(creator_id, statement_id, event)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={
                    "creator_id": creator_id,
                    "statement_id": str(statement_id),
                    "event": event,
                },
                exc_info=True,
            )

    def _run_info(self, run_id: UUID) -> RunInfo:
        info = self._run_selector.get_run(run_id)
        if info is None:
            raise RunNotFoundError(str(run_id))
        return info

    def _statement_info(self, statement_id: UUID) -> StatementInfo:
        info = self._statement_selector.get_statement(statement_id, include_lines=True)
        if info is None:
            raise StatementNotFoundError(str(statement_id))
        return info

    # ------------------------------------------------------------------
    # Run creation and calculation
    # ------------------------------------------------------------------

    def create_run(
        self,
        period_start: date,
        period_end: date,
        actor_id: str,
        notes: str | None = None,
        auto_calculate: bool = True,
    ) -> RunInfo:
        """
        Create a DRAFT run and, by default, calculate it immediately.

        Raises:
            InvalidPeriodError: period_end is not after period_start.
            RunPeriodOverlapError: the period overlaps a non-FAILED run.
            CarryoverChainError: a later run is already CALCULATED or LOCKED.
        """
        with self._operation("create_run", actor_id=actor_id):
            run = self.runs.create_run(
                period_start, period_end, actor_id, notes=notes, policy=self.policy
            )
            run_id = run.id
        if auto_calculate:
            return self._calculate_inline(run_id, actor_id, (RunStatus.DRAFT,))
        return self._run_info(run_id)

    def recalculate(
        self,
        run_id: UUID,
        actor_id: str,
        force_recalculation: bool = False,
    ) -> RunInfo:
        """
        Calculate a DRAFT run, or replace the output of a CALCULATED run.

        A CALCULATED run already carries statements that creators may have
        reviewed or disputed, so replacing them needs
        ``force_recalculation=True``.

        Raises:
            RunConflictError: the run is PROCESSING.
            RunStateError: the run is LOCKED or FAILED, or CALCULATED
                without ``force_recalculation``.
            CarryoverChainError: a later run is already CALCULATED or LOCKED.
        """
        allowed = (RunStatus.DRAFT, RunStatus.CALCULATED)
        with self._operation("recalculate", actor_id=actor_id, run_id=run_id):
            run = self.runs.get_run(run_id)
            if run.status == RunStatus.CALCULATED.value and not force_recalculation:
                raise RunStateError(
                    str(run_id),
                    run.status,
                    (RunStatus.DRAFT.value,),
                    "recalculate (force_recalculation required)",
                )
        return self._calculate_inline(run_id, actor_id, allowed)

    def request_calculation(self, run_id: UUID, actor_id: str) -> RunInfo:
        """
        Queue a DRAFT run for the batch worker.  The run becomes PROCESSING
        without an owner; callers poll its status.
        """
        with self._operation("request_calculation", actor_id=actor_id, run_id=run_id):
            self.runs.begin_processing(
                run_id, actor_id, owner=None, allow_from=(RunStatus.DRAFT,)
            )
        return self._run_info(run_id)

    def _calculate_inline(
        self,
        run_id: UUID,
        actor_id: str,
        allow_from: tuple[RunStatus, ...],
    ) -> RunInfo:
        with self._operation("begin_processing", actor_id=actor_id, run_id=run_id):
            self.runs.begin_processing(
                run_id, actor_id, owner=str(actor_id), allow_from=allow_from
            )
        return self.execute_calculation(run_id, actor_id)

    def execute_calculation(self, run_id: UUID, actor_id: str) -> RunInfo:
        """
        Compute a PROCESSING run and move it to CALCULATED or FAILED.

        Used inline by ``create_run``/``recalculate`` and by the batch
        worker after it has claimed a queued run.
        """
        with self._operation("execute_calculation", actor_id=actor_id, run_id=run_id):
            run = self.runs.get_for_update(run_id)
            if run.status != RunStatus.PROCESSING.value:
                raise RunStateError(
                    str(run_id),
                    run.status,
                    (RunStatus.PROCESSING.value,),
                    "execute_calculation",
                )
            policy = RoyaltyPolicy.from_snapshot(run.policy_snapshot)
            previous_fingerprint = run.calculation_fingerprint
            t0 = time.monotonic()
            logger.info(
                "calculation_started",
                extra={"period_start": run.period_start, "period_end": run.period_end},
            )

            try:
                with self.session.begin_nested():
                    result = self._compute_and_write(run_id, policy, actor_id)
            except (RoyaltyCalculationError, CarryoverChainError) as exc:
                logger.error(
                    "calculation_failed",
                    extra={"failure_code": exc.code, "error": str(exc)},
                )
                self._fail(run_id, actor_id, exc.code, str(exc))
                return self._run_info(run_id)
            except Exception as exc:
                logger.critical("calculation_crashed", exc_info=True)
                self._fail(
                    run_id,
                    actor_id,
                    UNEXPECTED_ERROR_CODE,
                    f"{type(exc).__name__}: {exc}",
                )
                raise

            fingerprint = self.runs.get_run(run_id).calculation_fingerprint
            logger.info(
                "calculation_completed",
                extra={
                    "statement_count": len(result.drafts),
                    "total_revenue_cents": result.total_revenue_cents,
                    "total_royalties_cents": result.total_royalties_cents,
                    "excluded_count": len(result.exclusions),
                    "fingerprint": fingerprint,
                    "output_unchanged": (
                        previous_fingerprint == fingerprint
                        if previous_fingerprint is not None
                        else None
                    ),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return self._run_info(run_id)

    def _compute_and_write(
        self, run_id: UUID, policy: RoyaltyPolicy, actor_id: str
    ) -> CalculationResult:
        run = self.runs.get_run(run_id)
        # A later run may have been calculated while this one sat queued.
        self.runs.check_carryover_chain(
            run.period_start, run.period_end, "calculate", run_id
        )
        self._writer.delete_output(run_id)

        prior = self._statement_selector.prior_balances(run.period_start)
        calculator = RoyaltyCalculator(self._provider, self._usage_source, policy)
        result = calculator.calculate(run.period_start, run.period_end, prior)

        self._writer.write(run_id, list(result.drafts), actor_id)
        fingerprint = self._statement_selector.output_fingerprint(run_id)
        self.runs.mark_calculated(
            run_id,
            actor_id,
            total_revenue_cents=result.total_revenue_cents,
            total_royalties_cents=result.total_royalties_cents,
            notes=_append_notes(run.notes, result.summary_text()),
            exclusions=[e.to_dict() for e in result.exclusions],
            fingerprint=fingerprint,
            statement_count=len(result.drafts),
        )
        return result

    def _fail(self, run_id: UUID, actor_id: str, code: str, reason: str) -> None:
        # Output of an earlier calculation does not survive a failed one.
        self._writer.delete_output(run_id)
        self.runs.mark_failed(run_id, actor_id, code, reason)
        self._commit()

    # ------------------------------------------------------------------
    # Validation and review
    # ------------------------------------------------------------------

    def get_validation_report(self, run_id: UUID) -> ValidationReport:
        """Validate a CALCULATED or LOCKED run against its own policy snapshot."""
        run = self.runs.get_run(run_id)
        if run.status not in (RunStatus.CALCULATED.value, RunStatus.LOCKED.value):
            raise RunStateError(
                str(run_id),
                run.status,
                (RunStatus.CALCULATED.value, RunStatus.LOCKED.value),
                "validate",
            )
        policy = RoyaltyPolicy.from_snapshot(run.policy_snapshot)
        statements = self._statement_selector.get_run_statements(
            run_id, include_lines=True
        )
        report = ValidationEngine(policy).validate(
            run=run_to_info(run, len(statements)),
            statements=statements,
            exclusions=run.exclusions or (),
        )
        logger.info(
            "validation_report_built",
            extra={
                "run_id": str(run_id),
                "is_valid": report.is_valid,
                "error_count": report.error_count,
                "warning_count": report.warning_count,
            },
        )
        return report

    def review_run(
        self,
        run_id: UUID,
        actor_id: str,
        approve: bool,
        review_notes: str | None = None,
        override_warnings: bool = False,
    ) -> RunInfo:
        """
        Approve (CALCULATED -> LOCKED) or reject a calculated run.

        Rejection requires notes and keeps the run CALCULATED.

        Raises:
            RunConflictError: the run is PROCESSING.
            RunStateError: the run is not CALCULATED.
            UnresolvedDisputesError: a statement is DISPUTED.
            ValidationGateError: validation errors, or warnings without
                ``override_warnings``.
        """
        locked_statements: list[StatementInfo] = []
        with self._operation("review_run", actor_id=actor_id, run_id=run_id):
            run = self.runs.get_for_update(run_id)
            if run.status == RunStatus.PROCESSING.value:
                raise RunConflictError(str(run_id), run.status, "review")
            if run.status != RunStatus.CALCULATED.value:
                raise RunStateError(
                    str(run_id), run.status, (RunStatus.CALCULATED.value,), "review"
                )

            if not approve:
                review_notes = require_text(
                    review_notes, "review_notes", self.policy.justification_min_length
                )
                run.notes = _append_notes(run.notes, f"Review rejected: {review_notes}")
                run.updated_by_id = str(actor_id)
                self.runs.flush(run)
                self.auditor.record_run_transition(
                    run_id,
                    AuditAction.RUN_REVIEW_REJECTED,
                    RunStatus.CALCULATED.value,
                    RunStatus.CALCULATED.value,
                    actor_id,
                    review_notes=review_notes,
                )
                logger.info("run_review_rejected", extra={"run_id": str(run_id)})
            else:
                disputed = self._statement_selector.count_by_status(run_id).get(
                    StatementStatus.DISPUTED.value, 0
                )
                if disputed:
                    raise UnresolvedDisputesError(str(run_id), disputed)

                report = self.get_validation_report(run_id)
                if report.errors or (report.warnings and not override_warnings):
                    logger.warning(
                        "run_lock_blocked",
                        extra={
                            "run_id": str(run_id),
                            "error_codes": sorted({e.code for e in report.errors}),
                            "warning_codes": sorted({w.code for w in report.warnings}),
                        },
                    )
                    raise ValidationGateError(
                        str(run_id), report.error_count, report.warning_count
                    )
                overridden = bool(report.warnings)
                if overridden:
                    logger.warning(
                        "validation_warnings_overridden",
                        extra={
                            "run_id": str(run_id),
                            "warning_codes": sorted({w.code for w in report.warnings}),
                            "warning_count": report.warning_count,
                        },
                    )

                summary = dict(report.summary)
                summary["warnings_overridden"] = overridden
                self.runs.lock_run(
                    run_id,
                    actor_id,
                    validation_summary=json.loads(canonicalize_json(summary)),
                    notes=_append_notes(run.notes, review_notes),
                )
                locked_statements = self._statement_selector.get_run_statements(
                    run_id, include_lines=False
                )

        for statement in locked_statements:
            self._notify(statement.creator_id, statement.id, STATEMENT_READY)
        return self._run_info(run_id)

    # ------------------------------------------------------------------
    # Rollback and recovery
    # ------------------------------------------------------------------

    def rollback_run(
        self,
        run_id: UUID,
        actor_id: str,
        reason: str,
        archive_data: bool = True,
        force_rollback: bool = False,
    ) -> RollbackResult:
        with self._operation("rollback_run", actor_id=actor_id, run_id=run_id):
            result = self.rollbacks.rollback_run(
                run_id,
                actor_id,
                reason,
                archive_data=archive_data,
                force_rollback=force_rollback,
            )
        return result

    def reset_failed_run(self, run_id: UUID, actor_id: str) -> RunInfo:
        with self._operation("reset_failed_run", actor_id=actor_id, run_id=run_id):
            self.runs.reset_failed_run(run_id, actor_id)
        return self._run_info(run_id)

    def sweep_stuck_runs(
        self,
        actor_id: str = "system",
        timeout_minutes: int | None = None,
    ) -> list[UUID]:
        """Fail PROCESSING runs older than the policy timeout."""
        if timeout_minutes is None:
            timeout_minutes = self.policy.stuck_run_timeout_minutes
        with self._operation("sweep_stuck_runs", actor_id=actor_id):
            swept = self.runs.sweep_stuck_runs(timeout_minutes, actor_id)
        return swept

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def review_statement(
        self, statement_id: UUID, creator_id: str, actor_id: str
    ) -> StatementInfo:
        with self._operation(
            "review_statement", actor_id=actor_id, statement_id=statement_id
        ):
            self.statements.review_statement(statement_id, creator_id, actor_id)
        return self._statement_info(statement_id)

    def dispute_statement(
        self, statement_id: UUID, creator_id: str, reason: str, actor_id: str
    ) -> StatementInfo:
        with self._operation(
            "dispute_statement", actor_id=actor_id, statement_id=statement_id
        ):
            self.statements.dispute_statement(statement_id, creator_id, reason, actor_id)
        return self._statement_info(statement_id)

    def resolve_dispute(
        self,
        statement_id: UUID,
        actor_id: str,
        resolution: str,
        adjustment_cents: int | None = None,
        adjustment_reason: str | None = None,
    ) -> StatementInfo:
        with self._operation(
            "resolve_dispute", actor_id=actor_id, statement_id=statement_id
        ):
            statement = self.statements.resolve_dispute(
                statement_id,
                actor_id,
                resolution,
                adjustment_cents=adjustment_cents,
                adjustment_reason=adjustment_reason,
            )
            creator_id = statement.creator_id
        self._notify(creator_id, statement_id, DISPUTE_RESOLVED)
        return self._statement_info(statement_id)

    def mark_paid(
        self,
        statement_id: UUID,
        actor_id: str,
        payment_reference: str | None = None,
    ) -> StatementInfo:
        with self._operation("mark_paid", actor_id=actor_id, statement_id=statement_id):
            self.statements.mark_paid(statement_id, actor_id, payment_reference)
        return self._statement_info(statement_id)

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def request_adjustment(
        self,
        statement_id: UUID,
        actor_id: str,
        adjustment_cents: int,
        adjustment_type: AdjustmentType | str,
        reason: str,
    ) -> LineInfo:
        with self._operation(
            "request_adjustment", actor_id=actor_id, statement_id=statement_id
        ):
            line = self.adjustments.request_adjustment(
                statement_id, actor_id, adjustment_cents, adjustment_type, reason
            )
            info = line_to_info(line)
        return info

    def approve_adjustment(self, adjustment_id: UUID, actor_id: str) -> LineInfo:
        with self._operation("approve_adjustment", actor_id=actor_id):
            info = line_to_info(self.adjustments.approve_adjustment(adjustment_id, actor_id))
        return info

    def reject_adjustment(
        self, adjustment_id: UUID, actor_id: str, reason: str
    ) -> LineInfo:
        with self._operation("reject_adjustment", actor_id=actor_id):
            info = line_to_info(
                self.adjustments.reject_adjustment(adjustment_id, actor_id, reason)
            )
        return info

    def reverse_adjustment(
        self, adjustment_id: UUID, actor_id: str, reason: str
    ) -> LineInfo:
        with self._operation("reverse_adjustment", actor_id=actor_id):
            info = line_to_info(
                self.adjustments.reverse_adjustment(adjustment_id, actor_id, reason)
            )
        return info

    def batch_apply_adjustments(
        self, requests: Sequence[AdjustmentRequest], actor_id: str
    ) -> list[AdjustmentResult]:
        with self._operation("batch_apply_adjustments", actor_id=actor_id):
            results = self.adjustments.batch_apply_adjustments(list(requests), actor_id)
        return results

    def list_statement_adjustments(self, statement_id: UUID) -> list[LineInfo]:
        return [
            line_to_info(line)
            for line in self.adjustments.list_statement_adjustments(statement_id)
        ]

    def list_pending_adjustments(self, run_id: UUID | None = None) -> list[LineInfo]:
        return [
            line_to_info(line)
            for line in self.adjustments.list_pending_adjustments(run_id)
        ]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> RunInfo:
        return self._run_info(run_id)

    def list_runs(self, filters: RunFilters | None = None) -> list[RunInfo]:
        return self._run_selector.list_runs(filters)

    def get_statement(self, statement_id: UUID) -> StatementInfo:
        return self._statement_info(statement_id)

    def list_statements(
        self, filters: StatementFilters | None = None
    ) -> list[StatementInfo]:
        return self._statement_selector.list_statements(filters)
