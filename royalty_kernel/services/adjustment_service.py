"""
AdjustmentService -- admin corrections to calculated statements.

Responsibility:
    Appends signed adjustment lines to statements of a CALCULATED run,
    routes large amounts through an approval step, and reverses applied
    adjustments with an equal and opposite line.

Architecture position:
    Kernel > Services -- imperative shell.  Locks the owning run before
    touching a statement.

Invariants enforced:
    - Adjustments never edit calculated lines; they are new lines.
    - Runs that are LOCKED reject admin adjustments (RunLockedError); the
      only post-lock money movement is a dispute resolution.
    - PAID statements take no adjustments.
    - ``|amount| > adjustment_approval_threshold_cents`` waits in
      PENDING_APPROVAL and does not affect totals until approved.
    - A reversal keeps the original line (status REVERSED) and adds a
      REVERSAL line for the negated amount.

Audit relevance:
    Request, approval, rejection and reversal each record an AuditEvent.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentStatus,
    AdjustmentType,
    LineType,
    RunStatus,
    StatementStatus,
)
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.exceptions import (
    AdjustmentNotFoundError,
    AdjustmentStateError,
    InvalidAdjustmentError,
    RoyaltyKernelError,
    RunConflictError,
    RunLockedError,
    RunStateError,
    StatementNotFoundError,
    StatementStateError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyLine, RoyaltyStatement
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.run_service import RunService
from royalty_kernel.services.statement_service import require_text
from royalty_kernel.services.statement_writer import RunOutputWriter

logger = get_logger("services.adjustment")

# Types an admin may request directly.
REQUESTABLE_TYPES = frozenset({
    AdjustmentType.CORRECTION,
    AdjustmentType.BONUS,
    AdjustmentType.PENALTY,
    AdjustmentType.REFUND_OFFSET,
    AdjustmentType.OTHER,
})


@dataclass(frozen=True)
class AdjustmentRequest:
    statement_id: UUID
    amount_cents: int
    adjustment_type: AdjustmentType
    reason: str


@dataclass(frozen=True)
class AdjustmentResult:
    """Outcome of one item in a batch."""

    statement_id: UUID
    success: bool
    adjustment_id: UUID | None = None
    status: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class AdjustmentService(BaseService[RoyaltyLine]):
    """
    Adjustment lifecycle: request -> (approve | reject) -> reverse.

    Non-goals:
        - Does NOT commit.
        - Does NOT resolve disputes; see StatementService.resolve_dispute.
    """

    def __init__(
        self,
        session: Session,
        policy: RoyaltyPolicy | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._policy = policy or RoyaltyPolicy()
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._runs = RunService(session, self._clock, self._auditor)
        self._writer = RunOutputWriter(session)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _lock_for_statement(
        self, statement_id: UUID, operation: str
    ) -> tuple[RoyaltyRun, RoyaltyStatement]:
        statement = self.session.get(RoyaltyStatement, statement_id)
        if statement is None:
            raise StatementNotFoundError(str(statement_id))

        run = self._runs.get_for_update(statement.run_id)
        if run.status == RunStatus.LOCKED.value:
            raise RunLockedError(str(run.id), operation)
        if run.status == RunStatus.PROCESSING.value:
            raise RunConflictError(str(run.id), run.status, operation)
        if run.status != RunStatus.CALCULATED.value:
            raise RunStateError(
                str(run.id), run.status, (RunStatus.CALCULATED.value,), operation
            )

        self.session.refresh(statement, with_for_update=True)
        if statement.status == StatementStatus.PAID.value:
            raise StatementStateError(
                str(statement.id),
                statement.status,
                tuple(s.value for s in StatementStatus if s != StatementStatus.PAID),
                operation,
            )
        return run, statement

    def _get_adjustment(self, adjustment_id: UUID) -> RoyaltyLine:
        line = self.session.get(RoyaltyLine, adjustment_id)
        if line is None or line.line_type != LineType.ADJUSTMENT.value:
            raise AdjustmentNotFoundError(str(adjustment_id))
        return line

    @staticmethod
    def _require_adjustment_status(
        line: RoyaltyLine, expected: AdjustmentStatus, operation: str
    ) -> None:
        if line.adjustment_status != expected.value:
            raise AdjustmentStateError(
                str(line.id), line.adjustment_status, (expected.value,), operation
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def request_adjustment(
        self,
        statement_id: UUID,
        actor_id: str,
        amount_cents: int,
        adjustment_type: AdjustmentType | str,
        reason: str,
    ) -> RoyaltyLine:
        """
        Append an adjustment line.  Small amounts apply immediately; amounts
        above the approval threshold wait for ``approve_adjustment``.
        """
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            raise InvalidAdjustmentError("amount_cents", "must be integer cents")
        if amount_cents == 0:
            raise InvalidAdjustmentError("amount_cents", "must be non-zero")
        try:
            adjustment_type = AdjustmentType(adjustment_type)
        except ValueError as exc:
            raise InvalidAdjustmentError(
                "adjustment_type", f"unknown type {adjustment_type!r}"
            ) from exc
        if adjustment_type not in REQUESTABLE_TYPES:
            raise InvalidAdjustmentError(
                "adjustment_type", f"{adjustment_type.value} cannot be requested directly"
            )
        reason = require_text(reason, "reason", self._policy.justification_min_length)

        run, statement = self._lock_for_statement(statement_id, "request_adjustment")

        needs_approval = abs(amount_cents) > self._policy.adjustment_approval_threshold_cents
        status = (
            AdjustmentStatus.PENDING_APPROVAL if needs_approval else AdjustmentStatus.APPLIED
        )
        line = self._writer.add_adjustment_line(
            statement,
            amount_cents=amount_cents,
            adjustment_type=adjustment_type.value,
            status=status,
            reason=reason,
            actor_id=actor_id,
        )
        self._auditor.record_adjustment(
            line.id,
            AuditAction.ADJUSTMENT_REQUESTED,
            statement.id,
            amount_cents,
            actor_id,
            adjustment_type=adjustment_type.value,
            reason=reason,
            status=status.value,
        )

        if not needs_approval:
            line.approved_by_id = str(actor_id)
            line.approved_at = self._clock.now()
            self.session.flush()
            self._writer.refresh_statement_totals(statement, run, actor_id)
            self._auditor.record_adjustment(
                line.id,
                AuditAction.ADJUSTMENT_APPLIED,
                statement.id,
                amount_cents,
                actor_id,
            )

        logger.info(
            "adjustment_requested",
            extra={
                "adjustment_id": str(line.id),
                "statement_id": str(statement.id),
                "amount_cents": amount_cents,
                "adjustment_type": adjustment_type.value,
                "status": status.value,
            },
        )
        return line

    def approve_adjustment(self, adjustment_id: UUID, actor_id: str) -> RoyaltyLine:
        """PENDING_APPROVAL -> APPLIED; the amount joins the statement totals."""
        line = self._get_adjustment(adjustment_id)
        run, statement = self._lock_for_statement(line.statement_id, "approve_adjustment")
        self.session.refresh(line)
        self._require_adjustment_status(
            line, AdjustmentStatus.PENDING_APPROVAL, "approve_adjustment"
        )

        line.adjustment_status = AdjustmentStatus.APPLIED.value
        line.approved_by_id = str(actor_id)
        line.approved_at = self._clock.now()
        line.updated_by_id = str(actor_id)
        self.session.flush()
        self._writer.refresh_statement_totals(statement, run, actor_id)

        self._auditor.record_adjustment(
            line.id,
            AuditAction.ADJUSTMENT_APPLIED,
            statement.id,
            line.calculated_royalty_cents,
            actor_id,
        )
        logger.info(
            "adjustment_approved",
            extra={"adjustment_id": str(line.id), "approved_by": str(actor_id)},
        )
        return line

    def reject_adjustment(
        self, adjustment_id: UUID, actor_id: str, reason: str
    ) -> RoyaltyLine:
        """PENDING_APPROVAL -> REJECTED; totals are untouched."""
        reason = require_text(reason, "reason", self._policy.justification_min_length)
        line = self._get_adjustment(adjustment_id)
        _, statement = self._lock_for_statement(line.statement_id, "reject_adjustment")
        self.session.refresh(line)
        self._require_adjustment_status(
            line, AdjustmentStatus.PENDING_APPROVAL, "reject_adjustment"
        )

        line.adjustment_status = AdjustmentStatus.REJECTED.value
        line.updated_by_id = str(actor_id)
        self.session.flush()

        self._auditor.record_adjustment(
            line.id,
            AuditAction.ADJUSTMENT_REJECTED,
            statement.id,
            line.calculated_royalty_cents,
            actor_id,
            reason=reason,
        )
        logger.info("adjustment_rejected", extra={"adjustment_id": str(line.id)})
        return line

    def reverse_adjustment(
        self, adjustment_id: UUID, actor_id: str, reason: str
    ) -> RoyaltyLine:
        """
        Undo an APPLIED adjustment.  Returns the new REVERSAL line; the
        original is marked REVERSED and its amount stays on the statement.
        """
        reason = require_text(reason, "reason", self._policy.justification_min_length)
        original = self._get_adjustment(adjustment_id)
        run, statement = self._lock_for_statement(
            original.statement_id, "reverse_adjustment"
        )
        self.session.refresh(original)
        self._require_adjustment_status(
            original, AdjustmentStatus.APPLIED, "reverse_adjustment"
        )
        if original.adjustment_type == AdjustmentType.REVERSAL.value:
            raise InvalidAdjustmentError("adjustment_id", "a reversal cannot be reversed")

        original.adjustment_status = AdjustmentStatus.REVERSED.value
        original.updated_by_id = str(actor_id)
        self.session.flush()

        reversal = self._writer.add_adjustment_line(
            statement,
            amount_cents=-original.calculated_royalty_cents,
            adjustment_type=AdjustmentType.REVERSAL.value,
            status=AdjustmentStatus.APPLIED,
            reason=reason,
            actor_id=actor_id,
            reversal_of_id=original.id,
        )
        self._writer.refresh_statement_totals(statement, run, actor_id)

        self._auditor.record_adjustment(
            original.id,
            AuditAction.ADJUSTMENT_REVERSED,
            statement.id,
            reversal.calculated_royalty_cents,
            actor_id,
            reversal_line_id=reversal.id,
            reason=reason,
        )
        logger.info(
            "adjustment_reversed",
            extra={
                "adjustment_id": str(original.id),
                "reversal_id": str(reversal.id),
                "amount_cents": reversal.calculated_royalty_cents,
            },
        )
        return reversal

    def batch_apply_adjustments(
        self,
        requests: list[AdjustmentRequest],
        actor_id: str,
    ) -> list[AdjustmentResult]:
        """
        Apply several adjustments, each in its own savepoint.  A failing
        item is rolled back and reported; the rest still apply.
        """
        results: list[AdjustmentResult] = []
        for request in requests:
            savepoint = self.session.begin_nested()
            try:
                line = self.request_adjustment(
                    request.statement_id,
                    actor_id,
                    request.amount_cents,
                    request.adjustment_type,
                    request.reason,
                )
                savepoint.commit()
                results.append(
                    AdjustmentResult(
                        statement_id=request.statement_id,
                        success=True,
                        adjustment_id=line.id,
                        status=line.adjustment_status,
                    )
                )
            except RoyaltyKernelError as exc:
                savepoint.rollback()
                logger.warning(
                    "batch_adjustment_item_failed",
                    extra={
                        "statement_id": str(request.statement_id),
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                results.append(
                    AdjustmentResult(
                        statement_id=request.statement_id,
                        success=False,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                )

        logger.info(
            "batch_adjustments_applied",
            extra={
                "requested": len(requests),
                "succeeded": sum(1 for r in results if r.success),
            },
        )
        return results

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_statement_adjustments(self, statement_id: UUID) -> list[RoyaltyLine]:
        return list(
            self.session.execute(
                select(RoyaltyLine)
                .where(
                    RoyaltyLine.statement_id == statement_id,
                    RoyaltyLine.line_type == LineType.ADJUSTMENT.value,
                )
                .order_by(RoyaltyLine.line_seq)
            ).scalars().all()
        )

    def list_pending_adjustments(self, run_id: UUID | None = None) -> list[RoyaltyLine]:
        stmt = select(RoyaltyLine).where(
            RoyaltyLine.line_type == LineType.ADJUSTMENT.value,
            RoyaltyLine.adjustment_status == AdjustmentStatus.PENDING_APPROVAL.value,
        )
        if run_id is not None:
            stmt = stmt.where(RoyaltyLine.run_id == run_id)
        return list(
            self.session.execute(
                stmt.order_by(RoyaltyLine.created_at, RoyaltyLine.line_seq)
            ).scalars().all()
        )
