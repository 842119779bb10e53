"""
StatementService -- per-creator statement lifecycle.

Responsibility:
    Moves statements through PENDING -> REVIEWED | DISPUTED,
    DISPUTED -> RESOLVED and REVIEWED | RESOLVED -> PAID, verifies that a
    creator only touches their own statements, and records an optional
    adjustment when a dispute is resolved.

Architecture position:
    Kernel > Services -- imperative shell.  Every operation first locks the
    owning run row (the run is the mutex for its statements).

Invariants enforced:
    - PAID is terminal.
    - Statements of a PROCESSING run cannot change (RunConflictError).
    - Payment requires a LOCKED run and a positive net payable.
    - A dispute needs a reason of bounded length; a resolution needs a
      justification.

Audit relevance:
    Every transition records an AuditEvent; dispute resolutions that move
    money also record the adjustment.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentStatus,
    AdjustmentType,
    RunStatus,
    StatementStatus,
)
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.exceptions import (
    InvalidAdjustmentError,
    JustificationRequiredError,
    RunConflictError,
    RunStateError,
    StatementAccessError,
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
from royalty_kernel.services.statement_writer import RunOutputWriter

logger = get_logger("services.statement")


def require_text(
    value: str | None,
    field: str,
    min_length: int,
    max_length: int | None = None,
) -> str:
    """Strip ``value`` and enforce its length bounds."""
    text = (value or "").strip()
    if len(text) < min_length or (max_length is not None and len(text) > max_length):
        raise JustificationRequiredError(field, min_length, max_length)
    return text


class StatementService(BaseService[RoyaltyStatement]):
    """
    Statement status transitions.

    Non-goals:
        - Does NOT calculate statements.
        - Does NOT commit.
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
    # Loading and guards
    # ------------------------------------------------------------------

    def get_statement(self, statement_id: UUID) -> RoyaltyStatement:
        statement = self.session.get(RoyaltyStatement, statement_id)
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return statement

    def _lock(
        self, statement_id: UUID, operation: str
    ) -> tuple[RoyaltyRun, RoyaltyStatement]:
        """Lock the owning run, then the statement, and refuse PROCESSING runs."""
        run_id = self.session.execute(
            select(RoyaltyStatement.run_id).where(RoyaltyStatement.id == statement_id)
        ).scalar_one_or_none()
        if run_id is None:
            raise StatementNotFoundError(str(statement_id))

        run = self._runs.get_for_update(run_id)
        if run.status == RunStatus.PROCESSING.value:
            raise RunConflictError(str(run.id), run.status, operation)

        statement = self.session.execute(
            select(RoyaltyStatement)
            .where(RoyaltyStatement.id == statement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return run, statement

    @staticmethod
    def _require_status(
        statement: RoyaltyStatement,
        allowed: tuple[StatementStatus, ...],
        operation: str,
    ) -> None:
        if statement.status not in {s.value for s in allowed}:
            raise StatementStateError(
                str(statement.id),
                statement.status,
                tuple(s.value for s in allowed),
                operation,
            )

    def verify_statement_ownership(self, statement_id: UUID, creator_id: str) -> bool:
        """Raise StatementAccessError unless ``creator_id`` owns the statement."""
        statement = self.get_statement(statement_id)
        if statement.creator_id != creator_id:
            logger.warning(
                "statement_access_denied",
                extra={"statement_id": str(statement_id), "creator_id": creator_id},
            )
            raise StatementAccessError(str(statement_id), creator_id)
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def review_statement(
        self, statement_id: UUID, creator_id: str, actor_id: str
    ) -> RoyaltyStatement:
        """Creator acknowledges the statement: PENDING -> REVIEWED."""
        self.verify_statement_ownership(statement_id, creator_id)
        _, statement = self._lock(statement_id, "review_statement")
        self._require_status(statement, (StatementStatus.PENDING,), "review_statement")

        statement.status = StatementStatus.REVIEWED.value
        statement.reviewed_at = self._clock.now()
        statement.updated_by_id = str(actor_id)
        self.session.flush()

        self._auditor.record_statement_transition(
            statement.id,
            AuditAction.STATEMENT_REVIEWED,
            StatementStatus.PENDING.value,
            StatementStatus.REVIEWED.value,
            actor_id,
        )
        logger.info("statement_reviewed", extra={"statement_id": str(statement.id)})
        return statement

    def dispute_statement(
        self,
        statement_id: UUID,
        creator_id: str,
        reason: str,
        actor_id: str,
    ) -> RoyaltyStatement:
        """Creator disputes the statement: PENDING | REVIEWED -> DISPUTED."""
        self.verify_statement_ownership(statement_id, creator_id)
        reason = require_text(
            reason,
            "dispute_reason",
            self._policy.dispute_reason_min_length,
            self._policy.dispute_reason_max_length,
        )
        _, statement = self._lock(statement_id, "dispute_statement")
        self._require_status(
            statement,
            (StatementStatus.PENDING, StatementStatus.REVIEWED),
            "dispute_statement",
        )

        previous = statement.status
        statement.status = StatementStatus.DISPUTED.value
        statement.dispute_reason = reason
        statement.disputed_at = self._clock.now()
        statement.updated_by_id = str(actor_id)
        self.session.flush()

        self._auditor.record_statement_transition(
            statement.id,
            AuditAction.STATEMENT_DISPUTED,
            previous,
            StatementStatus.DISPUTED.value,
            actor_id,
            reason=reason,
        )
        logger.info("statement_disputed", extra={"statement_id": str(statement.id)})
        return statement

    def resolve_dispute(
        self,
        statement_id: UUID,
        actor_id: str,
        resolution: str,
        adjustment_cents: int | None = None,
        adjustment_reason: str | None = None,
    ) -> RoyaltyStatement:
        """
        Admin resolves a dispute: DISPUTED -> RESOLVED.

        A non-zero ``adjustment_cents`` appends an applied DISPUTE_RESOLUTION
        adjustment line and recomputes the net payable.  Allowed on
        CALCULATED and LOCKED runs.
        """
        resolution = require_text(
            resolution, "resolution", self._policy.justification_min_length
        )
        if adjustment_cents is not None and (
            isinstance(adjustment_cents, bool) or not isinstance(adjustment_cents, int)
        ):
            raise InvalidAdjustmentError("adjustment_cents", "must be integer cents")
        if adjustment_cents:
            adjustment_reason = require_text(
                adjustment_reason,
                "adjustment_reason",
                self._policy.justification_min_length,
            )

        run, statement = self._lock(statement_id, "resolve_dispute")
        if run.status not in (RunStatus.CALCULATED.value, RunStatus.LOCKED.value):
            raise RunStateError(
                str(run.id),
                run.status,
                (RunStatus.CALCULATED.value, RunStatus.LOCKED.value),
                "resolve_dispute",
            )
        self._require_status(statement, (StatementStatus.DISPUTED,), "resolve_dispute")

        line: RoyaltyLine | None = None
        if adjustment_cents:
            line = self._writer.add_adjustment_line(
                statement,
                amount_cents=adjustment_cents,
                adjustment_type=AdjustmentType.DISPUTE_RESOLUTION.value,
                status=AdjustmentStatus.APPLIED,
                reason=adjustment_reason,
                actor_id=actor_id,
            )
            self._writer.refresh_statement_totals(statement, run, actor_id)
            self._auditor.record_adjustment(
                line.id,
                AuditAction.ADJUSTMENT_APPLIED,
                statement.id,
                adjustment_cents,
                actor_id,
                adjustment_type=AdjustmentType.DISPUTE_RESOLUTION.value,
                reason=adjustment_reason,
            )

        statement.status = StatementStatus.RESOLVED.value
        statement.resolution = resolution
        statement.resolved_at = self._clock.now()
        statement.resolved_by_id = str(actor_id)
        statement.updated_by_id = str(actor_id)
        self.session.flush()

        self._auditor.record_statement_transition(
            statement.id,
            AuditAction.STATEMENT_RESOLVED,
            StatementStatus.DISPUTED.value,
            StatementStatus.RESOLVED.value,
            actor_id,
            resolution=resolution,
            adjustment_cents=adjustment_cents or 0,
            adjustment_line_id=line.id if line is not None else None,
        )
        logger.info(
            "statement_dispute_resolved",
            extra={
                "statement_id": str(statement.id),
                "adjustment_cents": adjustment_cents or 0,
                "net_payable_cents": statement.net_payable_cents,
            },
        )
        return statement

    def mark_paid(
        self,
        statement_id: UUID,
        actor_id: str,
        payment_reference: str | None = None,
    ) -> RoyaltyStatement:
        """
        Record payment: REVIEWED | RESOLVED -> PAID.

        Raises:
            RunStateError: the run is not LOCKED.
            StatementStateError: wrong status, or nothing is payable.
        """
        run, statement = self._lock(statement_id, "mark_paid")
        if run.status != RunStatus.LOCKED.value:
            raise RunStateError(
                str(run.id), run.status, (RunStatus.LOCKED.value,), "mark_paid"
            )
        self._require_status(
            statement,
            (StatementStatus.REVIEWED, StatementStatus.RESOLVED),
            "mark_paid",
        )
        if statement.net_payable_cents <= 0:
            raise StatementStateError(
                str(statement.id),
                statement.status,
                (StatementStatus.REVIEWED.value, StatementStatus.RESOLVED.value),
                "mark_paid (net payable must be positive)",
            )

        previous = statement.status
        statement.status = StatementStatus.PAID.value
        statement.paid_at = self._clock.now()
        statement.payment_reference = payment_reference
        statement.updated_by_id = str(actor_id)
        self.session.flush()

        self._auditor.record_statement_transition(
            statement.id,
            AuditAction.STATEMENT_PAID,
            previous,
            StatementStatus.PAID.value,
            actor_id,
            net_payable_cents=statement.net_payable_cents,
            payment_reference=payment_reference,
        )
        logger.info(
            "statement_paid",
            extra={
                "statement_id": str(statement.id),
                "net_payable_cents": statement.net_payable_cents,
            },
        )
        return statement
