"""
RollbackService -- return a calculated or locked run to DRAFT.

Responsibility:
    Archives the run's output, bulk-deletes its statements and lines, and
    moves the run back to DRAFT so it can be recalculated.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the orchestrator.

Invariants enforced:
    - A reason of at least ``justification_min_length`` characters is
      required.
    - PAID statements block rollback unless ``force_rollback`` is set; a
      forced rollback over paid statements is logged at CRITICAL.
    - The archive row is written before anything is deleted and is
      immutable afterwards.
    - A PROCESSING run cannot be rolled back (RunConflictError).
    - Only the newest calculated run can be rolled back; a later
      CALCULATED or LOCKED run blocks it (CarryoverChainError).

Audit relevance:
    The archive is the record of deleted output.  With ``archive_data``
    it holds every statement and line; without it, the run header and
    per-statement totals only.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import RunStatus, StatementInfo, StatementStatus
from royalty_kernel.domain.policy import RoyaltyPolicy
from royalty_kernel.exceptions import (
    PaidStatementsError,
    RunConflictError,
    RunStateError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.rollback_archive import RollbackArchive
from royalty_kernel.selectors.statement_selector import StatementSelector
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.run_service import RunService
from royalty_kernel.services.statement_service import require_text
from royalty_kernel.services.statement_writer import RunOutputWriter
from royalty_kernel.utils.hashing import canonicalize_json, hash_payload

logger = get_logger("services.rollback")

ROLLBACK_ALLOWED = (RunStatus.CALCULATED, RunStatus.LOCKED)


@dataclass(frozen=True)
class RollbackResult:
    run_id: UUID
    archive_id: UUID
    prior_status: str
    statements_deleted: int
    lines_deleted: int
    paid_statements: int
    forced: bool


def _statement_summary(statement: StatementInfo) -> dict[str, Any]:
    return {
        "statement_id": statement.id,
        "creator_id": statement.creator_id,
        "status": statement.status.value,
        "total_earnings_cents": statement.total_earnings_cents,
        "adjustments_cents": statement.adjustments_cents,
        "net_payable_cents": statement.net_payable_cents,
        "carryover_in_cents": statement.carryover_in_cents,
        "carryover_out_cents": statement.carryover_out_cents,
        "is_payable": statement.is_payable,
        "payment_reference": statement.payment_reference,
    }


def _line_record(line) -> dict[str, Any]:
    return {
        "line_id": line.id,
        "line_seq": line.line_seq,
        "line_type": line.line_type.value,
        "asset_id": line.asset_id,
        "license_id": line.license_id,
        "revenue_cents": line.revenue_cents,
        "share_bps": line.share_bps,
        "calculated_royalty_cents": line.calculated_royalty_cents,
        "adjustment_status": (
            line.adjustment_status.value if line.adjustment_status else None
        ),
        "adjustment_type": line.adjustment_type.value if line.adjustment_type else None,
        "details": line.details,
    }


class RollbackService(BaseService[RollbackArchive]):
    """
    Run rollback with archival.

    Non-goals:
        - Does NOT commit.
        - Does NOT recalculate; the run is left in DRAFT.
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
        self._statements = StatementSelector(session)

    def rollback_run(
        self,
        run_id: UUID,
        actor_id: str,
        reason: str,
        archive_data: bool = True,
        force_rollback: bool = False,
    ) -> RollbackResult:
        """
        Archive and delete the run's output, then set the run to DRAFT.

        Raises:
            JustificationRequiredError: reason missing or too short.
            RunConflictError: the run is PROCESSING.
            RunStateError: the run is DRAFT or FAILED.
            PaidStatementsError: PAID statements exist and not forced.
            CarryoverChainError: a later run is CALCULATED or LOCKED and has
                carried this run's balances forward.
        """
        reason = require_text(reason, "reason", self._policy.justification_min_length)

        run = self._runs.get_for_update(run_id)
        if run.status == RunStatus.PROCESSING.value:
            raise RunConflictError(str(run.id), run.status, "rollback")
        if run.status not in {s.value for s in ROLLBACK_ALLOWED}:
            raise RunStateError(
                str(run.id),
                run.status,
                tuple(s.value for s in ROLLBACK_ALLOWED),
                "rollback",
            )
        self._runs.check_carryover_chain(
            run.period_start, run.period_end, "rollback", run.id
        )

        prior_status = run.status
        statements = self._statements.get_run_statements(run.id, include_lines=True)
        paid = [s for s in statements if s.status == StatementStatus.PAID]

        if paid and not force_rollback:
            logger.warning(
                "rollback_blocked_paid_statements",
                extra={"run_id": str(run.id), "paid_count": len(paid)},
            )
            raise PaidStatementsError(str(run.id), prior_status, len(paid))
        if paid:
            logger.critical(
                "forced_rollback_with_paid_statements",
                extra={
                    "run_id": str(run.id),
                    "paid_count": len(paid),
                    "paid_cents": sum(s.net_payable_cents for s in paid),
                    "actor_id": str(actor_id),
                    "reason": reason,
                },
            )

        snapshot = self._build_snapshot(run, statements, archive_data)
        archive = RollbackArchive(
            id=uuid4(),
            run_id=run.id,
            archived_at=self._clock.now(),
            archived_by_id=str(actor_id),
            reason=reason,
            forced=bool(paid) and force_rollback,
            prior_status=prior_status,
            full_snapshot=archive_data,
            snapshot=snapshot,
            snapshot_hash=hash_payload(snapshot),
            statement_count=len(statements),
            line_count=sum(len(s.lines) for s in statements),
        )
        self.session.add(archive)
        self.session.flush()

        statements_deleted, lines_deleted = self._writer.delete_output(run.id)
        self._runs.reset_after_rollback(run.id, prior_status, actor_id)

        self._auditor.record_rollback(
            run.id,
            archive.id,
            prior_status,
            reason,
            archive.forced,
            actor_id,
        )
        logger.info(
            "run_rolled_back",
            extra={
                "run_id": str(run_id),
                "archive_id": str(archive.id),
                "prior_status": prior_status,
                "statements_deleted": statements_deleted,
                "lines_deleted": lines_deleted,
                "forced": archive.forced,
            },
        )
        return RollbackResult(
            run_id=run_id,
            archive_id=archive.id,
            prior_status=prior_status,
            statements_deleted=statements_deleted,
            lines_deleted=lines_deleted,
            paid_statements=len(paid),
            forced=archive.forced,
        )

    def _build_snapshot(
        self, run, statements: list[StatementInfo], full: bool
    ) -> dict[str, Any]:
        header = {
            "run_id": run.id,
            "period_start": run.period_start,
            "period_end": run.period_end,
            "status": run.status,
            "total_revenue_cents": run.total_revenue_cents,
            "total_royalties_cents": run.total_royalties_cents,
            "notes": run.notes,
            "policy_checksum": run.policy_checksum,
            "calculation_fingerprint": run.calculation_fingerprint,
            "exclusions": run.exclusions or [],
        }
        records = []
        for statement in statements:
            record = _statement_summary(statement)
            if full:
                record["lines"] = [_line_record(line) for line in statement.lines]
            records.append(record)
        # JSON column values must survive a round trip unchanged.
        return json.loads(canonicalize_json({"run": header, "statements": records}))
