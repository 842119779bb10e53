"""
RunOutputWriter -- persists and discards a run's calculated output.

Responsibility:
    Turns StatementDrafts into RoyaltyStatement / RoyaltyLine rows with a
    deterministic ``line_seq`` and removes a run's rows before a
    recalculation or after a rollback has archived them.  Also owns the
    single rule for folding adjustment lines into a statement's
    ``adjustments_cents`` / ``net_payable_cents`` and the run total.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the orchestrator,
    RollbackService, StatementService and AdjustmentService.

Invariants enforced:
    - Statements are written in creator order; lines within a statement in
      (line type, asset, license) order, numbered from 1.
    - Output removal uses bulk DELETEs, never per-row ORM deletes.
    - ``net_payable = base + adjustments`` where base is ``earnings +
      carryover_in - fee`` for a payable statement and 0 for a held one.
"""

from __future__ import annotations

import json
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from royalty_kernel.domain.dtos import AdjustmentStatus, LineType, StatementDraft
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyLine, RoyaltyStatement
from royalty_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.statement_writer")

# Adjustment states whose amount is part of the statement.  A reversed
# adjustment stays counted; its REVERSAL line carries the negating amount.
COUNTED_ADJUSTMENT_STATUSES = (
    AdjustmentStatus.APPLIED.value,
    AdjustmentStatus.REVERSED.value,
)


def base_payable(statement: RoyaltyStatement) -> int:
    """Net payable before adjustments."""
    if not statement.is_payable:
        return 0
    return (
        statement.total_earnings_cents
        + statement.carryover_in_cents
        - statement.platform_fee_cents
    )


class RunOutputWriter:
    """Writes and deletes statements and lines for one run."""

    def __init__(self, session: Session):
        self._session = session

    def write(
        self,
        run_id: UUID,
        drafts: list[StatementDraft],
        actor_id: str,
    ) -> list[RoyaltyStatement]:
        statements: list[tuple[RoyaltyStatement, StatementDraft]] = []
        line_count = 0

        for draft in sorted(drafts, key=lambda d: d.creator_id):
            statement = RoyaltyStatement(
                id=uuid4(),
                run_id=run_id,
                creator_id=draft.creator_id,
                total_earnings_cents=draft.total_earnings_cents,
                platform_fee_cents=draft.platform_fee_cents,
                adjustments_cents=0,
                net_payable_cents=draft.net_payable_cents,
                carryover_in_cents=draft.carryover_in_cents,
                carryover_out_cents=draft.carryover_out_cents,
                is_payable=draft.is_payable,
                unpaid_since=draft.unpaid_since,
                created_by_id=str(actor_id),
            )
            self._session.add(statement)
            statements.append((statement, draft))

        # Statements first; lines reference them.
        self._session.flush()

        for statement, draft in statements:
            for seq, line in enumerate(
                sorted(draft.lines, key=lambda ln: ln.sort_key()), start=1
            ):
                self._session.add(
                    RoyaltyLine(
                        id=uuid4(),
                        statement_id=statement.id,
                        run_id=run_id,
                        creator_id=draft.creator_id,
                        line_seq=seq,
                        line_type=line.line_type.value,
                        asset_id=line.asset_id,
                        license_id=line.license_id,
                        revenue_cents=line.revenue_cents,
                        share_bps=line.share_bps,
                        calculated_royalty_cents=line.calculated_royalty_cents,
                        period_start=line.period_start,
                        period_end=line.period_end,
                        details=json.loads(canonicalize_json(line.details)),
                        created_by_id=str(actor_id),
                    )
                )
                line_count += 1

        self._session.flush()
        logger.info(
            "run_output_written",
            extra={
                "run_id": str(run_id),
                "statement_count": len(statements),
                "line_count": line_count,
            },
        )
        return [statement for statement, _ in statements]

    def delete_output(self, run_id: UUID) -> tuple[int, int]:
        """Bulk-delete every line and statement of ``run_id``.  Returns counts."""
        self._session.flush()
        lines = self._session.execute(
            delete(RoyaltyLine)
            .where(RoyaltyLine.run_id == run_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        statements = self._session.execute(
            delete(RoyaltyStatement)
            .where(RoyaltyStatement.run_id == run_id)
            .execution_options(synchronize_session=False)
        ).rowcount

        for obj in list(self._session.identity_map.values()):
            if isinstance(obj, (RoyaltyLine, RoyaltyStatement)) and obj.run_id == run_id:
                self._session.expunge(obj)

        logger.info(
            "run_output_deleted",
            extra={
                "run_id": str(run_id),
                "statement_count": statements,
                "line_count": lines,
            },
        )
        return statements, lines

    def next_line_seq(self, statement_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(RoyaltyLine.line_seq)).where(
                RoyaltyLine.statement_id == statement_id
            )
        ).scalar_one_or_none()
        return (current or 0) + 1

    def add_adjustment_line(
        self,
        statement: RoyaltyStatement,
        amount_cents: int,
        adjustment_type: str,
        status: AdjustmentStatus,
        reason: str,
        actor_id: str,
        reversal_of_id: UUID | None = None,
        details: dict | None = None,
    ) -> RoyaltyLine:
        line = RoyaltyLine(
            id=uuid4(),
            statement_id=statement.id,
            run_id=statement.run_id,
            creator_id=statement.creator_id,
            line_seq=self.next_line_seq(statement.id),
            line_type=LineType.ADJUSTMENT.value,
            revenue_cents=0,
            calculated_royalty_cents=amount_cents,
            adjustment_status=status.value,
            adjustment_type=adjustment_type,
            adjustment_reason=reason,
            reversal_of_id=reversal_of_id,
            details=details or {},
            created_by_id=str(actor_id),
        )
        self._session.add(line)
        self._session.flush()
        return line

    def refresh_statement_totals(
        self,
        statement: RoyaltyStatement,
        run: RoyaltyRun,
        actor_id: str,
    ) -> int:
        """
        Recompute ``adjustments_cents`` and ``net_payable_cents`` from the
        counted adjustment lines and carry the delta into the run total.
        Returns the delta.
        """
        adjustments = self._session.execute(
            select(func.coalesce(func.sum(RoyaltyLine.calculated_royalty_cents), 0))
            .where(
                RoyaltyLine.statement_id == statement.id,
                RoyaltyLine.line_type == LineType.ADJUSTMENT.value,
                RoyaltyLine.adjustment_status.in_(COUNTED_ADJUSTMENT_STATUSES),
            )
        ).scalar_one()
        adjustments = int(adjustments)

        delta = adjustments - statement.adjustments_cents
        if delta:
            statement.adjustments_cents = adjustments
            statement.net_payable_cents = base_payable(statement) + adjustments
            statement.updated_by_id = str(actor_id)
            run.total_royalties_cents = run.total_royalties_cents + delta
            run.updated_by_id = str(actor_id)
            self._session.flush()
            logger.info(
                "statement_totals_refreshed",
                extra={
                    "statement_id": str(statement.id),
                    "adjustments_cents": adjustments,
                    "net_payable_cents": statement.net_payable_cents,
                    "delta_cents": delta,
                },
            )
        return delta
