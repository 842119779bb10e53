"""
Module: royalty_kernel.selectors.statement_selector
Responsibility: Read-only access to statements and lines, the prior-balance
    lookup behind carryover, and the run output fingerprint.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Lines are returned in ``line_seq`` order; statements in creator order.
    - The fingerprint ignores row ids and timestamps, so recalculating the
      same inputs reproduces it.

Audit relevance:
    ``prior_balances`` is the carryover chain: a creator's held balance is
    read from their latest statement in an earlier CALCULATED or LOCKED run.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from royalty_kernel.domain.dtos import (
    AdjustmentStatus,
    AdjustmentType,
    LineInfo,
    LineType,
    RunStatus,
    StatementFilters,
    StatementInfo,
    StatementStatus,
)
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyLine, RoyaltyStatement
from royalty_kernel.selectors.base import BaseSelector
from royalty_kernel.utils.hashing import hash_statement_output


@dataclass(frozen=True)
class PriorBalance:
    """A creator's held balance at the end of their latest earlier statement."""

    creator_id: str
    carryover_cents: int
    unpaid_since: date | None
    statement_id: UUID
    run_id: UUID
    period_end: date


def line_to_info(line: RoyaltyLine) -> LineInfo:
    return LineInfo(
        id=line.id,
        statement_id=line.statement_id,
        line_seq=line.line_seq,
        line_type=LineType(line.line_type),
        asset_id=line.asset_id,
        license_id=line.license_id,
        revenue_cents=line.revenue_cents,
        share_bps=line.share_bps,
        calculated_royalty_cents=line.calculated_royalty_cents,
        details=dict(line.details or {}),
        adjustment_status=(
            AdjustmentStatus(line.adjustment_status) if line.adjustment_status else None
        ),
        adjustment_type=(
            AdjustmentType(line.adjustment_type) if line.adjustment_type else None
        ),
        reversal_of_id=line.reversal_of_id,
    )


def statement_to_info(
    statement: RoyaltyStatement, lines: tuple[LineInfo, ...] = ()
) -> StatementInfo:
    return StatementInfo(
        id=statement.id,
        run_id=statement.run_id,
        creator_id=statement.creator_id,
        status=StatementStatus(statement.status),
        total_earnings_cents=statement.total_earnings_cents,
        platform_fee_cents=statement.platform_fee_cents,
        adjustments_cents=statement.adjustments_cents,
        net_payable_cents=statement.net_payable_cents,
        carryover_in_cents=statement.carryover_in_cents,
        carryover_out_cents=statement.carryover_out_cents,
        is_payable=statement.is_payable,
        dispute_reason=statement.dispute_reason,
        resolution=statement.resolution,
        payment_reference=statement.payment_reference,
        lines=lines,
    )


class StatementSelector(BaseSelector[RoyaltyStatement]):
    """Queries over statements and their lines."""

    def _lines_by_statement(
        self, statement_ids: list[UUID]
    ) -> dict[UUID, tuple[LineInfo, ...]]:
        if not statement_ids:
            return {}
        lines = self.session.execute(
            select(RoyaltyLine)
            .where(RoyaltyLine.statement_id.in_(statement_ids))
            .order_by(RoyaltyLine.statement_id, RoyaltyLine.line_seq)
        ).scalars().all()
        grouped: dict[UUID, list[LineInfo]] = {}
        for line in lines:
            grouped.setdefault(line.statement_id, []).append(line_to_info(line))
        return {sid: tuple(items) for sid, items in grouped.items()}

    def get_statement(
        self, statement_id: UUID, include_lines: bool = True
    ) -> StatementInfo | None:
        statement = self.session.get(RoyaltyStatement, statement_id)
        if statement is None:
            return None
        lines = ()
        if include_lines:
            lines = self._lines_by_statement([statement.id]).get(statement.id, ())
        return statement_to_info(statement, lines)

    def list_statements(
        self, filters: StatementFilters | None = None, include_lines: bool = False
    ) -> list[StatementInfo]:
        filters = filters or StatementFilters()
        stmt = select(RoyaltyStatement)
        if filters.run_id is not None:
            stmt = stmt.where(RoyaltyStatement.run_id == filters.run_id)
        if filters.creator_id is not None:
            stmt = stmt.where(RoyaltyStatement.creator_id == filters.creator_id)
        if filters.status is not None:
            stmt = stmt.where(
                RoyaltyStatement.status == StatementStatus(filters.status).value
            )
        stmt = (
            stmt.order_by(RoyaltyStatement.creator_id, RoyaltyStatement.id)
            .limit(filters.limit)
            .offset(filters.offset)
        )
        statements = self.session.execute(stmt).scalars().all()

        lines: dict[UUID, tuple[LineInfo, ...]] = {}
        if include_lines:
            lines = self._lines_by_statement([s.id for s in statements])
        return [statement_to_info(s, lines.get(s.id, ())) for s in statements]

    def get_run_statements(
        self, run_id: UUID, include_lines: bool = True
    ) -> list[StatementInfo]:
        """Every statement of a run, unpaginated."""
        statements = self.session.execute(
            select(RoyaltyStatement)
            .where(RoyaltyStatement.run_id == run_id)
            .order_by(RoyaltyStatement.creator_id)
        ).scalars().all()
        lines: dict[UUID, tuple[LineInfo, ...]] = {}
        if include_lines:
            lines = self._lines_by_statement([s.id for s in statements])
        return [statement_to_info(s, lines.get(s.id, ())) for s in statements]

    def count_by_status(self, run_id: UUID) -> dict[str, int]:
        rows = self.session.execute(
            select(RoyaltyStatement.status, func.count(RoyaltyStatement.id))
            .where(RoyaltyStatement.run_id == run_id)
            .group_by(RoyaltyStatement.status)
        ).all()
        return {status: count for status, count in rows}

    def prior_balances(self, before: date) -> dict[str, PriorBalance]:
        """
        Latest statement per creator among CALCULATED/LOCKED runs ending
        before ``before``, keeping only creators with a non-zero held balance.
        """
        rows = self.session.execute(
            select(RoyaltyStatement, RoyaltyRun.period_end)
            .join(RoyaltyRun, RoyaltyRun.id == RoyaltyStatement.run_id)
            .where(
                RoyaltyRun.status.in_(
                    (RunStatus.CALCULATED.value, RunStatus.LOCKED.value)
                ),
                RoyaltyRun.period_end < before,
            )
            .order_by(RoyaltyRun.period_end.desc(), RoyaltyStatement.creator_id)
        ).all()

        latest: dict[str, PriorBalance] = {}
        for statement, period_end in rows:
            if statement.creator_id in latest:
                continue
            latest[statement.creator_id] = PriorBalance(
                creator_id=statement.creator_id,
                carryover_cents=statement.carryover_out_cents,
                unpaid_since=statement.unpaid_since,
                statement_id=statement.id,
                run_id=statement.run_id,
                period_end=period_end,
            )
        return {cid: bal for cid, bal in latest.items() if bal.carryover_cents != 0}

    def output_fingerprint(self, run_id: UUID) -> str:
        """Id-free hash of a run's calculated statements and lines."""
        return hash_statement_output(
            [
                fingerprint_record(s)
                for s in self.get_run_statements(run_id, include_lines=True)
            ]
        )


def fingerprint_record(statement: StatementInfo) -> dict[str, Any]:
    """The calculated content of a statement, without ids or lifecycle state."""
    return {
        "creator_id": statement.creator_id,
        "total_earnings_cents": statement.total_earnings_cents,
        "platform_fee_cents": statement.platform_fee_cents,
        "carryover_in_cents": statement.carryover_in_cents,
        "carryover_out_cents": statement.carryover_out_cents,
        "is_payable": statement.is_payable,
        "lines": [
            {
                "line_seq": line.line_seq,
                "line_type": line.line_type.value,
                "asset_id": line.asset_id,
                "license_id": line.license_id,
                "revenue_cents": line.revenue_cents,
                "share_bps": line.share_bps,
                "calculated_royalty_cents": line.calculated_royalty_cents,
            }
            for line in statement.lines
            if line.line_type != LineType.ADJUSTMENT
        ],
    }
