"""
Module: royalty_kernel.models.royalty_statement
Responsibility: ORM persistence for per-creator royalty statements and the
    tagged royalty lines beneath them.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - One statement per (run, creator) (unique constraint).
    - One table for every line kind, discriminated by ``line_type``
      (standard | carryover | adjustment | threshold_note).  Every consumer
      sums ``calculated_royalty_cents`` the same way regardless of tag.
    - Calculated statement fields and non-adjustment lines are never
      updated in place (ORM listeners in db/immutability.py).  A
      recalculation deletes and rewrites; a correction adds an adjustment.

Audit relevance:
    Lines carry ``revenue_cents`` (pre-split unit revenue), ``share_bps`` and
    ``details`` so every cent on a statement can be traced to a license,
    an asset and an ownership share.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase, UUIDString
from royalty_kernel.db.types import Cents
from royalty_kernel.domain.dtos import StatementStatus

# Fields the calculation writes; they never change after insert.
STATEMENT_CALCULATED_FIELDS = (
    "run_id",
    "creator_id",
    "total_earnings_cents",
    "platform_fee_cents",
    "carryover_in_cents",
    "carryover_out_cents",
    "is_payable",
    "unpaid_since",
)

# Adjustment lines may only move through their approval lifecycle.
ADJUSTMENT_MUTABLE_FIELDS = frozenset({
    "adjustment_status",
    "approved_by_id",
    "approved_at",
    "updated_at",
    "updated_by_id",
})


class RoyaltyStatement(TrackedBase):
    """
    One creator's royalty result for one run.

    Contract:
        Created only by the calculation pipeline; mutated afterwards only
        through StatementService (status transitions) and adjustments
        (``adjustments_cents`` and ``net_payable_cents``).  Hard-deleted only
        by a run rollback or a recalculation of its run.

    Guarantees:
        - ``net_payable_cents == (total_earnings_cents + carryover_in_cents
          - platform_fee_cents if is_payable else 0) + adjustments_cents``.
    """

    __tablename__ = "royalty_statements"

    __table_args__ = (
        UniqueConstraint("run_id", "creator_id", name="uq_statement_run_creator"),
        Index("idx_statement_creator", "creator_id"),
        Index("idx_statement_status", "status"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("royalty_runs.id"), nullable=False
    )
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StatementStatus.PENDING.value
    )

    total_earnings_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    platform_fee_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    adjustments_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    net_payable_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    carryover_in_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    carryover_out_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    is_payable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    unpaid_since: Mapped[date | None] = mapped_column(Date, nullable=True)

    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<RoyaltyStatement {self.id} creator={self.creator_id} {self.status}>"


class RoyaltyLine(TrackedBase):
    """
    The atomic revenue/royalty record beneath a statement.

    Contract:
        ``line_type`` discriminates the row.  Standard lines hold one
        creator's allocated share of one (asset, license) revenue unit;
        carryover lines hold a consumed prior balance; threshold notes hold
        a zero amount and document a held payout; adjustment lines hold a
        signed correction and its approval state.
    """

    __tablename__ = "royalty_lines"

    __table_args__ = (
        UniqueConstraint("statement_id", "line_seq", name="uq_line_statement_seq"),
        Index("idx_line_run", "run_id"),
        Index("idx_line_type", "line_type"),
    )

    statement_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("royalty_statements.id"), nullable=False
    )
    run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("royalty_runs.id"), nullable=False
    )
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    line_type: Mapped[str] = mapped_column(String(20), nullable=False)

    asset_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    license_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    revenue_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    share_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    calculated_royalty_cents: Mapped[Cents] = mapped_column(nullable=False)

    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    adjustment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    adjustment_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    adjustment_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("royalty_lines.id"), nullable=True
    )
    approved_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyLine {self.line_type} seq={self.line_seq} "
            f"{self.calculated_royalty_cents}c>"
        )
