"""
Module: royalty_kernel.models.royalty_run
Responsibility: ORM persistence for royalty runs, the unit of calculation and
    the mutex for every mutating operation on its statements.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - At most one non-FAILED run covers any day (checked by RunService under
      the run-table lock; periods are inclusive on both ends).
    - ``version`` is the mapper's optimistic-concurrency column.  Every ORM
      UPDATE is ``... WHERE id = :id AND version = :seen``; status
      transitions additionally use a conditional status-check-and-set.

Failure modes:
    - StaleDataError on flush when another transaction bumped ``version``
      (translated to OptimisticLockError by RunService).

Audit relevance:
    ``policy_snapshot``/``policy_checksum`` pin the policy a run was
    calculated under; ``failure_code``/``failure_reason`` record why a run
    FAILED; ``exclusions`` lists licenses left out of the run.
"""

from datetime import date, datetime

from sqlalchemy import JSON, BigInteger, Date, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase
from royalty_kernel.db.types import Cents
from royalty_kernel.domain.dtos import RunStatus


class RoyaltyRun(TrackedBase):
    """
    One calculation pass over an inclusive date period.

    Contract:
        Created in DRAFT.  Status transitions are owned by RunService and
        the orchestrator: DRAFT -> PROCESSING -> CALCULATED -> LOCKED,
        PROCESSING -> FAILED, FAILED -> DRAFT, CALCULATED -> PROCESSING,
        and CALCULATED/LOCKED -> DRAFT on rollback.

    Guarantees:
        - ``status`` is stored as the RunStatus value string.
        - ``total_royalties_cents`` equals the sum of the run's statement
          totals (earnings plus applied adjustments) once CALCULATED.
    """

    __tablename__ = "royalty_runs"

    __table_args__ = (
        Index("idx_royalty_run_period", "period_start", "period_end"),
        Index("idx_royalty_run_status", "status"),
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RunStatus.DRAFT.value,
    )

    total_revenue_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)
    total_royalties_cents: Mapped[Cents] = mapped_column(default=0, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rolled_back_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Claim bookkeeping for PROCESSING (who holds the run, since when)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_owner: Mapped[str | None] = mapped_column(String(64), nullable=True)

    failure_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    policy_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    policy_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    exclusions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    validation_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    calculation_fingerprint: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<RoyaltyRun {self.id} {self.period_start}..{self.period_end} "
            f"{self.status}>"
        )
