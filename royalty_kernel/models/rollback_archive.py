"""
Module: royalty_kernel.models.rollback_archive
Responsibility: ORM persistence for the immutable snapshot taken before a run
    rollback.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py).
    - ``snapshot_hash`` is the canonical-JSON SHA-256 of ``snapshot`` so any
      later edit is detectable.

Audit relevance:
    A rollback is the only path that hard-deletes statements; the archive
    is the record of what was deleted, by whom, and why.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import Base, UUIDString


class RollbackArchive(Base):
    """Immutable record of a run's state immediately before rollback."""

    __tablename__ = "royalty_rollback_archives"

    __table_args__ = (Index("idx_rollback_run", "run_id"),)

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("royalty_runs.id"), nullable=False
    )
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    archived_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    forced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prior_status: Mapped[str] = mapped_column(String(20), nullable=False)
    full_snapshot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    statement_count: Mapped[int] = mapped_column(Integer, nullable=False)
    line_count: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<RollbackArchive run={self.run_id} at={self.archived_at}>"
