"""
Module: royalty_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    Every run transition, statement transition, adjustment and rollback
    produces an AuditEvent.  The hash chain makes retroactive tampering
    detectable.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Run lifecycle
    RUN_CREATED = "run_created"
    RUN_CALCULATION_STARTED = "run_calculation_started"
    RUN_CALCULATED = "run_calculated"
    RUN_FAILED = "run_failed"
    RUN_LOCKED = "run_locked"
    RUN_REVIEW_REJECTED = "run_review_rejected"
    RUN_ROLLED_BACK = "run_rolled_back"
    RUN_RESET = "run_reset"
    RUN_TIMED_OUT = "run_timed_out"

    # Statement lifecycle
    STATEMENT_REVIEWED = "statement_reviewed"
    STATEMENT_DISPUTED = "statement_disputed"
    STATEMENT_RESOLVED = "statement_resolved"
    STATEMENT_PAID = "statement_paid"

    # Adjustments
    ADJUSTMENT_REQUESTED = "adjustment_requested"
    ADJUSTMENT_APPLIED = "adjustment_applied"
    ADJUSTMENT_REJECTED = "adjustment_rejected"
    ADJUSTMENT_REVERSED = "adjustment_reversed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "RoyaltyRun", "RoyaltyStatement", "RoyaltyLine"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"
