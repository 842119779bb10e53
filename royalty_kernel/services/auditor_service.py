"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every run transition,
    statement transition, adjustment and rollback.  Provides chain
    validation for tamper detection and trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by RunService,
    StatementService, AdjustmentService and RollbackService.

Invariants enforced:
    - Sequence monotonicity via SequenceService.
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit events are never modified or deleted.

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match the stored
      hash, or prev_hash does not match the predecessor's hash.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.exceptions import AuditChainBrokenError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_event import AuditAction, AuditEvent
from royalty_kernel.services.sequence_service import SequenceService
from royalty_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
)

logger = get_logger("services.auditor")

RUN_ENTITY = "RoyaltyRun"
STATEMENT_ENTITY = "RoyaltyStatement"
ADJUSTMENT_ENTITY = "RoyaltyLine"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Contract:
        Accepts domain-specific recording requests and creates append-only
        ``AuditEvent`` rows linked into a single hash chain.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Allocate a sequence, link to the previous hash and persist."""
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = _jsonable(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=str(actor_id),
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    # Domain-specific recording methods

    def record_run_created(
        self,
        run_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=RUN_ENTITY,
            entity_id=run_id,
            action=AuditAction.RUN_CREATED,
            actor_id=actor_id,
            payload={
                "period_start": period_start,
                "period_end": period_end,
            },
        )

    def record_run_transition(
        self,
        run_id: UUID,
        action: AuditAction,
        from_status: str,
        to_status: str,
        actor_id: str,
        **details: Any,
    ) -> AuditEvent:
        """Record a run status change (calculation, lock, failure, reset...)."""
        return self._create_audit_event(
            entity_type=RUN_ENTITY,
            entity_id=run_id,
            action=action,
            actor_id=actor_id,
            payload={"from_status": from_status, "to_status": to_status, **details},
        )

    def record_rollback(
        self,
        run_id: UUID,
        archive_id: UUID,
        prior_status: str,
        reason: str,
        forced: bool,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=RUN_ENTITY,
            entity_id=run_id,
            action=AuditAction.RUN_ROLLED_BACK,
            actor_id=actor_id,
            payload={
                "archive_id": archive_id,
                "prior_status": prior_status,
                "reason": reason,
                "forced": forced,
            },
        )

    def record_statement_transition(
        self,
        statement_id: UUID,
        action: AuditAction,
        from_status: str,
        to_status: str,
        actor_id: str,
        **details: Any,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=STATEMENT_ENTITY,
            entity_id=statement_id,
            action=action,
            actor_id=actor_id,
            payload={"from_status": from_status, "to_status": to_status, **details},
        )

    def record_adjustment(
        self,
        adjustment_id: UUID,
        action: AuditAction,
        statement_id: UUID,
        amount_cents: int,
        actor_id: str,
        **details: Any,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ADJUSTMENT_ENTITY,
            entity_id=adjustment_id,
            action=action,
            actor_id=actor_id,
            payload={
                "statement_id": statement_id,
                "amount_cents": amount_cents,
                **details,
            },
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical(
                "audit_chain_broken",
                extra={"audit_event_id": str(events[0].id), "check": "genesis"},
            )
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "check": "hash"},
                )
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0 and event.prev_hash != events[i - 1].hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_event_id": str(event.id), "check": "linkage"},
                )
                raise AuditChainBrokenError(
                    str(event.id), events[i - 1].hash, event.prev_hash or "None"
                )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=event.action,
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )
        return AuditTrace(entity_type=entity_type, entity_id=entity_id, entries=entries)

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent audit events, newest first."""
        result = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(limit)
        )
        return list(result.scalars().all())


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    # Stored payloads must re-hash identically after a JSON round trip.
    return json.loads(canonicalize_json(payload))
