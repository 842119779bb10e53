"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Royalty statements are financial records: every cent on a statement must be
explainable later, and the only sanctioned ways to change a calculated result
are (a) discard and rewrite the whole run (recalculation or rollback) and
(b) append an adjustment line.  These listeners stop application code from
editing results in place.

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Recalculation and rollback remove a run's output with bulk DELETE statements
(issued by RunOutputWriter / RollbackService after archiving), which do not
pass through these mapper events.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|----------------------------------------------------------
AuditEvent        | Never updated or deleted
RollbackArchive   | Never updated or deleted
RoyaltyLine       | Non-adjustment lines never updated; adjustment lines
                  | may only change approval fields
RoyaltyStatement  | Calculated fields never updated; PAID statements frozen
                  | entirely and never deleted through the ORM

===============================================================================
USAGE
===============================================================================

    from royalty_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that must violate the rules on purpose call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, inspect

from royalty_kernel.domain.dtos import LineType, StatementStatus
from royalty_kernel.exceptions import ImmutabilityViolationError
from royalty_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> set[str]:
    state = inspect(target)
    return {
        attr.key
        for attr in state.attrs
        if attr.history.has_changes()
    }


def _block(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_audit_event_immutability(mapper, connection, target):
    _block("AuditEvent", target, "UPDATE", "Audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _check_rollback_archive_immutability(mapper, connection, target):
    _block("RollbackArchive", target, "UPDATE", "Rollback archives are immutable")


def _check_rollback_archive_delete(mapper, connection, target):
    _block("RollbackArchive", target, "DELETE", "Rollback archives cannot be deleted")


def _check_line_immutability(mapper, connection, target):
    """Standard, carryover and threshold lines are write-once."""
    from royalty_kernel.models.royalty_statement import ADJUSTMENT_MUTABLE_FIELDS

    changed = _changed_fields(target) - _AUDIT_METADATA_FIELDS
    if not changed:
        return

    if target.line_type != LineType.ADJUSTMENT.value:
        _block(
            "RoyaltyLine",
            target,
            "UPDATE",
            f"{target.line_type} lines cannot be modified "
            f"(attempted: {', '.join(sorted(changed))})",
        )

    forbidden = changed - ADJUSTMENT_MUTABLE_FIELDS
    if forbidden:
        _block(
            "RoyaltyLine",
            target,
            "UPDATE",
            "Adjustment amounts are fixed; reverse instead "
            f"(attempted: {', '.join(sorted(forbidden))})",
        )


def _check_statement_immutability(mapper, connection, target):
    from sqlalchemy.orm.attributes import get_history

    from royalty_kernel.models.royalty_statement import STATEMENT_CALCULATED_FIELDS

    changed = _changed_fields(target) - _AUDIT_METADATA_FIELDS
    if not changed:
        return

    status_history = get_history(target, "status")
    prior = list(status_history.deleted) + list(status_history.unchanged)
    if StatementStatus.PAID.value in prior:
        _block(
            "RoyaltyStatement",
            target,
            "UPDATE",
            "PAID statements are terminal",
        )

    frozen = changed.intersection(STATEMENT_CALCULATED_FIELDS)
    if frozen:
        _block(
            "RoyaltyStatement",
            target,
            "UPDATE",
            "Calculated statement fields cannot be modified "
            f"(attempted: {', '.join(sorted(frozen))})",
        )


def _check_statement_delete(mapper, connection, target):
    if target.status == StatementStatus.PAID.value:
        _block(
            "RoyaltyStatement",
            target,
            "DELETE",
            "PAID statements can only be removed by a forced run rollback",
        )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is harmless.
    """
    from royalty_kernel.models.audit_event import AuditEvent
    from royalty_kernel.models.rollback_archive import RollbackArchive
    from royalty_kernel.models.royalty_statement import RoyaltyLine, RoyaltyStatement

    for target, event_name, fn in _listeners(
        AuditEvent, RollbackArchive, RoyaltyLine, RoyaltyStatement
    ):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _listeners(AuditEvent, RollbackArchive, RoyaltyLine, RoyaltyStatement):
    return (
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (RollbackArchive, "before_update", _check_rollback_archive_immutability),
        (RollbackArchive, "before_delete", _check_rollback_archive_delete),
        (RoyaltyLine, "before_update", _check_line_immutability),
        (RoyaltyStatement, "before_update", _check_statement_immutability),
        (RoyaltyStatement, "before_delete", _check_statement_delete),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    rules to verify detection.
    """
    from royalty_kernel.models.audit_event import AuditEvent
    from royalty_kernel.models.rollback_archive import RollbackArchive
    from royalty_kernel.models.royalty_statement import RoyaltyLine, RoyaltyStatement

    for target, event_name, fn in _listeners(
        AuditEvent, RollbackArchive, RoyaltyLine, RoyaltyStatement
    ):
        _safe_remove_listener(target, event_name, fn)
