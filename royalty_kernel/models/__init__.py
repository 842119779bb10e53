"""ORM models for the royalty kernel."""

from royalty_kernel.models.audit_event import AuditAction, AuditEvent
from royalty_kernel.models.rollback_archive import RollbackArchive
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyLine, RoyaltyStatement

__all__ = [
    "AuditAction",
    "AuditEvent",
    "RollbackArchive",
    "RoyaltyRun",
    "RoyaltyStatement",
    "RoyaltyLine",
]
