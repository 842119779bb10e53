"""Services for the royalty kernel (write side)."""

from royalty_kernel.services.adjustment_service import (
    AdjustmentRequest,
    AdjustmentResult,
    AdjustmentService,
)
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.rollback_service import RollbackResult, RollbackService
from royalty_kernel.services.run_service import RunService
from royalty_kernel.services.sequence_service import SequenceService
from royalty_kernel.services.statement_service import StatementService
from royalty_kernel.services.statement_writer import RunOutputWriter

__all__ = [
    "AdjustmentRequest",
    "AdjustmentResult",
    "AdjustmentService",
    "AuditorService",
    "RollbackResult",
    "RollbackService",
    "RunOutputWriter",
    "RunService",
    "SequenceService",
    "StatementService",
]
