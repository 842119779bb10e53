"""
royalty_services -- Orchestration over the royalty kernel and engines.

Public entry points:
    RoyaltyRunOrchestrator   -- run lifecycle, statements, adjustments
    RoyaltyCalculator        -- the engine pipeline for one period
    StatementExportService   -- statement documents via DocumentRenderer
"""

from royalty_services.calculation import CalculationResult, RoyaltyCalculator
from royalty_services.collaborators import (
    DISPUTE_RESOLVED,
    STATEMENT_READY,
    DocumentRenderer,
    LicenseOwnershipProvider,
    NotificationSink,
    NullNotificationSink,
    UsageEventSource,
)
from royalty_services.run_orchestrator import RoyaltyRunOrchestrator
from royalty_services.statement_export_service import (
    SUPPORTED_FORMATS,
    StatementExportService,
)

__all__ = [
    "CalculationResult",
    "DISPUTE_RESOLVED",
    "DocumentRenderer",
    "LicenseOwnershipProvider",
    "NotificationSink",
    "NullNotificationSink",
    "RoyaltyCalculator",
    "RoyaltyRunOrchestrator",
    "STATEMENT_READY",
    "SUPPORTED_FORMATS",
    "StatementExportService",
    "UsageEventSource",
]
