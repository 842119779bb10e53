"""
Module: royalty_engines
Responsibility:
    Package entrypoint re-exporting the pure royalty calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import royalty_kernel.domain (and royalty_kernel.exceptions).
    MUST NOT import royalty_services or royalty_batch.

Invariants enforced:
    - Engines never read a clock; dates are passed in.
    - Integer cents only; no floats in any sum or split.
    - Identical inputs produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting a
    ROYALTY_ENGINE_TRACE log record with engine name, version, input
    fingerprint and duration.
"""

from royalty_engines.revenue import LicenseRevenue, RevenueAggregator
from royalty_engines.scope import ScopeViolation, check_event_scope
from royalty_engines.split import OwnershipSplitCalculator, SplitResult
from royalty_engines.threshold import ThresholdDecision, ThresholdManager
from royalty_engines.tracer import traced_engine
from royalty_engines.validation import (
    Severity,
    ValidationCheck,
    ValidationEngine,
    ValidationIssue,
    ValidationReport,
)

__all__ = [
    "LicenseRevenue",
    "OwnershipSplitCalculator",
    "RevenueAggregator",
    "ScopeViolation",
    "Severity",
    "SplitResult",
    "ThresholdDecision",
    "ThresholdManager",
    "ValidationCheck",
    "ValidationEngine",
    "ValidationIssue",
    "ValidationReport",
    "check_event_scope",
    "traced_engine",
]
