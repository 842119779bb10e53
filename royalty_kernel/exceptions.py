"""
Typed Exception Hierarchy for the Royalty Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the royalty engine (admin tooling, the batch worker, API layers)
must react to failures by category: an input error is shown back to the
user naming the offending field, a calculation error is stored on the run,
a concurrency conflict is reported to the second caller.  Parsing messages
for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RoyaltyKernelError (base)
    |
    +-- RoyaltyInputError
    |   +-- InvalidPeriodError
    |   +-- RunPeriodOverlapError
    |   +-- JustificationRequiredError
    |   +-- InvalidBasisPointsError
    |   +-- InvalidAdjustmentError
    |   +-- UnsupportedExportFormatError
    |
    +-- NotFoundError
    |   +-- RunNotFoundError
    |   +-- StatementNotFoundError
    |   +-- AdjustmentNotFoundError
    |
    +-- RoyaltyCalculationError
    |   +-- OwnershipSplitError
    |   +-- UnresolvableAssetError
    |   +-- AllocationConservationError
    |
    +-- InvalidStateTransitionError
    |   +-- RunStateError
    |   |   +-- RunLockedError
    |   |   +-- PaidStatementsError
    |   |   +-- ValidationGateError
    |   |   +-- UnresolvedDisputesError
    |   +-- StatementStateError
    |   +-- AdjustmentStateError
    |   +-- CarryoverChainError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- RunConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- StatementAccessError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|--------------------------------------
Input        | INVALID_PERIOD               | period_end not after period_start
             | RUN_PERIOD_OVERLAP           | Period overlaps a non-FAILED run
             | JUSTIFICATION_REQUIRED       | Reason/resolution text missing or short
             | INVALID_BASIS_POINTS         | bps outside 0..10000
             | INVALID_ADJUSTMENT           | Zero or malformed adjustment
             | UNSUPPORTED_EXPORT_FORMAT    | Statement export format unknown
-------------|------------------------------|--------------------------------------
Calculation  | OWNERSHIP_SPLIT_INVALID      | Shares do not sum to 10000 bps
             | UNRESOLVABLE_ASSET           | Asset has no ownership shares
             | ALLOCATION_NOT_CONSERVED     | Allocated cents != source cents
-------------|------------------------------|--------------------------------------
State        | RUN_STATE_INVALID            | Run not in a required status
             | RUN_LOCKED                   | Mutation on a LOCKED run
             | PAID_STATEMENTS_PRESENT      | Rollback with PAID statements
             | VALIDATION_GATE_FAILED       | Lock blocked by errors/warnings
             | UNRESOLVED_DISPUTES          | Lock blocked by DISPUTED statements
             | STATEMENT_STATE_INVALID      | Statement not in a required status
             | ADJUSTMENT_STATE_INVALID     | Adjustment not in a required status
             | CARRYOVER_CHAIN_CONFLICT     | A later run already carried balances on
-------------|------------------------------|--------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT     | Version column mismatch
             | RUN_CONFLICT                 | Run already claimed by another caller
-------------|------------------------------|--------------------------------------
Integrity    | IMMUTABILITY_VIOLATION       | Modifying an immutable record
             | AUDIT_CHAIN_BROKEN           | Hash chain validation failed
             | STATEMENT_ACCESS_DENIED      | Creator does not own the statement

===============================================================================
"""

from datetime import date


class RoyaltyKernelError(Exception):
    """
    Base exception for all royalty kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ROYALTY_KERNEL_ERROR"


# Input validation errors


class RoyaltyInputError(RoyaltyKernelError):
    """Input rejected before any state change.  ``field`` names the input."""

    code: str = "ROYALTY_INPUT_ERROR"
    field: str | None = None


class InvalidPeriodError(RoyaltyInputError):
    """Run period bounds are not a valid range."""

    code: str = "INVALID_PERIOD"

    def __init__(self, period_start: date, period_end: date, reason: str):
        self.field = "period_end"
        self.period_start = period_start
        self.period_end = period_end
        self.reason = reason
        super().__init__(
            f"Invalid period {period_start}..{period_end}: {reason}"
        )


class RunPeriodOverlapError(RoyaltyInputError):
    """Requested period overlaps an existing non-FAILED run."""

    code: str = "RUN_PERIOD_OVERLAP"

    def __init__(
        self,
        period_start: date,
        period_end: date,
        conflicting_run_id: str,
    ):
        self.field = "period_start"
        self.period_start = period_start
        self.period_end = period_end
        self.conflicting_run_id = conflicting_run_id
        super().__init__(
            f"Period {period_start}..{period_end} overlaps run "
            f"{conflicting_run_id}"
        )


class JustificationRequiredError(RoyaltyInputError):
    """A human-readable justification is missing or too short."""

    code: str = "JUSTIFICATION_REQUIRED"

    def __init__(self, field: str, min_length: int, max_length: int | None = None):
        self.field = field
        self.min_length = min_length
        self.max_length = max_length
        if max_length is not None:
            detail = f"between {min_length} and {max_length} characters"
        else:
            detail = f"at least {min_length} characters"
        super().__init__(f"{field} is required and must be {detail}")


class InvalidBasisPointsError(RoyaltyInputError):
    """Basis point value outside the 0..10000 range."""

    code: str = "INVALID_BASIS_POINTS"

    def __init__(self, field: str, value: int):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be between 0 and 10000 bps, got {value}")


class InvalidAdjustmentError(RoyaltyInputError):
    """Adjustment amount or type is not acceptable."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid adjustment ({field}): {reason}")


class UnsupportedExportFormatError(RoyaltyInputError):
    """Statement export requested in a format no renderer supports."""

    code: str = "UNSUPPORTED_EXPORT_FORMAT"

    def __init__(self, fmt: str, supported: tuple[str, ...]):
        self.field = "fmt"
        self.fmt = fmt
        self.supported = supported
        super().__init__(
            f"Unsupported export format {fmt!r}; expected one of {', '.join(supported)}"
        )


# Not-found errors


class NotFoundError(RoyaltyKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class RunNotFoundError(NotFoundError):
    """Royalty run with given ID was not found."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Royalty run not found: {run_id}")


class StatementNotFoundError(NotFoundError):
    """Royalty statement with given ID was not found."""

    code: str = "STATEMENT_NOT_FOUND"

    def __init__(self, statement_id: str):
        self.statement_id = statement_id
        super().__init__(f"Royalty statement not found: {statement_id}")


class AdjustmentNotFoundError(NotFoundError):
    """Adjustment line with given ID was not found."""

    code: str = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: str):
        self.adjustment_id = adjustment_id
        super().__init__(f"Adjustment not found: {adjustment_id}")


# Calculation errors


class RoyaltyCalculationError(RoyaltyKernelError):
    """
    Unrecoverable error during run calculation.

    Aborts the whole run transactionally; the orchestrator stores ``code``
    and the message on the run as its failure reason.
    """

    code: str = "ROYALTY_CALCULATION_ERROR"


class OwnershipSplitError(RoyaltyCalculationError):
    """Ownership shares for an asset with revenue do not sum to 10000 bps."""

    code: str = "OWNERSHIP_SPLIT_INVALID"

    def __init__(self, asset_id: str, total_bps: int, license_id: str | None = None):
        self.asset_id = asset_id
        self.total_bps = total_bps
        self.license_id = license_id
        super().__init__(
            f"Ownership shares for asset {asset_id} sum to {total_bps} bps, "
            "expected 10000"
        )


class UnresolvableAssetError(RoyaltyCalculationError):
    """An asset referenced by a license has no resolvable ownership shares."""

    code: str = "UNRESOLVABLE_ASSET"

    def __init__(self, asset_id: str, license_id: str):
        self.asset_id = asset_id
        self.license_id = license_id
        super().__init__(
            f"Asset {asset_id} (license {license_id}) has no ownership shares"
        )


class AllocationConservationError(RoyaltyCalculationError):
    """Allocated cents do not sum to the amount being allocated."""

    code: str = "ALLOCATION_NOT_CONSERVED"

    def __init__(self, expected_cents: int, allocated_cents: int):
        self.expected_cents = expected_cents
        self.allocated_cents = allocated_cents
        super().__init__(
            f"Allocation leaked cents: expected {expected_cents}, "
            f"allocated {allocated_cents}"
        )


# State-transition errors


class InvalidStateTransitionError(RoyaltyKernelError):
    """
    An operation requires a status the entity is not in.

    ``current_status`` and ``required_statuses`` name the states explicitly.
    """

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        required_statuses: tuple[str, ...] | list[str],
        operation: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = str(current_status)
        self.required_statuses = tuple(str(s) for s in required_statuses)
        self.operation = operation
        op = f" for {operation}" if operation else ""
        super().__init__(
            f"{entity_type} {entity_id} is {self.current_status}; "
            f"required {' or '.join(self.required_statuses)}{op}"
        )


class RunStateError(InvalidStateTransitionError):
    """Royalty run is not in a status that permits the operation."""

    code: str = "RUN_STATE_INVALID"

    def __init__(
        self,
        run_id: str,
        current_status: str,
        required_statuses: tuple[str, ...] | list[str],
        operation: str | None = None,
    ):
        super().__init__(
            "RoyaltyRun", run_id, current_status, required_statuses, operation
        )
        self.run_id = run_id


class RunLockedError(RunStateError):
    """The run is LOCKED; its statements and lines cannot be mutated."""

    code: str = "RUN_LOCKED"

    def __init__(self, run_id: str, operation: str | None = None):
        super().__init__(
            run_id, "locked", ("draft", "calculated"), operation
        )


class PaidStatementsError(RunStateError):
    """Rollback refused because statements in the run are PAID."""

    code: str = "PAID_STATEMENTS_PRESENT"

    def __init__(self, run_id: str, current_status: str, paid_count: int):
        super().__init__(run_id, current_status, (current_status,), "rollback")
        self.paid_count = paid_count
        self.args = (
            f"Run {run_id} has {paid_count} PAID statement(s); "
            "rollback requires force_rollback",
        )


class ValidationGateError(RunStateError):
    """Lock refused by the validation report."""

    code: str = "VALIDATION_GATE_FAILED"

    def __init__(self, run_id: str, error_count: int, warning_count: int):
        super().__init__(run_id, "calculated", ("calculated",), "lock")
        self.error_count = error_count
        self.warning_count = warning_count
        if error_count:
            reason = f"{error_count} validation error(s)"
        else:
            reason = f"{warning_count} warning(s) without override_warnings"
        self.args = (f"Run {run_id} cannot be locked: {reason}",)


class UnresolvedDisputesError(RunStateError):
    """Lock refused while statements are DISPUTED."""

    code: str = "UNRESOLVED_DISPUTES"

    def __init__(self, run_id: str, disputed_count: int):
        super().__init__(run_id, "calculated", ("calculated",), "lock")
        self.disputed_count = disputed_count
        self.args = (
            f"Run {run_id} has {disputed_count} unresolved dispute(s)",
        )


class StatementStateError(InvalidStateTransitionError):
    """Royalty statement is not in a status that permits the operation."""

    code: str = "STATEMENT_STATE_INVALID"

    def __init__(
        self,
        statement_id: str,
        current_status: str,
        required_statuses: tuple[str, ...] | list[str],
        operation: str | None = None,
    ):
        super().__init__(
            "RoyaltyStatement",
            statement_id,
            current_status,
            required_statuses,
            operation,
        )
        self.statement_id = statement_id


class AdjustmentStateError(InvalidStateTransitionError):
    """Adjustment line is not in a status that permits the operation."""

    code: str = "ADJUSTMENT_STATE_INVALID"

    def __init__(
        self,
        adjustment_id: str,
        current_status: str,
        required_statuses: tuple[str, ...] | list[str],
        operation: str | None = None,
    ):
        super().__init__(
            "RoyaltyAdjustment",
            adjustment_id,
            current_status,
            required_statuses,
            operation,
        )
        self.adjustment_id = adjustment_id


class CarryoverChainError(InvalidStateTransitionError):
    """
    A later run already holds calculated statements, so creator balances
    have been carried forward past this period.  Earlier periods cannot be
    created, calculated or rolled back until that run is rolled back.

    ``current_status`` is the status of the later run.
    """

    code: str = "CARRYOVER_CHAIN_CONFLICT"

    def __init__(
        self,
        period_start: date,
        period_end: date,
        later_run_id: str,
        later_status: str,
        operation: str,
        run_id: str | None = None,
    ):
        super().__init__(
            "RoyaltyRun",
            later_run_id,
            later_status,
            ("draft", "failed"),
            operation,
        )
        self.run_id = run_id
        self.period_start = period_start
        self.period_end = period_end
        self.later_run_id = later_run_id
        self.args = (
            f"Cannot {operation} period {period_start}..{period_end}: later run "
            f"{later_run_id} is {later_status} and already carries balances "
            "forward from it",
        )


# Concurrency errors


class ConcurrencyError(RoyaltyKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class RunConflictError(ConcurrencyError):
    """Another caller holds the run (for example, it is already PROCESSING)."""

    code: str = "RUN_CONFLICT"

    def __init__(self, run_id: str, current_status: str, operation: str):
        self.run_id = run_id
        self.current_status = str(current_status)
        self.operation = operation
        super().__init__(
            f"Run {run_id} is {self.current_status}; concurrent {operation} "
            "rejected"
        )


# Immutability errors


class ImmutabilityError(RoyaltyKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit errors


class AuditError(RoyaltyKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Access errors


class StatementAccessError(RoyaltyKernelError):
    """A creator attempted to act on a statement they do not own."""

    code: str = "STATEMENT_ACCESS_DENIED"

    def __init__(self, statement_id: str, creator_id: str):
        self.statement_id = statement_id
        self.creator_id = creator_id
        super().__init__(
            f"Creator {creator_id} does not own statement {statement_id}"
        )
