"""
Domain DTOs -- status enums and immutable value objects.

Responsibility:
    Defines the lifecycle enums shared by models, engines and services, the
    read-only shapes of upstream data (licenses, ownership shares, usage
    events), the drafts produced by the calculation pipeline, and the frozen
    read models returned by selectors.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Engines consume and
    produce these types; they never see ORM objects.

Invariants enforced:
    - Every DTO is a frozen dataclass; collections are tuples.
    - Money fields are integer cents; shares are integer basis points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from royalty_kernel.domain.money import validate_basis_points

# =============================================================================
# Lifecycle enums
# =============================================================================


class RunStatus(str, Enum):
    """Royalty run lifecycle."""

    DRAFT = "draft"
    PROCESSING = "processing"
    CALCULATED = "calculated"
    LOCKED = "locked"
    FAILED = "failed"


class StatementStatus(str, Enum):
    """Per-creator statement lifecycle.  PAID is terminal."""

    PENDING = "pending"
    REVIEWED = "reviewed"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    PAID = "paid"


class LineType(str, Enum):
    """Discriminator for the single royalty_lines table."""

    STANDARD = "standard"
    CARRYOVER = "carryover"
    ADJUSTMENT = "adjustment"
    THRESHOLD_NOTE = "threshold_note"


class AdjustmentStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPLIED = "applied"
    REJECTED = "rejected"
    REVERSED = "reversed"


class AdjustmentType(str, Enum):
    CORRECTION = "correction"
    BONUS = "bonus"
    PENALTY = "penalty"
    REFUND_OFFSET = "refund_offset"
    DISPUTE_RESOLUTION = "dispute_resolution"
    REVERSAL = "reversal"
    OTHER = "other"


class UsageRevenueBasis(str, Enum):
    """
    What usage-event amounts represent.

    NET: events already carry the licensor's revenue share; summed as-is.
    GROSS: events carry gross revenue; the sum is scaled once by the
    license's ``rev_share_bps``.
    """

    NET = "net"
    GROSS = "gross"


# =============================================================================
# Upstream data (read-only to the engine)
# =============================================================================


@dataclass(frozen=True)
class LicenseScope:
    """Where and how a licensed asset may be used.  Empty means unrestricted."""

    media_types: tuple[str, ...] = ()
    geographies: tuple[str, ...] = ()
    channels: tuple[str, ...] = ()

    @property
    def is_unrestricted(self) -> bool:
        return not (self.media_types or self.geographies or self.channels)


@dataclass(frozen=True)
class License:
    """
    A license as supplied by the license/ownership provider.

    Guarantees:
        - ``fee_cents`` is non-negative; ``rev_share_bps`` is 0..10000.
        - ``end_date`` is None for open-ended licenses, otherwise not
          before ``start_date``.
    """

    license_id: str
    asset_id: str
    fee_cents: int
    rev_share_bps: int
    start_date: date
    end_date: date | None = None
    scope: LicenseScope = field(default_factory=LicenseScope)

    def __post_init__(self) -> None:
        if self.fee_cents < 0:
            raise ValueError(f"License {self.license_id}: fee_cents cannot be negative")
        validate_basis_points(self.rev_share_bps, "rev_share_bps")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError(
                f"License {self.license_id}: end_date precedes start_date"
            )

    @property
    def is_open_ended(self) -> bool:
        return self.end_date is None


@dataclass(frozen=True)
class OwnershipShare:
    creator_id: str
    share_bps: int


@dataclass(frozen=True)
class UsageEvent:
    """A reported usage of a licensed asset."""

    amount_cents: int
    occurred_at: datetime
    media_type: str | None = None
    geography: str | None = None
    channel: str | None = None
    event_id: str | None = None


# =============================================================================
# Calculation drafts (produced by engines, persisted by services)
# =============================================================================


@dataclass(frozen=True)
class LineDraft:
    """One royalty line before persistence."""

    line_type: LineType
    creator_id: str
    calculated_royalty_cents: int
    asset_id: str | None = None
    license_id: str | None = None
    revenue_cents: int = 0
    share_bps: int | None = None
    period_start: date | None = None
    period_end: date | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def sort_key(self) -> tuple:
        return (
            _LINE_ORDER[self.line_type],
            self.asset_id or "",
            self.license_id or "",
        )


_LINE_ORDER = {
    LineType.STANDARD: 0,
    LineType.CARRYOVER: 1,
    LineType.THRESHOLD_NOTE: 2,
    LineType.ADJUSTMENT: 3,
}


@dataclass(frozen=True)
class StatementDraft:
    """
    One creator's statement before persistence.

    Guarantees:
        - ``total_earnings_cents`` equals the sum of the standard lines.
        - When payable: ``net_payable_cents == total_earnings_cents +
          carryover_in_cents - platform_fee_cents`` and
          ``carryover_out_cents == 0``.
        - When held: ``net_payable_cents == 0`` and ``carryover_out_cents ==
          total_earnings_cents + carryover_in_cents``.
    """

    creator_id: str
    total_earnings_cents: int
    platform_fee_cents: int
    net_payable_cents: int
    carryover_in_cents: int
    carryover_out_cents: int
    is_payable: bool
    unpaid_since: date | None
    lines: tuple[LineDraft, ...]


@dataclass(frozen=True)
class ExcludedLicense:
    """A license whose revenue was left out of a run, with the reason."""

    license_id: str
    asset_id: str
    revenue_cents: int
    reason_code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "license_id": self.license_id,
            "asset_id": self.asset_id,
            "revenue_cents": self.revenue_cents,
            "reason_code": self.reason_code,
            "message": self.message,
        }


# =============================================================================
# Read models (returned by selectors and services)
# =============================================================================


@dataclass(frozen=True)
class RunInfo:
    id: UUID
    period_start: date
    period_end: date
    status: RunStatus
    total_revenue_cents: int
    total_royalties_cents: int
    notes: str | None
    created_by: str
    version: int
    locked_at: datetime | None = None
    locked_by: str | None = None
    calculated_at: datetime | None = None
    rolled_back_at: datetime | None = None
    failure_code: str | None = None
    failure_reason: str | None = None
    policy_checksum: str | None = None
    statement_count: int = 0


@dataclass(frozen=True)
class LineInfo:
    id: UUID
    statement_id: UUID
    line_seq: int
    line_type: LineType
    asset_id: str | None
    license_id: str | None
    revenue_cents: int
    share_bps: int | None
    calculated_royalty_cents: int
    details: dict[str, Any]
    adjustment_status: AdjustmentStatus | None = None
    adjustment_type: AdjustmentType | None = None
    reversal_of_id: UUID | None = None


@dataclass(frozen=True)
class StatementInfo:
    id: UUID
    run_id: UUID
    creator_id: str
    status: StatementStatus
    total_earnings_cents: int
    platform_fee_cents: int
    adjustments_cents: int
    net_payable_cents: int
    carryover_in_cents: int
    carryover_out_cents: int
    is_payable: bool
    dispute_reason: str | None = None
    resolution: str | None = None
    payment_reference: str | None = None
    lines: tuple[LineInfo, ...] = ()


@dataclass(frozen=True)
class RunFilters:
    status: RunStatus | None = None
    period_from: date | None = None
    period_to: date | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class StatementFilters:
    run_id: UUID | None = None
    creator_id: str | None = None
    status: StatementStatus | None = None
    limit: int = 100
    offset: int = 0
