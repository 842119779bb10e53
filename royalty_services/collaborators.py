"""
royalty_services.collaborators -- Upstream and downstream interfaces.

Responsibility:
    Declares the Protocols the royalty engine consumes: the license and
    ownership provider, the usage event source, the notification sink and
    the statement document renderer.  Implementations live outside this
    package; tests use in-memory fakes.

Architecture position:
    Services -- boundary types.  Only royalty_kernel.domain DTOs cross these
    interfaces; no ORM objects are handed out.

Invariants enforced:
    - Providers are read-only from the engine's point of view.
    - A NotificationSink failure never aborts the operation that triggered
      it (enforced by the orchestrator).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Protocol, runtime_checkable
from uuid import UUID

from royalty_kernel.domain.dtos import License, OwnershipShare, UsageEvent
from royalty_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

# Notification event names
STATEMENT_READY = "statement_ready"
DISPUTE_RESOLVED = "dispute_resolved"


@runtime_checkable
class LicenseOwnershipProvider(Protocol):
    """Source of licenses and asset ownership."""

    def list_active_licenses(
        self, period_start: date, period_end: date
    ) -> Sequence[License]:
        """Licenses whose term overlaps the inclusive period."""
        ...

    def get_ownership_shares(self, asset_id: str) -> Sequence[OwnershipShare]:
        """Ownership of ``asset_id``.  Empty when the asset is unknown."""
        ...


@runtime_checkable
class UsageEventSource(Protocol):
    def list_usage_events(
        self, license_id: str, period_start: date, period_end: date
    ) -> Sequence[UsageEvent]: ...


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, creator_id: str, statement_id: UUID, event: str) -> None: ...


@runtime_checkable
class DocumentRenderer(Protocol):
    def render_statement_document(self, statement_id: UUID, fmt: str) -> bytes: ...


class NullNotificationSink:
    """Default sink: records nothing, logs at debug."""

    def notify(self, creator_id: str, statement_id: UUID, event: str) -> None:
        logger.debug(
            "notification_discarded",
            extra={
                "creator_id": creator_id,
                "statement_id": str(statement_id),
                "event": event,
            },
        )
