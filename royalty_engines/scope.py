"""
Module: royalty_engines.scope
Responsibility:
    Check usage events against the media type, geography and channel
    restrictions of the license they were reported under.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - An empty restriction tuple means "unrestricted" for that dimension.
    - An event that does not report a dimension is not a violation of it.
    - Matching is case-insensitive.

Audit relevance:
    Violations are recorded on the royalty lines of the affected license
    and surface as WARNING-level findings in the validation report.  Out
    of scope revenue is still counted; the warning prompts review.
"""

from __future__ import annotations

from dataclasses import dataclass

from royalty_kernel.domain.dtos import LicenseScope, UsageEvent


@dataclass(frozen=True)
class ScopeViolation:
    """One usage event reported outside one dimension of its license scope."""

    license_id: str
    event_id: str | None
    dimension: str
    value: str
    allowed: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "license_id": self.license_id,
            "event_id": self.event_id,
            "dimension": self.dimension,
            "value": self.value,
            "allowed": list(self.allowed),
        }


def _allows(allowed: tuple[str, ...], value: str | None) -> bool:
    if not allowed or value is None:
        return True
    return value.lower() in {a.lower() for a in allowed}


def check_event_scope(
    license_id: str,
    scope: LicenseScope,
    event: UsageEvent,
) -> list[ScopeViolation]:
    """Every dimension of ``event`` that falls outside ``scope``."""
    if scope.is_unrestricted:
        return []

    violations = []
    for dimension, allowed, value in (
        ("media_type", scope.media_types, event.media_type),
        ("geography", scope.geographies, event.geography),
        ("channel", scope.channels, event.channel),
    ):
        if not _allows(allowed, value):
            violations.append(
                ScopeViolation(
                    license_id=license_id,
                    event_id=event.event_id,
                    dimension=dimension,
                    value=value,
                    allowed=allowed,
                )
            )
    return violations
