"""
Deterministic hashing utilities.

All hashing in the royalty kernel must be deterministic and reproducible.
Audit events, rollback archives, policy snapshots and calculation
fingerprints all hash canonical JSON produced here.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """Serialize the non-JSON types that appear in royalty payloads."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON: sorted keys, no whitespace, stable
    handling of dates, UUIDs and enums.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict | list) -> str:
    """Hex-encoded SHA-256 of the canonical JSON of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for an audit event.

    The hash includes all key fields plus the previous event's hash,
    creating a tamper-evident chain.
    """
    components = [
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def hash_statement_output(statements: list[dict]) -> str:
    """
    Fingerprint a run's calculated output, independent of row ids.

    Two calculations over the same upstream data produce the same
    fingerprint; used to verify idempotent recalculation.
    """
    ordered = sorted(statements, key=lambda s: s.get("creator_id", ""))
    return hash_payload({"statements": ordered})
