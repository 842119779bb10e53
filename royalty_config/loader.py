"""
Policy Loader (``royalty_config.loader``).

Responsibility
--------------
Loads a royalty policy YAML file and parses it into the frozen
``RoyaltyPolicy`` dataclass.  This is internal tooling; runtime callers go
through ``royalty_config.get_active_policy()``.

Invariants enforced
-------------------
* Unknown keys are rejected (a typo must not silently fall back to a
  default).
* Money values are integer cents and rates integer basis points; floats
  are rejected.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type or out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from royalty_kernel.domain.policy import RoyaltyPolicy

_INT_FIELDS = frozenset({
    "minimum_payout_threshold_cents",
    "grace_period_months",
    "platform_fee_bps",
    "outlier_multiplier",
    "prorated_warning_ratio_bps",
    "stuck_run_timeout_minutes",
    "dispute_reason_min_length",
    "dispute_reason_max_length",
    "justification_min_length",
    "adjustment_approval_threshold_cents",
    "version",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _require_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"policy.{key} must be an integer, got {value!r}")
    return value


def parse_policy(data: dict[str, Any]) -> RoyaltyPolicy:
    """
    Parse a ``RoyaltyPolicy`` from a dict.

    Accepts either the policy keys at the top level or nested under a
    ``policy:`` key.
    """
    if "policy" in data and isinstance(data["policy"], dict):
        data = data["policy"]

    known = {f.name for f in fields(RoyaltyPolicy)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown policy keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in data.items():
        if key in _INT_FIELDS:
            values[key] = _require_int(key, value)
        elif key == "creator_threshold_overrides":
            overrides = value or {}
            if not isinstance(overrides, dict):
                raise ValueError("policy.creator_threshold_overrides must be a mapping")
            values[key] = {
                str(cid): _require_int(f"creator_threshold_overrides.{cid}", cents)
                for cid, cents in overrides.items()
            }
        else:
            values[key] = str(value)
    return RoyaltyPolicy(**values)


def load_policy(path: Path) -> RoyaltyPolicy:
    return parse_policy(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
