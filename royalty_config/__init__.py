"""
royalty_config -- single public entrypoint for royalty policy.

Responsibility:
    Provides the ONLY way to obtain the royalty policy at runtime through
    ``get_active_policy()``.  YAML loading is internal tooling.

Architecture position:
    Configuration -- sits above ``royalty_kernel`` and below
    ``royalty_services`` / ``royalty_batch``.  The kernel never imports
    from ``royalty_config``; it receives a ``RoyaltyPolicy`` value.

Invariants enforced:
    - Single entrypoint: runtime policy flows through ``get_active_policy()``.
    - Deterministic checksum: the same YAML always yields the same
      checksum, which matches the snapshot checksum stored on runs.

Failure modes:
    - ``FileNotFoundError`` -- the policy file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every call emits a ``ROYALTY_POLICY_TRACE`` log entry with the policy
    name, version, checksum and source path.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from royalty_config.loader import compute_checksum, load_policy
from royalty_kernel.domain.policy import RoyaltyPolicy

_logger = logging.getLogger("royalty_kernel.config")

DEFAULT_POLICY_PATH = Path(__file__).parent / "policies" / "default.yaml"
POLICY_PATH_ENV = "ROYALTY_POLICY_PATH"


def get_active_policy(path: Path | str | None = None) -> RoyaltyPolicy:
    """
    The ONLY public policy entrypoint.

    Resolution order: explicit ``path``, then the ``ROYALTY_POLICY_PATH``
    environment variable, then the packaged default policy.
    """
    source = Path(path or os.environ.get(POLICY_PATH_ENV) or DEFAULT_POLICY_PATH)
    policy = load_policy(source)
    checksum = compute_checksum(policy.to_snapshot())

    _logger.info(
        "ROYALTY_POLICY_TRACE",
        extra={
            "trace_type": "ROYALTY_POLICY_TRACE",
            "policy_name": policy.name,
            "policy_version": policy.version,
            "checksum": checksum,
            "source": str(source),
        },
    )
    return policy


__all__ = ["DEFAULT_POLICY_PATH", "get_active_policy"]
