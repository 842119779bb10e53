"""
royalty_batch.domain.types -- Pure frozen dataclasses for batch execution.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class BatchJobStatus(str, Enum):
    """Outcome of one task execution."""

    COMPLETED = "completed"  # Every item succeeded or was skipped
    FAILED = "failed"  # No item succeeded
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed


class BatchItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # e.g. another worker claimed the run first


@dataclass(frozen=True)
class BatchItemResult:
    """Immutable result of processing a single batch item.

    Each item runs in its own SAVEPOINT; a failed item's writes are rolled
    back without affecting the rest of the batch.
    """

    item_index: int
    item_key: str  # Business identifier (run id)
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BatchRunResult:
    """Immutable result of executing one task.

    Returned by ``BatchExecutor.execute()``.
    """

    task_type: str
    status: BatchJobStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None
