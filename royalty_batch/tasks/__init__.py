"""Batch task implementations and the task registry."""

from royalty_batch.tasks.base import (
    BatchItemInput,
    BatchTask,
    BatchTaskResult,
    TaskRegistry,
)
from royalty_batch.tasks.royalty_tasks import (
    CALCULATE_RUNS,
    SWEEP_STUCK_RUNS,
    CalculateQueuedRunsTask,
    SweepStuckRunsTask,
)

__all__ = [
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "CALCULATE_RUNS",
    "CalculateQueuedRunsTask",
    "SWEEP_STUCK_RUNS",
    "SweepStuckRunsTask",
    "TaskRegistry",
]
