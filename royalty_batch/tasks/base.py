"""
Work units the royalty worker runs each cycle.

A task splits its work into items (one queued run, one sweep pass) and
processes each item on its own.  The executor wraps every item in a
SAVEPOINT and the worker commits the cycle, so tasks only flush.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from royalty_batch.domain.types import BatchItemStatus


@dataclass(frozen=True)
class BatchItemInput:
    """One unit of work.  ``item_key`` is what logs and results report."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


@runtime_checkable
class BatchTask(Protocol):
    """What the executor needs from a task: a key, items, and a per-item step."""

    @property
    def task_type(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]: ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult: ...


class TaskRegistry:
    """Tasks keyed by ``task_type``; each key may be registered once."""

    def __init__(self) -> None:
        self._tasks: dict[str, BatchTask] = {}

    def register(self, task: BatchTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(f"Task type '{task.task_type}' is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        """Raises KeyError naming the registered types when ``task_type`` is unknown."""
        if task_type not in self._tasks:
            raise KeyError(
                f"No task registered for type '{task_type}'; "
                f"registered: {self.list_tasks()}"
            )
        return self._tasks[task_type]

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))
