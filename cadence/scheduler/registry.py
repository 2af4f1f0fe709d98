"""TaskRegistry — in-memory storage for scheduled tasks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cadence.scheduler.models import ScheduledTask, TaskStatus

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Holds scheduled tasks keyed by id, in insertion order.

    Not synchronized; the owning TaskScheduler serializes access.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[ScheduledTask]:
        return iter(list(self._tasks.values()))

    def add_task(self, task: ScheduledTask) -> ScheduledTask:
        """Insert a new task. Raises ValueError on a duplicate id."""
        if task.id in self._tasks:
            msg = f"Task '{task.id}' is already registered"
            raise ValueError(msg)
        self._tasks[task.id] = task
        logger.debug("Registered task: %s (%s)", task.name, task.id)
        return task

    def get_task(self, task_id: str) -> ScheduledTask | None:
        """Fetch a task by ID, or None if not found."""
        return self._tasks.get(task_id)

    def list_tasks(self, user_id: str | None = None) -> list[ScheduledTask]:
        """Return all tasks, optionally only those owned by *user_id*."""
        if user_id is None:
            return list(self._tasks.values())
        return [t for t in self._tasks.values() if t.user_id == user_id]

    def list_by_status(self, status: TaskStatus) -> list[ScheduledTask]:
        return [t for t in self._tasks.values() if t.status == status]

    def remove_task(self, task_id: str) -> bool:
        """Remove a task. Returns True if it was present."""
        removed = self._tasks.pop(task_id, None) is not None
        if removed:
            logger.debug("Unregistered task: %s", task_id)
        return removed
