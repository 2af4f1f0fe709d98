"""Recurring task scheduler — models, recurrence rules, execution, and timers."""

from cadence.scheduler.engine import TaskScheduler
from cadence.scheduler.errors import (
    DispatchError,
    MonitorError,
    NotFoundError,
    SchedulerError,
    ValidationError,
)
from cadence.scheduler.executor import TaskExecutor
from cadence.scheduler.models import (
    CustomSchedule,
    DailySchedule,
    MonthlySchedule,
    OnceSchedule,
    ScheduleConfig,
    ScheduledTask,
    SchedulerStatus,
    TaskExecutionResult,
    TaskStats,
    WeeklySchedule,
)
from cadence.scheduler.recurrence import compute_next_run, validate_schedule
from cadence.scheduler.registry import TaskRegistry

__all__ = [
    "TaskScheduler",
    "TaskExecutor",
    "TaskRegistry",
    "ScheduledTask",
    "ScheduleConfig",
    "OnceSchedule",
    "DailySchedule",
    "WeeklySchedule",
    "MonthlySchedule",
    "CustomSchedule",
    "TaskExecutionResult",
    "TaskStats",
    "SchedulerStatus",
    "compute_next_run",
    "validate_schedule",
    "SchedulerError",
    "NotFoundError",
    "ValidationError",
    "DispatchError",
    "MonitorError",
]
