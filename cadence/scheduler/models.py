"""Scheduler data models — schedule variants, tasks, and result records."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar, Literal

from cadence.scheduler.errors import ValidationError

TaskStatus = Literal["active", "paused", "stopped"]
TASK_STATUSES: tuple[str, ...] = ("active", "paused", "stopped")

ExecutionOutcome = Literal["success", "failure", "cancelled"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _coerce_datetime(value: datetime | str | None) -> datetime | None:
    """Accept a datetime or ISO 8601 string; naive values are read as UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            msg = f"Invalid end date: {value!r}"
            raise ValidationError(msg) from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


# -- Schedule variants ---------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class BaseSchedule:
    """Fields shared by every schedule type.

    Attributes:
        time: Wall-clock time of day, ``HH:MM``.
        timezone: IANA timezone the time is interpreted in.
        enabled: Disabled schedules are stored but never validated or armed.
        end_date: Instant after which the task is stopped.
        max_executions: Number of executions after which the task is stopped.
    """

    type: ClassVar[str] = ""

    time: str
    timezone: str
    enabled: bool = True
    end_date: datetime | None = None
    max_executions: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "end_date", _coerce_datetime(self.end_date))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain mapping with a ``type`` key."""
        return {"type": self.type, **asdict(self)}


@dataclass(frozen=True, kw_only=True)
class OnceSchedule(BaseSchedule):
    type: ClassVar[str] = "once"


@dataclass(frozen=True, kw_only=True)
class DailySchedule(BaseSchedule):
    type: ClassVar[str] = "daily"


@dataclass(frozen=True, kw_only=True)
class WeeklySchedule(BaseSchedule):
    """Runs once a week; ``day_of_week`` is 0 (Sunday) through 6 (Saturday)."""

    type: ClassVar[str] = "weekly"

    day_of_week: int


@dataclass(frozen=True, kw_only=True)
class MonthlySchedule(BaseSchedule):
    """Runs once a month on ``day_of_month`` (1-31); shorter months are skipped."""

    type: ClassVar[str] = "monthly"

    day_of_month: int


@dataclass(frozen=True, kw_only=True)
class CustomSchedule(BaseSchedule):
    """Runs on a 5-field crontab expression; ``time`` is not used."""

    type: ClassVar[str] = "custom"

    cron_expression: str


ScheduleConfig = OnceSchedule | DailySchedule | WeeklySchedule | MonthlySchedule | CustomSchedule

SCHEDULE_TYPES: dict[str, type[BaseSchedule]] = {
    cls.type: cls
    for cls in (OnceSchedule, DailySchedule, WeeklySchedule, MonthlySchedule, CustomSchedule)
}

# Fields only present on one variant, keyed by schedule type.
_VARIANT_FIELDS = {
    "weekly": "day_of_week",
    "monthly": "day_of_month",
    "custom": "cron_expression",
}
_COMMON_FIELDS = ("time", "timezone", "enabled", "end_date", "max_executions")


def schedule_from_dict(data: Mapping[str, Any]) -> ScheduleConfig:
    """Build the schedule variant named by ``data["type"]``.

    Keys belonging to other variants are ignored, so a merged mapping can
    switch type. Raises ValidationError for an unknown type or a missing
    required key.
    """
    schedule_type = data.get("type")
    cls = SCHEDULE_TYPES.get(schedule_type)  # type: ignore[arg-type]
    if cls is None:
        msg = f"Unknown schedule type: {schedule_type!r}"
        raise ValidationError(msg)

    kwargs = {key: data[key] for key in _COMMON_FIELDS if key in data}
    for key in ("time", "timezone"):
        if key not in kwargs:
            msg = f"Schedule is missing '{key}'"
            raise ValidationError(msg)

    variant_field = _VARIANT_FIELDS.get(schedule_type)
    if variant_field:
        if data.get(variant_field) is None:
            msg = f"{schedule_type} schedule requires '{variant_field}'"
            raise ValidationError(msg)
        kwargs[variant_field] = data[variant_field]

    return cls(**kwargs)  # type: ignore[return-value]


def merge_schedule(schedule: ScheduleConfig, overrides: Mapping[str, Any]) -> ScheduleConfig:
    """Shallow-merge *overrides* onto *schedule* and rebuild the variant."""
    return schedule_from_dict({**schedule.to_dict(), **overrides})


# -- Tasks ---------------------------------------------------------------------


@dataclass
class ScheduledTask:
    """A unit of recurring work owned by the scheduler.

    Attributes:
        id: Unique identifier (UUID hex).
        configuration_id: External configuration the task executes.
        user_id: Owning user.
        name: Human-readable name.
        schedule: Recurrence rule.
        status: ``"active"``, ``"paused"`` or ``"stopped"``.
        next_run: Next instant the task fires (None for disabled schedules).
        last_run: Instant of the most recent dispatch.
        last_execution_id: Orchestrator id of the most recent execution.
        execution_count: Dispatch attempts, successful or not.
        success_count: Executions the orchestrator reported as completed.
        failure_count: Failed dispatches plus executions reported as failed.
    """

    id: str
    configuration_id: str
    user_id: str
    name: str
    schedule: ScheduleConfig
    status: TaskStatus = "active"
    next_run: datetime | None = None
    last_run: datetime | None = None
    last_execution_id: str | None = None
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_one_off(self) -> bool:
        return self.schedule.type == "once"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict with ISO 8601 timestamps."""
        data = asdict(self)
        data["schedule"] = self.schedule.to_dict()
        for key, value in list(data.items()):
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        end_date = data["schedule"]["end_date"]
        if end_date is not None:
            data["schedule"]["end_date"] = end_date.isoformat()
        return data


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex


# -- Collaborator records ------------------------------------------------------


@dataclass
class ExecutionStatus:
    """Status of an execution as reported by the orchestrator."""

    status: Literal["pending", "completed", "failed"]
    error: str | None = None


@dataclass
class SystemAlert:
    """Alert handed to the notification service."""

    type: Literal["error", "warning", "info"]
    title: str
    message: str
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


# -- Result records ------------------------------------------------------------


@dataclass
class TaskExecutionResult:
    """Outcome of a monitored execution. Not stored by the scheduler."""

    task_id: str
    execution_id: str
    start_time: datetime
    end_time: datetime
    status: ExecutionOutcome
    error: str | None = None


@dataclass
class TaskStats:
    total: int = 0
    active: int = 0
    paused: int = 0
    stopped: int = 0
    total_executions: int = 0
    success_rate: float = 0.0
    next_execution: datetime | None = None


@dataclass
class SchedulerStatus:
    is_running: bool
    total_tasks: int
    active_tasks: int
    active_timers: int
    uptime: float
