"""Schedule validation and next-run computation.

Each schedule is expressed as an APScheduler ``CronTrigger`` in the
schedule's own timezone. The next run is the trigger's first fire time
strictly after ``now``; given the same ``(schedule, now)`` pair the result
is always the same.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from cadence.scheduler.errors import ValidationError
from cadence.scheduler.models import (
    BaseSchedule,
    CustomSchedule,
    MonthlySchedule,
    WeeklySchedule,
)

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

# Index 0 is Sunday.
_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_time(value: str) -> tuple[int, int]:
    """Split an ``HH:MM`` string into ``(hour, minute)``."""
    match = _TIME_RE.match(value) if isinstance(value, str) else None
    if match is None:
        msg = f"Invalid time {value!r}, expected HH:MM"
        raise ValidationError(msg)
    return int(match.group(1)), int(match.group(2))


def resolve_timezone(name: str) -> ZoneInfo:
    if not name:
        msg = "Timezone must not be empty"
        raise ValidationError(msg)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"Unknown timezone: {name!r}"
        raise ValidationError(msg) from exc


def validate_schedule(schedule: BaseSchedule) -> None:
    """Check a schedule's format and range rules. Disabled schedules pass."""
    if not schedule.enabled:
        return

    parse_time(schedule.time)
    resolve_timezone(schedule.timezone)

    if schedule.max_executions is not None and (
        not _is_int(schedule.max_executions) or schedule.max_executions < 1
    ):
        msg = "max_executions must be a positive integer"
        raise ValidationError(msg)

    if isinstance(schedule, WeeklySchedule):
        if not _is_int(schedule.day_of_week) or not 0 <= schedule.day_of_week <= 6:
            msg = "Weekly schedule requires day_of_week between 0 and 6"
            raise ValidationError(msg)
    elif isinstance(schedule, MonthlySchedule):
        if not _is_int(schedule.day_of_month) or not 1 <= schedule.day_of_month <= 31:
            msg = "Monthly schedule requires day_of_month between 1 and 31"
            raise ValidationError(msg)
    elif isinstance(schedule, CustomSchedule):
        if not schedule.cron_expression or not schedule.cron_expression.strip():
            msg = "Custom schedule requires a cron expression"
            raise ValidationError(msg)
        build_trigger(schedule)


def build_trigger(schedule: BaseSchedule) -> CronTrigger:
    """Convert a schedule into an APScheduler cron trigger."""
    tz = resolve_timezone(schedule.timezone)

    if isinstance(schedule, CustomSchedule):
        try:
            return CronTrigger.from_crontab(schedule.cron_expression.strip(), timezone=tz)
        except ValueError as exc:
            msg = f"Invalid cron expression {schedule.cron_expression!r}: {exc}"
            raise ValidationError(msg) from exc

    hour, minute = parse_time(schedule.time)
    fields: dict[str, int | str] = {"hour": hour, "minute": minute, "second": 0}
    if isinstance(schedule, WeeklySchedule):
        fields["day_of_week"] = _DAY_NAMES[schedule.day_of_week]
    elif isinstance(schedule, MonthlySchedule):
        fields["day"] = schedule.day_of_month
    return CronTrigger(timezone=tz, **fields)


def compute_next_run(schedule: BaseSchedule, now: datetime) -> datetime:
    """Return the first instant after *now* at which *schedule* fires.

    *now* must be timezone-aware. ``once`` and ``daily`` schedules fire at
    ``time`` today, or tomorrow when that has passed. Weekly schedules fire
    on the next ``day_of_week`` (a week out when today's slot has passed).
    Monthly schedules fire on ``day_of_month`` this month or the next month
    that has that day.
    """
    trigger = build_trigger(schedule)
    fire_time = trigger.get_next_fire_time(None, now)
    if fire_time is not None and fire_time <= now:
        fire_time = trigger.get_next_fire_time(None, fire_time + timedelta(seconds=1))
    if fire_time is None:
        msg = "Schedule has no future run time"
        raise ValidationError(msg)
    return fire_time
