"""TaskScheduler — task registry, timers, dispatch, and reconciliation."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_STOPPED
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cadence.config import settings
from cadence.scheduler.errors import (
    DispatchError,
    MonitorError,
    NotFoundError,
    ValidationError,
)
from cadence.scheduler.executor import TaskExecutor
from cadence.scheduler.models import (
    TASK_STATUSES,
    BaseSchedule,
    ScheduledTask,
    SchedulerStatus,
    TaskExecutionResult,
    TaskStats,
    make_task_id,
    merge_schedule,
    schedule_from_dict,
)
from cadence.scheduler.recurrence import compute_next_run, validate_schedule
from cadence.scheduler.registry import TaskRegistry

if TYPE_CHECKING:
    from collections.abc import Callable

    from cadence.scheduler.collaborators import (
        ConfigurationLookup,
        ExecutionOrchestrator,
        NotificationService,
    )
    from cadence.scheduler.models import ScheduleConfig, TaskStatus

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "__reconcile__"

_OUTCOMES = {"completed": "success", "failed": "failure"}


def _configuration_name(configuration: Any, fallback: str) -> str:
    if isinstance(configuration, Mapping):
        name = configuration.get("name")
    else:
        name = getattr(configuration, "name", None)
    return str(name) if name else fallback


class TaskScheduler:
    """Runs scheduled tasks on APScheduler timers.

    Each active task with an enabled schedule has at most one ``DateTrigger``
    job (job id = task id) armed for its ``next_run``. A periodic sweep job
    re-arms tasks that lost their timer and stops tasks whose end date or
    execution cap has been reached. All task state is mutated under a single
    ``asyncio.Lock``; calls out to collaborators happen outside it.

    Args:
        orchestrator: Starts executions and reports their status.
        notifier: Receives alerts for failed timer-driven executions.
        configurations: Looks up configurations when tasks are created.
        timezone: Timezone for the APScheduler instance (default from settings).
        sweep_interval: Seconds between reconciliation sweeps.
        monitor_delay: Seconds to wait before checking an execution's status.
        retention: How long stopped tasks are kept before ``cleanup()``
            removes them.
        clock: Returns the current aware datetime (default: UTC now).
    """

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        notifier: NotificationService,
        configurations: ConfigurationLookup,
        *,
        timezone: str | None = None,
        sweep_interval: float | None = None,
        monitor_delay: float | None = None,
        retention: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._executor = TaskExecutor(orchestrator, notifier)
        self._configurations = configurations
        self._registry = TaskRegistry()
        self._timezone = timezone or settings.scheduler_timezone
        self._sweep_interval = (
            sweep_interval
            if sweep_interval is not None
            else settings.scheduler_sweep_interval_seconds
        )
        self._monitor_delay = (
            monitor_delay
            if monitor_delay is not None
            else settings.scheduler_monitor_delay_seconds
        )
        self._retention = (
            retention
            if retention is not None
            else timedelta(days=settings.scheduler_retention_days)
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._lock = asyncio.Lock()
        self._dispatching: set[str] = set()
        self._monitors: set[asyncio.Task] = set()
        self._running = False
        self._started_at: float | None = None

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Arm timers for all active tasks and start the reconciliation sweep."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        if self._scheduler.state == STATE_STOPPED:
            self._scheduler.start()
        else:
            self._scheduler.resume()
        self._running = True
        self._started_at = time.monotonic()

        async with self._lock:
            armed = sum(1 for task in self._registry.list_by_status("active") if self._arm(task))
        self._scheduler.add_job(
            self.reconcile,
            trigger=IntervalTrigger(seconds=self._sweep_interval),
            id=SWEEP_JOB_ID,
            name="reconcile",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(
            "Scheduler started with %d armed task(s) (tz=%s, sweep=%ss)",
            armed,
            self._timezone,
            self._sweep_interval,
        )

    async def stop(self) -> None:
        """Cancel every timer and the sweep. Task state is left untouched.

        Dispatches already in progress and their monitors run to completion.
        """
        if not self._running:
            return
        self._running = False
        self._started_at = None
        self._scheduler.remove_all_jobs()
        self._scheduler.pause()
        logger.info("Scheduler stopped")

    # -- Task management -------------------------------------------------------

    async def create_task(
        self,
        configuration_id: str,
        user_id: str,
        schedule: ScheduleConfig | Mapping[str, Any],
        *,
        name: str | None = None,
    ) -> str:
        """Register a new active task and return its id.

        Raises NotFoundError if the configuration does not exist and
        ValidationError if the schedule is invalid.
        """
        configuration = await self._configurations.get_configuration(configuration_id)
        if configuration is None:
            msg = f"Configuration not found: {configuration_id}"
            raise NotFoundError(msg)

        if not isinstance(schedule, BaseSchedule):
            schedule = schedule_from_dict(schedule)
        validate_schedule(schedule)

        now = self._clock()
        task = ScheduledTask(
            id=make_task_id(),
            configuration_id=configuration_id,
            user_id=user_id,
            name=name or f"{_configuration_name(configuration, configuration_id)} - scheduled task",
            schedule=schedule,
            next_run=self._next_run(schedule, now),
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._registry.add_task(task)
            self._arm(task)
        logger.info("Created task: %s (%s) next_run=%s", task.name, task.id, task.next_run)
        return task.id

    async def update_task(
        self,
        task_id: str,
        *,
        schedule: ScheduleConfig | Mapping[str, Any] | None = None,
        status: TaskStatus | None = None,
    ) -> None:
        """Replace or merge the schedule and/or set the status.

        A mapping is shallow-merged onto the current schedule; a schedule
        object replaces it. Nothing changes unless every check passes.
        Stopped tasks cannot be moved back to active or paused.
        """
        async with self._lock:
            task = self._require(task_id)

            if status is not None:
                if status not in TASK_STATUSES:
                    msg = f"Invalid status: {status!r}"
                    raise ValidationError(msg)
                if task.status == "stopped" and status != "stopped":
                    msg = f"Task {task_id} is stopped and cannot be restarted"
                    raise ValidationError(msg)

            now = self._clock()
            new_schedule = task.schedule
            next_run = task.next_run
            if schedule is not None:
                if isinstance(schedule, BaseSchedule):
                    new_schedule = schedule
                else:
                    new_schedule = merge_schedule(task.schedule, schedule)
                validate_schedule(new_schedule)
                next_run = self._next_run(new_schedule, now)

            new_status = status or task.status
            if (
                new_status == "active"
                and new_schedule.enabled
                and (next_run is None or next_run <= now)
            ):
                next_run = compute_next_run(new_schedule, now)

            task.schedule = new_schedule
            task.next_run = next_run
            task.status = new_status
            task.touch(now)

            self._cancel_timer(task_id)
            self._arm(task)
        logger.info("Updated task: %s status=%s next_run=%s", task_id, new_status, next_run)

    async def delete_task(self, task_id: str) -> None:
        """Cancel a task's timer and remove it from the registry."""
        async with self._lock:
            self._require(task_id)
            self._cancel_timer(task_id)
            self._registry.remove_task(task_id)
        logger.info("Deleted task: %s", task_id)

    async def pause_task(self, task_id: str) -> None:
        await self.update_task(task_id, status="paused")

    async def resume_task(self, task_id: str) -> None:
        await self.update_task(task_id, status="active")

    def get_tasks(self, user_id: str | None = None) -> list[ScheduledTask]:
        """Return copies of all tasks, optionally filtered by owner."""
        return [replace(task) for task in self._registry.list_tasks(user_id)]

    def get_task(self, task_id: str) -> ScheduledTask | None:
        task = self._registry.get_task(task_id)
        return replace(task) if task is not None else None

    async def execute_now(self, task_id: str) -> str:
        """Start an execution immediately, outside the task's schedule.

        Returns the execution id. A DispatchError is counted as a failure
        and re-raised.
        """
        async with self._lock:
            snapshot = replace(self._require(task_id))

        started_at = self._clock()
        try:
            execution_id = await self._executor.start(snapshot)
        except DispatchError:
            logger.exception("Manual execution failed: '%s' (%s)", snapshot.name, task_id)
            async with self._lock:
                task = self._registry.get_task(task_id)
                if task is not None:
                    self._record_failure(task, self._clock())
            raise

        async with self._lock:
            task = self._registry.get_task(task_id)
            if task is not None:
                self._record_start(task, execution_id, started_at)
                self._stop_if_finished(task, self._clock())
        self._spawn_monitor(task_id, execution_id, started_at)
        logger.info("Manually executed task: %s -> %s", task_id, execution_id)
        return execution_id

    # -- Reporting -------------------------------------------------------------

    def get_task_stats(self, user_id: str | None = None) -> TaskStats:
        """Aggregate counts and success rate over the (filtered) task set."""
        tasks = self._registry.list_tasks(user_id)
        total_executions = sum(t.execution_count for t in tasks)
        total_successes = sum(t.success_count for t in tasks)
        upcoming = [t.next_run for t in tasks if t.is_active and t.next_run is not None]
        return TaskStats(
            total=len(tasks),
            active=sum(1 for t in tasks if t.status == "active"),
            paused=sum(1 for t in tasks if t.status == "paused"),
            stopped=sum(1 for t in tasks if t.status == "stopped"),
            total_executions=total_executions,
            success_rate=(
                total_successes / total_executions * 100 if total_executions else 0.0
            ),
            next_execution=min(upcoming, default=None),
        )

    def get_scheduler_status(self) -> SchedulerStatus:
        timers = [job for job in self._scheduler.get_jobs() if job.id != SWEEP_JOB_ID]
        uptime = 0.0
        if self._running and self._started_at is not None:
            uptime = time.monotonic() - self._started_at
        return SchedulerStatus(
            is_running=self._running,
            total_tasks=len(self._registry),
            active_tasks=len(self._registry.list_by_status("active")),
            active_timers=len(timers),
            uptime=uptime,
        )

    # -- Maintenance -----------------------------------------------------------

    async def reconcile(self) -> int:
        """Run one reconciliation pass. Returns the number of dispatches.

        Stops tasks whose execution cap or end date has been reached, then
        dispatches overdue active tasks that have no timer and re-arms the
        rest. Runs every ``sweep_interval`` seconds while started.
        """
        due: list[tuple[str, datetime]] = []
        async with self._lock:
            now = self._clock()
            for task in self._registry:
                if self._stop_if_finished(task, now):
                    continue
                if not self._running or not task.is_active:
                    continue
                if not task.schedule.enabled or task.next_run is None:
                    continue
                if task.id in self._dispatching or self._has_timer(task.id):
                    continue
                if task.next_run <= now:
                    due.append((task.id, task.next_run))
                else:
                    self._arm(task)
                    logger.info("Re-armed lost timer for task %s", task.id)

        dispatched = 0
        for task_id, scheduled_for in due:
            if await self._dispatch(task_id, scheduled_for):
                dispatched += 1
        return dispatched

    async def cleanup(self) -> int:
        """Remove stopped tasks not updated within the retention window."""
        async with self._lock:
            cutoff = self._clock() - self._retention
            expired = [
                task.id
                for task in self._registry
                if task.status == "stopped" and task.updated_at < cutoff
            ]
            for task_id in expired:
                self._cancel_timer(task_id)
                self._registry.remove_task(task_id)
                logger.info("Removed expired task: %s", task_id)
        return len(expired)

    async def wait_for_monitors(self) -> list[TaskExecutionResult]:
        """Wait for pending execution monitors and return their results."""
        pending = list(self._monitors)
        if not pending:
            return []
        results = await asyncio.gather(*pending)
        return [result for result in results if result is not None]

    # -- Dispatch --------------------------------------------------------------

    async def _run_task(self, task_id: str, scheduled_for: datetime) -> None:
        """Callback invoked by APScheduler when a task's timer fires."""
        await self._dispatch(task_id, scheduled_for)

    async def _dispatch(self, task_id: str, scheduled_for: datetime) -> bool:
        """Start one execution of a task for the run due at *scheduled_for*.

        Returns False without dispatching when the task is gone, inactive,
        already being dispatched, or has moved on to a different next run.
        """
        async with self._lock:
            task = self._registry.get_task(task_id)
            if (
                task is None
                or not task.is_active
                or task.next_run != scheduled_for
                or task_id in self._dispatching
            ):
                logger.debug("Skipping dispatch of task %s for %s", task_id, scheduled_for)
                return False
            self._cancel_timer(task_id)
            if self._stop_if_finished(task, self._clock()):
                return False
            self._dispatching.add(task_id)
            snapshot = replace(task)

        started_at = self._clock()
        execution_id: str | None = None
        error: DispatchError | None = None
        try:
            try:
                execution_id = await self._executor.start(snapshot)
            except DispatchError as exc:
                error = exc
                logger.exception(
                    "Scheduled execution failed: '%s' (%s)", snapshot.name, task_id
                )

            async with self._lock:
                task = self._registry.get_task(task_id)
                if task is None:
                    logger.info("Task %s was deleted during dispatch", task_id)
                else:
                    now = self._clock()
                    if execution_id is None:
                        self._record_failure(task, now)
                    else:
                        self._record_start(task, execution_id, started_at)
                    self._advance(task, now)
        finally:
            self._dispatching.discard(task_id)

        if error is not None:
            await self._executor.send_failure_alert(snapshot, error)
        else:
            self._spawn_monitor(task_id, execution_id, started_at)
            logger.info("Dispatched task '%s' (%s) -> %s", snapshot.name, task_id, execution_id)
        return True

    def _advance(self, task: ScheduledTask, now: datetime) -> None:
        """Post-dispatch transition: stop, or compute and arm the next run."""
        if task.is_one_off:
            task.status = "stopped"
            task.touch(now)
            logger.info("One-off task finished: %s", task.id)
            return
        if self._stop_if_finished(task, now):
            return
        if task.schedule.enabled:
            task.next_run = compute_next_run(task.schedule, now)
        self._arm(task)

    def _stop_if_finished(self, task: ScheduledTask, now: datetime) -> bool:
        """Stop *task* if its execution cap or end date has been reached."""
        if task.status == "stopped":
            return False
        schedule = task.schedule
        if schedule.max_executions is not None and task.execution_count >= schedule.max_executions:
            reason = f"reached {schedule.max_executions} execution(s)"
        elif schedule.end_date is not None and now > schedule.end_date:
            reason = f"end date {schedule.end_date.isoformat()} passed"
        else:
            return False
        task.status = "stopped"
        task.touch(now)
        self._cancel_timer(task.id)
        logger.info("Stopped task '%s' (%s): %s", task.name, task.id, reason)
        return True

    def _record_start(self, task: ScheduledTask, execution_id: str, started_at: datetime) -> None:
        task.last_run = started_at
        task.last_execution_id = execution_id
        task.execution_count += 1
        task.touch(started_at)

    def _record_failure(self, task: ScheduledTask, now: datetime) -> None:
        task.execution_count += 1
        task.failure_count += 1
        task.touch(now)

    # -- Monitoring ------------------------------------------------------------

    def _spawn_monitor(self, task_id: str, execution_id: str, started_at: datetime) -> None:
        monitor = asyncio.create_task(
            self._monitor(task_id, execution_id, started_at),
            name=f"monitor:{execution_id}",
        )
        self._monitors.add(monitor)
        monitor.add_done_callback(self._monitors.discard)

    async def _monitor(
        self, task_id: str, execution_id: str, started_at: datetime
    ) -> TaskExecutionResult | None:
        """Record the outcome of an execution after ``monitor_delay`` seconds."""
        await asyncio.sleep(self._monitor_delay)
        try:
            status = await self._executor.fetch_status(execution_id)
        except MonitorError:
            logger.warning(
                "Could not check execution %s of task %s", execution_id, task_id, exc_info=True
            )
            return None

        outcome = _OUTCOMES.get(status.status) if status is not None else None
        if outcome is None:
            logger.debug(
                "Execution %s of task %s has no final status yet", execution_id, task_id
            )
            return None

        async with self._lock:
            task = self._registry.get_task(task_id)
            if task is None:
                logger.debug("Task %s no longer exists; dropping result of %s", task_id, execution_id)
            elif outcome == "success":
                task.success_count += 1
            else:
                task.failure_count += 1

        return TaskExecutionResult(
            task_id=task_id,
            execution_id=execution_id,
            start_time=started_at,
            end_time=self._clock(),
            status=outcome,
            error=status.error,
        )

    # -- Timers ----------------------------------------------------------------

    def _arm(self, task: ScheduledTask) -> bool:
        """Create or replace the task's timer. Returns True if one was armed."""
        if (
            not self._running
            or not task.is_active
            or not task.schedule.enabled
            or task.next_run is None
        ):
            return False
        self._scheduler.add_job(
            self._run_task,
            trigger=DateTrigger(run_date=task.next_run),
            id=task.id,
            name=task.name,
            args=[task.id, task.next_run],
            misfire_grace_time=None,
            replace_existing=True,
        )
        return True

    def _cancel_timer(self, task_id: str) -> None:
        if self._has_timer(task_id):
            self._scheduler.remove_job(task_id)

    def _has_timer(self, task_id: str) -> bool:
        return self._scheduler.get_job(task_id) is not None

    # -- Internal --------------------------------------------------------------

    def _require(self, task_id: str) -> ScheduledTask:
        task = self._registry.get_task(task_id)
        if task is None:
            msg = f"Task not found: {task_id}"
            raise NotFoundError(msg)
        return task

    @staticmethod
    def _next_run(schedule: ScheduleConfig, now: datetime) -> datetime | None:
        if not schedule.enabled:
            return None
        return compute_next_run(schedule, now)
