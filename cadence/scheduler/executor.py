"""TaskExecutor — talks to the execution orchestrator and alerting service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cadence.scheduler.errors import DispatchError, MonitorError
from cadence.scheduler.models import SystemAlert

if TYPE_CHECKING:
    from cadence.scheduler.collaborators import ExecutionOrchestrator, NotificationService
    from cadence.scheduler.models import ExecutionStatus, ScheduledTask

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Starts executions for scheduled tasks and reports failures.

    Args:
        orchestrator: Starts executions and reports their status.
        notifier: Receives a system alert for every failed timer-driven run.
    """

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        notifier: NotificationService,
    ) -> None:
        self._orchestrator = orchestrator
        self._notifier = notifier

    async def start(self, task: ScheduledTask) -> str:
        """Ask the orchestrator to start a run. Returns the execution id.

        Raises DispatchError wrapping whatever the orchestrator raised.
        """
        logger.info(
            "Starting execution for task '%s' (%s) config=%s user=%s",
            task.name,
            task.id,
            task.configuration_id,
            task.user_id,
        )
        try:
            execution_id = await self._orchestrator.start_execution(
                task.configuration_id, task.user_id
            )
        except Exception as exc:
            raise DispatchError(str(exc) or type(exc).__name__) from exc
        if not execution_id:
            msg = "Orchestrator returned an empty execution id"
            raise DispatchError(msg)
        return str(execution_id)

    async def fetch_status(self, execution_id: str) -> ExecutionStatus | None:
        """Return the orchestrator's status for *execution_id*.

        Raises MonitorError if the lookup itself fails.
        """
        try:
            return await self._orchestrator.get_execution_status(execution_id)
        except Exception as exc:
            msg = f"Status check failed for execution {execution_id}: {exc}"
            raise MonitorError(msg) from exc

    async def send_failure_alert(self, task: ScheduledTask, error: Exception) -> None:
        """Alert about a failed run. Delivery errors are logged, never raised."""
        alert = SystemAlert(
            type="error",
            title="Scheduled task failed",
            message=f"Task '{task.name}' failed: {error}",
            metadata={
                "task_id": task.id,
                "configuration_id": task.configuration_id,
                "error": str(error),
            },
        )
        try:
            await self._notifier.send_system_alert(alert)
        except Exception:
            logger.exception("Failed to send alert for task '%s' (%s)", task.name, task.id)
