"""Tests for TaskExecutor — orchestrator and alerting seam."""

from unittest.mock import AsyncMock

import pytest

from cadence.scheduler.collaborators import (
    ConfigurationLookup,
    ExecutionOrchestrator,
    NotificationService,
)
from cadence.scheduler.errors import DispatchError, MonitorError
from cadence.scheduler.executor import TaskExecutor
from cadence.scheduler.models import DailySchedule, ExecutionStatus, ScheduledTask


@pytest.fixture
def executor(orchestrator: AsyncMock, notifier: AsyncMock) -> TaskExecutor:
    return TaskExecutor(orchestrator=orchestrator, notifier=notifier)


def _make_task() -> ScheduledTask:
    return ScheduledTask(
        id="task1",
        configuration_id="cfg-1",
        user_id="user-1",
        name="Spring campaign - scheduled task",
        schedule=DailySchedule(time="09:00", timezone="UTC"),
    )


# -- start ---------------------------------------------------------------------


async def test_start_returns_execution_id(
    executor: TaskExecutor, orchestrator: AsyncMock
) -> None:
    assert await executor.start(_make_task()) == "exec-1"
    orchestrator.start_execution.assert_awaited_once_with("cfg-1", "user-1")


async def test_start_wraps_orchestrator_error(
    executor: TaskExecutor, orchestrator: AsyncMock
) -> None:
    cause = ConnectionError("orchestrator unreachable")
    orchestrator.start_execution.side_effect = cause

    with pytest.raises(DispatchError, match="orchestrator unreachable") as exc_info:
        await executor.start(_make_task())
    assert exc_info.value.__cause__ is cause


async def test_start_rejects_empty_execution_id(
    executor: TaskExecutor, orchestrator: AsyncMock
) -> None:
    orchestrator.start_execution.return_value = ""
    with pytest.raises(DispatchError, match="empty execution id"):
        await executor.start(_make_task())


# -- fetch_status --------------------------------------------------------------


async def test_fetch_status(executor: TaskExecutor, orchestrator: AsyncMock) -> None:
    orchestrator.get_execution_status.return_value = ExecutionStatus(status="failed", error="boom")
    status = await executor.fetch_status("exec-1")
    assert status == ExecutionStatus(status="failed", error="boom")


async def test_fetch_status_unknown_id(executor: TaskExecutor, orchestrator: AsyncMock) -> None:
    orchestrator.get_execution_status.return_value = None
    assert await executor.fetch_status("expired") is None


async def test_fetch_status_error_becomes_monitor_error(
    executor: TaskExecutor, orchestrator: AsyncMock
) -> None:
    orchestrator.get_execution_status.side_effect = TimeoutError()
    with pytest.raises(MonitorError, match="exec-1"):
        await executor.fetch_status("exec-1")


# -- send_failure_alert --------------------------------------------------------


async def test_failure_alert_contents(executor: TaskExecutor, notifier: AsyncMock) -> None:
    await executor.send_failure_alert(_make_task(), DispatchError("API down"))

    notifier.send_system_alert.assert_awaited_once()
    alert = notifier.send_system_alert.call_args[0][0]
    assert alert.type == "error"
    assert "API down" in alert.message
    assert "Spring campaign" in alert.message
    assert alert.metadata == {
        "task_id": "task1",
        "configuration_id": "cfg-1",
        "error": "API down",
    }
    assert alert.timestamp.tzinfo is not None


async def test_failure_alert_delivery_error_is_swallowed(
    executor: TaskExecutor, notifier: AsyncMock
) -> None:
    notifier.send_system_alert.side_effect = RuntimeError("smtp down")
    # Should not raise
    await executor.send_failure_alert(_make_task(), DispatchError("API down"))


# -- Collaborator protocols ----------------------------------------------------


class _Orchestrator:
    async def start_execution(self, configuration_id: str, user_id: str) -> str:
        return "exec-42"

    async def get_execution_status(self, execution_id: str) -> ExecutionStatus | None:
        return ExecutionStatus(status="completed")


class _Notifier:
    def __init__(self) -> None:
        self.alerts = []

    async def send_system_alert(self, alert) -> None:
        self.alerts.append(alert)


def test_protocols_accept_duck_typed_services() -> None:
    assert isinstance(_Orchestrator(), ExecutionOrchestrator)
    assert isinstance(_Notifier(), NotificationService)
    assert not isinstance(object(), ConfigurationLookup)


async def test_executor_with_plain_services() -> None:
    notifier = _Notifier()
    executor = TaskExecutor(orchestrator=_Orchestrator(), notifier=notifier)

    assert await executor.start(_make_task()) == "exec-42"
    await executor.send_failure_alert(_make_task(), DispatchError("x"))
    assert len(notifier.alerts) == 1
