"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from cadence.scheduler.engine import TaskScheduler
from cadence.scheduler.models import ExecutionStatus


class FakeClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def orchestrator() -> AsyncMock:
    o = AsyncMock()
    o.start_execution = AsyncMock(return_value="exec-1")
    o.get_execution_status = AsyncMock(return_value=ExecutionStatus(status="completed"))
    return o


@pytest.fixture
def notifier() -> AsyncMock:
    n = AsyncMock()
    n.send_system_alert = AsyncMock(return_value=None)
    return n


@pytest.fixture
def configurations() -> AsyncMock:
    c = AsyncMock()
    c.get_configuration = AsyncMock(
        return_value=SimpleNamespace(id="cfg-1", name="Spring campaign")
    )
    return c


@pytest.fixture
def clock() -> FakeClock:
    # Wednesday
    return FakeClock(datetime(2025, 1, 1, 8, 0, tzinfo=UTC))


@pytest.fixture
def engine(
    orchestrator: AsyncMock, notifier: AsyncMock, configurations: AsyncMock
) -> TaskScheduler:
    """Engine on the real clock, for tests that start APScheduler."""
    return TaskScheduler(
        orchestrator=orchestrator,
        notifier=notifier,
        configurations=configurations,
        timezone="UTC",
        monitor_delay=0,
    )


@pytest.fixture
def clocked_engine(
    orchestrator: AsyncMock,
    notifier: AsyncMock,
    configurations: AsyncMock,
    clock: FakeClock,
) -> TaskScheduler:
    """Engine on a fake clock. Never started, so no timers are armed."""
    return TaskScheduler(
        orchestrator=orchestrator,
        notifier=notifier,
        configurations=configurations,
        timezone="UTC",
        monitor_delay=0,
        clock=clock,
    )

