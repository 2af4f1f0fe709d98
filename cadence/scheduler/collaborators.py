"""Protocols for the services the scheduler depends on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cadence.scheduler.models import ExecutionStatus, SystemAlert


@runtime_checkable
class ExecutionOrchestrator(Protocol):
    """Performs the work a task represents and reports its outcome."""

    async def start_execution(self, configuration_id: str, user_id: str) -> str:
        """Start an execution and return its id. Raises on failure."""
        ...

    async def get_execution_status(self, execution_id: str) -> ExecutionStatus | None:
        """Return the execution's status, or None for unknown/expired ids."""
        ...


@runtime_checkable
class NotificationService(Protocol):
    """Delivers operational alerts."""

    async def send_system_alert(self, alert: SystemAlert) -> None:
        ...


@runtime_checkable
class ConfigurationLookup(Protocol):
    """Resolves configuration ids owned by another service."""

    async def get_configuration(self, configuration_id: str) -> Any | None:
        """Return the configuration (anything with a ``name``), or None."""
        ...
