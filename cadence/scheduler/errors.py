"""Exceptions raised by the scheduler."""


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class NotFoundError(SchedulerError):
    """A referenced task or configuration does not exist."""


class ValidationError(SchedulerError):
    """A schedule or update failed a structural or range rule."""


class DispatchError(SchedulerError):
    """The execution orchestrator failed to start an execution."""


class MonitorError(SchedulerError):
    """Checking the status of a dispatched execution failed."""
