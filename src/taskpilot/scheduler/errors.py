"""Error types raised by the scheduling engine."""


class SchedulerError(Exception):
    """Base class for all taskpilot scheduler errors."""


class NotFoundError(SchedulerError):
    """A task or execution id is unknown."""


class UninitializedError(SchedulerError):
    """The command surface was used before a scheduler was ready."""


class UnknownCommandError(SchedulerError):
    """A command name has no registered handler."""


class ScheduleParseError(SchedulerError):
    """A schedule (cron expression, timezone, interval) cannot be evaluated."""


class StorageError(SchedulerError):
    """Persisting or loading an entity failed for a reason other than absence."""


class HookDispatchError(SchedulerError):
    """The external work hook refused or failed to accept a task."""
