"""Scheduled task, schedule and execution data models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Self

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    model_validator,
)
from pydantic.alias_generators import to_camel


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so every instant compares unambiguously."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


Timestamp = Annotated[datetime, AfterValidator(_as_utc)]

IntervalUnit = Literal["minutes", "hours", "days", "weeks"]
ExecutionStatus = Literal["running", "completed", "failed", "cancelled"]


def utcnow() -> datetime:
    return datetime.now(UTC)


class _Model(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        """Serialize to the on-disk JSON form."""
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, content: str | bytes) -> Self:
        return cls.model_validate_json(content)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dict for the command surface and events."""
        return self.model_dump(mode="json", by_alias=True)


# -- Schedules -----------------------------------------------------------------


class Interval(_Model):
    value: PositiveInt
    unit: IntervalUnit


class IntervalSchedule(_Model):
    """Fire every ``interval``, counted from the moment the timer is armed."""

    type: Literal["interval"] = "interval"
    interval: Interval


class CronSchedule(_Model):
    """Fire on a 5-field (minute) or 6-field (second) cron expression.

    Attributes:
        cron: The expression. 5-field input is anchored to second ``0``.
        timezone: IANA zone the expression is evaluated in. ``None`` means the
            configured default (``settings.scheduler_timezone``).
    """

    type: Literal["cron"] = "cron"
    cron: str = Field(min_length=1)
    timezone: str | None = None


class OnceSchedule(_Model):
    """Fire a single time at ``execute_at``."""

    type: Literal["once"] = "once"
    execute_at: Timestamp


TaskSchedule = Annotated[
    IntervalSchedule | CronSchedule | OnceSchedule,
    Field(discriminator="type"),
]


# -- Tasks ---------------------------------------------------------------------


class ScheduledTask(_Model):
    """A task definition and its cached run statistics.

    Attributes:
        id: Unique identifier (UUID hex), immutable.
        name: Human-readable name.
        description: Optional longer description.
        prompt: Work payload forwarded verbatim to the dispatcher.
        ai_provider: Provider id forwarded to the dispatcher.
        model: Model id forwarded to the dispatcher.
        mcp_servers: Tool server ids forwarded to the dispatcher.
        schedule: When the task fires.
        enabled: Whether a timer is armed for the task.
        last_run: When the last execution finished.
        next_run: Advisory next fire time, ``None`` when no timer is armed.
        run_count: Finished executions (completed or failed).
        success_count: Completed executions.
        created_at: Creation time.
        updated_at: Time of the last change.
    """

    id: str
    name: str
    description: str = ""
    prompt: str
    ai_provider: str = ""
    model: str = ""
    mcp_servers: list[str] = Field(default_factory=list)
    schedule: TaskSchedule
    enabled: bool = True
    last_run: Timestamp | None = None
    next_run: Timestamp | None = None
    run_count: NonNegativeInt = 0
    success_count: NonNegativeInt = 0
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_counts(self) -> Self:
        if self.success_count > self.run_count:
            msg = f"success_count ({self.success_count}) exceeds run_count ({self.run_count})"
            raise ValueError(msg)
        return self

    @property
    def is_one_off(self) -> bool:
        return self.schedule.type == "once"


class TaskCreate(_Model):
    """User-settable fields of a new task."""

    name: str
    description: str = ""
    prompt: str
    ai_provider: str = ""
    model: str = ""
    mcp_servers: list[str] = Field(default_factory=list)
    schedule: TaskSchedule
    enabled: bool = True


class TaskUpdate(_Model):
    """Partial update. Only fields that were explicitly set are merged."""

    name: str | None = None
    description: str | None = None
    prompt: str | None = None
    ai_provider: str | None = None
    model: str | None = None
    mcp_servers: list[str] | None = None
    schedule: TaskSchedule | None = None
    enabled: bool | None = None


# -- Executions ----------------------------------------------------------------


class TaskExecution(_Model):
    """One firing of a task.

    ``end_time``, ``duration`` (milliseconds) and ``error`` are written once,
    when the execution leaves ``running``. ``outcome`` is reported later by the
    downstream worker.
    """

    id: str
    task_id: str
    start_time: Timestamp = Field(default_factory=utcnow)
    status: ExecutionStatus = "running"
    end_time: Timestamp | None = None
    duration: int | None = None
    error: str | None = None
    outcome: Any = None

    @property
    def is_finished(self) -> bool:
        return self.status != "running"

    def finish(self, status: ExecutionStatus, error: str | None = None) -> None:
        """Move to a terminal status and stamp end time and duration."""
        self.status = status
        self.end_time = utcnow()
        self.duration = int((self.end_time - self.start_time).total_seconds() * 1000)
        if error is not None:
            self.error = error


class TaskStats(_Model):
    total_tasks: int
    active_tasks: int
    total_executions: int
    success_rate: float
    avg_duration: float


def make_task_id() -> str:
    """Generate a new task ID."""
    return uuid.uuid4().hex


def make_execution_id() -> str:
    """Generate a new execution ID."""
    return uuid.uuid4().hex
