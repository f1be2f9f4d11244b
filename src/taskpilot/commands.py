"""Command surface — named operations a transport layer can expose.

Each command takes a JSON-style payload (camelCase keys) and returns
JSON-ready data. The router is bound to one explicit ``TaskScheduler``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from taskpilot.scheduler.errors import UninitializedError, UnknownCommandError
from taskpilot.scheduler.models import TaskCreate, TaskUpdate

if TYPE_CHECKING:
    from taskpilot.scheduler.engine import TaskScheduler

logger = logging.getLogger(__name__)

# Handler signature: async (scheduler, payload) -> JSON-ready result
CommandHandler = Callable[["TaskScheduler", dict[str, Any]], Awaitable[Any]]

_handlers: dict[str, CommandHandler] = {}


def command(name: str) -> Callable[[CommandHandler], CommandHandler]:
    """Decorator to register an async function as a command handler."""

    def decorator(fn: CommandHandler) -> CommandHandler:
        _handlers[name] = fn
        return fn

    return decorator


class CommandParams(BaseModel):
    """Base class for command payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskIdParams(CommandParams):
    task_id: str


class CreateTaskParams(CommandParams):
    task: TaskCreate


class UpdateTaskParams(CommandParams):
    task_id: str
    updates: TaskUpdate


class GetExecutionsParams(CommandParams):
    task_id: str | None = None


class RecordOutcomeParams(CommandParams):
    execution_id: str
    outcome: Any = None


class CommandRouter:
    """Dispatches named commands to a scheduler.

    Usage::

        router = CommandRouter(scheduler)
        task = await router.dispatch("create-task", {"task": {...}})
    """

    def __init__(self, scheduler: TaskScheduler | None = None) -> None:
        self._scheduler = scheduler

    def attach(self, scheduler: TaskScheduler | None) -> None:
        """Bind (or with None, unbind) the scheduler commands run against."""
        self._scheduler = scheduler

    @property
    def command_names(self) -> list[str]:
        return list(_handlers)

    async def dispatch(self, name: str, payload: dict[str, Any] | None = None) -> Any:
        handler = _handlers.get(name)
        if handler is None:
            msg = f"Unknown command: {name}"
            raise UnknownCommandError(msg)
        scheduler = self._scheduler
        if scheduler is None or not scheduler.initialized:
            msg = "Task scheduler not initialized"
            raise UninitializedError(msg)

        try:
            return await handler(scheduler, payload or {})
        except Exception as exc:
            logger.error("Command %s failed: %s", name, exc)
            raise


# -- Handlers ------------------------------------------------------------------


@command("create-task")
async def create_task(scheduler: TaskScheduler, payload: dict[str, Any]) -> dict[str, Any]:
    params = CreateTaskParams.model_validate(payload)
    task = await scheduler.create_task(params.task)
    return task.to_payload()


@command("update-task")
async def update_task(scheduler: TaskScheduler, payload: dict[str, Any]) -> dict[str, Any]:
    params = UpdateTaskParams.model_validate(payload)
    task = await scheduler.update_task(params.task_id, params.updates)
    return task.to_payload()


@command("delete-task")
async def delete_task(scheduler: TaskScheduler, payload: dict[str, Any]) -> None:
    params = TaskIdParams.model_validate(payload)
    await scheduler.delete_task(params.task_id)


@command("toggle-task")
async def toggle_task(scheduler: TaskScheduler, payload: dict[str, Any]) -> dict[str, Any]:
    params = TaskIdParams.model_validate(payload)
    task = await scheduler.toggle_task(params.task_id)
    logger.info("Toggled task %s -> %s", task.id, "enabled" if task.enabled else "disabled")
    return task.to_payload()


@command("get-tasks")
async def get_tasks(scheduler: TaskScheduler, payload: dict[str, Any]) -> list[dict[str, Any]]:
    return [t.to_payload() for t in scheduler.get_tasks()]


@command("get-task")
async def get_task(scheduler: TaskScheduler, payload: dict[str, Any]) -> dict[str, Any] | None:
    params = TaskIdParams.model_validate(payload)
    task = scheduler.get_task(params.task_id)
    return task.to_payload() if task else None


@command("get-executions")
async def get_executions(
    scheduler: TaskScheduler, payload: dict[str, Any]
) -> list[dict[str, Any]]:
    params = GetExecutionsParams.model_validate(payload)
    return [e.to_payload() for e in await scheduler.get_executions(params.task_id)]


@command("get-stats")
async def get_stats(scheduler: TaskScheduler, payload: dict[str, Any]) -> dict[str, Any]:
    stats = await scheduler.get_stats()
    return stats.to_payload()


@command("record-outcome")
async def record_outcome(scheduler: TaskScheduler, payload: dict[str, Any]) -> dict[str, Any]:
    params = RecordOutcomeParams.model_validate(payload)
    execution = await scheduler.record_outcome(params.execution_id, params.outcome)
    return execution.to_payload()
