"""TaskExecutor — hands firing tasks to the work hook and tracks each execution."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol

from taskpilot.scheduler.errors import NotFoundError, StorageError
from taskpilot.scheduler.events import (
    EXECUTION_CANCELLED,
    EXECUTION_COMPLETED,
    EXECUTION_FAILED,
    EXECUTION_STARTED,
    EventBus,
)
from taskpilot.scheduler.models import TaskExecution, make_execution_id

if TYPE_CHECKING:
    from collections.abc import Mapping

    from taskpilot.scheduler.models import ScheduledTask
    from taskpilot.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


class WorkDispatcher(Protocol):
    """External work hook.

    ``dispatch`` returning means the work was accepted, not that it finished.
    Results come back later through ``TaskExecutor.record_outcome``.
    """

    async def dispatch(self, task: ScheduledTask, execution: TaskExecution) -> None: ...


class TaskExecutor:
    """Runs one execution per fired task.

    Args:
        store: TaskStore for persisting execution records.
        dispatcher: The work hook each task is handed to.
    """

    def __init__(self, store: TaskStore, dispatcher: WorkDispatcher) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._running: dict[str, TaskExecution] = {}
        self.events = EventBus()

    @property
    def running_executions(self) -> Mapping[str, TaskExecution]:
        """In-flight executions keyed by execution id."""
        return MappingProxyType(self._running)

    async def execute_task(self, task: ScheduledTask) -> TaskExecution:
        """Create an execution, dispatch the task and finalize the record.

        Never raises: hook and storage failures end up in the returned record
        or in the log.
        """
        execution = TaskExecution(id=make_execution_id(), task_id=task.id)
        self._running[execution.id] = execution
        await self._persist(execution)
        await self.events.emit(EXECUTION_STARTED, execution)

        logger.info("Starting execution %s of task '%s' (%s)", execution.id, task.name, task.id)

        try:
            await self._dispatcher.dispatch(task, execution)
        except Exception as exc:
            if self._running.pop(execution.id, None) is None:
                return execution
            execution.finish("failed", error=str(exc) or type(exc).__name__)
            await self._persist(execution)
            logger.error(
                "Failed execution %s of task '%s': %s", execution.id, task.name, execution.error
            )
            await self.events.emit(EXECUTION_FAILED, execution)
            return execution

        if self._running.pop(execution.id, None) is None:
            # Cancelled by shutdown() while the dispatch was pending.
            return execution
        execution.finish("completed")
        await self._persist(execution)
        logger.info(
            "Completed execution %s of task '%s' in %dms", execution.id, task.name, execution.duration
        )
        await self.events.emit(EXECUTION_COMPLETED, execution)
        return execution

    async def record_outcome(self, execution_id: str, outcome: Any) -> TaskExecution:
        """Attach the downstream worker's result to a stored execution."""
        execution = self._running.get(execution_id) or await self._store.load_execution(execution_id)
        if execution is None:
            msg = f"Execution not found: {execution_id}"
            raise NotFoundError(msg)
        execution.outcome = outcome
        await self._store.save_execution(execution)
        logger.info("Recorded outcome for execution %s", execution_id)
        return execution

    async def shutdown(self) -> None:
        """Cancel every in-flight execution."""
        cancelled = list(self._running.values())
        self._running.clear()
        for execution in cancelled:
            execution.finish("cancelled")
            await self._persist(execution)
            await self.events.emit(EXECUTION_CANCELLED, execution)
        logger.info("Task executor shutdown (%d execution(s) cancelled)", len(cancelled))

    async def _persist(self, execution: TaskExecution) -> None:
        try:
            await self._store.save_execution(execution)
        except StorageError:
            logger.exception("Failed to persist execution %s (%s)", execution.id, execution.status)
