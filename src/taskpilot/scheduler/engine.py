"""TaskScheduler — task registry, timer lifecycle and run bookkeeping."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from taskpilot.config import settings
from taskpilot.scheduler.errors import NotFoundError, ScheduleParseError, StorageError
from taskpilot.scheduler.events import (
    EXECUTION_CANCELLED,
    EXECUTION_COMPLETED,
    EXECUTION_FAILED,
    EXECUTION_STARTED,
    TASK_CANCELLED,
    TASK_COMPLETED,
    TASK_CREATED,
    TASK_DELETED,
    TASK_FAILED,
    TASK_STARTED,
    TASK_UPDATED,
    EventBus,
)
from taskpilot.scheduler.models import (
    ScheduledTask,
    TaskCreate,
    TaskStats,
    TaskUpdate,
    make_task_id,
    utcnow,
)
from taskpilot.scheduler.schedule import build_trigger, compute_next_run
from taskpilot.scheduler.timers import TimerService

if TYPE_CHECKING:
    from datetime import datetime

    from taskpilot.scheduler.executor import TaskExecutor
    from taskpilot.scheduler.models import TaskExecution
    from taskpilot.scheduler.store import TaskStore
    from taskpilot.scheduler.timers import TimerHandle, Timers

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})

_FORWARDED_EVENTS = {
    EXECUTION_STARTED: TASK_STARTED,
    EXECUTION_COMPLETED: TASK_COMPLETED,
    EXECUTION_FAILED: TASK_FAILED,
    EXECUTION_CANCELLED: TASK_CANCELLED,
}


class TaskScheduler:
    """Owns every task definition and the timer armed for it.

    The in-memory registry is authoritative while the process runs; the
    store mirrors it. Each schedule-affecting change disarms the old timer,
    arms a new one and recomputes ``next_run``.

    Args:
        store: TaskStore for persistence.
        executor: TaskExecutor that runs fired tasks.
        timers: Timer backend (default: an APScheduler ``TimerService``).
        timezone: Default IANA zone for cron schedules without one
            (default from settings).
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor,
        timers: Timers | None = None,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._timezone = timezone or settings.scheduler_timezone
        self._timers = timers or TimerService(self._timezone)
        self._tasks: dict[str, ScheduledTask] = {}
        self._handles: dict[str, TimerHandle] = {}
        self._save_locks: dict[str, asyncio.Lock] = {}
        self._initialized = False
        self._accepting = True
        self.events = EventBus()
        self._executor.events.subscribe(self._on_execution_event)

    @property
    def initialized(self) -> bool:
        return self._initialized

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self) -> None:
        """Load every stored task and arm timers for the enabled ones.

        A task that fails to load or arm is logged and skipped.
        """
        self._timers.start()
        self._accepting = True

        try:
            await self._store.cleanup_old_executions(settings.get_execution_retention())
        except StorageError:
            logger.exception("Execution retention cleanup failed")

        loaded = 0
        for task_id in await self._store.task_ids():
            try:
                task = await self._store.load_task(task_id)
            except StorageError:
                logger.exception("Skipping unreadable task %s", task_id)
                continue
            if task is None:
                continue

            self._tasks[task.id] = task
            loaded += 1
            next_run = self._arm(task) if task.enabled else None
            if next_run != task.next_run:
                self._tasks[task.id] = task.model_copy(update={"next_run": next_run})
                try:
                    await self._save(task.id)
                except StorageError:
                    logger.exception("Failed to refresh next_run for task %s", task.id)

        self._initialized = True
        logger.info(
            "Loaded %d task(s), %d armed (default tz=%s)", loaded, len(self._handles), self._timezone
        )

    async def shutdown(self) -> None:
        """Disarm all timers and cancel in-flight executions."""
        self._accepting = False
        for task_id in list(self._handles):
            self._disarm(task_id)
        self._timers.shutdown()
        await self._executor.shutdown()
        self._initialized = False
        logger.info("Task scheduler shutdown")

    # -- Task management -------------------------------------------------------

    async def create_task(self, data: TaskCreate | Mapping[str, Any]) -> ScheduledTask:
        """Register, arm and persist a new task."""
        fields = data if isinstance(data, TaskCreate) else TaskCreate.model_validate(data)
        now = utcnow()
        task = ScheduledTask(
            **fields.model_dump(),
            id=make_task_id(),
            created_at=now,
            updated_at=now,
        )
        next_run = self._arm(task, now) if task.enabled else None
        task = task.model_copy(update={"next_run": next_run})
        self._tasks[task.id] = task
        try:
            await self._save(task.id)
        except StorageError:
            self._disarm(task.id)
            self._tasks.pop(task.id, None)
            self._save_locks.pop(task.id, None)
            raise

        await self.events.emit(TASK_CREATED, task)
        logger.info("Created task: %s (%s)", task.name, task.id)
        return task

    async def update_task(
        self,
        task_id: str,
        updates: TaskUpdate | Mapping[str, Any],
    ) -> ScheduledTask:
        """Merge *updates* into a task, then re-arm it from scratch.

        Raises ``NotFoundError`` for an unknown id.
        """
        task = self._require(task_id)
        if isinstance(updates, TaskUpdate):
            updates = updates.model_dump(exclude_unset=True)
        changes = {k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS}

        now = utcnow()
        merged = ScheduledTask.model_validate(
            {**task.model_dump(), **changes, "updated_at": now}
        )
        self._disarm(task_id)
        next_run = self._arm(merged, now) if merged.enabled else None
        merged = merged.model_copy(update={"next_run": next_run})
        self._tasks[task_id] = merged
        try:
            await self._save(task_id)
        except StorageError:
            if self._tasks.get(task_id) is merged:
                self._restore(task)
            raise

        await self.events.emit(TASK_UPDATED, merged)
        logger.info("Updated task: %s (%s)", merged.name, task_id)
        return merged

    async def delete_task(self, task_id: str) -> None:
        """Disarm and remove a task together with its executions.

        Raises ``NotFoundError`` for an unknown id.
        """
        task = self._require(task_id)
        self._disarm(task_id)
        try:
            async with self._lock(task_id):
                await self._store.delete_task(task_id)
        except StorageError:
            self._restore(self._tasks.get(task_id, task))
            raise
        self._disarm(task_id)
        self._tasks.pop(task_id, None)
        self._save_locks.pop(task_id, None)

        await self.events.emit(TASK_DELETED, task_id)
        logger.info("Deleted task: %s (%s)", task.name, task_id)

    async def toggle_task(self, task_id: str) -> ScheduledTask:
        task = self._require(task_id)
        return await self.update_task(task_id, {"enabled": not task.enabled})

    # -- Reads -----------------------------------------------------------------

    def get_tasks(self) -> list[ScheduledTask]:
        """All tasks, newest first."""
        return sorted(self._tasks.values(), key=lambda t: t.created_at, reverse=True)

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    async def get_executions(self, task_id: str | None = None) -> list[TaskExecution]:
        return await self._store.load_executions(task_id)

    async def get_stats(self) -> TaskStats:
        """Aggregate counts, success rate and mean duration over all executions."""
        tasks = self.get_tasks()
        executions = await self.get_executions()
        completed = sum(1 for e in executions if e.status == "completed")
        durations = [e.duration for e in executions if e.duration is not None]
        return TaskStats(
            total_tasks=len(tasks),
            active_tasks=sum(1 for t in tasks if t.enabled),
            total_executions=len(executions),
            success_rate=completed / len(executions) if executions else 0,
            avg_duration=sum(durations) / len(durations) if durations else 0,
        )

    async def record_outcome(self, execution_id: str, outcome: Any) -> TaskExecution:
        """Store the result the downstream worker reported for an execution."""
        return await self._executor.record_outcome(execution_id, outcome)

    def has_timer(self, task_id: str) -> bool:
        return task_id in self._handles

    # -- Timers ----------------------------------------------------------------

    def _arm(self, task: ScheduledTask, now: datetime | None = None) -> datetime | None:
        """Arm a timer for *task*. Returns the next run, or None if nothing was armed."""
        now = now or utcnow()
        self._disarm(task.id)
        try:
            trigger = build_trigger(task.schedule, now, self._timezone)
            next_run = compute_next_run(task.schedule, now, self._timezone)
        except ScheduleParseError as exc:
            logger.error("Failed to schedule task '%s' (%s): %s", task.name, task.id, exc)
            return None

        if trigger is None:
            logger.warning(
                "One-time task '%s' (%s) is scheduled in the past; not armed", task.name, task.id
            )
            return None

        self._handles[task.id] = self._timers.arm(task.id, trigger, self._fire, task.id)
        logger.info(
            "Armed %s task '%s' (%s), next run %s",
            task.schedule.type,
            task.name,
            task.id,
            next_run.isoformat() if next_run else "never",
        )
        return next_run

    def _restore(self, task: ScheduledTask) -> None:
        """Put *task* back in the registry with its timer armed as before."""
        next_run = self._arm(task) if task.enabled else None
        self._tasks[task.id] = task.model_copy(update={"next_run": next_run})

    def _disarm(self, task_id: str) -> None:
        handle = self._handles.pop(task_id, None)
        if handle is not None:
            self._timers.disarm(handle)

    async def _fire(self, task_id: str) -> None:
        """Timer callback. Tolerates tasks deleted or disabled since arming."""
        if not self._accepting:
            return
        task = self._tasks.get(task_id)
        if task is None or not task.enabled:
            logger.debug("Ignoring fire for missing or disabled task %s", task_id)
            return

        await self._executor.execute_task(task)

        current = self._tasks.get(task_id)
        if task.is_one_off and current is not None and current.enabled:
            try:
                await self.update_task(task_id, {"enabled": False})
            except (NotFoundError, StorageError):
                logger.exception("Failed to disable one-time task %s", task_id)

    # -- Execution bookkeeping -------------------------------------------------

    async def _on_execution_event(self, event: str, execution: TaskExecution) -> None:
        if event in (EXECUTION_COMPLETED, EXECUTION_FAILED):
            await self._record_run(execution.task_id, success=event == EXECUTION_COMPLETED)
        await self.events.emit(_FORWARDED_EVENTS[event], execution)

    async def _record_run(self, task_id: str, *, success: bool) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        updates: dict[str, Any] = {"run_count": task.run_count + 1, "last_run": utcnow()}
        if success:
            updates["success_count"] = task.success_count + 1
        if task.is_one_off:
            # One-time tasks are spent after a run.
            updates["enabled"] = False
        await self.update_task(task_id, updates)

    # -- Persistence -----------------------------------------------------------

    def _require(self, task_id: str) -> ScheduledTask:
        task = self._tasks.get(task_id)
        if task is None:
            msg = f"Task not found: {task_id}"
            raise NotFoundError(msg)
        return task

    def _lock(self, task_id: str) -> asyncio.Lock:
        return self._save_locks.setdefault(task_id, asyncio.Lock())

    async def _save(self, task_id: str) -> None:
        """Write the current registry entry for *task_id*.

        Writes for one task are serialized and always take the latest
        in-memory value, so the file converges on the registry.
        """
        async with self._lock(task_id):
            task = self._tasks.get(task_id)
            if task is not None:
                await self._store.save_task(task)
