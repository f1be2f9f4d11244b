"""TaskStore — one JSON file per task and per execution."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError

from taskpilot.config import settings
from taskpilot.scheduler.errors import StorageError
from taskpilot.scheduler.models import ScheduledTask, TaskExecution, utcnow

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")
_SUFFIX = ".json"

_Entity = TypeVar("_Entity", ScheduledTask, TaskExecution)


# -- Blocking file helpers (run via asyncio.to_thread) -------------------------


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text("utf-8")
    except FileNotFoundError:
        return None


def _write_atomic(path: Path, content: str) -> None:
    """Replace *path* with *content* so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def _list_ids(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(
        p.stem for p in directory.iterdir() if p.suffix == _SUFFIX and not p.name.startswith(".")
    )


class TaskStore:
    """Persists scheduled tasks and their executions as JSON files.

    Tasks live in ``<data_dir>/scheduled-tasks/<id>.json`` and executions in
    ``<data_dir>/task-executions/<id>.json``. Pass an explicit *data_dir* for
    test isolation (e.g. ``tmp_path``).

    A missing file means "not found" and is never an error. Every other I/O
    failure, and any file that does not parse, raises ``StorageError``.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        root = data_dir or settings.data_dir
        self._tasks_dir = root / "scheduled-tasks"
        self._executions_dir = root / "task-executions"

    @property
    def tasks_dir(self) -> Path:
        return self._tasks_dir

    @property
    def executions_dir(self) -> Path:
        return self._executions_dir

    # -- Internal helpers ------------------------------------------------------

    @staticmethod
    def _path(directory: Path, entity_id: str) -> Path:
        if not _SAFE_ID_RE.match(entity_id):
            msg = f"Unsafe entity id: {entity_id!r}"
            raise StorageError(msg)
        return directory / f"{entity_id}{_SUFFIX}"

    async def _save(self, directory: Path, entity: ScheduledTask | TaskExecution) -> None:
        path = self._path(directory, entity.id)
        try:
            await asyncio.to_thread(_write_atomic, path, entity.to_json())
        except OSError as exc:
            msg = f"Failed to save {path.name}: {exc}"
            raise StorageError(msg) from exc

    async def _load(self, directory: Path, entity_id: str, model: type[_Entity]) -> _Entity | None:
        path = self._path(directory, entity_id)
        try:
            content = await asyncio.to_thread(_read_text, path)
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Failed to read {path.name}: {exc}"
            raise StorageError(msg) from exc
        if content is None:
            return None
        try:
            return model.from_json(content)
        except ValidationError as exc:
            msg = f"Corrupt file {path.name}: {exc}"
            raise StorageError(msg) from exc

    async def _delete(self, directory: Path, entity_id: str) -> bool:
        path = self._path(directory, entity_id)
        try:
            return await asyncio.to_thread(_unlink, path)
        except OSError as exc:
            msg = f"Failed to delete {path.name}: {exc}"
            raise StorageError(msg) from exc

    async def _ids(self, directory: Path) -> list[str]:
        try:
            return await asyncio.to_thread(_list_ids, directory)
        except OSError as exc:
            msg = f"Failed to list {directory}: {exc}"
            raise StorageError(msg) from exc

    # -- Tasks -----------------------------------------------------------------

    async def save_task(self, task: ScheduledTask) -> None:
        await self._save(self._tasks_dir, task)

    async def load_task(self, task_id: str) -> ScheduledTask | None:
        """Fetch a task by ID, or None if not found."""
        return await self._load(self._tasks_dir, task_id, ScheduledTask)

    async def task_ids(self) -> list[str]:
        """Return the ids of every stored task."""
        return await self._ids(self._tasks_dir)

    async def load_tasks(self) -> list[ScheduledTask]:
        """Return all tasks, newest ``created_at`` first. Unreadable files are skipped."""
        tasks = []
        for task_id in await self.task_ids():
            try:
                task = await self.load_task(task_id)
            except StorageError:
                logger.exception("Skipping unreadable task file %s", task_id)
                continue
            if task is not None:
                tasks.append(task)
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def delete_task(self, task_id: str) -> None:
        """Delete a task file and every execution recorded for it."""
        deleted = await self._delete(self._tasks_dir, task_id)
        removed = await self.delete_executions(task_id)
        if deleted:
            logger.info("Deleted task %s and %d execution(s)", task_id, removed)

    # -- Executions ------------------------------------------------------------

    async def save_execution(self, execution: TaskExecution) -> None:
        await self._save(self._executions_dir, execution)

    async def load_execution(self, execution_id: str) -> TaskExecution | None:
        """Fetch an execution by ID, or None if not found."""
        return await self._load(self._executions_dir, execution_id, TaskExecution)

    async def load_executions(self, task_id: str | None = None) -> list[TaskExecution]:
        """Return executions newest ``start_time`` first, optionally for one task.

        Unreadable files are logged and skipped.
        """
        executions = []
        for execution_id in await self._ids(self._executions_dir):
            try:
                execution = await self.load_execution(execution_id)
            except StorageError:
                logger.exception("Skipping unreadable execution file %s", execution_id)
                continue
            if execution is None:
                continue
            if task_id is None or execution.task_id == task_id:
                executions.append(execution)
        return sorted(executions, key=lambda e: e.start_time, reverse=True)

    async def delete_execution(self, execution_id: str) -> bool:
        """Delete one execution. Returns True if a file was removed."""
        return await self._delete(self._executions_dir, execution_id)

    async def delete_executions(self, task_id: str) -> int:
        """Delete every execution of *task_id*. Returns the number removed."""
        executions = await self.load_executions(task_id)
        results = await asyncio.gather(*(self.delete_execution(e.id) for e in executions))
        return sum(results)

    async def cleanup_old_executions(self, max_age: timedelta | None = None) -> int:
        """Delete executions that started before ``now - max_age``.

        *max_age* defaults to the configured retention (30 days). Returns the
        number of executions deleted.
        """
        cutoff = utcnow() - (max_age if max_age is not None else settings.get_execution_retention())
        executions = await self.load_executions()
        stale = [e for e in executions if e.start_time < cutoff]
        results = await asyncio.gather(*(self.delete_execution(e.id) for e in stale))
        removed = sum(results)
        if removed:
            logger.info("Cleaned up %d old execution(s)", removed)
        return removed
