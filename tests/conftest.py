"""Shared test fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from taskpilot.scheduler.engine import TaskScheduler
from taskpilot.scheduler.executor import TaskExecutor
from taskpilot.scheduler.store import TaskStore


@pytest.fixture
def store(tmp_path: Path) -> TaskStore:
    """Create a TaskStore rooted in a temporary directory."""
    return TaskStore(data_dir=tmp_path / "data")


@pytest.fixture
def dispatcher() -> AsyncMock:
    d = AsyncMock()
    d.dispatch = AsyncMock(return_value=None)
    return d


@pytest.fixture
def executor(store: TaskStore, dispatcher: AsyncMock) -> TaskExecutor:
    return TaskExecutor(store=store, dispatcher=dispatcher)


@pytest.fixture
async def scheduler(store: TaskStore, executor: TaskExecutor):
    """An initialized scheduler, shut down after the test."""
    s = TaskScheduler(store=store, executor=executor, timezone="Asia/Shanghai")
    await s.initialize()
    yield s
    await s.shutdown()
