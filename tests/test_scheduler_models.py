"""Tests for scheduled task and execution data models."""

import json
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from taskpilot.scheduler.models import (
    CronSchedule,
    IntervalSchedule,
    OnceSchedule,
    ScheduledTask,
    TaskExecution,
    TaskUpdate,
    make_execution_id,
    make_task_id,
)


def _make_task(**kwargs) -> ScheduledTask:
    defaults = {
        "id": "task1",
        "name": "Test",
        "prompt": "Summarise the news",
        "schedule": {"type": "interval", "interval": {"value": 5, "unit": "minutes"}},
    }
    defaults.update(kwargs)
    return ScheduledTask(**defaults)


# -- Construction & defaults ---------------------------------------------------


def test_default_values() -> None:
    task = _make_task()
    assert task.description == ""
    assert task.mcp_servers == []
    assert task.enabled is True
    assert task.run_count == 0
    assert task.success_count == 0
    assert task.last_run is None
    assert task.next_run is None
    assert task.created_at.tzinfo is not None


def test_schedule_union_is_discriminated_by_type() -> None:
    assert isinstance(_make_task().schedule, IntervalSchedule)
    assert isinstance(_make_task(schedule={"type": "cron", "cron": "0 9 * * *"}).schedule, CronSchedule)
    task = _make_task(schedule={"type": "once", "executeAt": "2030-01-01T00:00:00Z"})
    assert isinstance(task.schedule, OnceSchedule)
    assert task.is_one_off is True


def test_naive_timestamps_are_utc() -> None:
    task = _make_task(schedule={"type": "once", "execute_at": datetime(2030, 1, 1, 9, 0)})
    assert task.schedule.execute_at == datetime(2030, 1, 1, 9, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "schedule",
    [
        {"type": "interval", "interval": {"value": 0, "unit": "minutes"}},
        {"type": "interval", "interval": {"value": 3, "unit": "fortnights"}},
        {"type": "cron", "cron": ""},
        {"type": "once"},
        {"type": "sometimes"},
    ],
)
def test_invalid_schedules_rejected(schedule: dict) -> None:
    with pytest.raises(ValidationError):
        _make_task(schedule=schedule)


def test_success_count_cannot_exceed_run_count() -> None:
    with pytest.raises(ValidationError, match="success_count"):
        _make_task(run_count=1, success_count=2)


# -- Serialization -------------------------------------------------------------


def test_json_uses_camel_case() -> None:
    task = _make_task(ai_provider="openai", mcp_servers=["fs"])
    data = json.loads(task.to_json())
    assert data["aiProvider"] == "openai"
    assert data["mcpServers"] == ["fs"]
    assert "runCount" in data
    assert "createdAt" in data
    assert "run_count" not in data


def test_accepts_snake_and_camel_input() -> None:
    camel = ScheduledTask.model_validate(
        {
            "id": "a",
            "name": "n",
            "prompt": "p",
            "schedule": {"type": "cron", "cron": "0 9 * * *"},
            "runCount": 3,
            "successCount": 2,
        }
    )
    assert camel.run_count == 3
    assert camel.success_count == 2


def test_task_update_tracks_explicit_fields() -> None:
    update = TaskUpdate.model_validate({"enabled": False, "name": "renamed"})
    assert update.model_dump(exclude_unset=True) == {"enabled": False, "name": "renamed"}


# -- Executions ----------------------------------------------------------------


def test_execution_starts_running() -> None:
    execution = TaskExecution(id="e1", task_id="task1")
    assert execution.status == "running"
    assert execution.is_finished is False
    assert execution.end_time is None
    assert execution.duration is None


def test_finish_sets_end_time_and_duration() -> None:
    execution = TaskExecution(
        id="e1", task_id="task1", start_time=datetime(2020, 1, 1, tzinfo=UTC)
    )
    execution.finish("failed", error="boom")
    assert execution.status == "failed"
    assert execution.error == "boom"
    assert execution.end_time is not None
    assert execution.duration == int(
        (execution.end_time - execution.start_time).total_seconds() * 1000
    )


def test_ids_are_unique_hex() -> None:
    ids = {make_task_id() for _ in range(50)} | {make_execution_id() for _ in range(50)}
    assert len(ids) == 100
    assert all(len(i) == 32 for i in ids)
