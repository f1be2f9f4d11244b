"""Tests for TimerService over APScheduler."""

import asyncio
from datetime import UTC, datetime, timedelta

from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from taskpilot.scheduler.timers import TimerHandle, TimerService


async def test_start_and_shutdown_are_idempotent() -> None:
    timers = TimerService("UTC")
    assert not timers.running

    timers.start()
    timers.start()
    assert timers.running

    timers.shutdown()
    timers.shutdown()


async def test_armed_timer_fires_callback() -> None:
    timers = TimerService("UTC")
    timers.start()
    fired = asyncio.Event()
    seen: list[str] = []

    async def callback(key: str) -> None:
        seen.append(key)
        fired.set()

    trigger = DateTrigger(run_date=datetime.now(UTC) + timedelta(milliseconds=50), timezone=UTC)
    handle = timers.arm("task1", trigger, callback, "task1")
    try:
        assert handle == TimerHandle(key="task1", job_id="task1")
        await asyncio.wait_for(fired.wait(), timeout=5)
        assert seen == ["task1"]
        # The one-shot job is gone after firing; disarming it is still fine.
        timers.disarm(handle)
    finally:
        timers.shutdown()


async def test_disarmed_timer_never_fires() -> None:
    timers = TimerService("UTC")
    timers.start()
    seen: list[str] = []

    async def callback() -> None:
        seen.append("fired")

    trigger = IntervalTrigger(seconds=1, start_date=datetime.now(UTC) + timedelta(seconds=1))
    handle = timers.arm("task1", trigger, callback)
    timers.disarm(handle)
    await asyncio.sleep(0.05)
    timers.shutdown()

    assert seen == []


async def test_rearming_replaces_job() -> None:
    timers = TimerService("UTC")
    timers.start()

    async def callback() -> None:
        pass

    later = datetime.now(UTC) + timedelta(hours=1)
    first = timers.arm("task1", DateTrigger(run_date=later, timezone=UTC), callback)
    second = timers.arm("task1", DateTrigger(run_date=later, timezone=UTC), callback)
    try:
        assert first == second
        assert len(timers._scheduler.get_jobs()) == 1
    finally:
        timers.shutdown()
