"""Tests for the lifecycle EventBus."""

from taskpilot.scheduler.events import EventBus

# -- Delivery ------------------------------------------------------------------


async def test_sync_and_async_handlers_in_order() -> None:
    bus = EventBus()
    seen: list[str] = []

    def first(event: str, payload) -> None:
        seen.append(f"sync:{event}:{payload}")

    async def second(event: str, payload) -> None:
        seen.append(f"async:{event}:{payload}")

    bus.subscribe(first)
    bus.subscribe(second)
    await bus.emit("task-created", "t1")

    assert seen == ["sync:task-created:t1", "async:task-created:t1"]


async def test_emit_without_handlers() -> None:
    bus = EventBus()
    await bus.emit("task-deleted", "t1")
    assert bus.handler_count == 0


async def test_failing_handler_does_not_stop_others() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: str, payload) -> None:
        raise RuntimeError("boom")

    async def broken_async(event: str, payload) -> None:
        raise ValueError("boom")

    bus.subscribe(broken)
    bus.subscribe(broken_async)
    bus.subscribe(lambda event, payload: seen.append(event))

    await bus.emit("task-failed", None)

    assert seen == ["task-failed"]


# -- Subscription --------------------------------------------------------------


async def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[str] = []
    unsubscribe = bus.subscribe(lambda event, payload: seen.append(event))
    assert bus.handler_count == 1

    unsubscribe()
    unsubscribe()
    await bus.emit("task-updated", None)

    assert seen == []
    assert bus.handler_count == 0


async def test_handler_subscribing_during_emit_is_not_called_yet() -> None:
    bus = EventBus()
    seen: list[str] = []

    def late(event: str, payload) -> None:
        seen.append("late")

    def first(event: str, payload) -> None:
        seen.append("first")
        bus.subscribe(late)

    bus.subscribe(first)
    await bus.emit("task-created", None)
    assert seen == ["first"]

    await bus.emit("task-created", None)
    assert seen == ["first", "first", "late"]
