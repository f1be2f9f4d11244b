"""EventBus — callback registration list for lifecycle events."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

# Handler signature: (event: str, payload: Any) -> None, sync or async
EventHandler = Callable[[str, Any], Awaitable[None] | None]

TASK_CREATED = "task-created"
TASK_UPDATED = "task-updated"
TASK_DELETED = "task-deleted"
TASK_STARTED = "task-started"
TASK_COMPLETED = "task-completed"
TASK_FAILED = "task-failed"
TASK_CANCELLED = "task-cancelled"

EXECUTION_STARTED = "execution-started"
EXECUTION_COMPLETED = "execution-completed"
EXECUTION_FAILED = "execution-failed"
EXECUTION_CANCELLED = "execution-cancelled"


class EventBus:
    """Delivers events to subscribers in subscription order.

    Usage::

        bus = EventBus()
        unsubscribe = bus.subscribe(handler)
        await bus.emit("task-created", task)

    A failing handler is logged and skipped; it never breaks the emitter.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* for every event. Returns an unsubscribe callable."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def emit(self, event: str, payload: Any) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler failed for %s", event)
