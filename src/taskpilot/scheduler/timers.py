"""Timer handles over APScheduler's AsyncIOScheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from taskpilot.config import settings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerHandle:
    """Opaque reference to an armed timer."""

    key: str
    job_id: str


class Timers(Protocol):
    """What the task scheduler needs from a timer backend."""

    @property
    def running(self) -> bool: ...

    def start(self) -> None: ...

    def arm(
        self,
        key: str,
        trigger: BaseTrigger,
        callback: Callable[..., Awaitable[None]],
        *args: Any,
    ) -> TimerHandle: ...

    def disarm(self, handle: TimerHandle) -> None: ...

    def shutdown(self) -> None: ...


class TimerService:
    """Arms and disarms APScheduler jobs.

    Args:
        timezone: IANA timezone string for the underlying scheduler
            (default from settings).
    """

    def __init__(self, timezone: str | None = None) -> None:
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start firing jobs. Must be called from inside the running event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Timer service started (tz=%s)", self._timezone)

    def arm(
        self,
        key: str,
        trigger: BaseTrigger,
        callback: Callable[..., Awaitable[None]],
        *args: Any,
    ) -> TimerHandle:
        """Register *callback* to run whenever *trigger* fires."""
        job = self._scheduler.add_job(
            callback,
            trigger=trigger,
            id=key,
            name=key,
            args=list(args),
            misfire_grace_time=None,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        return TimerHandle(key=key, job_id=job.id)

    def disarm(self, handle: TimerHandle) -> None:
        try:
            self._scheduler.remove_job(handle.job_id)
        except JobLookupError:
            # One-shot jobs are dropped by APScheduler after they fire.
            logger.debug("Job %s not found in scheduler (may already be removed)", handle.job_id)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Timer service stopped")
