"""taskpilot entry point."""

import asyncio
import logging
import signal

from taskpilot.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def build_scheduler():
    """Construct the store, work hook, executor and scheduler.

    Returns ``(scheduler, dispatcher)``; the caller owns both.
    """
    from taskpilot.dispatchers import HttpDispatcher, LoggingDispatcher
    from taskpilot.scheduler.engine import TaskScheduler
    from taskpilot.scheduler.executor import TaskExecutor
    from taskpilot.scheduler.store import TaskStore

    if settings.dispatch_url:
        dispatcher = HttpDispatcher(settings.dispatch_url)
    else:
        logger.warning("DISPATCH_URL is empty; fired tasks will only be logged")
        dispatcher = LoggingDispatcher()

    store = TaskStore()
    executor = TaskExecutor(store=store, dispatcher=dispatcher)
    scheduler = TaskScheduler(store=store, executor=executor)
    return scheduler, dispatcher


def _log_event(event: str, payload) -> None:
    ident = payload if isinstance(payload, str) else getattr(payload, "id", "?")
    logger.info("Event %s: %s", event, ident)


async def run() -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    scheduler, dispatcher = build_scheduler()
    scheduler.events.subscribe(_log_event)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await scheduler.initialize()
    logger.info("taskpilot running (data_dir=%s)", settings.data_dir)
    try:
        await stop.wait()
    finally:
        await scheduler.shutdown()
        await dispatcher.aclose()


def main() -> None:
    """Start the scheduler process."""
    logger.info("Starting taskpilot...")
    asyncio.run(run())


if __name__ == "__main__":
    main()
