"""Work hooks that hand a fired task to the process doing the actual work."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from taskpilot.config import settings
from taskpilot.scheduler.errors import HookDispatchError
from taskpilot.scheduler.models import utcnow

if TYPE_CHECKING:
    from taskpilot.scheduler.models import ScheduledTask, TaskExecution

logger = logging.getLogger(__name__)


def build_payload(task: ScheduledTask, execution: TaskExecution) -> dict[str, Any]:
    """The hand-off document a worker needs to run one execution."""
    return {
        "taskId": task.id,
        "taskName": task.name,
        "executionId": execution.id,
        "prompt": task.prompt,
        "settings": {
            "provider": task.ai_provider,
            "modelId": task.model,
            "mcpServers": list(task.mcp_servers),
        },
        "executionTime": utcnow().isoformat(),
    }


class HttpDispatcher:
    """POSTs the hand-off payload to a worker endpoint.

    The worker is expected to accept the job and report the result later
    through the ``record-outcome`` command; this call does not wait for the
    work itself.

    Args:
        url: Worker endpoint.
        client: Shared ``httpx.AsyncClient`` (one is created and owned if omitted).
        timeout: Request timeout in seconds (default from settings).
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.dispatch_timeout_seconds
        )

    async def dispatch(self, task: ScheduledTask, execution: TaskExecution) -> None:
        payload = build_payload(task, execution)
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = f"Worker rejected task {task.id}: HTTP {exc.response.status_code}"
            raise HookDispatchError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Worker unreachable for task {task.id}: {exc}"
            raise HookDispatchError(msg) from exc
        logger.info("Handed off task '%s' (execution %s) to %s", task.name, execution.id, self._url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LoggingDispatcher:
    """Fallback hook used when no worker endpoint is configured."""

    async def dispatch(self, task: ScheduledTask, execution: TaskExecution) -> None:
        logger.warning(
            "No DISPATCH_URL configured; task '%s' (execution %s) was not handed off",
            task.name,
            execution.id,
        )

    async def aclose(self) -> None:
        return None
