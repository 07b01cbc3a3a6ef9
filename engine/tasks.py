"""Async task adapters.

An adapter is an async callable taking the payload a state's ``Invoke``
produced and returning a result dict. The runner wraps each call in an
asyncio task and turns its outcome into exactly one ``TASK_COMPLETED`` or
``TASK_FAILED`` event, tagged with the epoch of the state activation that
started it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from relay import OutboundMessage, RelayClient, epoch_ms

from .events import Event
from .story import NOTIFY_TASK, TIME_SYNC_TASK

logger = logging.getLogger(__name__)

Adapter = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
Deliver = Callable[[Event], None]


class TaskHandle:
    """A running adapter call. Cancelling it suppresses delivery."""

    def __init__(self, name: str, epoch: int):
        self.name = name
        self.epoch = epoch
        self.cancelled = False
        self._task: asyncio.Task | None = None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        self.cancelled = True
        # a task whose own result caused the exit is already finishing
        if self._task is None or self._task is asyncio.current_task():
            return
        if not self._task.done():
            self._task.cancel()


class TaskRunner:
    def __init__(self, adapters: Mapping[str, Adapter]):
        self._adapters = dict(adapters)
        self._live: set[TaskHandle] = set()

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._adapters)

    def start(self, name: str, payload: dict[str, Any], epoch: int, deliver: Deliver) -> TaskHandle:
        if name not in self._adapters:
            raise LookupError(f"No adapter registered for task {name!r}")
        adapter = self._adapters[name]
        handle = TaskHandle(name, epoch)

        async def _run() -> None:
            try:
                result = await adapter(dict(payload))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Task %s failed: %s", name, exc)
                event = Event.task_failed(name, str(exc) or type(exc).__name__, epoch)
            else:
                logger.debug("Task %s completed", name)
                event = Event.task_completed(name, result or {}, epoch)
            if not handle.cancelled:
                deliver(event)

        handle._task = asyncio.get_running_loop().create_task(_run(), name=f"{name}@{epoch}")
        self._live.add(handle)
        handle._task.add_done_callback(lambda _: self._live.discard(handle))
        return handle

    def live(self) -> list[TaskHandle]:
        return [h for h in self._live if not h.done]

    async def wait_idle(self) -> None:
        """Wait until every started task has finished."""
        while self._live:
            pending = [h._task for h in list(self._live) if h._task is not None]
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        handles = list(self._live)
        for handle in handles:
            handle.cancel()
        tasks = [h._task for h in handles if h._task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._live.clear()


# ── Adapters ────────────────────────────────────────────────────


class TimeSyncTask:
    """Query the relay's time endpoint and report the clock offset."""

    def __init__(self, client: RelayClient, clock: Callable[[], float] = epoch_ms):
        self._client = client
        self._clock = clock

    async def __call__(self, payload: dict[str, Any]) -> dict[str, Any]:
        reply = await self._client.query_time(self._clock)
        return reply.as_result()


class NotifyTask:
    """Send the payment notice through the relay."""

    def __init__(self, client: RelayClient):
        self._client = client

    async def __call__(self, payload: dict[str, Any]) -> dict[str, Any]:
        receipt = await self._client.send_email(OutboundMessage.from_dict(payload))
        return {"message": receipt.message, "message_id": receipt.message_id}


def relay_adapters(client: RelayClient) -> dict[str, Adapter]:
    return {
        TIME_SYNC_TASK: TimeSyncTask(client),
        NOTIFY_TASK: NotifyTask(client),
    }
