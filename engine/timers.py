"""Timer scheduling for state-owned timers.

``LoopScheduler`` arms real timers on the running asyncio loop.
``ManualScheduler`` keeps a virtual clock that only moves when
``advance`` is called, which makes timed story sections replayable.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedule callbacks on an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0, delay_ms) / 1000.0, callback)


class _ManualHandle:
    __slots__ = ("due_ms", "callback", "cancelled")

    def __init__(self, due_ms: int, callback: Callable[[], None]):
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock in milliseconds."""

    def __init__(self, start_ms: int = 0):
        self._now = start_ms
        self._queue: list[tuple[int, int, _ManualHandle]] = []
        self._seq = itertools.count()

    @property
    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self._now + max(0, int(delay_ms)), callback)
        heapq.heappush(self._queue, (handle.due_ms, next(self._seq), handle))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def next_due(self) -> int | None:
        for due, _, handle in sorted(self._queue):
            if not handle.cancelled:
                return due
        return None

    def advance(self, delta_ms: int) -> int:
        """Move the clock forward, firing due callbacks in order.

        Callbacks scheduled while advancing fire too if they fall inside
        the window. Returns the number of callbacks fired.
        """
        target = self._now + max(0, int(delta_ms))
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            fired += 1
            handle.callback()
        self._now = target
        if fired:
            logger.debug("Virtual clock at %d ms, %d timer(s) fired", self._now, fired)
        return fired
