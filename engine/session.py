"""Session host - owns the current snapshot and carries out effects.

Every event, whether it comes from the player, a timer or a finished task,
goes through ``send``, which queues it and drains the queue one dispatch at
a time. Dispatch itself is synchronous; timers and tasks only ever talk
back by sending events.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping
from functools import partial
from typing import Any

from .config import story_settings
from .context import StoryContext
from .events import Event
from .machine import (
    CancelScope,
    Machine,
    MachineError,
    ReentrantDispatchError,
    Snapshot,
    StartTask,
    StartTimer,
    Step,
)
from .projection import View, project
from .story import build_story
from .tasks import TaskHandle, TaskRunner
from .timers import LoopScheduler, ManualScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class UnknownTaskError(MachineError):
    """Raised when the machine invokes a task no adapter is registered for."""


class SessionClosedError(MachineError):
    """Raised when a closed session is asked to dispatch."""


class Session:
    """One play-through of a story machine."""

    def __init__(
        self,
        machine: Machine,
        runner: TaskRunner | None = None,
        scheduler: Scheduler | None = None,
        context: StoryContext | None = None,
        completed_before: bool = False,
    ):
        self._machine = machine
        self._runner = runner or TaskRunner({})
        missing = machine.invoked_tasks() - self._runner.names
        if missing:
            raise UnknownTaskError(f"No adapter for invoked task(s): {', '.join(sorted(missing))}")

        self._scheduler = scheduler or LoopScheduler()
        self._seed = context or StoryContext.initial(completed_before=completed_before)
        self._snapshot: Snapshot | None = None
        self._timers: dict[int, list[TimerHandle]] = {}
        self._tasks: dict[int, list[TaskHandle]] = {}
        self._queue: deque[Event] = deque()
        self._dispatching = False
        self._draining = False
        self._closed = False
        self._trail: list[Any] = []
        self._listeners: list[Callable[[Step], None]] = []

    # ── State ───────────────────────────────────────────────────

    @property
    def snapshot(self) -> Snapshot:
        if self._snapshot is None:
            raise MachineError("Session has not been started")
        return self._snapshot

    @property
    def state(self) -> Any:
        return self.snapshot.state

    @property
    def context(self) -> StoryContext:
        return self.snapshot.context

    @property
    def trail(self) -> tuple[Any, ...]:
        """States entered so far, in order."""
        return tuple(self._trail)

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def view(self) -> View:
        return project(self.snapshot)

    def subscribe(self, listener: Callable[[Step], None]) -> None:
        """Call ``listener`` after every step that changed the state."""
        self._listeners.append(listener)

    # ── Driving the machine ─────────────────────────────────────

    def start(self) -> View:
        if self._snapshot is not None:
            raise MachineError("Session already started")
        step = self._machine.start(self._seed)
        self._commit(step)
        logger.info("Session started in %s", self.state.value)
        if self._queue:
            self._drain()
        return self.view()

    def dispatch(self, event: Event) -> Step:
        """Run one event through the machine synchronously."""
        if self._closed:
            raise SessionClosedError("Session is closed")
        if self._dispatching:
            raise ReentrantDispatchError(f"dispatch({event.type.value}) called during another dispatch")
        self._dispatching = True
        try:
            step = self._machine.transition(self.snapshot, event)
            self._commit(step)
        finally:
            self._dispatching = False
        if self._queue and not self._draining:
            self._drain()
        return step

    def send(self, event: Event) -> None:
        """Queue an event; safe from timers, tasks and listeners."""
        if self._closed:
            logger.debug("Dropping %s, session closed", event.type.value)
            return
        self._queue.append(event)
        if self._dispatching or self._draining:
            return
        self._drain()

    def send_raw(self, data: Mapping[str, Any]) -> bool:
        """Parse a driver payload and queue it. Unknown types are ignored."""
        event = Event.from_dict(dict(data))
        if event is None:
            logger.warning("Ignoring unknown event type: %r", data.get("type"))
            return False
        self.send(event)
        return True

    def advance_clock(self, delta_ms: int) -> int:
        """Advance a virtual clock; only valid with a ManualScheduler."""
        if not isinstance(self._scheduler, ManualScheduler):
            raise TypeError("advance_clock needs a ManualScheduler")
        return self._scheduler.advance(delta_ms)

    async def wait_tasks(self) -> None:
        """Wait until no invoked task is running (including follow-ups)."""
        await self._runner.wait_idle()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.clear()
        for epoch in list(self._timers):
            self._cancel(epoch)
        await self._runner.aclose()
        logger.info("Session closed in %s", self._snapshot.state.value if self._snapshot else "-")

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ── Internals ───────────────────────────────────────────────

    def _drain(self) -> None:
        self._draining = True
        try:
            while self._queue and not self._closed:
                self.dispatch(self._queue.popleft())
        finally:
            self._draining = False

    def _commit(self, step: Step) -> None:
        previous = self._snapshot
        # arm the new activation first; the old one is only cancelled once that worked
        started: set[int] = set()
        queued = len(self._queue)
        try:
            for effect in step.effects:
                if isinstance(effect, StartTimer):
                    started.add(effect.epoch)
                    handle = self._scheduler.call_later(
                        effect.delay_ms, partial(self._fire, effect.name, effect.epoch)
                    )
                    self._timers.setdefault(effect.epoch, []).append(handle)
                elif isinstance(effect, StartTask):
                    started.add(effect.epoch)
                    self._start_task(effect)
        except Exception:
            for epoch in started:
                self._cancel(epoch)
            while len(self._queue) > queued:
                self._queue.pop()
            raise

        self._snapshot = step.snapshot
        for effect in step.effects:
            if isinstance(effect, CancelScope):
                self._cancel(effect.epoch)

        if not step.visited:
            return
        self._trail.extend(step.visited)
        if previous is not None:
            logger.info(
                "State %s -> %s", previous.state.value, " -> ".join(s.value for s in step.visited)
            )
        for listener in self._listeners:
            listener(step)

    def _start_task(self, effect: StartTask) -> None:
        try:
            handle = self._runner.start(effect.task, effect.payload, effect.epoch, self.send)
        except (LookupError, RuntimeError) as exc:
            # e.g. no running event loop; the state still needs its result event
            logger.warning("Task %s could not start: %s", effect.task, exc)
            self._queue.append(Event.task_failed(effect.task, str(exc), effect.epoch))
            return
        self._tasks.setdefault(effect.epoch, []).append(handle)

    def _cancel(self, epoch: int) -> None:
        for timer in self._timers.pop(epoch, []):
            timer.cancel()
        for task in self._tasks.pop(epoch, []):
            task.cancel()

    def _fire(self, name: str, epoch: int) -> None:
        self.send(Event.timer_fired(name, epoch))


def build_session(
    cfg: dict | None = None,
    adapters: Mapping[str, Any] | None = None,
    scheduler: Scheduler | None = None,
    completed_before: bool = False,
    rng: Any = None,
) -> Session:
    """Session over the Meme Parking story with the given task adapters."""
    machine = build_story(story_settings(cfg), rng=rng)
    return Session(
        machine,
        runner=TaskRunner(adapters or {}),
        scheduler=scheduler,
        completed_before=completed_before,
    )
