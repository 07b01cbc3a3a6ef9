"""State machine core - decides what the story does with each event.

The machine itself holds no state. ``transition`` takes the current
:class:`Snapshot` and an :class:`Event` and returns a :class:`Step`: the
next snapshot plus the effects (timers to arm, tasks to start, scopes to
cancel) the session host has to carry out. Timers and tasks are tagged with
the epoch of the state activation that started them; the epoch increments
on every entry, so a result from an activation that has since been left is
recognised and dropped.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .context import StoryContext
from .events import Event, EventType

logger = logging.getLogger(__name__)

Guard = Callable[[StoryContext, Event], bool]
Action = Callable[[StoryContext, Event], "dict[str, Any] | None"]

MAX_EVENTLESS_STEPS = 32


class MachineError(Exception):
    """Raised when the machine is driven in a way it does not allow."""


class MachineDefinitionError(MachineError):
    """Raised at construction when the transition table is inconsistent."""


class ReentrantDispatchError(MachineError):
    """Raised when dispatch is called while another dispatch is running."""


# ── Table entries ───────────────────────────────────────────────


@dataclass(frozen=True)
class Transition:
    """One candidate for a (state, event type) pair.

    ``target=None`` keeps the current state without exit or entry, unless
    ``reenter`` is set, which exits and re-enters the current state.
    ``timer`` restricts a ``TIMER`` transition to the named timer.
    """

    target: Enum | None = None
    guard: Guard | None = None
    actions: tuple[Action, ...] = ()
    reenter: bool = False
    timer: str = ""

    def matches(self, context: StoryContext, event: Event) -> bool:
        if self.timer and self.timer != event.timer:
            return False
        return self.guard is None or bool(self.guard(context, event))

    @property
    def internal(self) -> bool:
        return self.target is None and not self.reenter


@dataclass(frozen=True)
class Timer:
    name: str
    delay_ms: int | Callable[[StoryContext], int]

    def resolve_delay(self, context: StoryContext) -> int:
        delay = self.delay_ms(context) if callable(self.delay_ms) else self.delay_ms
        return max(0, int(delay))


@dataclass(frozen=True)
class Invoke:
    task: str
    input: Callable[[StoryContext], dict[str, Any]] = lambda context: {}


@dataclass(frozen=True)
class StateNode:
    name: Enum
    entry: tuple[Action, ...] = ()
    on: Mapping[EventType, tuple[Transition, ...]] = field(default_factory=dict)
    always: tuple[Transition, ...] = ()
    timers: tuple[Timer, ...] = ()
    invoke: Invoke | None = None

    def transitions(self) -> Iterable[Transition]:
        for candidates in self.on.values():
            yield from candidates
        yield from self.always


# ── Effects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CancelScope:
    """Cancel every timer and task started by the activation ``epoch``."""

    epoch: int


@dataclass(frozen=True)
class StartTimer:
    name: str
    delay_ms: int
    epoch: int


@dataclass(frozen=True)
class StartTask:
    task: str
    payload: dict[str, Any]
    epoch: int


Effect = Union[CancelScope, StartTimer, StartTask]


@dataclass(frozen=True)
class Snapshot:
    state: Enum
    context: StoryContext
    epoch: int = 0


@dataclass(frozen=True)
class Step:
    snapshot: Snapshot
    effects: tuple[Effect, ...] = ()
    visited: tuple[Enum, ...] = ()  # states entered, in order
    handled: bool = True

    @property
    def changed_state(self) -> bool:
        return bool(self.visited)


# ── Machine ─────────────────────────────────────────────────────


class Machine:
    """A validated, immutable transition table."""

    def __init__(
        self,
        nodes: Iterable[StateNode],
        initial: Enum,
        states: Iterable[Enum] | None = None,
    ):
        self._nodes: dict[Enum, StateNode] = {}
        for node in nodes:
            if node.name in self._nodes:
                raise MachineDefinitionError(f"Duplicate node for state {node.name!r}")
            self._nodes[node.name] = node
        self._initial = initial
        expected = list(states) if states is not None else list(type(initial))
        self._validate(expected)

    @property
    def initial(self) -> Enum:
        return self._initial

    @property
    def states(self) -> tuple[Enum, ...]:
        return tuple(self._nodes)

    def node(self, state: Enum) -> StateNode:
        return self._nodes[state]

    def handled_events(self, state: Enum) -> frozenset[EventType]:
        return frozenset(self._nodes[state].on)

    def invoked_tasks(self) -> frozenset[str]:
        return frozenset(n.invoke.task for n in self._nodes.values() if n.invoke)

    def _validate(self, expected: list[Enum]) -> None:
        problems: list[str] = []
        if self._initial not in self._nodes:
            problems.append(f"initial state {self._initial!r} has no node")
        for state in expected:
            if state not in self._nodes:
                problems.append(f"state {state!r} has no node")

        for node in self._nodes.values():
            declared = {t.name for t in node.timers}
            for transition in node.transitions():
                if transition.target is not None and transition.target not in self._nodes:
                    problems.append(f"{node.name!r} targets unknown state {transition.target!r}")
                if transition.timer and transition.timer not in declared:
                    problems.append(f"{node.name!r} waits on undeclared timer {transition.timer!r}")
            for transition in node.always:
                if transition.target is None:
                    problems.append(f"{node.name!r} has an eventless transition without target")
            waited = {t.timer for t in node.on.get(EventType.TIMER, ())}
            for name in declared - waited:
                problems.append(f"{node.name!r} declares timer {name!r} that nothing waits on")

        if not problems:
            unreachable = set(self._nodes) - self._reachable()
            for state in sorted(unreachable, key=str):
                problems.append(f"state {state!r} is unreachable")

        if problems:
            raise MachineDefinitionError("; ".join(problems))

    def _reachable(self) -> set[Enum]:
        seen = {self._initial}
        queue = deque([self._initial])
        while queue:
            for transition in self._nodes[queue.popleft()].transitions():
                target = transition.target
                if target is not None and target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen

    # ── Dispatch ────────────────────────────────────────────────

    def start(self, context: StoryContext, event: Event | None = None) -> Step:
        """Enter the initial state. Starting counts as a restart."""
        event = event or Event.restart()
        snapshot = self._enter(Snapshot(self._initial, context, 0), self._initial, event)
        snapshot, visited = self._settle(snapshot, event)
        visited = (self._initial, *visited)
        logger.debug("Machine started in %s", snapshot.state.value)
        return Step(snapshot, tuple(self._activation(snapshot)), visited)

    def transition(self, snapshot: Snapshot, event: Event) -> Step:
        if event.epoch is not None and event.epoch != snapshot.epoch:
            logger.debug(
                "Discarding stale %s (epoch %s, current %s)",
                event.type.value, event.epoch, snapshot.epoch,
            )
            return Step(snapshot, handled=False)

        node = self._nodes[snapshot.state]
        chosen = self._select(node.on.get(event.type, ()), snapshot.context, event)
        if chosen is None:
            logger.debug("Ignored %s in %s", event.type.value, snapshot.state.value)
            return Step(snapshot, handled=False)

        context = self._run(chosen.actions, snapshot.context, event)
        current = Snapshot(snapshot.state, context, snapshot.epoch)
        visited: list[Enum] = []
        if not chosen.internal:
            target = chosen.target if chosen.target is not None else snapshot.state
            current = self._enter(current, target, event)
            visited.append(target)
        current, more = self._settle(current, event)
        visited.extend(more)

        if not visited:
            return Step(current)
        effects: list[Effect] = [CancelScope(snapshot.epoch)]
        effects.extend(self._activation(current))
        logger.debug(
            "%s: %s -> %s",
            event.type.value, snapshot.state.value, " -> ".join(s.value for s in visited),
        )
        return Step(current, tuple(effects), tuple(visited))

    # ── Internals ───────────────────────────────────────────────

    @staticmethod
    def _select(
        candidates: Iterable[Transition], context: StoryContext, event: Event
    ) -> Transition | None:
        for transition in candidates:
            if transition.matches(context, event):
                return transition
        return None

    @staticmethod
    def _run(actions: Iterable[Action], context: StoryContext, event: Event) -> StoryContext:
        for action in actions:
            context = context.apply(action(context, event))
        return context

    def _enter(self, snapshot: Snapshot, target: Enum, event: Event) -> Snapshot:
        node = self._nodes[target]
        context = self._run(node.entry, snapshot.context, event)
        return Snapshot(target, context, snapshot.epoch + 1)

    def _settle(self, snapshot: Snapshot, event: Event) -> tuple[Snapshot, list[Enum]]:
        visited: list[Enum] = []
        for _ in range(MAX_EVENTLESS_STEPS):
            node = self._nodes[snapshot.state]
            chosen = self._select(node.always, snapshot.context, event)
            if chosen is None:
                return snapshot, visited
            context = self._run(chosen.actions, snapshot.context, event)
            snapshot = self._enter(
                Snapshot(snapshot.state, context, snapshot.epoch), chosen.target, event
            )
            visited.append(chosen.target)
        raise MachineError(
            f"Eventless transitions did not settle within {MAX_EVENTLESS_STEPS} steps "
            f"(last state {snapshot.state!r})"
        )

    def _activation(self, snapshot: Snapshot) -> list[Effect]:
        node = self._nodes[snapshot.state]
        effects: list[Effect] = [
            StartTimer(t.name, t.resolve_delay(snapshot.context), snapshot.epoch)
            for t in node.timers
        ]
        if node.invoke is not None:
            payload = dict(node.invoke.input(snapshot.context))
            effects.append(StartTask(node.invoke.task, payload, snapshot.epoch))
        return effects


# ── Guard helpers ───────────────────────────────────────────────


def both(*guards: Guard) -> Guard:
    def guard(context: StoryContext, event: Event) -> bool:
        return all(g(context, event) for g in guards)

    return guard


def negate(guard: Guard) -> Guard:
    def inverse(context: StoryContext, event: Event) -> bool:
        return not guard(context, event)

    return inverse


def on_context(predicate: Callable[[StoryContext], bool]) -> Guard:
    """Lift a context-only predicate into a guard."""

    def guard(context: StoryContext, event: Event) -> bool:
        return bool(predicate(context))

    return guard
