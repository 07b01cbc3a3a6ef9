"""Presentation projection: what the player sees and may do in each state.

``project`` is a pure function of the snapshot. The available actions are
a static table; context-dependent offers carry a ``when`` predicate over
the context instead of being computed ad hoc.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from narrative import ARROWS, arrow_glyph, normalize_key, resolve

from .context import StoryContext
from .events import Event, EventType
from .machine import Snapshot
from .story import Branch, State, carrying_spaghetti, completed_before


@dataclass(frozen=True)
class ActionSpec:
    label: str
    event: EventType
    key: str = ""
    branch: str = ""
    when: Callable[[StoryContext], bool] | None = None
    takes_text: bool = False

    def available(self, context: StoryContext) -> bool:
        return self.when is None or bool(self.when(context))

    def to_event(self, text: str = "") -> Event:
        if self.event is EventType.KEY_INPUT:
            return Event.key_input(self.key)
        if self.event is EventType.CHOOSE_BRANCH:
            return Event.choose(self.branch)
        if self.event is EventType.SUBMIT_TEXT:
            return Event.submit_text(text)
        return Event(self.event)


@dataclass(frozen=True)
class View:
    state: Any  # a State for the story; other machines pass their own enum
    text: str
    actions: tuple[ActionSpec, ...] = ()
    widgets: dict[str, Any] = field(default_factory=dict)

    @property
    def labels(self) -> list[str]:
        return [a.label for a in self.actions]

    def action(self, label: str) -> ActionSpec | None:
        for spec in self.actions:
            if spec.label == label or spec.branch == label:
                return spec
        return None


def _not(predicate: Callable[[StoryContext], bool]) -> Callable[[StoryContext], bool]:
    return lambda context: not predicate(context)


_CONTINUE = ActionSpec("Continue", EventType.ADVANCE)
_AUTOPILOT = ActionSpec("Auto-pilot", EventType.CHOOSE_BRANCH, branch=Branch.AUTOPILOT.value, when=completed_before)
_ARROW_KEYS = tuple(ActionSpec(arrow_glyph(a), EventType.KEY_INPUT, key=a) for a in ARROWS)
_RESTART = ActionSpec("Restart", EventType.RESTART)


def _branch(label: str, branch: Branch, when: Callable[[StoryContext], bool] | None = None) -> ActionSpec:
    return ActionSpec(label, EventType.CHOOSE_BRANCH, branch=branch.value, when=when)


ACTIONS: dict[State, tuple[ActionSpec, ...]] = {
    State.INTRO_1: (_CONTINUE, _AUTOPILOT),
    State.INTRO_2: (_CONTINUE,),
    State.INTRO_3: (_CONTINUE,),
    State.TUTORIAL: (_CONTINUE,),
    State.IN_CAR: (ActionSpec("Turn the key", EventType.ADVANCE), _AUTOPILOT),
    State.QTE_SEQUENCE: _ARROW_KEYS,
    State.ENGINE_STALL: (ActionSpec("Retry", EventType.RETRY), _RESTART),
    State.DRIVING: _ARROW_KEYS,
    State.AUTO_PILOT: (),
    State.AT_GATE: (ActionSpec("Drive in", EventType.ADVANCE),),
    State.GATE_OPENING: (ActionSpec("Drive in", EventType.ADVANCE),),
    State.PARKED: (
        _branch("Look at the cat", Branch.CAT),
        _branch("Check the spaghetti", Branch.SPAGHETTI),
        _branch("Touch the wall", Branch.WALL),
        _branch("Leave now", Branch.EXIT_EARLY),
    ),
    State.OUTCOME_CAT: (
        _branch("Pet the cat", Branch.PET),
        _branch("Feed the cat", Branch.FEED, when=carrying_spaghetti),
        _branch("Back", Branch.BACK),
    ),
    State.OUTCOME_SPAGHETTI: (
        _branch("Eat it", Branch.EAT, when=_not(carrying_spaghetti)),
        _branch("Take it", Branch.TAKE, when=_not(carrying_spaghetti)),
        _branch("Back", Branch.BACK),
    ),
    State.OUTCOME_BOUNDARY: (
        _branch("Touch it again", Branch.WALL),
        _branch("Back", Branch.BACK),
    ),
    State.MYSTERIOUS_EVENT: (_CONTINUE,),
    State.ENDING_BLACKHOLE: (_CONTINUE,),
    State.ENDING_DANCE: (_CONTINUE,),
    State.ENDING_REMIX: (_CONTINUE,),
    State.SETTLEMENT: (ActionSpec("Pay", EventType.ADVANCE),),
    State.PAYMENT_INPUT: (
        ActionSpec("Send receipt", EventType.SUBMIT_TEXT, takes_text=True),
        _branch("Back", Branch.BACK),
    ),
    State.TIME_SYNC: (),
    State.SENDING_NOTICE: (),
    State.FINISHED: (_RESTART,),
}


def _widgets(state: State, context: StoryContext) -> dict[str, Any]:
    widgets: dict[str, Any] = {
        "scene": {"backdrop": context.scene, "character": context.character},
        "status": {
            "distance": context.distance,
            "durability": context.durability,
            "hours": context.hours,
            "fee": context.fee,
        },
    }
    if state is State.QTE_SEQUENCE:
        widgets["qte"] = {
            "symbols": [arrow_glyph(s) for s in context.qte.symbols],
            "progress": context.qte.progress,
        }
    if state in (State.DRIVING, State.AUTO_PILOT):
        widgets["driving"] = {
            "symbol": arrow_glyph(context.round_symbol) if state is State.DRIVING else "",
            "budget_ms": context.round_budget_ms if state is State.DRIVING else 0,
            "distance": context.distance,
            "durability": context.durability,
            "failures": context.consecutive_failures,
            "auto_pilot": context.auto_pilot,
        }
    if state is State.PAYMENT_INPUT:
        widgets["text_input"] = {"placeholder": "you@example.com", "value": context.email}
    if context.notification is not None:
        widgets["notification"] = {
            "title": context.notification.title,
            "body": context.notification.body,
            "ok": context.notification.ok,
        }
    return widgets


def project(snapshot: Snapshot) -> View:
    """View of any snapshot; states without an action row offer nothing."""
    state = snapshot.state
    context = snapshot.context
    actions = tuple(a for a in ACTIONS.get(state, ()) if a.available(context))
    return View(
        state=state,
        text=resolve(context.text, context.template_values()),
        actions=actions,
        widgets=_widgets(state, context),
    )


def to_event(view: View, raw: str) -> Event | None:
    """Turn a line of player input into an event for the current view.

    Accepts a 1-based action number, an action label or branch name, an
    arrow key where arrows are offered, and free text where text is taken.
    """
    text = raw.strip()
    if text.isdigit():
        index = int(text) - 1
        if 0 <= index < len(view.actions):
            spec = view.actions[index]
            return None if spec.takes_text else spec.to_event()
        return None

    if any(a.event is EventType.KEY_INPUT for a in view.actions):
        key = normalize_key(text)
        if key is not None:
            return Event.key_input(key)

    spec = view.action(text)
    if spec is not None and not spec.takes_text:
        return spec.to_event()

    for spec in view.actions:
        if spec.takes_text:
            return spec.to_event(text)
    return None
