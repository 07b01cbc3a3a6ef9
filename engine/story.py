"""The Meme Parking story graph.

A short drive to a parking lot: intro panels, an ignition QTE, a timed
driving challenge, a gate, an exploration hub with three branches and
their endings, then settlement, payment and a receipt sent in the
background. Finishing once unlocks the auto-pilot shortcut.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from enum import Enum
from typing import Any, Union

from narrative import arrow_glyph, generate_sequence, normalize_key, random_symbol, resolve, round_budget

from .config import StorySettings
from .context import Challenge, LogEntry, Notification, StoryContext, clamp_floor, now_iso
from .events import Event, EventType
from .machine import (
    Action,
    Guard,
    Invoke,
    Machine,
    StateNode,
    Timer,
    Transition,
    both,
    negate,
    on_context,
)

logger = logging.getLogger(__name__)


class State(str, Enum):
    INTRO_1 = "intro_1"
    INTRO_2 = "intro_2"
    INTRO_3 = "intro_3"
    TUTORIAL = "tutorial"
    IN_CAR = "in_car"
    QTE_SEQUENCE = "qte_sequence"
    ENGINE_STALL = "engine_stall"
    DRIVING = "driving"
    AUTO_PILOT = "auto_pilot"
    AT_GATE = "at_gate"
    GATE_OPENING = "gate_opening"
    PARKED = "parked"
    OUTCOME_CAT = "outcome_cat"
    OUTCOME_SPAGHETTI = "outcome_spaghetti"
    OUTCOME_BOUNDARY = "outcome_boundary"
    MYSTERIOUS_EVENT = "mysterious_event"
    ENDING_BLACKHOLE = "ending_blackhole"
    ENDING_DANCE = "ending_dance"
    ENDING_REMIX = "ending_remix"
    SETTLEMENT = "settlement"
    PAYMENT_INPUT = "payment_input"
    TIME_SYNC = "time_sync"
    SENDING_NOTICE = "sending_notice"
    FINISHED = "finished"


class Branch(str, Enum):
    AUTOPILOT = "autopilot"
    CAT = "cat"
    SPAGHETTI = "spaghetti"
    WALL = "wall"
    EXIT_EARLY = "exit_early"
    PET = "pet"
    FEED = "feed"
    EAT = "eat"
    TAKE = "take"
    BACK = "back"


TIME_SYNC_TASK = "time_sync"
NOTIFY_TASK = "notify"

ENDING_STATES = frozenset({
    State.ENDING_BLACKHOLE,
    State.ENDING_DANCE,
    State.ENDING_REMIX,
    State.MYSTERIOUS_EVENT,
})

_SETTLEMENT_INTRO = {
    "early": "You leave before anything strange can happen.",
    "blackhole": "You climb out of the black hole. The meter kept running.",
    "dance": "The music stops. Your legs ache and the meter kept running.",
    "remix": "The remix fades out. The cat is gone, the meter is not.",
    "mysterious": "You wake up on the hood of your car. Hours have passed.",
}


# ── Context predicates ──────────────────────────────────────────
# Shared with the presentation projection.


def completed_before(context: StoryContext) -> bool:
    return context.completed_before


def carrying_spaghetti(context: StoryContext) -> bool:
    return context.has_spaghetti


def qte_complete(context: StoryContext) -> bool:
    return context.qte.complete


# ── Guards ──────────────────────────────────────────────────────


def chose(branch: Branch) -> Guard:
    def guard(context: StoryContext, event: Event) -> bool:
        return event.branch == branch.value

    return guard


def task_is(task_id: str) -> Guard:
    def guard(context: StoryContext, event: Event) -> bool:
        return event.task_id == task_id

    return guard


def qte_key_correct(context: StoryContext, event: Event) -> bool:
    expected = context.qte.expected
    return expected is not None and normalize_key(event.key) == expected


def round_key_correct(context: StoryContext, event: Event) -> bool:
    return bool(context.round_symbol) and normalize_key(event.key) == context.round_symbol


def arrow_pressed(context: StoryContext, event: Event) -> bool:
    return normalize_key(event.key) is not None


def text_present(context: StoryContext, event: Event) -> bool:
    return bool(event.text.strip())


# ── Action builders ─────────────────────────────────────────────

TextSource = Union[str, Callable[[StoryContext], str]]


def _render(source: TextSource, context: StoryContext) -> str:
    return source(context) if callable(source) else source


def scene(
    state: State,
    text: TextSource,
    log: tuple[str, TextSource],
    *,
    backdrop: str | None = None,
    character: str | None = None,
) -> Action:
    """Entry action: set the narrative text and log the visit under ``state``."""
    category, message = log

    def action(context: StoryContext, event: Event) -> dict[str, Any]:
        changes: dict[str, Any] = {
            "text": _render(text, context),
            "log": context.appended(
                category,
                resolve(_render(message, context), context.template_values()),
                state.value,
            ),
        }
        if backdrop is not None:
            changes["scene"] = backdrop
        if character is not None:
            changes["character"] = character
        return changes

    return action


def note(state: State, category: str, message: Callable[[StoryContext, Event], str] | str) -> Action:
    """Transition action: append one log line attributed to ``state``."""

    def action(context: StoryContext, event: Event) -> dict[str, Any]:
        raw = message(context, event) if callable(message) else message
        text = resolve(raw, context.template_values())
        return {"log": context.appended(category, text, state.value)}

    return action


def assign(**changes: Any) -> Action:
    def action(context: StoryContext, event: Event) -> dict[str, Any]:
        return dict(changes)

    return action


def restart_session(context: StoryContext, event: Event) -> dict[str, Any]:
    return context.reset().as_changes()


# ── Story ───────────────────────────────────────────────────────


def build_story(settings: StorySettings | None = None, rng: random.Random | None = None) -> Machine:
    """Assemble and validate the story machine."""
    s = settings or StorySettings()
    rng = rng or random.Random()

    def on(*pairs: tuple[EventType, tuple[Transition, ...]]) -> dict[EventType, tuple[Transition, ...]]:
        return dict(pairs)

    # ── Ignition ────────────────────────────────────────────────

    def deal_sequence(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"qte": Challenge(generate_sequence(s.qte_length, rng), 0)}

    def qte_hit(context: StoryContext, event: Event) -> dict[str, Any]:
        glyph = arrow_glyph(context.qte.expected or "")
        qte = context.qte.advanced()
        return {
            "qte": qte,
            "log": context.appended(
                "qte", f"{glyph} ok ({qte.progress}/{len(qte.symbols)})", State.QTE_SEQUENCE.value
            ),
        }

    def qte_miss(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "qte": context.qte.reset(),
            "stall_count": context.stall_count + 1,
            "log": context.appended(
                "fail",
                f"Wrong key {event.key or '?'}, expected {arrow_glyph(context.qte.expected or '')}",
                State.QTE_SEQUENCE.value,
            ),
        }

    def sequence_line(context: StoryContext) -> str:
        return "Ignition sequence: " + " ".join(arrow_glyph(k) for k in context.qte.symbols)

    # ── Driving ─────────────────────────────────────────────────

    def start_engine(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "engine_running": True,
            "auto_pilot": False,
            "distance": s.distance_start,
            "durability": s.durability_start,
            "consecutive_successes": 0,
            "consecutive_failures": 0,
        }

    def new_round(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "round_symbol": random_symbol(rng),
            "round_budget_ms": round_budget(
                context.consecutive_successes, s.base_budget_ms, s.budget_decay, s.budget_floor_ms
            ),
        }

    def drive_hit(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "distance": clamp_floor(context.distance - s.distance_step),
            "consecutive_successes": context.consecutive_successes + 1,
            "consecutive_failures": 0,
        }

    def drive_miss(penalty: int) -> Action:
        def action(context: StoryContext, event: Event) -> dict[str, Any]:
            return {
                "durability": clamp_floor(context.durability - penalty),
                "consecutive_failures": context.consecutive_failures + 1,
                "consecutive_successes": 0,
            }

        return action

    def finishes_distance(context: StoryContext, event: Event) -> bool:
        return context.distance - s.distance_step <= 0

    def breaks_down(penalty: int) -> Guard:
        def guard(context: StoryContext, event: Event) -> bool:
            return (
                context.consecutive_failures + 1 >= s.failure_limit
                or context.durability - penalty <= 0
            )

        return guard

    def count_stall(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"stall_count": context.stall_count + 1, "engine_running": False}

    def engage_autopilot(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "auto_pilot": True,
            "engine_running": True,
            "distance": s.distance_start,
            "durability": s.durability_start,
        }

    def autopilot_tick(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"distance": clamp_floor(context.distance - s.autopilot_step)}

    def autopilot_arrives(context: StoryContext, event: Event) -> bool:
        return context.distance - s.autopilot_step <= s.autopilot_arrival

    # ── Exploration and billing ─────────────────────────────────

    def conclude(ending: str) -> Action:
        def action(context: StoryContext, event: Event) -> dict[str, Any]:
            return {"ending": ending, "hours": s.hours_for(ending), "time_skipped": ending != "early"}

        return action

    def boundary_reached(context: StoryContext) -> bool:
        return context.boundary_visits >= s.boundary_limit

    def visit_boundary(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"boundary_visits": context.boundary_visits + 1}

    def bill(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"fee": context.hours * s.hourly_rate}

    def settlement_text(context: StoryContext) -> str:
        intro = _SETTLEMENT_INTRO.get(context.ending, "The meter stops.")
        return intro + " Parking time: {{hours}} h. Amount due: ${{fee}}."

    def take_email(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"email": event.text.strip()}

    def record_sync(context: StoryContext, event: Event) -> dict[str, Any]:
        offset = event.result.get("offset_ms")
        return {
            "clock_offset_ms": float(offset) if offset is not None else None,
            "server_time": str(event.result.get("server_time", "")),
            "log": context.appended(
                "ntp",
                f"Clock synced: offset {float(offset or 0):.1f} ms, "
                f"stratum {event.result.get('stratum', '?')}",
                State.TIME_SYNC.value,
            ),
        }

    def sync_fallback(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "clock_offset_ms": None,
            "server_time": now_iso(),
            "log": context.appended(
                "fail", f"Time sync failed ({event.reason}), using local time", State.TIME_SYNC.value
            ),
        }

    def notice_payload(context: StoryContext) -> dict[str, Any]:
        body = (
            f"Parking time: {context.hours} h\n"
            f"Amount due: ${context.fee}\n"
            f"Issued: {context.server_time}"
        )
        return {
            "to": context.email,
            "subject": s.notice_subject,
            "text": body,
            "html": "<p>" + body.replace("\n", "<br>") + "</p>",
        }

    def notice_sent(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "notification": Notification("Receipt sent", f"A receipt for ${context.fee} is in your inbox."),
            "log": context.appended("success", f"Receipt sent to {context.email}", State.SENDING_NOTICE.value),
        }

    def notice_failed(context: StoryContext, event: Event) -> dict[str, Any]:
        return {
            "notification": Notification("Receipt not sent", "The bank could not be reached.", ok=False),
            "log": context.appended(
                "fail", f"Receipt could not be sent: {event.reason}", State.SENDING_NOTICE.value
            ),
        }

    def unlock(context: StoryContext, event: Event) -> dict[str, Any]:
        return {"completed_before": True}

    def intro_text(context: StoryContext) -> str:
        if context.completed_before:
            return "Welcome back, VIP. The car remembers the way."
        return "It is late. You need somewhere to park."

    def parked_text(context: StoryContext) -> str:
        base = "The lot is quiet. A cat by the pillar, a plate of spaghetti, a wall that hums."
        if context.has_spaghetti:
            return base + " You are carrying the spaghetti."
        return base

    def spaghetti_text(context: StoryContext) -> str:
        if context.has_spaghetti:
            return "An empty plate. You already have the spaghetti."
        return "A steaming plate of spaghetti sits on a traffic cone."

    autopilot_choice = Transition(
        State.AUTO_PILOT,
        guard=both(chose(Branch.AUTOPILOT), on_context(completed_before)),
        actions=(engage_autopilot,),
    )
    restart = (Transition(State.INTRO_1, actions=(restart_session,)),)
    to_settlement = (Transition(State.SETTLEMENT),)

    def ending(state: State, name: str, text: str, backdrop: str) -> StateNode:
        return StateNode(
            state,
            entry=(
                conclude(name),
                scene(state, text, ("success", f"Ending reached: {name}"), backdrop=backdrop),
            ),
            timers=(Timer("ending", s.ending_durations_ms.get(name, 0)),),
            on=on(
                (EventType.TIMER, (Transition(State.SETTLEMENT, timer="ending"),)),
                (EventType.ADVANCE, to_settlement),
            ),
        )

    nodes = [
        StateNode(
            State.INTRO_1,
            entry=(scene(State.INTRO_1, intro_text, ("narrative", "Story started"), backdrop="street"),),
            on=on(
                (EventType.ADVANCE, (Transition(State.INTRO_2),)),
                (EventType.CHOOSE_BRANCH, (autopilot_choice,)),
            ),
        ),
        StateNode(
            State.INTRO_2,
            entry=(scene(State.INTRO_2, "Every lot in the city is full.", ("narrative", "Searching for a spot")),),
            on=on((EventType.ADVANCE, (Transition(State.INTRO_3),)),),
        ),
        StateNode(
            State.INTRO_3,
            entry=(
                scene(
                    State.INTRO_3,
                    "A flickering sign: MEME PARKING, open all night.",
                    ("narrative", "Found Meme Parking"),
                    backdrop="sign",
                ),
            ),
            on=on((EventType.ADVANCE, (Transition(State.TUTORIAL),)),),
        ),
        StateNode(
            State.TUTORIAL,
            entry=(
                scene(
                    State.TUTORIAL,
                    "Press the arrows exactly as shown. One wrong key and the engine stalls.",
                    ("system", "Tutorial shown"),
                    character="guide",
                ),
            ),
            on=on((EventType.ADVANCE, (Transition(State.IN_CAR),)),),
        ),
        StateNode(
            State.IN_CAR,
            entry=(
                scene(
                    State.IN_CAR,
                    "You sit behind the wheel. The key is cold.",
                    ("narrative", "In the driver's seat"),
                    backdrop="car",
                    character="narrator",
                ),
            ),
            on=on(
                (
                    EventType.ADVANCE,
                    (Transition(State.QTE_SEQUENCE, actions=(note(State.IN_CAR, "action", "Turned the key"),)),),
                ),
                (EventType.CHOOSE_BRANCH, (autopilot_choice,)),
            ),
        ),
        StateNode(
            State.QTE_SEQUENCE,
            entry=(
                deal_sequence,
                scene(State.QTE_SEQUENCE, "Start the engine: {{qte_progress}}/{{qte_length}}", ("qte", sequence_line)),
            ),
            on=on(
                (
                    EventType.KEY_INPUT,
                    (
                        Transition(guard=qte_key_correct, actions=(qte_hit,)),
                        Transition(State.ENGINE_STALL, guard=arrow_pressed, actions=(qte_miss,)),
                    ),
                ),
            ),
            always=(
                Transition(
                    State.DRIVING,
                    guard=on_context(qte_complete),
                    actions=(start_engine, note(State.QTE_SEQUENCE, "success", "Engine started")),
                ),
            ),
        ),
        StateNode(
            State.ENGINE_STALL,
            entry=(
                scene(
                    State.ENGINE_STALL,
                    "The engine coughs and dies. Stalls so far: {{stall_count}}.",
                    ("fail", "Engine stalled"),
                    backdrop="car",
                ),
            ),
            on=on(
                (EventType.RETRY, (Transition(State.QTE_SEQUENCE),)),
                (EventType.RESTART, restart),
            ),
        ),
        StateNode(
            State.DRIVING,
            entry=(
                new_round,
                scene(
                    State.DRIVING,
                    "{{distance}} cm to the gate. Durability {{durability}}.",
                    ("mqtt", lambda c: f"Round: {arrow_glyph(c.round_symbol)} within {c.round_budget_ms} ms"),
                    backdrop="road",
                ),
            ),
            timers=(Timer("round", lambda context: context.round_budget_ms),),
            on=on(
                (
                    EventType.KEY_INPUT,
                    (
                        Transition(
                            State.AT_GATE,
                            guard=both(round_key_correct, finishes_distance),
                            actions=(drive_hit,),
                        ),
                        Transition(State.DRIVING, guard=round_key_correct, actions=(drive_hit,)),
                        Transition(
                            State.ENGINE_STALL,
                            guard=both(arrow_pressed, breaks_down(s.wrong_key_penalty)),
                            actions=(drive_miss(s.wrong_key_penalty), count_stall),
                        ),
                        Transition(
                            State.DRIVING,
                            guard=arrow_pressed,
                            actions=(drive_miss(s.wrong_key_penalty), note(State.DRIVING, "fail", "Wrong key")),
                        ),
                    ),
                ),
                (
                    EventType.TIMER,
                    (
                        Transition(
                            State.ENGINE_STALL,
                            timer="round",
                            guard=breaks_down(s.timeout_penalty),
                            actions=(drive_miss(s.timeout_penalty), count_stall),
                        ),
                        Transition(
                            State.DRIVING,
                            timer="round",
                            actions=(drive_miss(s.timeout_penalty), note(State.DRIVING, "fail", "Too slow")),
                        ),
                    ),
                ),
                (EventType.DISTANCE_REACHED, (Transition(State.AT_GATE),)),
            ),
        ),
        StateNode(
            State.AUTO_PILOT,
            entry=(
                scene(
                    State.AUTO_PILOT,
                    "Auto-pilot engaged. {{distance}} cm to the gate.",
                    ("system", "Auto-pilot tick at {{distance}} cm"),
                    backdrop="road",
                ),
            ),
            timers=(Timer("autopilot", s.autopilot_interval_ms),),
            on=on(
                (
                    EventType.TIMER,
                    (
                        Transition(State.AT_GATE, timer="autopilot", guard=autopilot_arrives, actions=(autopilot_tick,)),
                        Transition(State.AUTO_PILOT, timer="autopilot", actions=(autopilot_tick,)),
                    ),
                ),
                (EventType.DISTANCE_REACHED, (Transition(State.AT_GATE),)),
            ),
        ),
        StateNode(
            State.AT_GATE,
            entry=(
                assign(engine_running=False),
                scene(
                    State.AT_GATE,
                    "You stop at the barrier. A scanner sweeps your plate.",
                    ("sensor", "Vehicle detected at gate"),
                    backdrop="gate",
                ),
            ),
            timers=(Timer("scan", s.gate_scan_ms),),
            on=on(
                (EventType.TIMER, (Transition(State.GATE_OPENING, timer="scan"),)),
                (EventType.ADVANCE, (Transition(State.PARKED),)),
            ),
        ),
        StateNode(
            State.GATE_OPENING,
            entry=(scene(State.GATE_OPENING, "The barrier lifts.", ("system", "Gate opening"), backdrop="gate"),),
            timers=(Timer("open", s.gate_open_ms),),
            on=on(
                (EventType.TIMER, (Transition(State.PARKED, timer="open"),)),
                (EventType.ADVANCE, (Transition(State.PARKED),)),
            ),
        ),
        StateNode(
            State.PARKED,
            entry=(scene(State.PARKED, parked_text, ("narrative", "Parked"), backdrop="lot"),),
            on=on(
                (
                    EventType.CHOOSE_BRANCH,
                    (
                        Transition(State.OUTCOME_CAT, guard=chose(Branch.CAT)),
                        Transition(State.OUTCOME_SPAGHETTI, guard=chose(Branch.SPAGHETTI)),
                        Transition(State.OUTCOME_BOUNDARY, guard=chose(Branch.WALL)),
                        Transition(
                            State.SETTLEMENT,
                            guard=chose(Branch.EXIT_EARLY),
                            actions=(conclude("early"), note(State.PARKED, "action", "Left early")),
                        ),
                    ),
                ),
            ),
        ),
        StateNode(
            State.OUTCOME_CAT,
            entry=(
                scene(
                    State.OUTCOME_CAT,
                    "A cat stares at you without blinking.",
                    ("narrative", "Met the cat"),
                    character="cat",
                ),
            ),
            on=on(
                (
                    EventType.CHOOSE_BRANCH,
                    (
                        Transition(State.ENDING_BLACKHOLE, guard=chose(Branch.PET)),
                        Transition(
                            State.ENDING_REMIX,
                            guard=both(chose(Branch.FEED), on_context(carrying_spaghetti)),
                            actions=(assign(has_spaghetti=False), note(State.OUTCOME_CAT, "item", "Gave the cat the spaghetti")),
                        ),
                        Transition(State.PARKED, guard=chose(Branch.BACK)),
                    ),
                ),
            ),
        ),
        StateNode(
            State.OUTCOME_SPAGHETTI,
            entry=(scene(State.OUTCOME_SPAGHETTI, spaghetti_text, ("narrative", "Found the spaghetti")),),
            on=on(
                (
                    EventType.CHOOSE_BRANCH,
                    (
                        Transition(
                            State.ENDING_DANCE,
                            guard=both(chose(Branch.EAT), negate(on_context(carrying_spaghetti))),
                        ),
                        Transition(
                            State.PARKED,
                            guard=both(chose(Branch.TAKE), negate(on_context(carrying_spaghetti))),
                            actions=(assign(has_spaghetti=True), note(State.OUTCOME_SPAGHETTI, "item", "Picked up the spaghetti")),
                        ),
                        Transition(State.PARKED, guard=chose(Branch.BACK)),
                    ),
                ),
            ),
        ),
        StateNode(
            State.OUTCOME_BOUNDARY,
            entry=(
                visit_boundary,
                scene(
                    State.OUTCOME_BOUNDARY,
                    "The wall hums louder. Visit {{boundary_visits}}.",
                    ("narrative", "Touched the wall ({{boundary_visits}})"),
                    backdrop="wall",
                ),
            ),
            always=(Transition(State.MYSTERIOUS_EVENT, guard=on_context(boundary_reached)),),
            on=on(
                (
                    EventType.CHOOSE_BRANCH,
                    (
                        Transition(guard=chose(Branch.WALL), reenter=True),
                        Transition(State.PARKED, guard=chose(Branch.BACK)),
                    ),
                ),
            ),
        ),
        StateNode(
            State.MYSTERIOUS_EVENT,
            entry=(
                conclude("mysterious"),
                scene(
                    State.MYSTERIOUS_EVENT,
                    "The wall opens. Light. Then nothing.",
                    ("success", "Ending reached: mysterious"),
                    backdrop="void",
                ),
            ),
            on=on((EventType.ADVANCE, to_settlement),),
        ),
        ending(State.ENDING_BLACKHOLE, "blackhole", "The cat's eyes widen into a black hole.", "blackhole"),
        ending(State.ENDING_DANCE, "dance", "The spaghetti starts to dance. So do you.", "disco"),
        ending(State.ENDING_REMIX, "remix", "The cat eats, then drops a beat.", "remix"),
        StateNode(
            State.SETTLEMENT,
            entry=(
                bill,
                scene(
                    State.SETTLEMENT,
                    settlement_text,
                    ("system", "Bill issued: {{hours}} h, ${{fee}}"),
                    backdrop="booth",
                    character="attendant",
                ),
            ),
            on=on((EventType.ADVANCE, (Transition(State.PAYMENT_INPUT),)),),
        ),
        StateNode(
            State.PAYMENT_INPUT,
            entry=(
                scene(
                    State.PAYMENT_INPUT,
                    "Enter your e-mail for the receipt.",
                    ("system", "Awaiting payment details"),
                ),
            ),
            on=on(
                (
                    EventType.SUBMIT_TEXT,
                    (
                        Transition(
                            State.TIME_SYNC,
                            guard=text_present,
                            actions=(take_email, note(State.PAYMENT_INPUT, "action", "Preparing e-receipt for {{email}}")),
                        ),
                        Transition(actions=(note(State.PAYMENT_INPUT, "fail", "An e-mail address is required"),)),
                    ),
                ),
                (EventType.CHOOSE_BRANCH, (Transition(State.SETTLEMENT, guard=chose(Branch.BACK)),)),
            ),
        ),
        StateNode(
            State.TIME_SYNC,
            entry=(scene(State.TIME_SYNC, "Synchronising the clock...", ("ntp", "Time query sent")),),
            invoke=Invoke(TIME_SYNC_TASK),
            on=on(
                (EventType.TASK_COMPLETED, (Transition(State.SENDING_NOTICE, guard=task_is(TIME_SYNC_TASK), actions=(record_sync,)),)),
                (EventType.TASK_FAILED, (Transition(State.SENDING_NOTICE, guard=task_is(TIME_SYNC_TASK), actions=(sync_fallback,)),)),
            ),
        ),
        StateNode(
            State.SENDING_NOTICE,
            entry=(scene(State.SENDING_NOTICE, "Contacting the bank...", ("system", "Sending receipt to {{email}}")),),
            invoke=Invoke(NOTIFY_TASK, notice_payload),
            on=on(
                (EventType.TASK_COMPLETED, (Transition(State.FINISHED, guard=task_is(NOTIFY_TASK), actions=(notice_sent,)),)),
                (EventType.TASK_FAILED, (Transition(State.FINISHED, guard=task_is(NOTIFY_TASK), actions=(notice_failed,)),)),
            ),
        ),
        StateNode(
            State.FINISHED,
            entry=(
                unlock,
                scene(
                    State.FINISHED,
                    "Thanks for parking with us. Auto-pilot is now unlocked.",
                    ("success", "Story finished"),
                    backdrop="street",
                ),
            ),
            on=on((EventType.RESTART, restart),),
        ),
    ]

    machine = Machine(nodes, State.INTRO_1)
    logger.debug("Story built: %d states", len(machine.states))
    return machine


def visited_states(log: tuple[LogEntry, ...]) -> list[str]:
    """States in the order their visits were logged, collapsing repeats."""
    order: list[str] = []
    for entry in log:
        if entry.state and (not order or order[-1] != entry.state):
            order.append(entry.state)
    return order
