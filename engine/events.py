"""Events accepted by the story machine.

The inbound set is closed: anything else coming from a driver is dropped
by :meth:`Event.from_dict`. ``TIMER`` is internal and only ever produced
by the session when a state-owned timer expires.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    ADVANCE = "advance"
    RETRY = "retry"
    KEY_INPUT = "key_input"
    SUBMIT_TEXT = "submit_text"
    CHOOSE_BRANCH = "choose_branch"
    RESTART = "restart"
    DISTANCE_REACHED = "distance_reached"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TIMER = "timer"


_EXTERNAL = frozenset(t for t in EventType if t is not EventType.TIMER)


@dataclass(frozen=True)
class Event:
    type: EventType
    key: str = ""
    text: str = ""
    branch: str = ""
    task_id: str = ""
    result: dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    timer: str = ""
    epoch: int | None = None  # set on timer/task results to detect stale delivery

    # ── Constructors ────────────────────────────────────────────

    @classmethod
    def advance(cls) -> Event:
        return cls(EventType.ADVANCE)

    @classmethod
    def retry(cls) -> Event:
        return cls(EventType.RETRY)

    @classmethod
    def restart(cls) -> Event:
        return cls(EventType.RESTART)

    @classmethod
    def key_input(cls, key: str) -> Event:
        return cls(EventType.KEY_INPUT, key=key)

    @classmethod
    def submit_text(cls, text: str) -> Event:
        return cls(EventType.SUBMIT_TEXT, text=text)

    @classmethod
    def choose(cls, branch: str) -> Event:
        return cls(EventType.CHOOSE_BRANCH, branch=branch)

    @classmethod
    def distance_reached(cls) -> Event:
        return cls(EventType.DISTANCE_REACHED)

    @classmethod
    def task_completed(cls, task_id: str, result: dict[str, Any], epoch: int | None = None) -> Event:
        return cls(EventType.TASK_COMPLETED, task_id=task_id, result=dict(result), epoch=epoch)

    @classmethod
    def task_failed(cls, task_id: str, reason: str, epoch: int | None = None) -> Event:
        return cls(EventType.TASK_FAILED, task_id=task_id, reason=reason, epoch=epoch)

    @classmethod
    def timer_fired(cls, name: str, epoch: int) -> Event:
        return cls(EventType.TIMER, timer=name, epoch=epoch)

    # ── Parsing ─────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event | None:
        """Parse a driver payload. Unknown or internal types return ``None``."""
        raw_type = str(data.get("type", "")).strip().lower()
        try:
            event_type = EventType(raw_type)
        except ValueError:
            return None
        if event_type not in _EXTERNAL:
            return None

        result = data.get("result", {})
        return cls(
            type=event_type,
            key=str(data.get("key", "") or ""),
            text=str(data.get("text", data.get("email", "")) or ""),
            branch=str(data.get("branch", data.get("branch_id", "")) or ""),
            task_id=str(data.get("task_id", data.get("taskId", "")) or ""),
            result=result if isinstance(result, dict) else {},
            reason=str(data.get("reason", "") or ""),
        )
