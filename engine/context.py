"""The story context: the session's only mutable state.

The context is a frozen dataclass. Actions never mutate it; they return
the fields to change and the machine builds the next value with
:func:`dataclasses.replace`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DISTANCE = 500
DEFAULT_DURABILITY = 100


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def clamp_floor(value: int, floor: int = 0) -> int:
    return value if value > floor else floor


@dataclass(frozen=True)
class LogEntry:
    category: str  # "narrative", "system", "action", "qte", "fail", "success", ...
    text: str
    timestamp: str = ""
    state: str = ""  # state that produced the entry


@dataclass(frozen=True)
class Challenge:
    """An ordered key sequence and how far the player has got through it."""

    symbols: tuple[str, ...] = ()
    progress: int = 0

    @property
    def expected(self) -> str | None:
        if self.progress < len(self.symbols):
            return self.symbols[self.progress]
        return None

    @property
    def complete(self) -> bool:
        return bool(self.symbols) and self.progress >= len(self.symbols)

    def advanced(self) -> Challenge:
        return replace(self, progress=self.progress + 1)

    def reset(self) -> Challenge:
        return replace(self, progress=0)


@dataclass(frozen=True)
class Notification:
    """In-story phone notification shown to the player."""

    title: str
    body: str
    ok: bool = True


@dataclass(frozen=True)
class StoryContext:
    """Working memory of one play session."""

    # Presentation
    text: str = ""  # may contain unresolved {{placeholders}}
    scene: str = "black"
    character: str = "narrator"

    # Ignition QTE
    qte: Challenge = field(default_factory=Challenge)
    stall_count: int = 0

    # Driving
    distance: int = DEFAULT_DISTANCE
    durability: int = DEFAULT_DURABILITY
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    round_symbol: str = ""
    round_budget_ms: int = 0
    engine_running: bool = False
    auto_pilot: bool = False

    # Exploration
    has_spaghetti: bool = False
    boundary_visits: int = 0
    time_skipped: bool = False

    # Billing
    ending: str = ""
    hours: int = 0
    fee: int = 0

    # Settlement
    email: str = ""
    clock_offset_ms: float | None = None
    server_time: str = ""
    notification: Notification | None = None

    # History
    log: tuple[LogEntry, ...] = ()

    # Survives restart
    completed_before: bool = False

    @classmethod
    def initial(cls, completed_before: bool = False) -> StoryContext:
        return cls(completed_before=completed_before)

    def reset(self) -> StoryContext:
        """Fresh context for a restart; only the replay unlock carries over."""
        logger.debug("Context reset (completed_before=%s)", self.completed_before)
        return StoryContext.initial(completed_before=self.completed_before)

    def as_changes(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def apply(self, changes: dict[str, Any] | None) -> StoryContext:
        if not changes:
            return self
        return replace(self, **changes)

    def appended(self, category: str, text: str, state: str = "") -> tuple[LogEntry, ...]:
        """The log with one more entry; the existing entries are never touched."""
        return self.log + (LogEntry(category=category, text=text, timestamp=now_iso(), state=state),)

    def template_values(self) -> dict[str, Any]:
        """Scalar fields usable as ``{{name}}`` in narrative text."""
        values: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (str, int, float, bool)) or value is None:
                values[f.name] = value
        values["qte_progress"] = self.qte.progress
        values["qte_length"] = len(self.qte.symbols)
        return values

    def summary(self) -> dict[str, Any]:
        """Compact snapshot for logs and the terminal status line."""
        return {
            "distance": self.distance,
            "durability": self.durability,
            "hours": self.hours,
            "fee": self.fee,
            "ending": self.ending,
            "completed_before": self.completed_before,
            "log_entries": len(self.log),
        }
