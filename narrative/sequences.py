"""Input challenges: arrow sequences for the QTE and per-round driving prompts."""

from __future__ import annotations

import random

ARROWS = ("ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight")

_GLYPHS = {
    "ArrowUp": "↑",
    "ArrowDown": "↓",
    "ArrowLeft": "←",
    "ArrowRight": "→",
}

_KEY_ALIASES = {
    "arrowup": "ArrowUp",
    "arrowdown": "ArrowDown",
    "arrowleft": "ArrowLeft",
    "arrowright": "ArrowRight",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "w": "ArrowUp",
    "s": "ArrowDown",
    "a": "ArrowLeft",
    "d": "ArrowRight",
    "↑": "ArrowUp",
    "↓": "ArrowDown",
    "←": "ArrowLeft",
    "→": "ArrowRight",
}


def generate_sequence(length: int = 4, rng: random.Random | None = None) -> tuple[str, ...]:
    """Uniformly random arrow sequence of the given length."""
    rng = rng or random.Random()
    return tuple(rng.choice(ARROWS) for _ in range(max(0, length)))


def random_symbol(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return rng.choice(ARROWS)


def round_budget(
    consecutive_successes: int,
    base_ms: int = 3000,
    decay: float = 0.9,
    floor_ms: int = 500,
) -> int:
    """Time allowed for one driving round.

    Each consecutive success shrinks the budget by ``decay``; callers reset
    the streak on any failure, which puts the budget straight back at base.
    """
    streak = max(0, consecutive_successes)
    return int(round(max(floor_ms, base_ms * (decay ** streak))))


def normalize_key(raw: str | None) -> str | None:
    """Map keyboard input (``ArrowUp``, ``up``, ``w``, ``↑``) to an arrow symbol."""
    if not raw:
        return None
    text = raw.strip()
    if text in _GLYPHS:
        return text
    return _KEY_ALIASES.get(text.lower())


def arrow_glyph(symbol: str) -> str:
    return _GLYPHS.get(symbol, symbol)
