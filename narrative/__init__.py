"""Narrative helpers: text templating and input challenges."""

from .sequences import (
    ARROWS,
    arrow_glyph,
    generate_sequence,
    normalize_key,
    random_symbol,
    round_budget,
)
from .templating import placeholders, resolve, reveal

__all__ = [
    "ARROWS",
    "arrow_glyph",
    "generate_sequence",
    "normalize_key",
    "placeholders",
    "random_symbol",
    "resolve",
    "reveal",
    "round_budget",
]
