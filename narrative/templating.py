"""Resolve ``{{name}}`` placeholders in narrative text against live values."""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

_TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@lru_cache(maxsize=512)
def placeholders(template: str) -> tuple[str, ...]:
    """Names referenced by a template, in order of first appearance."""
    seen: dict[str, None] = {}
    for match in _TOKEN_RE.finditer(template or ""):
        seen.setdefault(match.group(1), None)
    return tuple(seen)


@lru_cache(maxsize=1024)
def _resolve_cached(template: str, bound: tuple[tuple[str, str], ...]) -> str:
    lookup = dict(bound)

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in lookup:
            return lookup[name]
        return match.group(0)

    return _TOKEN_RE.sub(_sub, template)


def resolve(template: str, values: Mapping[str, Any]) -> str:
    """Replace known placeholders; unknown ones stay as literal ``{{name}}``.

    Only the values a template actually references take part in the cache
    key, so calling this on every render tick costs one dict scan plus a
    cache hit.
    """
    if not template:
        return ""
    names = placeholders(template)
    if not names:
        return template
    bound = tuple((name, _as_text(values[name])) for name in names if name in values)
    return _resolve_cached(template, bound)


def reveal(template: str, values: Mapping[str, Any], count: int) -> str:
    """First ``count`` characters of the resolved text (typewriter effect)."""
    text = resolve(template, values)
    if count <= 0:
        return ""
    return text[:count]
