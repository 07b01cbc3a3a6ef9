"""Replay a scripted play-through on a virtual clock.

Usage:
    python scripts/replay.py script.yaml
    python scripts/replay.py script.yaml --out transcript.yaml --live

Script format (YAML)::

    completed_before: false
    seed: 7
    steps:
      - advance                       # bare event type
      - {type: key_input, key: expected}   # "expected" = the key the story wants
      - {type: choose_branch, branch: cat}
      - {wait: 3000}                  # advance the virtual clock (ms)
      - {type: submit_text, text: me@example.com}

Without ``--live`` the time-sync and notify tasks answer with canned
results instead of calling the relay.
"""

from __future__ import annotations

import asyncio
import random
import sys
from pathlib import Path
from typing import Any

import click
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from engine.config import load_config, relay_settings
from engine.events import EventType
from engine.session import Session, build_session
from engine.story import NOTIFY_TASK, TIME_SYNC_TASK, State
from engine.tasks import relay_adapters
from engine.timers import ManualScheduler
from relay import RelayClient


async def _canned_time(payload: dict[str, Any]) -> dict[str, Any]:
    return {"offset_ms": 0.0, "round_trip_ms": 0.0, "stratum": 0, "server_time": "replay"}


async def _canned_notify(payload: dict[str, Any]) -> dict[str, Any]:
    return {"message": f"simulated send to {payload.get('to', '')}", "message_id": "replay"}


CANNED_ADAPTERS = {TIME_SYNC_TASK: _canned_time, NOTIFY_TASK: _canned_notify}


def _expected_key(session: Session) -> str:
    context = session.context
    if session.state is State.QTE_SEQUENCE:
        return context.qte.expected or ""
    return context.round_symbol


def _normalise_step(step: Any) -> dict[str, Any]:
    if isinstance(step, str):
        return {"type": step}
    if isinstance(step, dict):
        return dict(step)
    raise click.BadParameter(f"Unsupported step: {step!r}")


async def run_script(session: Session, steps: list[Any]) -> list[str]:
    """Apply the steps in order, returning one line per step for the transcript."""
    lines: list[str] = []
    session.start()
    for raw in steps:
        step = _normalise_step(raw)
        if "wait" in step:
            fired = session.advance_clock(int(step["wait"]))
            await session.wait_tasks()
            lines.append(f"wait {step['wait']} ms ({fired} timer(s)) -> {session.state.value}")
            continue
        if step.get("type") == EventType.KEY_INPUT.value and step.get("key") == "expected":
            step["key"] = _expected_key(session)
        accepted = session.send_raw(step)
        await session.wait_tasks()
        verdict = "" if accepted else " (ignored)"
        lines.append(f"{step.get('type')}{verdict} -> {session.state.value}")
    return lines


async def _replay(cfg: dict, script: dict[str, Any], live: bool) -> tuple[Session, list[str]]:
    completed_before = bool(script.get("completed_before", False))
    rng = random.Random(script.get("seed"))
    if not live:
        session = build_session(cfg, CANNED_ADAPTERS, ManualScheduler(), completed_before, rng)
        async with session:
            return session, await run_script(session, script.get("steps", []))

    base_url, timeout = relay_settings(cfg)
    async with RelayClient(base_url, timeout=timeout) as relay:
        session = build_session(cfg, relay_adapters(relay), ManualScheduler(), completed_before, rng)
        async with session:
            return session, await run_script(session, script.get("steps", []))


@click.command()
@click.argument("script_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
@click.option("--out", type=click.Path(), default=None, help="Write a YAML transcript here")
@click.option("--live", is_flag=True, help="Use the relay for time sync and notifications")
def replay(script_path: str, config_dir: str | None, out: str | None, live: bool) -> None:
    """Replay a scripted event list headlessly."""
    cfg = load_config(config_dir)
    with open(script_path, encoding="utf-8") as f:
        script = yaml.safe_load(f) or {}

    session, lines = asyncio.run(_replay(cfg, script, live))
    for line in lines:
        click.echo(f"  {line}")

    context = session.context
    click.echo(f"\nFinal state: {session.state.value}")
    click.echo(f"Trail: {' > '.join(s.value for s in session.trail)}")
    click.echo(f"Summary: {context.summary()}")

    if out:
        transcript = {
            "final_state": session.state.value,
            "trail": [s.value for s in session.trail],
            "steps": lines,
            "summary": context.summary(),
            "log": [
                {"state": e.state, "category": e.category, "text": e.text, "timestamp": e.timestamp}
                for e in context.log
            ],
        }
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            yaml.safe_dump(transcript, f, sort_keys=False, allow_unicode=True)
        click.echo(f"Transcript written to {out}")


if __name__ == "__main__":
    replay()
