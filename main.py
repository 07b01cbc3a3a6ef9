"""Entry point for the Meme Parking story.

Usage:
    python main.py                        # Play in the terminal
    python main.py --completed-before     # Start with auto-pilot unlocked
    python main.py --seed 7 --verbose     # Reproducible sequences, debug logging
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys

import click

from engine.config import load_config, relay_settings, story_settings
from engine.projection import View, to_event
from engine.session import Session
from engine.story import State, build_story
from engine.tasks import TaskRunner, relay_adapters
from engine.timers import LoopScheduler
from relay import RelayClient

_QUIT = {"q", "quit", "exit"}


def _setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    fmt = "%(asctime)s — %(name)s — %(levelname)s — %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=fmt, handlers=handlers)

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _render(view: View) -> None:
    click.echo()
    click.secho(f"[{view.state.value}]", dim=True)
    click.echo(view.text)

    qte = view.widgets.get("qte")
    if qte:
        marks = [f"({s})" if i < qte["progress"] else f" {s} " for i, s in enumerate(qte["symbols"])]
        click.echo("  " + "".join(marks))

    driving = view.widgets.get("driving")
    if driving:
        if driving["auto_pilot"]:
            click.echo(f"  auto-pilot | {driving['distance']} cm")
        else:
            click.secho(
                f"  press {driving['symbol']} within {driving['budget_ms']} ms"
                f" | {driving['distance']} cm | durability {driving['durability']}",
                bold=True,
            )

    note = view.widgets.get("notification")
    if note:
        click.secho(f"  📱 {note['title']}: {note['body']}", fg="green" if note["ok"] else "red")

    for i, action in enumerate(view.actions, start=1):
        click.echo(f"  {i}. {action.label}")
    if "text_input" in view.widgets:
        click.echo(f"  (type your e-mail, e.g. {view.widgets['text_input']['placeholder']})")


async def _play(session: Session) -> None:
    changed = asyncio.Event()
    session.subscribe(lambda step: changed.set())
    session.start()

    pending: asyncio.Future | None = None
    while True:
        view = session.view()
        _render(view)
        changed.clear()
        waiter = asyncio.ensure_future(changed.wait())

        if not view.actions:
            await waiter
            continue

        if pending is None:
            pending = asyncio.ensure_future(asyncio.to_thread(sys.stdin.readline))
        done, _ = await asyncio.wait({pending, waiter}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
        if pending not in done:
            continue

        line = pending.result()
        pending = None
        if not line or line.strip().lower() in _QUIT:
            break

        event = to_event(session.view(), line)
        if event is None:
            click.echo("  ?")
            continue
        session.send(event)


def _print_summary(session: Session) -> None:
    context = session.context
    click.echo("\n── Log ──")
    for entry in context.log:
        click.echo(f"  {entry.state:<18} {entry.category:<9} {entry.text}")
    summary = context.summary()
    click.echo(
        f"\n  ending={summary['ending'] or '-'} hours={summary['hours']} fee=${summary['fee']}"
        f" unlocked={summary['completed_before']}\n"
    )


async def _run(cfg: dict, seed: int | None, completed_before: bool) -> None:
    base_url, timeout = relay_settings(cfg)
    machine = build_story(story_settings(cfg), rng=random.Random(seed))
    async with RelayClient(base_url, timeout=timeout) as relay:
        session = Session(
            machine,
            runner=TaskRunner(relay_adapters(relay)),
            scheduler=LoopScheduler(),
            completed_before=completed_before,
        )
        async with session:
            await _play(session)
            _print_summary(session)
            if session.state is not State.FINISHED:
                click.echo("  (left before the receipt)")


@click.command()
@click.option("--config-dir", type=click.Path(), default=None, help="Config directory")
@click.option("--seed", type=int, default=None, help="Seed for key sequences")
@click.option("--completed-before", is_flag=True, help="Start with auto-pilot unlocked")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--log-file", type=click.Path(), default=None, help="Also write logs to this file")
def main(
    config_dir: str | None,
    seed: int | None,
    completed_before: bool,
    verbose: bool,
    log_file: str | None,
) -> None:
    """Meme Parking: drive to the lot, park, and settle the bill."""

    cfg = load_config(config_dir)

    log_file = log_file or cfg.get("storage", {}).get("log_file")
    _setup_logging(verbose=verbose, log_file=log_file)

    click.echo("Arrow keys: type up/down/left/right, w/a/s/d or an action number. q quits.")
    try:
        asyncio.run(_run(cfg, seed, completed_before))
    except KeyboardInterrupt:
        click.echo("\nThe meter stops.")


if __name__ == "__main__":
    main()
