"""Configuration loading from settings.yaml and .env."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_RELAY_URL = "http://127.0.0.1:3001"

_DEFAULT_ENDING_HOURS = {
    "early": 1,
    "blackhole": 2,
    "dance": 3,
    "remix": 4,
    "mysterious": 5,
}

_DEFAULT_ENDING_DURATIONS_MS = {
    "blackhole": 7000,
    "dance": 29000,
    "remix": 12000,
}


def load_config(
    config_dir: str | Path | None = None,
) -> dict:
    """Load settings.yaml and .env, return merged config dict."""
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    config_dir = Path(config_dir)

    # Load .env (silently skip if missing)
    env_path = config_dir / ".env"
    load_dotenv(env_path)

    # Load settings.yaml
    settings_path = config_dir / "settings.yaml"
    if not settings_path.exists():
        raise FileNotFoundError(f"Config not found: {settings_path}")

    with open(settings_path, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    relay_url = os.getenv("PARKING_RELAY_URL", "")
    if relay_url:
        cfg.setdefault("relay", {})["base_url"] = relay_url

    # Inject env vars into config for convenience
    cfg["_secrets"] = {
        "smtp_user": os.getenv("GMAIL_USER", ""),
        "smtp_password": os.getenv("GMAIL_APP_PASSWORD", ""),
    }

    return cfg


@dataclass(frozen=True)
class StorySettings:
    """Tunables of the story graph and its mini-games."""

    qte_length: int = 4

    distance_start: int = 500
    durability_start: int = 100
    distance_step: int = 25
    wrong_key_penalty: int = 10
    timeout_penalty: int = 20
    failure_limit: int = 3
    base_budget_ms: int = 3000
    budget_decay: float = 0.9
    budget_floor_ms: int = 500

    autopilot_step: int = 20
    autopilot_interval_ms: int = 100
    autopilot_arrival: int = 50

    gate_scan_ms: int = 3000
    gate_open_ms: int = 1500
    boundary_limit: int = 3

    hourly_rate: int = 60
    ending_hours: dict[str, int] = field(default_factory=lambda: dict(_DEFAULT_ENDING_HOURS))
    ending_durations_ms: dict[str, int] = field(
        default_factory=lambda: dict(_DEFAULT_ENDING_DURATIONS_MS)
    )
    notice_subject: str = "Meme Parking - payment notice"

    def __post_init__(self) -> None:
        # an empty sequence could never be completed
        if self.qte_length < 1:
            raise ValueError(f"qte.length must be at least 1, got {self.qte_length}")

    @classmethod
    def from_config(cls, cfg: dict[str, Any] | None) -> StorySettings:
        cfg = cfg or {}
        qte = cfg.get("qte", {})
        driving = cfg.get("driving", {})
        autopilot = cfg.get("autopilot", {})
        timing = cfg.get("timing", {})
        billing = cfg.get("billing", {})
        defaults = cls()
        return cls(
            qte_length=int(qte.get("length", defaults.qte_length)),
            distance_start=int(driving.get("distance", defaults.distance_start)),
            durability_start=int(driving.get("durability", defaults.durability_start)),
            distance_step=int(driving.get("step", defaults.distance_step)),
            wrong_key_penalty=int(driving.get("wrong_key_penalty", defaults.wrong_key_penalty)),
            timeout_penalty=int(driving.get("timeout_penalty", defaults.timeout_penalty)),
            failure_limit=int(driving.get("failure_limit", defaults.failure_limit)),
            base_budget_ms=int(driving.get("base_budget_ms", defaults.base_budget_ms)),
            budget_decay=float(driving.get("budget_decay", defaults.budget_decay)),
            budget_floor_ms=int(driving.get("budget_floor_ms", defaults.budget_floor_ms)),
            autopilot_step=int(autopilot.get("step", defaults.autopilot_step)),
            autopilot_interval_ms=int(autopilot.get("interval_ms", defaults.autopilot_interval_ms)),
            autopilot_arrival=int(autopilot.get("arrival_distance", defaults.autopilot_arrival)),
            gate_scan_ms=int(timing.get("gate_scan_ms", defaults.gate_scan_ms)),
            gate_open_ms=int(timing.get("gate_open_ms", defaults.gate_open_ms)),
            boundary_limit=int(cfg.get("exploration", {}).get("boundary_limit", defaults.boundary_limit)),
            hourly_rate=int(billing.get("hourly_rate", defaults.hourly_rate)),
            ending_hours={**defaults.ending_hours, **billing.get("ending_hours", {})},
            ending_durations_ms={**defaults.ending_durations_ms, **timing.get("endings_ms", {})},
            notice_subject=str(billing.get("notice_subject", defaults.notice_subject)),
        )

    def hours_for(self, ending: str) -> int:
        return int(self.ending_hours.get(ending, 1))


def story_settings(cfg: dict[str, Any] | None) -> StorySettings:
    return StorySettings.from_config(cfg)


def relay_settings(cfg: dict[str, Any] | None) -> tuple[str, float]:
    """Base URL and timeout for the relay client."""
    relay = (cfg or {}).get("relay", {})
    return str(relay.get("base_url", DEFAULT_RELAY_URL)), float(relay.get("timeout", 10.0))
