"""Tests for the story context, events and configuration."""

from __future__ import annotations

import pytest

from engine.config import DEFAULT_RELAY_URL, StorySettings, load_config, relay_settings, story_settings
from engine.context import Challenge, StoryContext, clamp_floor
from engine.events import Event, EventType


class TestChallenge:
    def test_expected_and_complete(self):
        challenge = Challenge(("ArrowUp", "ArrowDown"))
        assert challenge.expected == "ArrowUp"
        assert not challenge.complete
        challenge = challenge.advanced().advanced()
        assert challenge.expected is None
        assert challenge.complete

    def test_empty_challenge_is_never_complete(self):
        assert not Challenge().complete

    def test_reset_keeps_symbols(self):
        challenge = Challenge(("ArrowLeft",), 1).reset()
        assert challenge.progress == 0
        assert challenge.symbols == ("ArrowLeft",)


class TestStoryContext:
    def test_apply_returns_new_value(self):
        context = StoryContext()
        changed = context.apply({"distance": 475})
        assert changed.distance == 475
        assert context.distance == 500
        assert context.apply({}) is context

    def test_appended_log_leaves_original_untouched(self):
        context = StoryContext()
        log = context.appended("system", "hello", "intro_1")
        assert context.log == ()
        assert log[-1].text == "hello"
        assert log[-1].state == "intro_1"
        assert log[-1].timestamp

    def test_reset_keeps_only_the_unlock(self):
        context = StoryContext(completed_before=True, hours=3, has_spaghetti=True, email="a@b.c")
        fresh = context.reset()
        assert fresh == StoryContext(completed_before=True)

    def test_template_values_are_scalars(self):
        values = StoryContext(qte=Challenge(("ArrowUp",) * 4, 2), fee=120).template_values()
        assert values["fee"] == 120
        assert values["qte_progress"] == 2
        assert values["qte_length"] == 4
        assert "log" not in values
        assert "qte" not in values

    def test_summary(self):
        summary = StoryContext(ending="dance", hours=3, fee=180).summary()
        assert summary["ending"] == "dance"
        assert summary["fee"] == 180
        assert summary["log_entries"] == 0


def test_clamp_floor():
    assert clamp_floor(-10) == 0
    assert clamp_floor(40) == 40
    assert clamp_floor(3, floor=5) == 5


class TestEventParsing:
    def test_known_types(self):
        assert Event.from_dict({"type": "advance"}) == Event.advance()
        assert Event.from_dict({"type": "KEY_INPUT", "key": "ArrowUp"}) == Event.key_input("ArrowUp")

    def test_alias_fields(self):
        assert Event.from_dict({"type": "submit_text", "email": "me@x.org"}).text == "me@x.org"
        assert Event.from_dict({"type": "choose_branch", "branch_id": "cat"}).branch == "cat"

    def test_unknown_and_internal_types_are_rejected(self):
        assert Event.from_dict({"type": "fly"}) is None
        assert Event.from_dict({}) is None
        assert Event.from_dict({"type": "timer", "timer": "round"}) is None

    def test_driver_events_carry_no_epoch(self):
        event = Event.from_dict({"type": "task_completed", "task_id": "notify", "epoch": 3})
        assert event.type is EventType.TASK_COMPLETED
        assert event.epoch is None

    def test_non_dict_result_is_dropped(self):
        event = Event.from_dict({"type": "task_completed", "result": "ok"})
        assert event.result == {}


class TestConfig:
    def _write(self, tmp_path, text: str):
        (tmp_path / "settings.yaml").write_text(text, encoding="utf-8")
        return tmp_path

    def test_missing_settings_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_secrets_and_relay_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GMAIL_USER", "parking@example.com")
        monkeypatch.setenv("GMAIL_APP_PASSWORD", "app-pass")
        monkeypatch.setenv("PARKING_RELAY_URL", "http://relay.local:9000")
        cfg = load_config(self._write(tmp_path, "relay:\n  timeout: 4\n"))
        assert cfg["_secrets"] == {"smtp_user": "parking@example.com", "smtp_password": "app-pass"}
        assert relay_settings(cfg) == ("http://relay.local:9000", 4.0)

    def test_relay_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PARKING_RELAY_URL", "")
        cfg = load_config(self._write(tmp_path, ""))
        assert relay_settings(cfg) == (DEFAULT_RELAY_URL, 10.0)

    def test_story_settings_merge_sections(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PARKING_RELAY_URL", "")
        cfg = load_config(
            self._write(
                tmp_path,
                "driving:\n  distance: 200\n  step: 50\n"
                "timing:\n  endings_ms:\n    dance: 1000\n"
                "billing:\n  hourly_rate: 10\n  ending_hours:\n    remix: 9\n",
            )
        )
        settings = story_settings(cfg)
        assert settings.distance_start == 200
        assert settings.distance_step == 50
        assert settings.durability_start == 100
        assert settings.ending_durations_ms == {"blackhole": 7000, "dance": 1000, "remix": 12000}
        assert settings.hourly_rate == 10
        assert settings.hours_for("remix") == 9
        assert settings.hours_for("early") == 1

    def test_shipped_settings_match_defaults(self, monkeypatch):
        monkeypatch.setenv("PARKING_RELAY_URL", "")
        assert story_settings(load_config()) == StorySettings()

    def test_empty_qte_sequence_rejected(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PARKING_RELAY_URL", "")
        cfg = load_config(self._write(tmp_path, "qte:\n  length: 0\n"))
        with pytest.raises(ValueError, match="qte.length"):
            story_settings(cfg)
        with pytest.raises(ValueError):
            StorySettings(qte_length=-1)
