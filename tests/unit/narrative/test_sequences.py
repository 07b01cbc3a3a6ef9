"""Tests for arrow sequences and the driving difficulty ramp."""

import random

from narrative import ARROWS, arrow_glyph, generate_sequence, normalize_key, random_symbol, round_budget


def test_generate_sequence_uses_arrow_alphabet():
    seq = generate_sequence(4, random.Random(1))
    assert len(seq) == 4
    assert all(symbol in ARROWS for symbol in seq)


def test_generate_sequence_is_reproducible_with_seed():
    assert generate_sequence(6, random.Random(42)) == generate_sequence(6, random.Random(42))


def test_generate_sequence_negative_length_is_empty():
    assert generate_sequence(-1, random.Random(0)) == ()


def test_random_symbol_in_alphabet():
    rng = random.Random(3)
    assert {random_symbol(rng) for _ in range(50)} <= set(ARROWS)


class TestRoundBudget:
    def test_base_with_no_streak(self):
        assert round_budget(0) == 3000

    def test_decays_per_success(self):
        assert round_budget(1) == 2700
        assert round_budget(2) == 2430
        assert round_budget(3) == 2187

    def test_never_below_floor(self):
        assert round_budget(50) == 500
        assert round_budget(1000) == 500

    def test_negative_streak_counts_as_zero(self):
        assert round_budget(-5) == 3000

    def test_custom_parameters(self):
        assert round_budget(1, base_ms=1000, decay=0.5, floor_ms=100) == 500
        assert round_budget(5, base_ms=1000, decay=0.5, floor_ms=100) == 100


class TestNormalizeKey:
    def test_dom_key_names(self):
        assert normalize_key("ArrowUp") == "ArrowUp"
        assert normalize_key("arrowleft") == "ArrowLeft"

    def test_words_wasd_and_glyphs(self):
        assert normalize_key("down") == "ArrowDown"
        assert normalize_key("D") == "ArrowRight"
        assert normalize_key(" w ") == "ArrowUp"
        assert normalize_key("←") == "ArrowLeft"

    def test_unknown_or_empty(self):
        assert normalize_key("x") is None
        assert normalize_key("") is None
        assert normalize_key(None) is None


def test_arrow_glyph():
    assert arrow_glyph("ArrowRight") == "→"
    assert arrow_glyph("other") == "other"
