"""Tests for prompt selection, speech markup and capture delays."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from photobooth.catalog import PromptCatalog
from photobooth.response_planner import (
    PromptShapeError,
    ResponseCursor,
    ResponsePlanner,
    UnknownPromptError,
    WELCOME_DELAY_OFFSET_MS,
)
from photobooth.ssml import MEDIUM_BREAK, SHORT_BREAK, SOUND_CUES


def make_planner(**extra):
    prompts = {
        "WELCOME": [["Hi", 2000], ["Hello", 2100]],
        "TAKE_PICTURE": [["Smile **shutter**", 5000], ["Cheese **shutter**", 4000]],
        "APPROVAL_INQUIRY": ["Do you like it?"],
        "GREETING": ["A", "B", "C"],
        "ONLY": ["Just me"],
    }
    prompts.update(extra)
    return ResponsePlanner(PromptCatalog(prompts))


class TestVariantCycling:
    def test_wraps_back_to_first_variant(self):
        planner = make_planner()
        served = [planner.render("GREETING") for _ in range(5)]
        assert served == [
            "<speak>A</speak>",
            "<speak>B</speak>",
            "<speak>C</speak>",
            "<speak>A</speak>",
            "<speak>B</speak>",
        ]

    def test_cursor_after_wrap(self):
        cursor = ResponseCursor()
        assert [cursor.advance("X", 2) for _ in range(4)] == [0, 1, 0, 1]
        assert cursor.peek("X") == 2

    def test_cursor_past_end_serves_first(self):
        cursor = ResponseCursor()
        cursor.advance("X", 5)
        cursor.advance("X", 5)
        cursor.advance("X", 5)
        # Catalog shrank to two variants
        assert cursor.advance("X", 2) == 0
        assert cursor.peek("X") == 1

    def test_single_variant_does_not_touch_cursor(self):
        planner = make_planner()
        assert planner.render("ONLY") == "<speak>Just me</speak>"
        assert planner.render("ONLY") == "<speak>Just me</speak>"
        assert planner.cursor.peek("ONLY") is None

    def test_prompts_cycle_independently(self):
        planner = make_planner(OTHER=["x", "y"])
        planner.render("GREETING")
        assert planner.render("OTHER") == "<speak>x</speak>"
        assert planner.render("GREETING") == "<speak>B</speak>"

    def test_session_scopes_are_isolated(self):
        planner = make_planner()
        assert planner.render("GREETING", scope="s1") == "<speak>A</speak>"
        assert planner.render("GREETING", scope="s2") == "<speak>A</speak>"
        assert planner.render("GREETING", scope="s1") == "<speak>B</speak>"

    def test_forget_drops_one_scope(self):
        planner = make_planner()
        planner.render("GREETING", scope="s1")
        planner.render("GREETING", scope="s2")
        planner.cursor.forget("s1")
        assert planner.cursor.peek("GREETING", "s1") is None
        assert planner.cursor.peek("GREETING", "s2") == 1


class TestRendering:
    def test_period_and_comma_become_short_breaks(self):
        planner = make_planner(PUNCT=["Hi. Yes, ok"])
        assert planner.render("PUNCT") == f"<speak>Hi{SHORT_BREAK} Yes{SHORT_BREAK} ok</speak>"

    def test_ellipsis_is_one_medium_break(self):
        planner = make_planner(DOTS=["Wait... now"])
        assert planner.render("DOTS") == f"<speak>Wait{MEDIUM_BREAK} now</speak>"

    def test_bare_sound_cue(self):
        planner = make_planner(CUE=["**shutter**"])
        assert planner.render("CUE") == "<speak>" + SOUND_CUES["**shutter**"] + "</speak>"

    def test_explicit_index(self):
        planner = make_planner()
        assert planner.render("GREETING", index=2) == "<speak>C</speak>"
        assert planner.cursor.peek("GREETING") is None

    def test_index_out_of_range(self):
        planner = make_planner()
        with pytest.raises(UnknownPromptError):
            planner.render("GREETING", index=3)

    def test_unknown_prompt(self):
        planner = make_planner()
        with pytest.raises(UnknownPromptError):
            planner.render("NOPE")

    def test_render_with_delay(self):
        planner = make_planner()
        text, delay = planner.render_with_delay("TAKE_PICTURE", index=1)
        assert text == "<speak>Cheese " + SOUND_CUES["**shutter**"] + "</speak>"
        assert delay == 4000

    def test_render_with_delay_on_plain_prompt(self):
        planner = make_planner()
        with pytest.raises(PromptShapeError):
            planner.render_with_delay("GREETING")


class TestCapturePrompts:
    def test_welcome_delay(self):
        planner = make_planner()
        text, delay = planner.render_welcome()
        assert delay == 2000 + 5000 + WELCOME_DELAY_OFFSET_MS
        assert text.startswith("<speak>Hi")
        assert text.endswith("Do you like it?</speak>")
        assert SOUND_CUES["**shutter**"] in text

    def test_welcome_advances_both_cursors(self):
        planner = make_planner()
        planner.render_welcome()
        _, delay = planner.render_welcome()
        assert delay == 2100 + 4000 + WELCOME_DELAY_OFFSET_MS

    def test_take_picture(self):
        planner = make_planner()
        text, delay = planner.render_take_picture()
        assert delay == 5000
        assert text.count(MEDIUM_BREAK) == 2
        assert text.endswith("Do you like it?</speak>")

    def test_delay_adjust(self):
        planner = ResponsePlanner(make_planner().catalog, delay_adjust=0.5)
        _, delay = planner.render_take_picture()
        assert delay == 2500

    def test_bundled_catalog_renders_every_prompt(self):
        planner = ResponsePlanner(PromptCatalog.load())
        for name in planner.catalog.names():
            assert planner.render(name).startswith("<speak>")
        _, delay = planner.render_welcome()
        assert delay > WELCOME_DELAY_OFFSET_MS
