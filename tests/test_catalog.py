"""Tests for the prompt catalog and speech-markup helpers."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from photobooth.catalog import PromptCatalog, PromptShapeError, UnknownPromptError
from photobooth.ssml import (
    MEDIUM_BREAK,
    SHORT_BREAK,
    join_markup,
    strip_markup,
    to_ssml,
)

REQUIRED_PROMPTS = (
    "WELCOME", "TAKE_PICTURE", "LAST_CHANCE", "APPROVAL_INQUIRY", "NOT_IN_PHOTOBOOTH",
    "STYLE_INQUIRY", "STYLE_STALLING", "SELECT_PHOTO_INQUIRY", "SHARE_INQUIRY",
    "SELECTING_PHOTO", "SHARING_PHOTO", "TOO_MANY_PICTURES", "END",
    "FALLBACK_GENERAL", "FALLBACK_FINAL", "HELP", "ABOUT", "EASTER_EGGS",
)


class TestPromptCatalog:
    def test_bundled_catalog_has_all_prompts(self):
        catalog = PromptCatalog.load()
        for name in REQUIRED_PROMPTS:
            assert name in catalog, name
            assert len(catalog.variants(name)) >= 1

    def test_capture_prompts_carry_delays(self):
        catalog = PromptCatalog.load()
        for name in ("WELCOME", "TAKE_PICTURE", "LAST_CHANCE"):
            assert catalog.is_delayed(name)
        assert not catalog.is_delayed("END")

    def test_variant_shapes(self):
        catalog = PromptCatalog({
            "A": ["plain"],
            "B": [["pair", 100]],
            "C": [{"text": "mapping", "delay": 200}],
        })
        assert catalog.variants("A") == ("plain",)
        assert catalog.variants("B") == (("pair", 100),)
        assert catalog.variants("C") == (("mapping", 200),)

    def test_unknown_prompt(self):
        catalog = PromptCatalog({"A": ["x"]})
        with pytest.raises(UnknownPromptError):
            catalog.variants("B")

    def test_unknown_prompt_is_a_key_error(self):
        assert issubclass(UnknownPromptError, KeyError)

    def test_empty_prompt_rejected(self):
        with pytest.raises(PromptShapeError):
            PromptCatalog({"A": []})

    def test_invalid_variant_rejected(self):
        with pytest.raises(PromptShapeError):
            PromptCatalog({"A": [42]})

    def test_catalog_is_read_only(self):
        catalog = PromptCatalog({"A": ["x"]})
        with pytest.raises(TypeError):
            catalog._prompts["B"] = ("y",)

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "prompts.yaml"
        path.write_text("HELLO:\n  - \"Hi\"\n  - [\"Bye\", 10]\n", encoding="utf-8")
        catalog = PromptCatalog.load(str(path))
        assert catalog.names() == ["HELLO"]
        assert catalog.variants("HELLO") == ("Hi", ("Bye", 10))


class TestSsml:
    def test_exclamation_semicolon_colon(self):
        assert to_ssml("a! b; c:") == f"<speak>a{SHORT_BREAK} b{SHORT_BREAK} c{SHORT_BREAK}</speak>"

    def test_question_mark_untouched(self):
        assert to_ssml("Ready?") == "<speak>Ready?</speak>"

    def test_join_markup_single_wrapper(self):
        joined = join_markup(to_ssml("One"), to_ssml("Two"), to_ssml("Three"))
        assert joined == "<speak>OneTwoThree</speak>"
        assert joined.count("<speak>") == 1

    def test_strip_markup(self):
        assert strip_markup(to_ssml("Hi. Ready... go **shutter**")) == "Hi Ready... go"

    def test_medium_break(self):
        assert MEDIUM_BREAK in to_ssml("and...")
