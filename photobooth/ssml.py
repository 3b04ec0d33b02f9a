#!/usr/bin/env python3
"""Speech-markup helpers for the photobooth prompt pipeline."""

from typing import Dict

SSML_PREFIX = "<speak>"
SSML_POSTFIX = "</speak>"
SHORT_BREAK = '<break time="0.5s"/>'
MEDIUM_BREAK = '<break time="1s"/>'

# Ellipsis goes first so its dots are not turned into three short pauses.
MEDIUM_PAUSE_MARKS = ("...",)
SHORT_PAUSE_MARKS = (".", ",", "!", ";", ":")

SOUND_CUES: Dict[str, str] = {
    "**shutter**": '<audio src="https://storage.googleapis.com/smart-photobooth-93105.appspot.com/sounds/shutter.mp3" />',
    "**dialup**": '<audio src="https://storage.googleapis.com/smart-photobooth-93105.appspot.com/sounds/DialUp.mp3" />',
    "**boing**": '<audio src="https://actions.google.com/sounds/v1/cartoon/cartoon_boing.ogg" />',
    "**rustling**": '<audio src="https://actions.google.com/sounds/v1/household/bacon_out_of_package.ogg" />',
}


def replace_punctuation_with_pauses(text: str) -> str:
    """Replace sentence punctuation with SSML breaks, one break per occurrence."""
    for mark in MEDIUM_PAUSE_MARKS:
        text = text.replace(mark, MEDIUM_BREAK)
    for mark in SHORT_PAUSE_MARKS:
        text = text.replace(mark, SHORT_BREAK)
    return text


def replace_sound_cues(text: str) -> str:
    """Replace **cue** tokens with audio tags."""
    for token, markup in SOUND_CUES.items():
        text = text.replace(token, markup)
    return text


def wrap(text: str) -> str:
    return SSML_PREFIX + text + SSML_POSTFIX


def to_ssml(text: str) -> str:
    """Run the full pipeline: pauses, then sound cues, then the speak wrapper.

    Sound cues are substituted after punctuation because their URLs contain dots.
    """
    text = replace_punctuation_with_pauses(text)
    text = replace_sound_cues(text)
    return wrap(text)


def join_markup(*fragments: str) -> str:
    """Concatenate wrapped fragments into a single <speak> document.

    Every inner ``</speak><speak>`` boundary is dropped, leaving one outer wrapper.
    """
    return "".join(fragments).replace(SSML_POSTFIX + SSML_PREFIX, "")


def strip_markup(text: str) -> str:
    """Plain display text for the chat surface: drop the wrapper and breaks."""
    text = text.replace(SSML_PREFIX, "").replace(SSML_POSTFIX, "")
    text = text.replace(MEDIUM_BREAK, "... ").replace(SHORT_BREAK, " ")
    for markup in SOUND_CUES.values():
        text = text.replace(markup, "")
    return " ".join(text.split())
