#!/usr/bin/env python3
"""Response selection and pacing for the photobooth dialogue.

The planner cycles through each prompt's variants, turns the chosen text into
speech markup and reports the delay (in milliseconds) from the start of
playback to the shutter moment for capture prompts.
"""

import threading
from typing import Dict, Hashable, Optional, Tuple

from photobooth.catalog import PromptCatalog, PromptShapeError, UnknownPromptError, Variant
from photobooth.ssml import to_ssml
from photobooth.utils import booth_log

__all__ = [
    "ResponseCursor",
    "ResponsePlanner",
    "UnknownPromptError",
    "PromptShapeError",
    "GENERAL_DELAY_ADJUST",
    "WELCOME_DELAY_OFFSET_MS",
]

GENERAL_DELAY_ADJUST = 1.0
WELCOME_DELAY_OFFSET_MS = 3000

APPROVAL_INQUIRY = "APPROVAL_INQUIRY"
CAPTURE_PAUSE = "... ... "


class ResponseCursor:
    """Per-prompt index of the next variant to serve.

    Keys are ``(scope, prompt_name)``; scope is None for the process-wide cursor
    and a session id when cursors are isolated per conversation.
    """

    def __init__(self):
        self._positions: Dict[Tuple[Optional[Hashable], str], int] = {}
        self._lock = threading.Lock()

    def advance(self, name: str, count: int, scope: Optional[Hashable] = None) -> int:
        """Return the index to serve now and move the cursor.

        An unset cursor, or one that has run past the last variant, serves
        index 0 and leaves the cursor at 1.
        """
        key = (scope, name)
        with self._lock:
            current = self._positions.get(key)
            if current is not None and current < count:
                self._positions[key] = current + 1
                return current
            self._positions[key] = 1
            return 0

    def peek(self, name: str, scope: Optional[Hashable] = None) -> Optional[int]:
        with self._lock:
            return self._positions.get((scope, name))

    def forget(self, scope: Hashable):
        """Drop all cursors of one scope (e.g. a finished session)."""
        with self._lock:
            for key in [k for k in self._positions if k[0] == scope]:
                del self._positions[key]

    def reset(self):
        with self._lock:
            self._positions.clear()


class ResponsePlanner:
    """Chooses prompt variants and renders them as speech markup."""

    def __init__(self, catalog: PromptCatalog, cursor: Optional[ResponseCursor] = None,
                 delay_adjust: float = GENERAL_DELAY_ADJUST):
        self.catalog = catalog
        self.cursor = cursor or ResponseCursor()
        self.delay_adjust = delay_adjust

    def select_variant(self, name: str, scope: Optional[Hashable] = None) -> Variant:
        """Next variant of a prompt per the cursor rule."""
        variants = self.catalog.variants(name)
        if len(variants) == 1:
            return variants[0]
        return variants[self.cursor.advance(name, len(variants), scope)]

    def _resolve(self, name: str, index: Optional[int], scope: Optional[Hashable]) -> Variant:
        if index is None:
            return self.select_variant(name, scope)
        variants = self.catalog.variants(name)
        if not 0 <= index < len(variants):
            raise UnknownPromptError(f"{name}[{index}]")
        return variants[index]

    @staticmethod
    def _split(name: str, variant: Variant) -> Tuple[str, int]:
        if isinstance(variant, tuple):
            return variant
        raise PromptShapeError(f"Prompt '{name}' has no command delay")

    @staticmethod
    def _text(variant: Variant) -> str:
        return variant[0] if isinstance(variant, tuple) else variant

    def render(self, name: str, index: Optional[int] = None, scope: Optional[Hashable] = None) -> str:
        """Speech markup for one prompt (cycling, or a fixed variant when index is given)."""
        return to_ssml(self._text(self._resolve(name, index, scope)))

    def render_with_delay(self, name: str, index: Optional[int] = None,
                          scope: Optional[Hashable] = None) -> Tuple[str, float]:
        """Speech markup plus the command delay carried by the variant."""
        text, delay = self._split(name, self._resolve(name, index, scope))
        return to_ssml(text), delay * self.delay_adjust

    def render_welcome(self, scope: Optional[Hashable] = None) -> Tuple[str, float]:
        """Greeting, capture countdown and approval question as one utterance.

        The delay runs until the shutter sound, so the approval question is not counted.
        """
        welcome, welcome_delay = self._split("WELCOME", self.select_variant("WELCOME", scope))
        capture, capture_delay = self._split("TAKE_PICTURE", self.select_variant("TAKE_PICTURE", scope))
        approval = self._text(self._resolve(APPROVAL_INQUIRY, 0, scope))

        response = to_ssml(welcome + ", " + capture + CAPTURE_PAUSE + approval)
        delay = (welcome_delay + capture_delay + WELCOME_DELAY_OFFSET_MS) * self.delay_adjust
        booth_log("PLANNER", f"Welcome rendered, shutter in {delay:.0f} ms", level="DEBUG")
        return response, delay

    def render_take_picture(self, scope: Optional[Hashable] = None,
                            prompt: str = "TAKE_PICTURE") -> Tuple[str, float]:
        """Capture countdown followed by the approval question."""
        capture, delay = self._split(prompt, self.select_variant(prompt, scope))
        approval = self._text(self._resolve(APPROVAL_INQUIRY, 0, scope))
        return to_ssml(capture + CAPTURE_PAUSE + approval), delay * self.delay_adjust
