#!/usr/bin/env python3
"""Dialogue state definitions for the photobooth assistant."""

from typing import Dict, FrozenSet, Tuple

# Platform context names
PICTURE_TAKEN = "picture_taken"
PICTURE_TAKEN_FOLLOWUP = "intro_and_take_picture-followup"
PICTURE_CHOSEN_FOLLOWUP = "intro_and_take_picture-yes-followup"
PICTURE_STYLE_DONE = "picture_styled"

CONTEXT_LIFESPAN = 3


class DialogueState:
    """Dialogue states - one per session, stored in the session data."""
    IDLE = "idle"                           # Nothing said yet
    WELCOME_SENT = "welcome_sent"           # Countdown played, waiting for approval
    STYLE_INQUIRY = "style_inquiry"         # Picture approved, asked about style
    SHARE_INQUIRY = "share_inquiry"         # Asked whether to print/share
    ENDED = "ended"                         # Goodbye said
    TOO_MANY_PICTURES = "too_many_pictures" # Retake limit reached
    REJECTED = "rejected"                   # Caller is not the booth

    TERMINAL = frozenset({ENDED, TOO_MANY_PICTURES, REJECTED})


# Contexts armed on entering a state. Follow-up contexts route the yes/no
# intents on the platform side; picture_taken carries the fallback budget.
STATE_CONTEXTS: Dict[str, Tuple[str, ...]] = {
    DialogueState.IDLE: (),
    DialogueState.WELCOME_SENT: (PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP),
    DialogueState.STYLE_INQUIRY: (PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP, PICTURE_CHOSEN_FOLLOWUP),
    DialogueState.SHARE_INQUIRY: (
        PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP, PICTURE_CHOSEN_FOLLOWUP, PICTURE_STYLE_DONE,
    ),
    DialogueState.ENDED: (),
    DialogueState.TOO_MANY_PICTURES: (),
    DialogueState.REJECTED: (),
}

# Expected source states per target; restart and cancel are allowed from anywhere.
_ANY = frozenset({
    DialogueState.IDLE, DialogueState.WELCOME_SENT,
    DialogueState.STYLE_INQUIRY, DialogueState.SHARE_INQUIRY,
})
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DialogueState.WELCOME_SENT: _ANY | DialogueState.TERMINAL,
    DialogueState.STYLE_INQUIRY: frozenset({DialogueState.WELCOME_SENT, DialogueState.STYLE_INQUIRY}),
    DialogueState.SHARE_INQUIRY: frozenset({DialogueState.STYLE_INQUIRY, DialogueState.SHARE_INQUIRY}),
    DialogueState.ENDED: _ANY,
    DialogueState.TOO_MANY_PICTURES: frozenset({DialogueState.WELCOME_SENT}),
    DialogueState.REJECTED: _ANY | DialogueState.TERMINAL,
}


def is_expected_transition(current: str, target: str) -> bool:
    """True when the platform routed us along the designed dialogue path."""
    return current in TRANSITIONS.get(target, frozenset())


def contexts_for(state: str) -> Tuple[str, ...]:
    return STATE_CONTEXTS.get(state, ())
