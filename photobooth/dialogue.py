#!/usr/bin/env python3
"""
Dialogue controller for the photobooth assistant.

One handler per platform action. Each handler moves the session to its
DialogueState (which arms the fallback contexts), asks the ResponsePlanner for
speech, emits booth commands and answers with ``ask`` or ``tell``.

Two deployment flows share this controller:
- standard: the booth prints the selected photo;
- share: the booth prints and shares it, and retakes reset to the live preview.
"""

from typing import Any, Callable, Dict, Optional

from photobooth.commands import Command, CommandPublisher, CommandScheduler
from photobooth.config_loader import (
    BoothConfig,
    CURSOR_SCOPE_SESSION,
    FLOW_SHARE,
    FLOW_STANDARD,
)
from photobooth.conversation import Conversation
from photobooth.event_bus import EventBus, EventType
from photobooth.response_planner import ResponsePlanner
from photobooth.ssml import join_markup
from photobooth.state_machine import (
    CONTEXT_LIFESPAN,
    PICTURE_TAKEN,
    DialogueState,
    contexts_for,
    is_expected_transition,
)
from photobooth.utils import booth_log


class Action:
    """Platform action names routed to the controller."""
    START = "start"
    PICTURE_DENIED = "picture_denied"
    PICTURE_APPROVED = "picture_approved"
    STYLE_PICTURE_APPROVED = "style_picture_approved"
    STYLE_PICTURE_DENIED = "style_picture_denied"
    PICTURE_UPLOAD_APPROVED = "picture_upload_approved"
    PICTURE_UPLOAD_DENIED = "picture_upload_denied"
    FALLBACK_GENERAL = "fallback_general"
    START_OVER = "start_over"
    CANCEL = "cancel"
    HELP = "help"
    ABOUT = "about"
    EASTER_EGG = "easter_egg"


class DialogueController:
    """Maps platform actions to dialogue handlers."""

    def __init__(
        self,
        planner: ResponsePlanner,
        publisher: CommandPublisher,
        scheduler: CommandScheduler,
        authorized_user_id: str = "",
        allow_any_caller: bool = False,
        flow: str = FLOW_STANDARD,
        retake_limit: int = 6,
        last_chance_at: int = 5,
        cursor_scope: str = "process",
        context_lifespan: int = CONTEXT_LIFESPAN,
        event_bus: Optional[EventBus] = None,
    ):
        self.planner = planner
        self.publisher = publisher
        self.scheduler = scheduler
        self.authorized_user_id = authorized_user_id
        self.allow_any_caller = allow_any_caller
        self.flow = flow
        self.retake_limit = retake_limit
        self.last_chance_at = last_chance_at
        self.cursor_scope = cursor_scope
        self.context_lifespan = context_lifespan
        self.event_bus = event_bus

        share = flow == FLOW_SHARE
        self.reset_command = Command.PREVIEW if share else Command.START_OVER
        self.finish_command = Command.FINISH_AND_SHARE if share else Command.FINISH
        self.inquiry_prompt = "SHARE_INQUIRY" if share else "SELECT_PHOTO_INQUIRY"
        self.selected_prompt = "SHARING_PHOTO" if share else "SELECTING_PHOTO"

        self._actions: Dict[str, Callable[[Conversation], Dict[str, Any]]] = {
            Action.START: self.start,
            Action.PICTURE_DENIED: self.take_picture,
            Action.PICTURE_APPROVED: self.style_picture_inquiry,
            Action.STYLE_PICTURE_APPROVED: self.share_inquiry_stall,
            Action.STYLE_PICTURE_DENIED: self.share_inquiry,
            Action.PICTURE_UPLOAD_APPROVED: self.photo_selected,
            Action.PICTURE_UPLOAD_DENIED: self.photo_not_shared,
            Action.FALLBACK_GENERAL: self.fallback_general,
            Action.START_OVER: self.restart,
            Action.CANCEL: self.end,
            Action.HELP: self.help,
            Action.ABOUT: self.about,
            Action.EASTER_EGG: self.easter_egg,
        }

    @classmethod
    def from_config(cls, config: BoothConfig, planner: ResponsePlanner, publisher: CommandPublisher,
                    scheduler: CommandScheduler, event_bus: Optional[EventBus] = None) -> "DialogueController":
        return cls(
            planner,
            publisher,
            scheduler,
            authorized_user_id=config.authorized_user_id,
            allow_any_caller=config.allow_any_caller,
            flow=config.flow,
            retake_limit=config.retake_limit,
            last_chance_at=config.last_chance_at,
            cursor_scope=config.cursor_scope,
            context_lifespan=config.context_lifespan,
            event_bus=event_bus,
        )

    @property
    def actions(self):
        return sorted(self._actions)

    # ------------------------------------------------------------------
    # Dispatch and helpers
    # ------------------------------------------------------------------

    def handle(self, conv: Conversation) -> Dict[str, Any]:
        """Route one webhook turn; unknown actions get the general fallback."""
        action = conv.action
        handler = self._actions.get(action)
        if handler is None:
            booth_log("DIALOGUE", f"Unknown action '{action}', using fallback", level="WARNING")
            handler = self.fallback_general
        self._emit(EventType.INTENT_RECEIVED, {"action": action, "session": conv.session_id})

        response = handler(conv)

        booth_log("DIALOGUE", f"Response: {response['speech']}", level="DEBUG")
        self._emit(EventType.RESPONSE_SENT, {
            "action": action,
            "session": conv.session_id,
            "text": response["displayText"],
            "expect_reply": conv.expects_reply,
            "contexts": conv.contexts_set,
        })
        if not conv.expects_reply and self.cursor_scope == CURSOR_SCOPE_SESSION:
            self.planner.cursor.forget(conv.session_id)
        return response

    def _emit(self, event_type: EventType, payload: Dict[str, Any]):
        if self.event_bus:
            self.event_bus.publish(event_type, payload, source="dialogue")

    def _scope(self, conv: Conversation) -> Optional[str]:
        if self.cursor_scope == CURSOR_SCOPE_SESSION:
            return conv.session_id
        return None

    def _render(self, conv: Conversation, name: str) -> str:
        return self.planner.render(name, scope=self._scope(conv))

    def _enter(self, conv: Conversation, state: str):
        """Move the session to ``state`` and arm the contexts that state keeps alive."""
        current = conv.data.get("state", DialogueState.IDLE)
        if not is_expected_transition(current, state):
            booth_log("DIALOGUE", f"Unexpected transition {current} -> {state}", level="WARNING")
        conv.data["state"] = state
        for name in contexts_for(state):
            conv.set_context(name, self.context_lifespan)
        if current != state:
            self._emit(EventType.STATE_CHANGED, {"session": conv.session_id, "from": current, "to": state})

    def is_authorized(self, user_id) -> bool:
        """Only the configured booth device may start a session; an unset id admits nobody."""
        if self.allow_any_caller:
            return True
        return bool(self.authorized_user_id) and user_id == self.authorized_user_id

    def _capture_later(self, delay_ms: float):
        booth_log("DIALOGUE", f"Command delay: {delay_ms:.0f} ms")
        self.scheduler.schedule(Command.CAPTURE, delay_ms)

    # ------------------------------------------------------------------
    # Welcome and capture
    # ------------------------------------------------------------------

    def start(self, conv: Conversation) -> Dict[str, Any]:
        """Welcome the visitor and take the first picture."""
        user_id = conv.get_user_id()
        booth_log("DIALOGUE", f"User ID: {user_id}")
        if not self.is_authorized(user_id):
            booth_log("DIALOGUE", "Caller is not the photobooth, rejecting", level="WARNING")
            conv.data["state"] = DialogueState.REJECTED
            return conv.tell(self._render(conv, "NOT_IN_PHOTOBOOTH"))

        conv.data["retake_count"] = 0
        self._enter(conv, DialogueState.WELCOME_SENT)
        response, delay = self.planner.render_welcome(scope=self._scope(conv))
        self._capture_later(delay)
        return conv.ask(response)

    def take_picture(self, conv: Conversation) -> Dict[str, Any]:
        """Retake the picture after the visitor turned the last one down."""
        count = int(conv.data.get("retake_count", 0) or 0) + 1
        conv.data["retake_count"] = count
        booth_log("DIALOGUE", f"Retake #{count}")

        if self.retake_limit and count >= self.retake_limit:
            self._enter(conv, DialogueState.TOO_MANY_PICTURES)
            self.publisher.send(self.reset_command)
            return conv.tell(self._render(conv, "TOO_MANY_PICTURES"))

        last_chance = bool(self.retake_limit and self.last_chance_at and count >= self.last_chance_at)
        self._enter(conv, DialogueState.WELCOME_SENT)
        response, delay = self.planner.render_take_picture(
            scope=self._scope(conv),
            prompt="LAST_CHANCE" if last_chance else "TAKE_PICTURE",
        )

        # Back to the live preview so the screen stops showing the rejected shot
        self.publisher.send(self.reset_command)
        self._capture_later(delay)
        return conv.ask(response)

    # ------------------------------------------------------------------
    # Style and share
    # ------------------------------------------------------------------

    def style_picture_inquiry(self, conv: Conversation) -> Dict[str, Any]:
        self._enter(conv, DialogueState.STYLE_INQUIRY)
        return conv.ask(self._render(conv, "STYLE_INQUIRY"))

    def share_inquiry_stall(self, conv: Conversation) -> Dict[str, Any]:
        """Style the photo, filling the wait with a stalling line before the inquiry."""
        self._enter(conv, DialogueState.SHARE_INQUIRY)
        response = join_markup(
            self._render(conv, "STYLE_STALLING"),
            self._render(conv, self.inquiry_prompt),
        )
        self.publisher.send(Command.STYLE)
        return conv.ask(response)

    def share_inquiry(self, conv: Conversation) -> Dict[str, Any]:
        self._enter(conv, DialogueState.SHARE_INQUIRY)
        return conv.ask(self._render(conv, self.inquiry_prompt))

    def photo_selected(self, conv: Conversation) -> Dict[str, Any]:
        """Finish the photo (print, and share in the share flow) and say goodbye."""
        self._enter(conv, DialogueState.ENDED)
        response = join_markup(
            self._render(conv, self.selected_prompt),
            self._render(conv, "END"),
        )
        self.publisher.send(self.finish_command)
        return conv.tell(response)

    def photo_not_shared(self, conv: Conversation) -> Dict[str, Any]:
        """Visitor declined: the share flow still prints, the standard flow just ends."""
        if self.flow != FLOW_SHARE:
            return self.end(conv)
        self._enter(conv, DialogueState.ENDED)
        response = join_markup(
            self._render(conv, "SELECTING_PHOTO"),
            self._render(conv, "END"),
        )
        self.publisher.send(Command.FINISH)
        return conv.tell(response)

    def end(self, conv: Conversation) -> Dict[str, Any]:
        self._enter(conv, DialogueState.ENDED)
        return conv.tell(self._render(conv, "END"))

    # ------------------------------------------------------------------
    # Fallback and side intents
    # ------------------------------------------------------------------

    def fallback_general(self, conv: Conversation) -> Dict[str, Any]:
        """Invite a retry until the picture_taken budget runs out."""
        if conv.context_lifespan(PICTURE_TAKEN) == 0:
            booth_log("DIALOGUE", "Final fallback")
            return conv.tell(self._render(conv, "FALLBACK_FINAL"))
        booth_log("DIALOGUE", "General fallback")
        return conv.ask(self._render(conv, "FALLBACK_GENERAL"))

    def restart(self, conv: Conversation) -> Dict[str, Any]:
        """Start over from the welcome, from any point of the dialogue."""
        conv.data["retake_count"] = 0
        self._enter(conv, DialogueState.WELCOME_SENT)
        response, delay = self.planner.render_welcome(scope=self._scope(conv))
        self._capture_later(delay)
        return conv.ask(response)

    def _side_answer(self, conv: Conversation, prompt: str) -> Dict[str, Any]:
        conv.set_context(PICTURE_TAKEN, self.context_lifespan)
        return conv.ask(self._render(conv, prompt))

    def help(self, conv: Conversation) -> Dict[str, Any]:
        return self._side_answer(conv, "HELP")

    def about(self, conv: Conversation) -> Dict[str, Any]:
        return self._side_answer(conv, "ABOUT")

    def easter_egg(self, conv: Conversation) -> Dict[str, Any]:
        return self._side_answer(conv, "EASTER_EGGS")
