"""Tests for the dialogue controller: action routing, commands and contexts."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from photobooth.catalog import PromptCatalog
from photobooth.commands import Command
from photobooth.config_loader import FLOW_SHARE, FLOW_STANDARD
from photobooth.conversation import SESSION_DATA_CONTEXT, Conversation
from photobooth.dialogue import Action, DialogueController
from photobooth.event_bus import EventBus, EventType
from photobooth.response_planner import ResponsePlanner, WELCOME_DELAY_OFFSET_MS
from photobooth.state_machine import (
    PICTURE_CHOSEN_FOLLOWUP,
    PICTURE_STYLE_DONE,
    PICTURE_TAKEN,
    PICTURE_TAKEN_FOLLOWUP,
    DialogueState,
)

BOOTH_ID = "booth-device"


class FakePublisher:
    def __init__(self):
        self.sent = []

    def send(self, command):
        self.sent.append(Command(command))
        return True


class FakeScheduler:
    def __init__(self):
        self.scheduled = []

    def schedule(self, command, delay_ms):
        self.scheduled.append((Command(command), delay_ms))


def make_controller(flow=FLOW_STANDARD, **kwargs):
    kwargs.setdefault("authorized_user_id", BOOTH_ID)
    planner = ResponsePlanner(PromptCatalog.load())
    return DialogueController(planner, FakePublisher(), FakeScheduler(), flow=flow, **kwargs)


def turn(controller, action, data=None, contexts=None, user_id=BOOTH_ID, session="s-1"):
    contexts = list(contexts or [])
    if data is not None:
        contexts.append({"name": SESSION_DATA_CONTEXT, "lifespan": 99, "parameters": {"data": data}})
    body = {
        "sessionId": session,
        "result": {"action": action, "contexts": contexts},
        "originalRequest": {"data": {"user": {"userId": user_id}}},
    }
    conv = Conversation(body)
    response = controller.handle(conv)
    return conv, response


def context_names(response):
    return {c["name"] for c in response["contextOut"] if c["name"] != SESSION_DATA_CONTEXT}


class TestStart:
    def test_welcome_schedules_capture(self):
        controller = make_controller()
        conv, response = turn(controller, Action.START)

        assert conv.expects_reply
        assert conv.data["retake_count"] == 0
        assert conv.data["state"] == DialogueState.WELCOME_SENT
        assert context_names(response) == {PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP}
        # First WELCOME (2500) and first TAKE_PICTURE (5200) variants
        assert controller.scheduler.scheduled == [(Command.CAPTURE, 2500 + 5200 + WELCOME_DELAY_OFFSET_MS)]
        assert controller.publisher.sent == []
        assert response["displayText"].endswith("Do you like this picture?")

    def test_rejects_other_callers(self):
        controller = make_controller()
        conv, response = turn(controller, Action.START, user_id="someone-else")

        assert not conv.expects_reply
        assert "not at the photobooth" in response["displayText"]
        assert response["contextOut"] == []
        assert controller.scheduler.scheduled == []
        assert controller.publisher.sent == []

    def test_unset_booth_id_rejects_everyone(self):
        controller = make_controller(authorized_user_id="")
        conv, response = turn(controller, Action.START, user_id="random-stranger")

        assert not conv.expects_reply
        assert "not at the photobooth" in response["displayText"]
        assert response["contextOut"] == []
        assert controller.scheduler.scheduled == []

    def test_unset_booth_id_rejects_missing_user(self):
        controller = make_controller(authorized_user_id="")
        conv, _ = turn(controller, Action.START, user_id=None)
        assert not conv.expects_reply

    def test_allow_any_caller_opt_in(self):
        controller = make_controller(authorized_user_id="", allow_any_caller=True)
        conv, _ = turn(controller, Action.START, user_id="whoever")
        assert conv.expects_reply
        assert len(controller.scheduler.scheduled) == 1


class TestRetakes:
    def test_retake_resets_and_captures(self):
        controller = make_controller()
        conv, response = turn(controller, Action.PICTURE_DENIED, data={"retake_count": 0, "state": "welcome_sent"})

        assert conv.data["retake_count"] == 1
        assert conv.expects_reply
        assert controller.publisher.sent == [Command.START_OVER]
        assert controller.scheduler.scheduled == [(Command.CAPTURE, 5200)]
        assert context_names(response) == {PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP}

    def test_fifth_retake_is_last_chance(self):
        controller = make_controller()
        conv, response = turn(controller, Action.PICTURE_DENIED, data={"retake_count": 4})

        assert conv.data["retake_count"] == 5
        assert "last one" in response["displayText"]
        assert controller.scheduler.scheduled == [(Command.CAPTURE, 5600)]

    def test_sixth_retake_ends_session(self):
        controller = make_controller()
        conv, response = turn(controller, Action.PICTURE_DENIED, data={"retake_count": 5})

        assert conv.data["retake_count"] == 6
        assert not conv.expects_reply
        assert "lot of pictures" in response["displayText"]
        assert controller.publisher.sent == [Command.START_OVER]
        assert controller.scheduler.scheduled == []

    def test_counter_carried_across_turns(self):
        controller = make_controller()
        data = {"retake_count": 0}
        for expected in range(1, 6):
            conv, _ = turn(controller, Action.PICTURE_DENIED, data=data)
            assert conv.data["retake_count"] == expected
            data = conv.data
        conv, _ = turn(controller, Action.PICTURE_DENIED, data=data)
        assert not conv.expects_reply

    def test_limit_disabled(self):
        controller = make_controller(retake_limit=0)
        conv, response = turn(controller, Action.PICTURE_DENIED, data={"retake_count": 20})
        assert conv.expects_reply
        assert "last one" not in response["displayText"]

    def test_share_flow_resets_to_preview(self):
        controller = make_controller(flow=FLOW_SHARE)
        turn(controller, Action.PICTURE_DENIED, data={"retake_count": 0})
        assert controller.publisher.sent == [Command.PREVIEW]


class TestStyleAndShare:
    def test_style_inquiry_arms_chosen_context(self):
        controller = make_controller()
        conv, response = turn(controller, Action.PICTURE_APPROVED, data={"state": "welcome_sent"})
        assert conv.expects_reply
        assert context_names(response) == {PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP, PICTURE_CHOSEN_FOLLOWUP}
        assert controller.publisher.sent == []

    def test_stall_sends_style_and_joins_markup(self):
        controller = make_controller()
        conv, response = turn(controller, Action.STYLE_PICTURE_APPROVED, data={"state": "style_inquiry"})

        assert controller.publisher.sent == [Command.STYLE]
        assert response["speech"].count("<speak>") == 1
        assert "print this photo" in response["displayText"]
        assert context_names(response) == {
            PICTURE_TAKEN, PICTURE_TAKEN_FOLLOWUP, PICTURE_CHOSEN_FOLLOWUP, PICTURE_STYLE_DONE,
        }

    def test_share_inquiry_without_styling(self):
        controller = make_controller(flow=FLOW_SHARE)
        _, response = turn(controller, Action.STYLE_PICTURE_DENIED, data={"state": "style_inquiry"})
        assert controller.publisher.sent == []
        assert "print and share" in response["displayText"]

    def test_standard_flow_prints(self):
        controller = make_controller()
        conv, response = turn(controller, Action.PICTURE_UPLOAD_APPROVED, data={"state": "share_inquiry"})
        assert not conv.expects_reply
        assert controller.publisher.sent == [Command.FINISH]
        assert "printer" in response["displayText"]
        assert "Thanks for" in response["displayText"]

    def test_share_flow_prints_and_shares(self):
        controller = make_controller(flow=FLOW_SHARE)
        _, response = turn(controller, Action.PICTURE_UPLOAD_APPROVED, data={"state": "share_inquiry"})
        assert controller.publisher.sent == [Command.FINISH_AND_SHARE]
        assert "sharing" in response["displayText"]

    def test_standard_flow_decline_just_ends(self):
        controller = make_controller()
        conv, response = turn(controller, Action.PICTURE_UPLOAD_DENIED, data={"state": "share_inquiry"})
        assert not conv.expects_reply
        assert controller.publisher.sent == []
        assert response["displayText"].startswith("Thanks for")

    def test_share_flow_decline_still_prints(self):
        controller = make_controller(flow=FLOW_SHARE)
        _, response = turn(controller, Action.PICTURE_UPLOAD_DENIED, data={"state": "share_inquiry"})
        assert controller.publisher.sent == [Command.FINISH]
        assert "printer" in response["displayText"]

    def test_cancel(self):
        controller = make_controller()
        conv, _ = turn(controller, Action.CANCEL, data={"state": "style_inquiry"})
        assert not conv.expects_reply
        assert conv.data["state"] == DialogueState.ENDED


class TestFallbackAndSideIntents:
    def test_general_fallback_while_budget_remains(self):
        controller = make_controller()
        conv, response = turn(controller, Action.FALLBACK_GENERAL,
                              contexts=[{"name": PICTURE_TAKEN, "lifespan": 2}])
        assert conv.expects_reply
        assert "catch that" in response["displayText"]

    def test_final_fallback_when_context_expired(self):
        controller = make_controller()
        conv, response = turn(controller, Action.FALLBACK_GENERAL,
                              contexts=[{"name": PICTURE_TAKEN, "lifespan": 0}])
        assert not conv.expects_reply
        assert "try again later" in response["displayText"]

    def test_final_fallback_when_context_missing(self):
        controller = make_controller()
        conv, _ = turn(controller, Action.FALLBACK_GENERAL)
        assert not conv.expects_reply

    def test_unknown_action_falls_back(self):
        controller = make_controller()
        conv, _ = turn(controller, "something_new", contexts=[{"name": PICTURE_TAKEN, "lifespan": 1}])
        assert conv.expects_reply

    def test_restart_only_schedules_capture(self):
        controller = make_controller()
        conv, _ = turn(controller, Action.START_OVER, data={"retake_count": 3, "state": "share_inquiry"})
        assert conv.data["retake_count"] == 0
        assert controller.publisher.sent == []
        assert [c for c, _ in controller.scheduler.scheduled] == [Command.CAPTURE]

    def test_help_keeps_only_picture_taken(self):
        controller = make_controller()
        for action in (Action.HELP, Action.ABOUT, Action.EASTER_EGG):
            conv, response = turn(controller, action)
            assert conv.expects_reply
            assert context_names(response) == {PICTURE_TAKEN}


class TestControllerPlumbing:
    def test_events_published(self):
        bus = EventBus()
        received = []
        for event_type in (EventType.INTENT_RECEIVED, EventType.STATE_CHANGED, EventType.RESPONSE_SENT):
            bus.subscribe(event_type, lambda event: received.append(event.type))
        controller = make_controller(event_bus=bus)
        turn(controller, Action.START)
        assert received == [EventType.INTENT_RECEIVED, EventType.STATE_CHANGED, EventType.RESPONSE_SENT]

    def test_response_event_lists_contexts(self):
        bus = EventBus()
        payloads = []
        bus.subscribe(EventType.RESPONSE_SENT, lambda event: payloads.append(event.payload))
        controller = make_controller(event_bus=bus)
        turn(controller, Action.START)
        turn(controller, Action.START, user_id="someone-else")
        assert PICTURE_TAKEN in payloads[0]["contexts"]
        assert PICTURE_TAKEN_FOLLOWUP in payloads[0]["contexts"]
        assert payloads[1]["contexts"] == []

    def test_session_cursor_forgotten_on_tell(self):
        controller = make_controller(cursor_scope="session")
        turn(controller, Action.START, session="abc")
        assert controller.planner.cursor.peek("WELCOME", "abc") == 1
        turn(controller, Action.CANCEL, data={"state": "welcome_sent"}, session="abc")
        assert controller.planner.cursor.peek("WELCOME", "abc") is None

    def test_process_cursor_shared_between_sessions(self):
        controller = make_controller()
        turn(controller, Action.START, session="a")
        turn(controller, Action.START, session="b")
        # Second WELCOME (2500) and second TAKE_PICTURE (4700) variants
        assert controller.scheduler.scheduled[1] == (Command.CAPTURE, 2500 + 4700 + WELCOME_DELAY_OFFSET_MS)

    def test_actions_listed(self):
        assert Action.START in make_controller().actions
