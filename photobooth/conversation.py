"""Conversation adapter for API.AI / Dialogflow v1 webhook requests.

Wraps one webhook request and builds the matching response. Exposes the small
surface the dialogue controller needs: the caller identity, named contexts with
lifespans, free-form session data, and the two reply primitives ``ask``
(expect a reply) and ``tell`` (close the session).
"""

import copy
from typing import Any, Dict, List, Optional

from photobooth.ssml import strip_markup

# Session data rides in a long-lived private context, as the Actions SDK does.
SESSION_DATA_CONTEXT = "_actions_on_google_"
SESSION_DATA_LIFESPAN = 99


class Conversation:
    """One turn of a conversation."""

    def __init__(self, body: Dict[str, Any]):
        if not isinstance(body, dict):
            raise ValueError("Webhook body must be a JSON object")
        self.body = body
        self._result: Dict[str, Any] = body.get("result") or {}
        self._contexts: Dict[str, Dict[str, Any]] = {}
        for ctx in self._result.get("contexts") or []:
            if isinstance(ctx, dict) and ctx.get("name"):
                self._contexts[str(ctx["name"]).lower()] = ctx
        self._context_out: Dict[str, Dict[str, Any]] = {}

        stored = self._contexts.get(SESSION_DATA_CONTEXT, {}).get("parameters", {}) or {}
        self.data: Dict[str, Any] = copy.deepcopy(stored.get("data") or {})
        self.response: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Request accessors
    # ------------------------------------------------------------------

    @property
    def action(self) -> str:
        return str(self._result.get("action") or "")

    @property
    def query(self) -> str:
        return str(self._result.get("resolvedQuery") or "")

    @property
    def session_id(self) -> str:
        conversation = self._original_data().get("conversation") or {}
        return str(self.body.get("sessionId") or conversation.get("conversationId") or "")

    def _original_data(self) -> Dict[str, Any]:
        original = self.body.get("originalRequest") or {}
        return original.get("data") or {}

    def get_user_id(self) -> Optional[str]:
        user = self._original_data().get("user") or {}
        return user.get("userId") or user.get("user_id")

    def get_context(self, name: str) -> Optional[Dict[str, Any]]:
        """Context as received in the request, or as set earlier in this turn."""
        name = name.lower()
        if name in self._context_out:
            return self._context_out[name]
        return self._contexts.get(name)

    def context_lifespan(self, name: str) -> int:
        """Remaining lifespan of a context; 0 when the context has expired."""
        ctx = self.get_context(name)
        if not ctx:
            return 0
        return int(ctx.get("lifespan", 0) or 0)

    # ------------------------------------------------------------------
    # Response building
    # ------------------------------------------------------------------

    def set_context(self, name: str, lifespan: int, parameters: Optional[Dict[str, Any]] = None):
        self._context_out[name.lower()] = {
            "name": name,
            "lifespan": lifespan,
            "parameters": parameters or {},
        }

    @property
    def contexts_set(self) -> List[str]:
        return list(self._context_out)

    def _build(self, speech: str, expect_user_response: bool,
               no_input_prompts: Optional[List[str]] = None) -> Dict[str, Any]:
        context_out = list(self._context_out.values())
        if expect_user_response:
            context_out.append({
                "name": SESSION_DATA_CONTEXT,
                "lifespan": SESSION_DATA_LIFESPAN,
                "parameters": {"data": self.data},
            })
        self.response = {
            "speech": speech,
            "displayText": strip_markup(speech),
            "contextOut": context_out,
            "data": {
                "google": {
                    "expectUserResponse": expect_user_response,
                    "isSsml": speech.startswith("<speak>"),
                    "noInputPrompts": [
                        {"ssml": prompt} for prompt in (no_input_prompts or [])
                    ],
                }
            },
        }
        return self.response

    def ask(self, speech: str, no_input_prompts: Optional[List[str]] = None) -> Dict[str, Any]:
        """Reply and keep the session open."""
        return self._build(speech, True, no_input_prompts)

    def tell(self, speech: str) -> Dict[str, Any]:
        """Reply and end the session."""
        return self._build(speech, False)

    @property
    def expects_reply(self) -> bool:
        if self.response is None:
            return False
        return bool(self.response["data"]["google"]["expectUserResponse"])
