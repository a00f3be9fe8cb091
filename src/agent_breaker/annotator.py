"""agent_breaker.annotator

Prepends a warning or stop banner to the newest outgoing message of a
flagged session.

This is the second channel for a trip: the gate raises CircuitOpenError,
and the annotator puts the same instruction in front of the model, because
the host does not guarantee the order in which the two are delivered.

Expected message shape (one dict per message):

    {"info": {"role": "user", "session_id": "ses_1"},
     "parts": [{"type": "text", "text": "..."}]}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .session import SessionState, SessionStore
from .telemetry import Telemetry

logger = logging.getLogger("agent_breaker.annotator")

HARD_LIMIT_BANNER = (
    "[CIRCUIT BREAKER ACTIVE: You have exceeded your resource limits. "
    "Do NOT make any more tool calls. Immediately return a summary of your "
    "progress so far. Any further tool calls will be blocked.]"
)
WARNING_BANNER = (
    "[GUARDRAIL WARNING: You are approaching resource limits. Please wrap up "
    "your current task efficiently. Avoid unnecessary tool calls and prepare "
    "to return your results soon.]"
)

_SESSION_KEYS = ("session_id", "sessionID")


def banner_for(session: Optional[SessionState]) -> Optional[str]:
    if session is None:
        return None
    if session.hard_limit_hit:
        return HARD_LIMIT_BANNER
    if session.warning_issued:
        return WARNING_BANNER
    return None


def prepend_banner(text: str, banner: str) -> str:
    """Banner, blank line, original text. Already-bannered text is returned as is."""
    if text.startswith(banner):
        return text
    return f"{banner}\n\n{text}"


def message_session_id(message: Dict[str, Any]) -> Optional[str]:
    info = message.get("info")
    if not isinstance(info, dict):
        return None
    for key in _SESSION_KEYS:
        value = info.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def first_text_part(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    parts = message.get("parts")
    if not isinstance(parts, list):
        return None
    for part in parts:
        if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
            return part
    return None


class MessageAnnotator:
    def __init__(self, store: SessionStore, telemetry: Optional[Telemetry] = None):
        self.store = store
        self.telemetry = telemetry

    def resolve_session(self, messages: List[Dict[str, Any]]) -> Optional[SessionState]:
        """Session of the newest message, or the most recently flagged one.

        The fallback covers batches whose newest message carries no session
        id. An explicit id that is unknown or unflagged does not fall back.
        """
        session_id = message_session_id(messages[-1])
        if session_id is not None:
            return self.store.get(session_id)
        return self.store.most_recently_flagged()

    def transform(self, messages: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
        """Annotate `messages` in place and return the same list."""
        if not messages:
            return messages

        session = self.resolve_session(messages)
        banner = banner_for(session)
        if banner is None:
            return messages

        part = first_text_part(messages[-1])
        if part is None:
            return messages

        original = part["text"]
        part["text"] = prepend_banner(original, banner)
        if part["text"] != original:
            logger.debug("Injected %s banner for session %s", session.status.value, session.session_id)
            if self.telemetry:
                self.telemetry.emit(
                    "banner_injected",
                    session_id=session.session_id, status=session.status.value,
                )
        return messages
