"""agent_breaker.recorder

The post-call interception point: classify the tool output and update the
session's consecutive-error streak.

Classification is a text heuristic, not a structured error check: an output
is an error when it is missing, empty, or mentions "error" anywhere
(case-insensitive). A successful result that merely talks about errors
(e.g. a grep for "error") counts as a failure.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from .fingerprint import stable_json_dumps
from .session import SessionStore
from .telemetry import Telemetry

logger = logging.getLogger("agent_breaker.recorder")


def output_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, (bytes, bytearray)):
        return bytes(result).decode("utf-8", errors="replace")
    if isinstance(result, (Mapping, list, tuple)):
        return stable_json_dumps(result)
    return str(result)


def is_error_output(result: Any) -> bool:
    if result is None:
        return True
    if isinstance(result, (str, bytes, bytearray, Mapping, list, tuple)) and len(result) == 0:
        return True
    text = output_text(result)
    return text == "" or "error" in text.lower()


class OutcomeRecorder:
    def __init__(self, store: SessionStore, telemetry: Optional[Telemetry] = None):
        self.store = store
        self.telemetry = telemetry

    def after_tool_call(self, session_id: str, tool_name: str, result: Any) -> Optional[bool]:
        """Record the outcome of a call.

        Returns True for an error, False for success, None when the session
        is unknown (disabled, never admitted, or swept in between).
        """
        session = self.store.get(session_id)
        if session is None:
            return None

        if is_error_output(result):
            session.consecutive_errors += 1
            logger.debug(
                "Tool '%s' failed in session %s (streak=%d)",
                tool_name, session_id, session.consecutive_errors,
            )
            if self.telemetry:
                self.telemetry.emit(
                    "tool_error_recorded",
                    session_id=session_id, tool=tool_name,
                    consecutive_errors=session.consecutive_errors,
                )
            return True

        session.consecutive_errors = 0
        return False
