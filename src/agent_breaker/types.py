"""agent_breaker.types

Shared value types: session status, limit kinds, tool-call records and
gate decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SessionStatus(Enum):
    """Guardrail state of one session.

    Allowed transitions: NORMAL -> WARNED, NORMAL -> BLOCKED, WARNED -> BLOCKED.
    Nothing leaves BLOCKED; only deleting the session clears it.
    """
    NORMAL = "normal"
    WARNED = "warned"
    BLOCKED = "blocked"


class LimitKind(Enum):
    """The four trip conditions, in evaluation order."""
    TOOL_CALLS = "tool_call_limit"
    DURATION = "duration_limit"
    REPETITION = "repetition_limit"
    CONSECUTIVE_ERRORS = "consecutive_error_limit"


class GateAction(Enum):
    ALLOW = "allow"
    BLOCK = "block"


@dataclass(frozen=True)
class ToolCallRecord:
    """One entry of a session's recent-call ring."""
    tool_name: str
    fingerprint: int
    timestamp: float


@dataclass
class ToolCall:
    """A tool call as seen by the host, before execution."""
    session_id: str
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)
    agent_name: Optional[str] = None


@dataclass
class GateDecision:
    """Verdict for one intercepted tool call.

    For BLOCK decisions `message` is the instruction shown to the agent and
    `limit`/`current`/`configured` identify what tripped. `warning_issued` is
    True only on the call that moved the session into the WARNED state.
    """
    action: GateAction
    reason: str = ""
    message: str = ""
    limit: Optional[LimitKind] = None
    current: Optional[float] = None
    configured: Optional[float] = None
    warning_issued: bool = False

    @property
    def allowed(self) -> bool:
        return self.action == GateAction.ALLOW

    @property
    def blocked(self) -> bool:
        return self.action == GateAction.BLOCK
