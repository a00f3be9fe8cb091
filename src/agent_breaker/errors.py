"""agent_breaker.errors

Exception hierarchy for Agent Breaker.

Only CircuitOpenError is meant to reach the host: it fails the intercepted
tool call. Everything else is either a configuration problem raised at
construction time or an internal failure that the hooks log and absorb.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .types import GateDecision, LimitKind


class GuardrailError(Exception):
    """Base class for all Agent Breaker errors.

    Attributes:
        code: Machine-readable error code.
        guidance: User-facing hint on how to resolve the problem.
    """

    code = "GUARDRAIL_ERROR"

    def __init__(self, message: str, guidance: str = ""):
        super().__init__(message)
        self.guidance = guidance


class ConfigError(GuardrailError, ValueError):
    """Raised when guardrail configuration is invalid or cannot be loaded."""

    code = "CONFIG_ERROR"


class HookError(GuardrailError):
    """Wraps a failure inside a non-blocking hook (recorder, annotator)."""

    code = "HOOK_ERROR"


class CircuitOpenError(GuardrailError):
    """Raised by the event gate when a session's circuit is open.

    Raising this from a before-tool-call hook prevents the tool from running.
    The message is an instruction to the agent: stop calling tools and
    summarize progress.

    Attributes:
        decision: The blocking GateDecision.
        limit: Which limit tripped. On later blocks of an open circuit this
            is the limit that originally tripped it.
        reason: Short reason code, e.g. "tool_call_limit" or "circuit_open".
    """

    code = "CIRCUIT_OPEN"

    def __init__(self, decision: "GateDecision"):
        super().__init__(
            decision.message,
            guidance="Stop making tool calls and return a summary of your progress.",
        )
        self.decision = decision
        self.reason = decision.reason
        self.limit: Optional["LimitKind"] = decision.limit
