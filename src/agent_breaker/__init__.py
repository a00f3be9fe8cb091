"""Agent Breaker: a per-session circuit breaker for tool-using LLM agents.

Watches each session's tool-call stream for runaway behaviour (too many
calls, too long, tight repetition loops, error streaks), raises a sticky
soft warning first, then opens the circuit and blocks every further call.

Quick start:
    from agent_breaker import CircuitOpenError, GuardrailsConfig, create_guardrail_hooks

    hooks = create_guardrail_hooks(GuardrailsConfig(max_tool_calls=100))
    hooks.before_tool_call("ses_1", "read_file", {"path": "README.md"})
"""

from .annotator import HARD_LIMIT_BANNER, WARNING_BANNER, MessageAnnotator
from .async_middleware import AsyncGuardrailHooks
from .config import GuardrailLimits, GuardrailProfile, GuardrailsConfig, load_config
from .errors import CircuitOpenError, ConfigError, GuardrailError, HookError
from .evaluator import ThresholdEvaluator
from .fingerprint import fingerprint
from .gate import EventGate
from .middleware import DisabledGuardrailHooks, GuardrailHooks, create_guardrail_hooks
from .recorder import OutcomeRecorder, is_error_output
from .session import SessionState, SessionStore
from .telemetry import CompositeTelemetry, InMemoryTelemetry, LoggingTelemetry, Telemetry
from .types import GateAction, GateDecision, LimitKind, SessionStatus, ToolCall, ToolCallRecord

__version__ = "0.1.0"

__all__ = [
    # High-level API
    "create_guardrail_hooks",
    "GuardrailHooks",
    "DisabledGuardrailHooks",
    "AsyncGuardrailHooks",
    # Components
    "EventGate",
    "MessageAnnotator",
    "OutcomeRecorder",
    "SessionState",
    "SessionStore",
    "ThresholdEvaluator",
    "fingerprint",
    "is_error_output",
    "HARD_LIMIT_BANNER",
    "WARNING_BANNER",
    # Config
    "GuardrailsConfig",
    "GuardrailLimits",
    "GuardrailProfile",
    "load_config",
    # Types
    "GateAction",
    "GateDecision",
    "LimitKind",
    "SessionStatus",
    "ToolCall",
    "ToolCallRecord",
    # Errors
    "GuardrailError",
    "CircuitOpenError",
    "ConfigError",
    "HookError",
    # Telemetry
    "Telemetry",
    "LoggingTelemetry",
    "InMemoryTelemetry",
    "CompositeTelemetry",
]
