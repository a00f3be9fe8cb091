"""agent_breaker.middleware

The hook set a host wires into its tool-call lifecycle (the "3-hook API").

Usage:
    from agent_breaker import CircuitOpenError, GuardrailsConfig, create_guardrail_hooks

    hooks = create_guardrail_hooks(GuardrailsConfig(max_tool_calls=50))

    # Before each tool execution (raises to block)
    try:
        hooks.before_tool_call(session_id, "read_file", {"path": "a.py"})
    except CircuitOpenError as exc:
        return tool_failure(str(exc))

    # After each tool execution
    hooks.after_tool_call(session_id, "read_file", output)

    # Before each outgoing message batch
    messages = hooks.transform_messages(messages)
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .annotator import MessageAnnotator
from .config import GuardrailsConfig
from .errors import CircuitOpenError
from .evaluator import ThresholdEvaluator
from .gate import EventGate
from .recorder import OutcomeRecorder
from .session import SessionStore
from .telemetry import Telemetry
from .types import GateAction, GateDecision
from .utils import safe_hook

logger = logging.getLogger("agent_breaker")


class GuardrailHooks:
    """Event gate, outcome recorder and message annotator over one store.

    Args:
        config: Resolved GuardrailsConfig. Defaults are used when omitted.
        store: SessionStore to share. A new one is built from the config
            (idle_timeout_minutes) when omitted.
        telemetry: Optional Telemetry for guardrail events.
        clock: Wall-clock source in seconds. Injected for tests.

    Constructing GuardrailHooks with a disabled config yields a
    DisabledGuardrailHooks instance.
    """

    def __new__(cls, config: Optional[GuardrailsConfig] = None, **kwargs: Any) -> "GuardrailHooks":
        if cls is GuardrailHooks and config is not None and not config.enabled:
            cls = DisabledGuardrailHooks
        return super().__new__(cls)

    def __init__(
        self,
        config: Optional[GuardrailsConfig] = None,
        *,
        store: Optional[SessionStore] = None,
        telemetry: Optional[Telemetry] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.cfg = config or GuardrailsConfig()
        self.clock = clock or time.time
        self.telemetry = telemetry
        self.store = store or SessionStore(
            stale_after_seconds=self.cfg.stale_after_seconds,
            clock=self.clock,
            telemetry=telemetry,
        )
        self.evaluator = ThresholdEvaluator(self.cfg, clock=self.clock)
        self.gate = EventGate(self.store, self.evaluator, telemetry=telemetry)
        self.recorder = OutcomeRecorder(self.store, telemetry=telemetry)
        self.annotator = MessageAnnotator(self.store, telemetry=telemetry)

        # Public counters
        self.calls_allowed: int = 0
        self.calls_blocked: int = 0
        self.warnings_issued: int = 0
        self.circuits_opened: int = 0
        self.errors_recorded: int = 0

    @property
    def enabled(self) -> bool:
        return True

    # ─────────────────────────────────────────
    # 3-Hook API
    # ─────────────────────────────────────────

    def before_tool_call(
        self,
        session_id: str,
        tool_name: str,
        args: Any = None,
        agent_name: Optional[str] = None,
    ) -> GateDecision:
        """Admit a tool call or raise CircuitOpenError to block it."""
        try:
            decision = self.gate.before_tool_call(session_id, tool_name, args, agent_name=agent_name)
        except CircuitOpenError as exc:
            self.calls_blocked += 1
            if exc.reason != "circuit_open":
                self.circuits_opened += 1
            raise
        self.calls_allowed += 1
        if decision.warning_issued:
            self.warnings_issued += 1
        return decision

    def after_tool_call(self, session_id: str, tool_name: str, result: Any) -> None:
        """Record a tool's output. Never raises."""
        if self._record(session_id, tool_name, result):
            self.errors_recorded += 1

    @safe_hook
    def _record(self, session_id: str, tool_name: str, result: Any) -> Optional[bool]:
        return self.recorder.after_tool_call(session_id, tool_name, result)

    def transform_messages(self, messages: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
        """Prepend the guardrail banner to the newest message if its session is flagged.

        Mutates and returns `messages`. Never raises.
        """
        self._annotate(messages)
        return messages

    @safe_hook
    def _annotate(self, messages: Optional[List[Dict[str, Any]]]) -> None:
        self.annotator.transform(messages)

    # ─────────────────────────────────────────
    # Session management
    # ─────────────────────────────────────────

    def end_session(self, session_id: str) -> bool:
        """Forget a session. The only way to close an open circuit."""
        return self.store.delete(session_id)

    def reset(self) -> None:
        """Drop all sessions and counters (same config)."""
        self.store.reset_all()
        self.calls_allowed = 0
        self.calls_blocked = 0
        self.warnings_issued = 0
        self.circuits_opened = 0
        self.errors_recorded = 0

    def get_session_summary(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.store.get(session_id)
        if session is None:
            return None
        summary = session.summary(now=self.clock())
        limits = self.evaluator.limits_for(session.agent_name)
        summary["limits"] = {
            "max_tool_calls": limits.max_tool_calls,
            "max_duration_minutes": limits.max_duration_minutes,
            "max_repetitions": limits.max_repetitions,
            "max_consecutive_errors": limits.max_consecutive_errors,
            "warning_threshold": limits.warning_threshold,
        }
        return summary

    @property
    def stats(self) -> Dict[str, Any]:
        sessions = self.store.sessions()
        return {
            "enabled": self.enabled,
            "active_sessions": len(sessions),
            "warned_sessions": sum(1 for s in sessions if s.warning_issued),
            "blocked_sessions": sum(1 for s in sessions if s.hard_limit_hit),
            "calls_allowed": self.calls_allowed,
            "calls_blocked": self.calls_blocked,
            "warnings_issued": self.warnings_issued,
            "circuits_opened": self.circuits_opened,
            "errors_recorded": self.errors_recorded,
        }


class DisabledGuardrailHooks(GuardrailHooks):
    """Same surface as GuardrailHooks; every hook is a pass-through."""

    @property
    def enabled(self) -> bool:
        return False

    def before_tool_call(
        self,
        session_id: str,
        tool_name: str,
        args: Any = None,
        agent_name: Optional[str] = None,
    ) -> GateDecision:
        return GateDecision(action=GateAction.ALLOW, reason="disabled")

    def after_tool_call(self, session_id: str, tool_name: str, result: Any) -> None:
        return None

    def transform_messages(self, messages: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
        return messages


def create_guardrail_hooks(
    config: Optional[GuardrailsConfig] = None,
    *,
    store: Optional[SessionStore] = None,
    telemetry: Optional[Telemetry] = None,
    clock: Optional[Callable[[], float]] = None,
) -> GuardrailHooks:
    """Build the hook set. `config.enabled` is consulted once, at construction."""
    cfg = config or GuardrailsConfig()
    if not cfg.enabled:
        logger.info("Guardrails disabled by configuration; hooks are pass-through")
    return GuardrailHooks(cfg, store=store, telemetry=telemetry, clock=clock)
