"""agent_breaker.gate

The pre-call interception point.

EventGate.before_tool_call() either returns an ALLOW decision or raises
CircuitOpenError, which fails the intercepted call so the tool never runs.
Only a tripped limit blocks: if the session store itself misbehaves the gate
logs and lets the call through.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .errors import CircuitOpenError
from .evaluator import ThresholdEvaluator
from .session import SessionStore
from .telemetry import Telemetry
from .types import GateAction, GateDecision

logger = logging.getLogger("agent_breaker.gate")


class EventGate:
    def __init__(
        self,
        store: SessionStore,
        evaluator: ThresholdEvaluator,
        telemetry: Optional[Telemetry] = None,
    ):
        self.store = store
        self.evaluator = evaluator
        self.telemetry = telemetry

    def _emit(self, event: str, **fields: Any) -> None:
        if self.telemetry:
            self.telemetry.emit(event, **fields)

    def before_tool_call(
        self,
        session_id: str,
        tool_name: str,
        args: Any = None,
        agent_name: Optional[str] = None,
    ) -> GateDecision:
        """Admit or block one tool call.

        Raises:
            CircuitOpenError: the session's circuit is (now) open.
        """
        try:
            session = self.store.get_or_create(session_id, agent_name)
        except Exception:
            logger.warning(
                "Guardrail session lookup failed for %s; allowing tool '%s'",
                session_id, tool_name, exc_info=True,
            )
            self._emit("gate_degraded", session_id=session_id, tool=tool_name)
            return GateDecision(action=GateAction.ALLOW, reason="store_unavailable")

        already_open = session.hard_limit_hit
        decision = self.evaluator.evaluate(session, tool_name, args)

        if decision.action == GateAction.BLOCK:
            if already_open:
                self._emit("circuit_blocked", session_id=session_id, tool=tool_name)
            else:
                self._emit(
                    "circuit_open",
                    session_id=session_id, tool=tool_name,
                    limit=decision.reason, current=decision.current,
                    configured=decision.configured,
                    tool_call_count=session.tool_call_count,
                )
            raise CircuitOpenError(decision)

        if decision.warning_issued:
            self._emit(
                "guardrail_warning",
                session_id=session_id, tool=tool_name,
                limit=decision.limit.value if decision.limit else None,
                current=decision.current, configured=decision.configured,
            )
        return decision
