"""agent_breaker.evaluator

Threshold evaluation for one admitted tool call.

Order of operations is fixed:
1. Circuit already open -> block, nothing is counted.
2. Count the call and push it onto the recent-call ring.
3. Measure the trailing repetition run.
4. Hard limits, first match wins: tool calls, duration, repetition,
   consecutive errors. A match opens the circuit.
5. Otherwise, if the session has never been warned, the same metrics against
   warning_threshold * limit. A match sets the sticky warning.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import GuardrailLimits, GuardrailsConfig
from .fingerprint import fingerprint
from .session import SessionState
from .types import GateAction, GateDecision, LimitKind, ToolCallRecord

logger = logging.getLogger("agent_breaker.evaluator")

_STOP_SUFFIX = "Stop making tool calls and return your progress summary."


def count_trailing_repetitions(records: Iterable[ToolCallRecord]) -> int:
    """Length of the run of entries identical to the newest one, scanning backward."""
    ordered = list(records)
    if not ordered:
        return 0
    last = ordered[-1]
    run = 0
    for entry in reversed(ordered):
        if entry.tool_name != last.tool_name or entry.fingerprint != last.fingerprint:
            break
        run += 1
    return run


def _fmt(value: float) -> str:
    return f"{value:g}"


def trip_message(limit: LimitKind, current: float, configured: float) -> str:
    if limit is LimitKind.TOOL_CALLS:
        detail = f"Tool call limit reached ({_fmt(current)}/{_fmt(configured)})."
    elif limit is LimitKind.DURATION:
        detail = f"Duration limit reached ({int(current)} min of {_fmt(configured)} min)."
    elif limit is LimitKind.REPETITION:
        detail = f"Repetition detected (same call {_fmt(current)} times, limit {_fmt(configured)})."
    else:
        detail = f"Too many consecutive errors ({_fmt(current)}/{_fmt(configured)})."
    return f"CIRCUIT BREAKER: {detail} {_STOP_SUFFIX}"


def circuit_open_message(session: SessionState) -> str:
    reason = session.tripped_limit.value if session.tripped_limit else "unknown"
    return (
        f"CIRCUIT BREAKER: Agent blocked. Hard limit was previously triggered ({reason}). "
        f"{_STOP_SUFFIX}"
    )


class ThresholdEvaluator:
    """Decides allow/block for a session and moves its status forward.

    Limits are resolved once per agent name (base config merged with that
    agent's profile) and cached.
    """

    def __init__(self, config: GuardrailsConfig, clock: Optional[Callable[[], float]] = None):
        self.cfg = config
        self.clock = clock or time.time
        self._limits: Dict[str, GuardrailLimits] = {}

    def limits_for(self, agent_name: str) -> GuardrailLimits:
        limits = self._limits.get(agent_name)
        if limits is None:
            limits = self.cfg.limits_for(agent_name)
            self._limits[agent_name] = limits
        return limits

    def _metrics(
        self, session: SessionState, limits: GuardrailLimits, now: float
    ) -> List[Tuple[LimitKind, float, float]]:
        elapsed_minutes = (now - session.start_time) / 60.0
        return [
            (LimitKind.TOOL_CALLS, session.tool_call_count, limits.max_tool_calls),
            (LimitKind.DURATION, elapsed_minutes, limits.max_duration_minutes),
            (LimitKind.REPETITION, count_trailing_repetitions(session.recent_tool_calls), limits.max_repetitions),
            (LimitKind.CONSECUTIVE_ERRORS, session.consecutive_errors, limits.max_consecutive_errors),
        ]

    def evaluate(self, session: SessionState, tool_name: str, args: Any = None) -> GateDecision:
        """Admit one call against `session`. Mutates the session."""
        if session.hard_limit_hit:
            return GateDecision(
                action=GateAction.BLOCK,
                reason="circuit_open",
                message=circuit_open_message(session),
                limit=session.tripped_limit,
            )

        now = self.clock()
        session.record_call(tool_name, fingerprint(args), now)
        limits = self.limits_for(session.agent_name)
        metrics = self._metrics(session, limits, now)

        for limit, current, configured in metrics:
            if current >= configured:
                message = trip_message(limit, current, configured)
                session.mark_blocked(now, limit, message)
                logger.warning(
                    "Circuit opened for session %s: %s (%s >= %s)",
                    session.session_id, limit.value, _fmt(current), _fmt(configured),
                )
                return GateDecision(
                    action=GateAction.BLOCK,
                    reason=limit.value,
                    message=message,
                    limit=limit,
                    current=current,
                    configured=configured,
                )

        if not session.warning_issued:
            for limit, current, configured in metrics:
                if current >= round(configured * limits.warning_threshold, 8):
                    session.mark_warned(now)
                    logger.info(
                        "Guardrail warning for session %s: %s at %s of %s",
                        session.session_id, limit.value, _fmt(current), _fmt(configured),
                    )
                    return GateDecision(
                        action=GateAction.ALLOW,
                        reason="warning",
                        limit=limit,
                        current=current,
                        configured=configured,
                        warning_issued=True,
                    )

        return GateDecision(action=GateAction.ALLOW, reason="allow")
