"""agent_breaker.session

Per-session guardrail state and the store that owns it.

One SessionStore is created per hook set and injected into the gate,
recorder and annotator, so every hook sees the same sessions and tests can
use independent stores.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterator, List, Optional

from .telemetry import Telemetry
from .types import LimitKind, SessionStatus, ToolCallRecord

logger = logging.getLogger("agent_breaker.store")

RECENT_CALL_WINDOW = 20
DEFAULT_STALE_AFTER_SECONDS = 3600.0
DEFAULT_AGENT_NAME = "unknown"


# ================================
# Session State
# ================================

@dataclass
class SessionState:
    """Guardrail state for one agent session.

    .. warning:: NOT THREAD-SAFE

       Hooks for the same session are expected to be serialized by the host.
       All mutation happens synchronously inside a single hook call.
    """

    session_id: str
    agent_name: str = DEFAULT_AGENT_NAME
    start_time: float = field(default_factory=time.time)

    tool_call_count: int = 0
    consecutive_errors: int = 0
    recent_tool_calls: Deque[ToolCallRecord] = field(
        default_factory=lambda: deque(maxlen=RECENT_CALL_WINDOW)
    )

    status: SessionStatus = SessionStatus.NORMAL
    warned_at: Optional[float] = None
    blocked_at: Optional[float] = None
    tripped_limit: Optional[LimitKind] = None
    trip_message: Optional[str] = None

    @property
    def warning_issued(self) -> bool:
        return self.warned_at is not None

    @property
    def hard_limit_hit(self) -> bool:
        return self.status is SessionStatus.BLOCKED

    @property
    def is_flagged(self) -> bool:
        return self.warning_issued or self.hard_limit_hit

    @property
    def flagged_at(self) -> Optional[float]:
        stamps = [t for t in (self.warned_at, self.blocked_at) if t is not None]
        return max(stamps) if stamps else None

    def record_call(self, tool_name: str, fingerprint: int, now: float) -> None:
        self.tool_call_count += 1
        self.recent_tool_calls.append(ToolCallRecord(tool_name, fingerprint, now))

    def mark_warned(self, now: float) -> bool:
        """NORMAL -> WARNED. Returns False if the session was not NORMAL."""
        if self.status is not SessionStatus.NORMAL:
            return False
        self.status = SessionStatus.WARNED
        self.warned_at = now
        return True

    def mark_blocked(self, now: float, limit: LimitKind, message: str) -> bool:
        """NORMAL/WARNED -> BLOCKED. Returns False if already BLOCKED."""
        if self.status is SessionStatus.BLOCKED:
            return False
        self.status = SessionStatus.BLOCKED
        self.blocked_at = now
        self.tripped_limit = limit
        self.trip_message = message
        return True

    def summary(self, now: Optional[float] = None) -> Dict[str, object]:
        now = time.time() if now is None else now
        return {
            "session_id": self.session_id,
            "agent_name": self.agent_name,
            "status": self.status.value,
            "tool_call_count": self.tool_call_count,
            "consecutive_errors": self.consecutive_errors,
            "elapsed_minutes": round((now - self.start_time) / 60.0, 2),
            "recent_tool_calls": len(self.recent_tool_calls),
            "warning_issued": self.warning_issued,
            "hard_limit_hit": self.hard_limit_hit,
            "tripped_limit": self.tripped_limit.value if self.tripped_limit else None,
        }


# ================================
# Session Store
# ================================

class SessionStore:
    """Process-wide mapping of session id -> SessionState.

    Sessions are created lazily by get_or_create(). There is no end-of-
    conversation signal from the host, so stale sessions are swept whenever
    a new session is created.

    Args:
        stale_after_seconds: Sessions older than this (measured from their
            start time) are evicted by the next sweep.
        window: Capacity of each session's recent-call ring.
        clock: Wall-clock source, seconds. Injected for tests.
        telemetry: Optional Telemetry for creation/eviction events.
    """

    def __init__(
        self,
        *,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        window: int = RECENT_CALL_WINDOW,
        clock: Optional[Callable[[], float]] = None,
        telemetry: Optional[Telemetry] = None,
    ):
        if window < 1:
            raise ValueError("window must be >= 1")
        self.stale_after_seconds = stale_after_seconds
        self.window = window
        self.clock = clock or time.time
        self.telemetry = telemetry
        self._sessions: Dict[str, SessionState] = {}

    def _emit(self, event: str, **fields: object) -> None:
        if self.telemetry:
            self.telemetry.emit(event, **fields)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def get(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str, agent_name: Optional[str] = None) -> SessionState:
        """Return the session, creating it (and sweeping stale ones) if absent."""
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        now = self.clock()
        self.sweep(now)
        session = SessionState(
            session_id=session_id,
            agent_name=agent_name or DEFAULT_AGENT_NAME,
            start_time=now,
            recent_tool_calls=deque(maxlen=self.window),
        )
        self._sessions[session_id] = session
        logger.debug("Created guardrail session %s (agent=%s)", session_id, session.agent_name)
        self._emit("session_created", session_id=session_id, agent=session.agent_name)
        return session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def reset_all(self) -> None:
        """Drop every session. Test isolation only."""
        self._sessions.clear()

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Evict sessions older than the staleness threshold.

        Ids are collected before anything is deleted.
        """
        now = self.clock() if now is None else now
        stale = [
            sid for sid, s in self._sessions.items()
            if now - s.start_time > self.stale_after_seconds
        ]
        for sid in stale:
            del self._sessions[sid]
            self._emit("session_evicted", session_id=sid)
        if stale:
            logger.info("Evicted %d stale guardrail session(s)", len(stale))
        return stale

    def sessions(self) -> List[SessionState]:
        return list(self._sessions.values())

    def most_recently_flagged(self) -> Optional[SessionState]:
        """The flagged session whose latest warning/block is newest.

        Ties on the flag timestamp go to the session that started last.
        """
        flagged = [s for s in self._sessions.values() if s.is_flagged]
        if not flagged:
            return None
        return max(flagged, key=lambda s: (s.flagged_at or 0.0, s.start_time))
