"""agent_breaker.telemetry

Structured guardrail events.

Events are emitted synchronously from inside the hooks: session_created and
session_evicted from the store lookup before evaluation, the gate events
after evaluation but before CircuitOpenError is raised. Keep sinks cheap. A
failing sink is logged and never changes a verdict. Sinks receive one flat
dict per event.

Usage:
    from agent_breaker.telemetry import InMemoryTelemetry, Telemetry

    sink = InMemoryTelemetry()
    hooks = GuardrailHooks(config, telemetry=Telemetry(sink=sink))
    ...
    sink.find("circuit_open")
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger("agent_breaker.telemetry")


class TelemetrySink(Protocol):
    def emit(self, event: Dict[str, Any]) -> None: ...


class InMemoryTelemetry:
    """Keeps every event in a list. Intended for tests and demos."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(dict(event))

    def find(self, name: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e.get("event") == name]

    def clear(self) -> None:
        self.events.clear()


class LoggingTelemetry:
    """Writes events to a stdlib logger.

    Trips and blocks are logged at WARNING, everything else at `level`.
    """

    _WARN_EVENTS = {"circuit_open", "circuit_blocked", "gate_degraded"}

    def __init__(self, logger_name: str = "agent_breaker.events", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def emit(self, event: Dict[str, Any]) -> None:
        name = event.get("event", "unknown")
        fields = " ".join(f"{k}={v}" for k, v in sorted(event.items()) if k not in ("event", "ts"))
        level = logging.WARNING if name in self._WARN_EVENTS else self._level
        self._logger.log(level, "%s %s", name, fields)


class CompositeTelemetry:
    """Fans one event out to several sinks. A failing sink does not stop the others."""

    def __init__(self, sinks: Sequence[TelemetrySink]):
        self._sinks = list(sinks)

    def emit(self, event: Dict[str, Any]) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception:
                logger.warning("Telemetry sink %r failed", sink, exc_info=True)


class Telemetry:
    """Front door used by the engine: builds the event dict and hands it to a sink."""

    def __init__(self, sink: Optional[TelemetrySink] = None):
        self.sink = sink or LoggingTelemetry()

    def emit(self, event: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"event": event, "ts": round(time.time(), 3)}
        payload.update(fields)
        try:
            self.sink.emit(payload)
        except Exception:
            logger.warning("Telemetry emit failed for %s", event, exc_info=True)
