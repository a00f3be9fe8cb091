"""agent_breaker.async_middleware

Async-compatible wrapper for the guardrail hooks.

The engine is pure in-memory computation, so each coroutine calls the
synchronous hook directly and finishes all session mutation before it
returns. There is no await inside a hook, hence no suspension point at which
another session's hook could observe a half-updated session.

Usage with an async host:

    from agent_breaker import AsyncGuardrailHooks, CircuitOpenError

    hooks = AsyncGuardrailHooks(config)

    await hooks.before_tool_call(session_id, "bash", {"cmd": "ls"})   # may raise
    await hooks.after_tool_call(session_id, "bash", output)
    messages = await hooks.transform_messages(messages)
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from .config import GuardrailsConfig
from .middleware import GuardrailHooks, create_guardrail_hooks
from .session import SessionStore
from .telemetry import Telemetry
from .types import GateDecision


class AsyncGuardrailHooks:
    """Async wrapper around GuardrailHooks (or its disabled variant).

    Args:
        Same as :func:`agent_breaker.middleware.create_guardrail_hooks`.
    """

    def __init__(
        self,
        config: Optional[GuardrailsConfig] = None,
        *,
        store: Optional[SessionStore] = None,
        telemetry: Optional[Telemetry] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._sync: GuardrailHooks = create_guardrail_hooks(
            config, store=store, telemetry=telemetry, clock=clock,
        )

    # ─────────────────────────────────────────
    # Async 3-Hook API
    # ─────────────────────────────────────────

    async def before_tool_call(
        self,
        session_id: str,
        tool_name: str,
        args: Any = None,
        agent_name: Optional[str] = None,
    ) -> GateDecision:
        """See :meth:`GuardrailHooks.before_tool_call`."""
        return self._sync.before_tool_call(session_id, tool_name, args, agent_name=agent_name)

    async def after_tool_call(self, session_id: str, tool_name: str, result: Any) -> None:
        """See :meth:`GuardrailHooks.after_tool_call`."""
        self._sync.after_tool_call(session_id, tool_name, result)

    async def transform_messages(
        self, messages: Optional[List[Dict[str, Any]]]
    ) -> Optional[List[Dict[str, Any]]]:
        """See :meth:`GuardrailHooks.transform_messages`."""
        return self._sync.transform_messages(messages)

    # ─────────────────────────────────────────
    # Convenience (delegated to sync hooks)
    # ─────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self._sync.enabled

    @property
    def store(self) -> SessionStore:
        return self._sync.store

    @property
    def stats(self) -> Dict[str, Any]:
        return self._sync.stats

    def get_session_summary(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._sync.get_session_summary(session_id)

    async def end_session(self, session_id: str) -> bool:
        return self._sync.end_session(session_id)

    async def reset(self) -> None:
        self._sync.reset()
