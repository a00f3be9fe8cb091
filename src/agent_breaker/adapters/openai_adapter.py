"""agent_breaker.adapters.openai_adapter

Helpers for wiring the guardrail hooks into an OpenAI-style chat loop.

This module is dependency-free: it operates on plain dicts/lists.
It does **not** call any OpenAI API.

OpenAI chat messages carry no session id, so the caller passes it in.

Usage:
    from agent_breaker import CircuitOpenError, create_guardrail_hooks
    from agent_breaker.adapters.openai_adapter import (
        annotate_chat_messages,
        extract_tool_calls_from_chat_completion,
    )

    hooks = create_guardrail_hooks(config)

    for call in extract_tool_calls_from_chat_completion(response, session_id=sid):
        try:
            hooks.before_tool_call(call.session_id, call.tool_name, call.args)
        except CircuitOpenError as exc:
            output = str(exc)
        else:
            output = execute_tool(call)
            hooks.after_tool_call(call.session_id, call.tool_name, output)

    messages = annotate_chat_messages(messages, hooks.store, sid)
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from ..annotator import banner_for, prepend_banner
from ..session import SessionStore
from ..types import ToolCall


def extract_tool_calls_from_chat_completion(
    resp: Dict[str, Any],
    *,
    session_id: str,
    agent_name: Optional[str] = None,
) -> List[ToolCall]:
    """Extract ToolCall objects from a ChatCompletions-like response dict.

    Handles both the tool_calls format and legacy function_call format.
    Invalid entries are skipped.
    """
    try:
        choices = resp.get("choices") or []
        msg = choices[0].get("message") if choices else None
        tool_calls = (msg or {}).get("tool_calls") or []
    except (AttributeError, IndexError, TypeError):
        return []

    calls: List[ToolCall] = []

    for tc in tool_calls:
        if not isinstance(tc, dict):
            continue
        fn = tc.get("function") or {}
        name = fn.get("name") if isinstance(fn, dict) else None
        if not isinstance(name, str) or not name:
            continue
        calls.append(ToolCall(
            session_id=session_id,
            tool_name=name,
            args=_parse_args(fn.get("arguments")),
            agent_name=agent_name,
        ))

    # Legacy function_call format (fallback)
    if not calls and isinstance(msg, dict):
        fc = msg.get("function_call")
        if isinstance(fc, dict):
            name = fc.get("name")
            if isinstance(name, str) and name:
                calls.append(ToolCall(
                    session_id=session_id,
                    tool_name=name,
                    args=_parse_args(fc.get("arguments")),
                    agent_name=agent_name,
                ))

    return calls


def annotate_chat_messages(
    messages: List[Dict[str, Any]],
    store: SessionStore,
    session_id: str,
) -> List[Dict[str, Any]]:
    """Return a new messages list with the session banner on the last message.

    `content` may be a string or a list of {"type": "text", "text": ...}
    parts (the first text part is annotated). The input list and its dicts
    are left untouched.
    """
    if not messages:
        return list(messages)
    banner = banner_for(store.get(session_id))
    if banner is None:
        return list(messages)

    out = list(messages)
    last = dict(out[-1])
    content = last.get("content")
    if isinstance(content, str):
        last["content"] = prepend_banner(content, banner)
    elif isinstance(content, list):
        parts = list(content)
        for i, part in enumerate(parts):
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                parts[i] = dict(part, text=prepend_banner(part["text"], banner))
                break
        else:
            return out
        last["content"] = parts
    else:
        return out
    out[-1] = last
    return out


def _parse_args(args_raw: Any) -> Dict[str, Any]:
    """Parse tool call arguments from various formats."""
    if isinstance(args_raw, dict):
        return args_raw
    if isinstance(args_raw, str) and args_raw.strip():
        try:
            parsed = json.loads(args_raw)
        except ValueError:
            return {}
        if isinstance(parsed, dict):
            return parsed
    return {}
