"""openai_agent_example.py

Shows how to wire Agent Breaker into a raw OpenAI ChatCompletions agent loop.

This is a demonstration: it uses mock responses instead of real API calls.
The mock model keeps asking to re-run the same failing test, which is the
kind of loop the repetition limit exists for.

Usage (no API key needed):
    python examples/openai_agent_example.py
"""

from __future__ import annotations

import json
import os
import sys

# Allow running this example from a repo clone without installing the package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from typing import Any, Dict, List

from agent_breaker import CircuitOpenError, GuardrailsConfig, create_guardrail_hooks
from agent_breaker.adapters.openai_adapter import (
    annotate_chat_messages,
    extract_tool_calls_from_chat_completion,
)


def mock_openai_response_with_tool_call(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Simulate an OpenAI response that includes a tool call."""
    return {
        "choices": [{
            "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [{
                    "id": "call_abc123",
                    "type": "function",
                    "function": {"name": name, "arguments": json.dumps(args)},
                }],
            },
        }],
    }


def mock_tool_execute(name: str, args: Dict[str, Any]) -> str:
    if name == "run_tests":
        return "FAILED tests/test_api.py::test_login - AssertionError"
    return "ok"


def main() -> None:
    session_id = "ses_demo"
    hooks = create_guardrail_hooks(GuardrailsConfig(max_repetitions=4, max_consecutive_errors=6))
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": "You are a coding agent."},
        {"role": "user", "content": "Make the login test pass."},
    ]

    for turn in range(1, 9):
        messages = annotate_chat_messages(messages, hooks.store, session_id)
        print(f"  turn {turn}: last message starts with {messages[-1]['content'][:40]!r}")

        resp = mock_openai_response_with_tool_call("run_tests", {"target": "tests/test_api.py"})
        for call in extract_tool_calls_from_chat_completion(resp, session_id=session_id):
            try:
                hooks.before_tool_call(call.session_id, call.tool_name, call.args)
            except CircuitOpenError as exc:
                output = str(exc)
                print(f"    BLOCKED ({exc.reason})")
            else:
                output = mock_tool_execute(call.tool_name, call.args)
                hooks.after_tool_call(call.session_id, call.tool_name, output)
                print(f"    ran {call.tool_name}")
            messages.append({"role": "user", "content": output})

    print()
    print(f"  Summary: {json.dumps(hooks.get_session_summary(session_id), indent=2)}")
    print(f"  Stats:   {hooks.stats}")


if __name__ == "__main__":
    main()
