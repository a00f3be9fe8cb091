"""agent_breaker.demo

Scripted runaway-agent scenarios run through the guardrail hooks.

No API key, no network: each scenario is a list of tool calls with canned
outputs and a simulated clock, replayed against a fresh hook set.

Usage via CLI:
    agent-breaker demo
    agent-breaker demo --config guardrails.jsonc --json-out report.json

Usage via Python:
    from agent_breaker.demo import run_all, print_report
    print_report(run_all())
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from .config import GuardrailsConfig
from .errors import CircuitOpenError
from .middleware import create_guardrail_hooks


# ─────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────

@dataclass
class Step:
    tool: str
    args: Dict[str, Any]
    output: Any
    advance_seconds: float = 5.0


@dataclass
class Scenario:
    scenario_id: str
    name: str
    failure_mode: str
    steps: List[Step]


def builtin_scenarios(config: GuardrailsConfig) -> List[Scenario]:
    """Scenarios sized so each failure mode outruns the configured limits."""
    flood = config.max_tool_calls + 10
    retries = config.max_repetitions + 5
    errors = config.max_consecutive_errors + 5
    minutes_per_call = 2.0
    slow = int(config.max_duration_minutes / minutes_per_call) + 5

    return [
        Scenario(
            "ab_01", "Tool-call flood", "tool_calls",
            [Step("read_file", {"path": f"src/module_{i}.py"}, f"contents of module {i}") for i in range(flood)],
        ),
        Scenario(
            "ab_02", "Tight retry loop", "repetition",
            [Step("run_tests", {"target": "tests/", "verbose": True}, "3 passed, 1 failed") for _ in range(retries)],
        ),
        Scenario(
            "ab_03", "Error storm", "consecutive_errors",
            [Step("bash", {"cmd": f"make build-{i}"}, "Error: permission denied") for i in range(errors)],
        ),
        Scenario(
            "ab_04", "Slow burn", "duration",
            [
                Step("search", {"query": f"topic {i}"}, f"{i} results", advance_seconds=minutes_per_call * 60)
                for i in range(slow)
            ],
        ),
        Scenario(
            "ab_05", "Healthy run", "none",
            [Step("read_file", {"path": f"docs/page_{i}.md"}, f"page {i}") for i in range(10)],
        ),
    ]


# ─────────────────────────────────────────
# Runner
# ─────────────────────────────────────────

@dataclass
class ScenarioResult:
    scenario_id: str
    scenario_name: str
    failure_mode: str
    total_steps: int
    executed: int
    blocked: int
    warned_at_step: Optional[int]
    tripped_at_step: Optional[int]
    tripped_limit: Optional[str]
    banner: Optional[str]

    @property
    def prevented(self) -> int:
        return self.total_steps - self.executed


class _SimClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def run_scenario(scenario: Scenario, config: Optional[GuardrailsConfig] = None) -> ScenarioResult:
    cfg = config or GuardrailsConfig()
    clock = _SimClock()
    hooks = create_guardrail_hooks(cfg, clock=clock)
    session_id = f"demo-{scenario.scenario_id}"

    executed = 0
    warned_at: Optional[int] = None
    tripped_at: Optional[int] = None
    tripped_limit: Optional[str] = None

    for i, step in enumerate(scenario.steps, start=1):
        clock.now += step.advance_seconds
        try:
            decision = hooks.before_tool_call(session_id, step.tool, step.args)
        except CircuitOpenError as exc:
            if tripped_at is None:
                tripped_at = i
                tripped_limit = exc.reason
            continue
        if decision.warning_issued and warned_at is None:
            warned_at = i
        executed += 1
        hooks.after_tool_call(session_id, step.tool, step.output)

    message = [{"info": {"role": "user", "session_id": session_id}, "parts": [{"type": "text", "text": "continue"}]}]
    hooks.transform_messages(message)
    text = message[0]["parts"][0]["text"]
    banner = text.split("\n\n", 1)[0] if text != "continue" else None

    return ScenarioResult(
        scenario_id=scenario.scenario_id,
        scenario_name=scenario.name,
        failure_mode=scenario.failure_mode,
        total_steps=len(scenario.steps),
        executed=executed,
        blocked=hooks.calls_blocked,
        warned_at_step=warned_at,
        tripped_at_step=tripped_at,
        tripped_limit=tripped_limit,
        banner=banner,
    )


def run_all(config: Optional[GuardrailsConfig] = None) -> List[ScenarioResult]:
    cfg = config or GuardrailsConfig()
    return [run_scenario(s, cfg) for s in builtin_scenarios(cfg)]


# ─────────────────────────────────────────
# Reporting
# ─────────────────────────────────────────

def print_report(results: List[ScenarioResult]) -> None:
    if not results:
        print("  No results.")
        return

    print()
    print("=" * 78)
    print("  Agent Breaker - Runaway Agent Scenarios")
    print("=" * 78)
    print()

    fmt = "  {:<20} {:>6} {:>6} {:>6} {:>7} {:>7}  {}"
    print(fmt.format("Scenario", "Steps", "Ran", "Block", "Warn@", "Trip@", "Limit"))
    print("  " + "─" * 74)
    for r in results:
        print(fmt.format(
            r.scenario_name[:20], r.total_steps, r.executed, r.blocked,
            r.warned_at_step or "-", r.tripped_at_step or "-", r.tripped_limit or "-",
        ))
    print("  " + "─" * 74)

    total = sum(r.total_steps for r in results)
    prevented = sum(r.prevented for r in results)
    print(f"  Tool calls prevented: {prevented} of {total}")
    print()


def to_json(results: List[ScenarioResult]) -> Dict[str, Any]:
    from . import __version__

    return {
        "version": __version__,
        "scenarios": [dict(asdict(r), prevented=r.prevented) for r in results],
    }


def save_json_report(results: List[ScenarioResult], path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_json(results), f, indent=2)
    print(f"  JSON report saved to: {path}")
