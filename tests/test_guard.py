"""tests/test_guard.py

Tests for the Agent Breaker core engine: fingerprints, session store,
threshold evaluation, event gate, outcome recorder and message annotator.
"""

import copy
import re
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from agent_breaker import (
    HARD_LIMIT_BANNER,
    WARNING_BANNER,
    CircuitOpenError,
    EventGate,
    GateAction,
    GuardrailsConfig,
    LimitKind,
    MessageAnnotator,
    OutcomeRecorder,
    SessionStatus,
    SessionStore,
    ThresholdEvaluator,
    fingerprint,
    is_error_output,
)
from agent_breaker.evaluator import count_trailing_repetitions
from agent_breaker.session import RECENT_CALL_WINDOW
from agent_breaker.telemetry import InMemoryTelemetry, Telemetry
from agent_breaker.types import ToolCallRecord


# ─────────────────────────────────────
# Fixtures
# ─────────────────────────────────────

@pytest.fixture
def telemetry():
    return InMemoryTelemetry()


@pytest.fixture
def store(clock, telemetry):
    return SessionStore(stale_after_seconds=3600.0, clock=clock, telemetry=Telemetry(sink=telemetry))


def make_gate(store, config, clock, telemetry=None):
    evaluator = ThresholdEvaluator(config, clock=clock)
    sink = Telemetry(sink=telemetry) if telemetry is not None else None
    return EventGate(store, evaluator, telemetry=sink)


def text_message(text, session_id=None):
    info = {"role": "user"}
    if session_id is not None:
        info["session_id"] = session_id
    return {"info": info, "parts": [{"type": "text", "text": text}]}


# ─────────────────────────────────────
# Fingerprint
# ─────────────────────────────────────

class TestFingerprint:
    def test_key_order_does_not_matter(self):
        assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})

    def test_nested_key_order_does_not_matter(self):
        a = {"outer": {"x": [1, 2], "y": "z"}, "n": None}
        b = {"n": None, "outer": {"y": "z", "x": [1, 2]}}
        assert fingerprint(a) == fingerprint(b)

    def test_different_values_differ(self):
        assert fingerprint({"path": "a.py"}) != fingerprint({"path": "b.py"})

    def test_list_order_matters(self):
        assert fingerprint([1, 2]) != fingerprint([2, 1])

    @pytest.mark.parametrize("value", [None, "a string", 42, 3.5, True])
    def test_non_structured_input_is_sentinel(self, value):
        assert fingerprint(value) == 0

    def test_self_referencing_structure_is_sentinel(self):
        cyclic = {}
        cyclic["self"] = cyclic
        assert fingerprint(cyclic) == 0

    def test_fits_in_64_bits(self):
        fp = fingerprint({"query": "refund policy"})
        assert 0 <= fp < 2 ** 64

    def test_stable_across_calls(self):
        args = {"cmd": "pytest -x", "cwd": "/repo"}
        assert fingerprint(args) == fingerprint(dict(args))


# ─────────────────────────────────────
# Session store
# ─────────────────────────────────────

class TestSessionStore:
    def test_get_or_create_creates_lazily(self, store, clock):
        assert store.get("s1") is None
        session = store.get_or_create("s1")
        assert session.session_id == "s1"
        assert session.agent_name == "unknown"
        assert session.start_time == clock.now
        assert session.status is SessionStatus.NORMAL
        assert session.tool_call_count == 0
        assert "s1" in store

    def test_get_or_create_returns_existing(self, store):
        first = store.get_or_create("s1", "coder")
        second = store.get_or_create("s1", "reviewer")
        assert first is second
        assert second.agent_name == "coder"

    def test_delete(self, store):
        store.get_or_create("s1")
        assert store.delete("s1") is True
        assert store.delete("s1") is False
        assert store.get("s1") is None

    def test_reset_all(self, store):
        for sid in ("a", "b", "c"):
            store.get_or_create(sid)
        store.reset_all()
        assert len(store) == 0

    def test_creation_sweeps_stale_sessions(self, store, clock, telemetry):
        store.get_or_create("old")
        clock.advance(3601)
        store.get_or_create("new")
        assert "old" not in store
        assert "new" in store
        assert [e["session_id"] for e in telemetry.find("session_evicted")] == ["old"]

    def test_session_at_exact_threshold_is_kept(self, store, clock):
        store.get_or_create("edge")
        clock.advance(3600)
        store.get_or_create("new")
        assert "edge" in store

    def test_staleness_is_measured_from_start_time(self, store, clock):
        session = store.get_or_create("busy")
        clock.advance(3000)
        session.record_call("read_file", 1, clock())
        clock.advance(700)
        assert store.sweep() == ["busy"]

    def test_lookup_does_not_sweep(self, store, clock):
        store.get_or_create("old")
        clock.advance(7200)
        store.get_or_create("old")
        assert store.get("old") is not None

    def test_iteration_is_a_snapshot(self, store):
        for sid in ("a", "b"):
            store.get_or_create(sid)
        for sid in store:
            store.delete(sid)
        assert len(store) == 0

    def test_rejects_empty_window(self):
        with pytest.raises(ValueError, match="window must be >= 1"):
            SessionStore(window=0)

    def test_most_recently_flagged_none(self, store):
        store.get_or_create("a")
        assert store.most_recently_flagged() is None

    def test_most_recently_flagged_prefers_newest_flag(self, store, clock):
        a = store.get_or_create("a")
        b = store.get_or_create("b")
        b.mark_warned(clock())
        clock.advance(10)
        a.mark_warned(clock())
        assert store.most_recently_flagged() is a
        clock.advance(10)
        b.mark_blocked(clock(), LimitKind.TOOL_CALLS, "stop")
        assert store.most_recently_flagged() is b

    def test_most_recently_flagged_tie_goes_to_latest_start(self, store, clock):
        a = store.get_or_create("a")
        clock.advance(5)
        b = store.get_or_create("b")
        a.mark_warned(clock())
        b.mark_warned(clock())
        assert store.most_recently_flagged() is b


class TestSessionStatus:
    def test_warn_then_block(self, store, clock):
        session = store.get_or_create("s")
        assert session.mark_warned(clock()) is True
        assert session.status is SessionStatus.WARNED
        assert session.mark_blocked(clock(), LimitKind.DURATION, "stop") is True
        assert session.status is SessionStatus.BLOCKED
        assert session.warning_issued and session.hard_limit_hit

    def test_block_is_terminal(self, store, clock):
        session = store.get_or_create("s")
        session.mark_blocked(clock(), LimitKind.REPETITION, "stop")
        assert session.mark_warned(clock()) is False
        assert session.mark_blocked(clock(), LimitKind.TOOL_CALLS, "again") is False
        assert session.tripped_limit is LimitKind.REPETITION
        assert session.status is SessionStatus.BLOCKED

    def test_warning_is_sticky(self, store, clock):
        session = store.get_or_create("s")
        session.mark_warned(clock())
        assert session.mark_warned(clock() + 5) is False
        assert session.warned_at == clock()


# ─────────────────────────────────────
# Repetition run
# ─────────────────────────────────────

class TestTrailingRepetitions:
    def test_empty(self):
        assert count_trailing_repetitions([]) == 0

    def test_counts_only_trailing_run(self):
        records = [
            ToolCallRecord("bash", 1, 0.0),
            ToolCallRecord("bash", 1, 1.0),
            ToolCallRecord("read", 2, 2.0),
            ToolCallRecord("bash", 1, 3.0),
            ToolCallRecord("bash", 1, 4.0),
        ]
        assert count_trailing_repetitions(records) == 2

    def test_same_args_different_tool_breaks_run(self):
        records = [ToolCallRecord("a", 7, 0.0), ToolCallRecord("b", 7, 1.0)]
        assert count_trailing_repetitions(records) == 1


# ─────────────────────────────────────
# Threshold evaluation through the event gate
# ─────────────────────────────────────

class TestToolCallLimit:
    def test_warn_then_trip(self, store, clock, telemetry):
        cfg = GuardrailsConfig(max_tool_calls=5, warning_threshold=0.8)
        gate = make_gate(store, cfg, clock, telemetry)

        for i in range(3):
            d = gate.before_tool_call("s1", "read_file", {"path": f"f{i}.py"})
            assert d.action == GateAction.ALLOW
            assert d.reason == "allow"

        d = gate.before_tool_call("s1", "read_file", {"path": "f3.py"})
        assert d.allowed
        assert d.warning_issued
        assert d.reason == "warning"
        assert d.limit is LimitKind.TOOL_CALLS
        assert store.get("s1").status is SessionStatus.WARNED

        with pytest.raises(CircuitOpenError) as exc_info:
            gate.before_tool_call("s1", "read_file", {"path": "f4.py"})
        exc = exc_info.value
        assert exc.reason == "tool_call_limit"
        assert exc.limit is LimitKind.TOOL_CALLS
        assert "CIRCUIT BREAKER" in str(exc)
        assert "Tool call limit reached (5/5)" in str(exc)
        assert store.get("s1").status is SessionStatus.BLOCKED

    def test_counter_increments_per_admitted_call(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(), clock)
        for i in range(7):
            gate.before_tool_call("s1", "grep", {"pattern": str(i)})
        assert store.get("s1").tool_call_count == 7

    def test_blocked_calls_are_not_counted(self, store, clock, telemetry):
        gate = make_gate(store, GuardrailsConfig(max_tool_calls=2), clock, telemetry)
        gate.before_tool_call("s1", "a", {"n": 1})
        with pytest.raises(CircuitOpenError):
            gate.before_tool_call("s1", "a", {"n": 2})
        for n in range(3, 6):
            with pytest.raises(CircuitOpenError) as exc_info:
                gate.before_tool_call("s1", "b", {"n": n})
            assert exc_info.value.reason == "circuit_open"
            assert exc_info.value.limit is LimitKind.TOOL_CALLS
            assert "previously triggered (tool_call_limit)" in str(exc_info.value)
        assert store.get("s1").tool_call_count == 2
        assert len(telemetry.find("circuit_open")) == 1
        assert len(telemetry.find("circuit_blocked")) == 3

    def test_warning_fires_once(self, store, clock, telemetry):
        gate = make_gate(store, GuardrailsConfig(max_tool_calls=10, warning_threshold=0.5), clock, telemetry)
        decisions = [gate.before_tool_call("s1", "t", {"n": n}) for n in range(8)]
        assert [d.warning_issued for d in decisions].count(True) == 1
        assert decisions[4].warning_issued
        assert decisions[5].reason == "allow"
        assert len(telemetry.find("guardrail_warning")) == 1

    def test_sessions_are_independent(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_tool_calls=2), clock)
        gate.before_tool_call("a", "t", {"n": 1})
        with pytest.raises(CircuitOpenError):
            gate.before_tool_call("a", "t", {"n": 2})
        d = gate.before_tool_call("b", "t", {"n": 1})
        assert d.allowed

    def test_swept_session_restarts_fresh(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_tool_calls=3), clock)
        gate.before_tool_call("old", "t", {"n": 1})
        gate.before_tool_call("old", "t", {"n": 2})
        clock.advance(3601)
        gate.before_tool_call("other", "t", {"n": 1})
        assert "old" not in store

        d = gate.before_tool_call("old", "t", {"n": 3})
        assert d.allowed
        assert store.get("old").tool_call_count == 1

    def test_trip_can_skip_warning(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_tool_calls=1), clock)
        with pytest.raises(CircuitOpenError):
            gate.before_tool_call("s1", "t", {})
        session = store.get("s1")
        assert session.hard_limit_hit
        assert not session.warning_issued


class TestDurationLimit:
    def test_trips_after_duration(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_duration_minutes=30), clock)
        gate.before_tool_call("s1", "search", {"q": "a"})
        clock.advance(minutes=31)
        with pytest.raises(CircuitOpenError) as exc_info:
            gate.before_tool_call("s1", "search", {"q": "b"})
        assert exc_info.value.reason == "duration_limit"
        assert "Duration limit reached (31 min of 30 min)" in str(exc_info.value)

    def test_warns_before_duration(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_duration_minutes=30), clock)
        gate.before_tool_call("s1", "search", {"q": "a"})
        clock.advance(minutes=23)
        d = gate.before_tool_call("s1", "search", {"q": "b"})
        assert d.warning_issued
        assert d.limit is LimitKind.DURATION

    def test_duration_checked_only_on_calls(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_duration_minutes=30), clock)
        gate.before_tool_call("s1", "search", {"q": "a"})
        clock.advance(minutes=120)
        assert store.get("s1").status is SessionStatus.NORMAL


class TestRepetitionLimit:
    def test_trips_on_third_identical_call(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_repetitions=3), clock)
        args = {"file": "a.py"}
        gate.before_tool_call("s1", "read", args)
        gate.before_tool_call("s1", "read", dict(args))
        with pytest.raises(CircuitOpenError) as exc_info:
            gate.before_tool_call("s1", "read", {"file": "a.py"})
        assert exc_info.value.reason == "repetition_limit"
        assert "same call 3 times, limit 3" in str(exc_info.value)

    def test_changed_args_reset_the_run(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_repetitions=3), clock)
        for file in ("a.py", "a.py", "b.py", "a.py", "a.py"):
            d = gate.before_tool_call("s1", "read", {"file": file})
            assert d.allowed

    def test_reordered_keys_count_as_repeats(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_repetitions=2), clock)
        gate.before_tool_call("s1", "bash", {"cmd": "ls", "cwd": "/"})
        with pytest.raises(CircuitOpenError):
            gate.before_tool_call("s1", "bash", {"cwd": "/", "cmd": "ls"})

    def test_argless_calls_share_a_fingerprint(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_repetitions=2), clock)
        gate.before_tool_call("s1", "list_tasks", None)
        with pytest.raises(CircuitOpenError):
            gate.before_tool_call("s1", "list_tasks", "not a mapping")

    def test_ring_keeps_last_twenty(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(), clock)
        for n in range(25):
            gate.before_tool_call("s1", "read", {"n": n})
        ring = store.get("s1").recent_tool_calls
        assert len(ring) == RECENT_CALL_WINDOW
        assert ring[-1].fingerprint == fingerprint({"n": 24})
        assert ring[0].fingerprint == fingerprint({"n": 5})

    def test_run_longer_than_ring_never_trips(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_repetitions=25), clock)
        for _ in range(30):
            assert gate.before_tool_call("s1", "poll", {"job": 1}).allowed


class TestPerAgentProfiles:
    def test_profile_overrides_base_limit(self, store, clock):
        from agent_breaker import GuardrailProfile

        cfg = GuardrailsConfig(max_tool_calls=100, profiles={"explorer": GuardrailProfile(max_tool_calls=3)})
        gate = make_gate(store, cfg, clock)
        for n in range(2):
            gate.before_tool_call("e", "grep", {"n": n}, agent_name="explorer")
        with pytest.raises(CircuitOpenError):
            gate.before_tool_call("e", "grep", {"n": 2}, agent_name="explorer")

        for n in range(10):
            assert gate.before_tool_call("c", "grep", {"n": n}, agent_name="coder").allowed


class TestGateFailOpen:
    def test_store_failure_allows_call(self, clock, telemetry, caplog):
        class BrokenStore(SessionStore):
            def get_or_create(self, session_id, agent_name=None):
                raise RuntimeError("store is gone")

        gate = make_gate(BrokenStore(clock=clock), GuardrailsConfig(), clock, telemetry)
        with caplog.at_level("WARNING", logger="agent_breaker.gate"):
            d = gate.before_tool_call("s1", "bash", {"cmd": "ls"})
        assert d.allowed
        assert d.reason == "store_unavailable"
        assert len(telemetry.find("gate_degraded")) == 1
        assert "allowing tool 'bash'" in caplog.text


# ─────────────────────────────────────
# Outcome recorder
# ─────────────────────────────────────

class TestErrorClassification:
    @pytest.mark.parametrize(
        ("result", "expected"),
        [
            (None, True),
            ("", True),
            (b"", True),
            ([], True),
            ({}, True),
            ("Error: file not found", True),
            ("RuntimeERROR in worker", True),
            ("grep found 0 errors", True),
            ({"status": "error"}, True),
            ("ok", False),
            ("3 passed", False),
            ({"status": "ok"}, False),
            (0, False),
        ],
    )
    def test_is_error_output(self, result, expected):
        assert is_error_output(result) is expected


class TestOutcomeRecorder:
    def test_unknown_session_is_ignored(self, store):
        recorder = OutcomeRecorder(store)
        assert recorder.after_tool_call("ghost", "bash", "Error") is None
        assert "ghost" not in store

    def test_success_resets_streak(self, store):
        store.get_or_create("s1")
        recorder = OutcomeRecorder(store)
        recorder.after_tool_call("s1", "bash", "")
        recorder.after_tool_call("s1", "bash", None)
        assert store.get("s1").consecutive_errors == 2
        assert recorder.after_tool_call("s1", "bash", "done") is False
        assert store.get("s1").consecutive_errors == 0

    def test_success_before_third_error_prevents_trip(self, store, clock):
        gate = make_gate(store, GuardrailsConfig(max_consecutive_errors=3), clock)
        recorder = OutcomeRecorder(store)

        for n, output in enumerate(["", "", "done", ""]):
            gate.before_tool_call("s1", "bash", {"n": n})
            recorder.after_tool_call("s1", "bash", output)

        assert store.get("s1").consecutive_errors == 1
        d = gate.before_tool_call("s1", "bash", {"n": 4})
        assert d.allowed
        assert store.get("s1").status is not SessionStatus.BLOCKED

    def test_error_streak_trips_next_call(self, store, clock, telemetry):
        cfg = GuardrailsConfig(max_consecutive_errors=3)
        gate = make_gate(store, cfg, clock, telemetry)
        recorder = OutcomeRecorder(store, telemetry=Telemetry(sink=telemetry))

        for n in range(3):
            gate.before_tool_call("s1", "bash", {"n": n})
            assert recorder.after_tool_call("s1", "bash", "") is True

        with pytest.raises(CircuitOpenError) as exc_info:
            gate.before_tool_call("s1", "bash", {"n": 3})
        assert exc_info.value.reason == "consecutive_error_limit"
        assert "Too many consecutive errors (3/3)" in str(exc_info.value)
        assert [e["consecutive_errors"] for e in telemetry.find("tool_error_recorded")] == [1, 2, 3]


# ─────────────────────────────────────
# Message annotator
# ─────────────────────────────────────

class TestMessageAnnotator:
    def test_unflagged_session_untouched(self, store):
        store.get_or_create("s1")
        messages = [text_message("hello", "s1")]
        MessageAnnotator(store).transform(messages)
        assert messages[0]["parts"][0]["text"] == "hello"

    def test_unflagged_batch_twice_is_a_no_op(self, store):
        store.get_or_create("s1")
        annotator = MessageAnnotator(store)
        messages = [text_message("first", "s1"), text_message("second", "s1")]
        before = copy.deepcopy(messages)
        annotator.transform(messages)
        assert messages == before
        annotator.transform(messages)
        assert messages == before

    def test_unattributed_batch_without_flags_twice_is_a_no_op(self, store):
        store.get_or_create("s1")
        store.get_or_create("s2")
        annotator = MessageAnnotator(store)
        messages = [text_message("no id")]
        before = copy.deepcopy(messages)
        annotator.transform(messages)
        annotator.transform(messages)
        assert messages == before

    def test_warning_banner(self, store, clock):
        store.get_or_create("s1").mark_warned(clock())
        messages = [text_message("keep going", "s1")]
        out = MessageAnnotator(store).transform(messages)
        assert out is messages
        assert messages[0]["parts"][0]["text"] == f"{WARNING_BANNER}\n\nkeep going"

    def test_hard_limit_banner(self, store, clock):
        session = store.get_or_create("s1")
        session.mark_warned(clock())
        session.mark_blocked(clock(), LimitKind.TOOL_CALLS, "stop")
        messages = [text_message("next step", "s1")]
        MessageAnnotator(store).transform(messages)
        assert messages[0]["parts"][0]["text"].startswith(HARD_LIMIT_BANNER + "\n\n")
        assert WARNING_BANNER not in messages[0]["parts"][0]["text"]

    def test_only_newest_message_is_annotated(self, store, clock):
        store.get_or_create("s1").mark_warned(clock())
        messages = [text_message("first", "s1"), text_message("second", "s1")]
        MessageAnnotator(store).transform(messages)
        assert messages[0]["parts"][0]["text"] == "first"
        assert messages[1]["parts"][0]["text"].endswith("second")
        assert messages[1]["parts"][0]["text"] != "second"

    def test_falls_back_to_most_recently_flagged(self, store, clock):
        store.get_or_create("quiet")
        store.get_or_create("noisy").mark_warned(clock())
        messages = [text_message("no id here")]
        MessageAnnotator(store).transform(messages)
        assert messages[0]["parts"][0]["text"].startswith(WARNING_BANNER)

    def test_explicit_unknown_id_does_not_fall_back(self, store, clock):
        store.get_or_create("noisy").mark_warned(clock())
        messages = [text_message("hi", "other")]
        MessageAnnotator(store).transform(messages)
        assert messages[0]["parts"][0]["text"] == "hi"

    def test_accepts_camel_case_session_key(self, store, clock):
        store.get_or_create("s1").mark_warned(clock())
        messages = [{"info": {"sessionID": "s1"}, "parts": [{"type": "text", "text": "x"}]}]
        MessageAnnotator(store).transform(messages)
        assert messages[0]["parts"][0]["text"].startswith(WARNING_BANNER)

    def test_banner_not_prepended_twice(self, store, clock, telemetry):
        store.get_or_create("s1").mark_warned(clock())
        annotator = MessageAnnotator(store, telemetry=Telemetry(sink=telemetry))
        messages = [text_message("body", "s1")]
        annotator.transform(messages)
        once = messages[0]["parts"][0]["text"]
        annotator.transform(messages)
        assert messages[0]["parts"][0]["text"] == once
        assert len(telemetry.find("banner_injected")) == 1

    def test_first_text_part_is_used(self, store, clock):
        store.get_or_create("s1").mark_warned(clock())
        message = {
            "info": {"session_id": "s1"},
            "parts": [{"type": "image", "url": "x.png"}, {"type": "text", "text": "a"}, {"type": "text", "text": "b"}],
        }
        MessageAnnotator(store).transform([message])
        assert message["parts"][1]["text"].startswith(WARNING_BANNER)
        assert message["parts"][2]["text"] == "b"

    def test_no_text_part_is_a_no_op(self, store, clock):
        store.get_or_create("s1").mark_warned(clock())
        message = {"info": {"session_id": "s1"}, "parts": [{"type": "tool", "name": "bash"}]}
        MessageAnnotator(store).transform([message])
        assert message["parts"] == [{"type": "tool", "name": "bash"}]

    @pytest.mark.parametrize("messages", [None, []])
    def test_empty_input(self, store, messages):
        assert MessageAnnotator(store).transform(messages) == messages

    def test_banner_text_matches_stop_instruction(self):
        assert re.match(r"^\[CIRCUIT BREAKER ACTIVE: ", HARD_LIMIT_BANNER)
        assert "Do NOT make any more tool calls" in HARD_LIMIT_BANNER
        assert WARNING_BANNER.startswith("[GUARDRAIL WARNING: ")
