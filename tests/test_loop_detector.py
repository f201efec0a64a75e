"""Tests for per-session repeated tool call detection."""

import pytest

from conftest import FakeClock
from scribe_agent.tools.base import ToolCall
from scribe_agent.tools.loop_detector import MAX_HISTORY_SIZE, LoopDetector, fingerprint


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def detector(clock):
    return LoopDetector(threshold=3, window_seconds=60, clock=clock)


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        assert fingerprint(ToolCall("t", {"a": 1, "b": 2})) == fingerprint(ToolCall("t", {"b": 2, "a": 1}))

    def test_nested_keys_are_sorted(self):
        first = ToolCall("t", {"outer": {"x": 1, "y": [1, {"q": 1, "p": 2}]}})
        second = ToolCall("t", {"outer": {"y": [1, {"p": 2, "q": 1}], "x": 1}})
        assert fingerprint(first) == fingerprint(second)

    def test_null_differs_from_absent(self):
        assert fingerprint(ToolCall("t", {"v": None})) != fingerprint(ToolCall("t", {}))

    def test_tool_name_is_part_of_fingerprint(self):
        assert fingerprint(ToolCall("a", {})) != fingerprint(ToolCall("b", {}))

    def test_call_id_is_ignored(self):
        assert fingerprint(ToolCall("t", {}, id="1")) == fingerprint(ToolCall("t", {}, id="2"))


class TestLoopDetection:
    def test_third_identical_call_trips_detector(self, detector):
        call = ToolCall("read_file", {"path": "a.md"})

        for _ in range(2):
            detector.record("s1", call)
            assert not detector.is_loop("s1", call)

        detector.record("s1", call)
        assert detector.is_loop("s1", call)

    def test_window_expiry_clears_loop(self, detector, clock):
        call = ToolCall("read_file", {"path": "a.md"})
        for _ in range(3):
            detector.record("s1", call)
        assert detector.is_loop("s1", call)

        clock.advance(61)
        assert not detector.is_loop("s1", call)

    def test_alternating_calls_do_not_trip(self, detector):
        a = ToolCall("read_file", {"path": "a.md"})
        b = ToolCall("read_file", {"path": "b.md"})

        for call in (a, b, a, b):
            assert not detector.is_loop("s1", call)
            detector.record("s1", call)

        assert not detector.is_loop("s1", a)
        assert not detector.is_loop("s1", b)

    def test_sessions_are_isolated(self, detector):
        call = ToolCall("list_files", {"path": ""})
        for _ in range(3):
            detector.record("s1", call)

        assert detector.is_loop("s1", call)
        assert not detector.is_loop("s2", call)

    def test_clear_forgets_session(self, detector):
        call = ToolCall("list_files", {"path": ""})
        for _ in range(3):
            detector.record("s1", call)
        detector.clear("s1")

        assert not detector.is_loop("s1", call)
        assert detector.entries("s1") == []


class TestLoopInfo:
    def test_counts(self, detector, clock):
        a = ToolCall("read_file", {"path": "a.md"})
        b = ToolCall("read_file", {"path": "b.md"})
        for call in (a, a, b, a, a):
            detector.record("s1", call)
            clock.advance(1)

        info = detector.info("s1", a)
        assert info.is_loop
        assert info.identical_call_count == 4
        assert info.consecutive_call_count == 2
        assert info.window_ms == 60000
        assert info.last_timestamp == clock.now - 1

    def test_consecutive_count_stops_at_first_mismatch(self, detector):
        a = ToolCall("read_file", {"path": "a.md"})
        b = ToolCall("read_file", {"path": "b.md"})
        for call in (a, a, a, b):
            detector.record("s1", call)

        info = detector.info("s1", a)
        assert info.identical_call_count == 3
        assert info.consecutive_call_count == 0

    def test_unknown_session(self, detector):
        info = detector.info("nobody", ToolCall("t", {}))
        assert not info.is_loop
        assert info.identical_call_count == 0
        assert info.last_timestamp is None


class TestHousekeeping:
    def test_old_entries_pruned_on_record(self, detector, clock):
        detector.record("s1", ToolCall("t", {"n": 0}))
        clock.advance(121)
        detector.record("s1", ToolCall("t", {"n": 1}))

        assert [entry.fingerprint for entry in detector.entries("s1")] == ['t:{"n": 1}']

    def test_ring_is_bounded(self, detector):
        for index in range(MAX_HISTORY_SIZE + 20):
            detector.record("s1", ToolCall("t", {"n": index}))

        assert len(detector.entries("s1")) == MAX_HISTORY_SIZE

    def test_update_config_applies_immediately(self, detector):
        call = ToolCall("t", {})
        detector.record("s1", call)
        assert not detector.is_loop("s1", call)

        detector.update_config(1, 60)
        assert detector.is_loop("s1", call)
        assert detector.threshold == 1

    @pytest.mark.parametrize("threshold, window", [(0, 10), (3, 0), (3, -1)])
    def test_invalid_config_rejected(self, threshold, window):
        with pytest.raises(ValueError):
            LoopDetector(threshold=threshold, window_seconds=window)
