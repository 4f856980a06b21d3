"""Unit tests for tool-call reassembly."""

import itertools

import pytest

from tributary.errors import ProtocolViolation
from tributary.events import ToolCallDelta
from tributary.streaming import AccumulatedToolCall, ToolCallAccumulator


class TestToolCallAccumulator:
    def test_single_tool_call_single_fragment(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, call_id="c1", name_fragment="echo", arguments_fragment='{"text": "hi"}'))
        result = acc.finalize()

        assert len(result) == 1
        assert result[0] == AccumulatedToolCall(index=0, call_id="c1", name="echo", arguments='{"text": "hi"}')

    def test_name_and_arguments_accumulated_across_fragments(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, call_id="c1", name_fragment="get_w"))
        acc.apply(ToolCallDelta(index=0, name_fragment="eather"))
        acc.apply(ToolCallDelta(index=0, arguments_fragment='{"loc'))
        acc.apply(ToolCallDelta(index=0, arguments_fragment='ation":"p"}'))
        result = acc.finalize()

        assert result[0].name == "get_weather"
        assert result[0].arguments == '{"location":"p"}'

    def test_multiple_concurrent_tool_calls(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, call_id="c1", name_fragment="foo", arguments_fragment='{"a":'))
        acc.apply(ToolCallDelta(index=1, call_id="c2", name_fragment="bar", arguments_fragment='{"b":'))
        acc.apply(ToolCallDelta(index=0, arguments_fragment=' 1}'))
        acc.apply(ToolCallDelta(index=1, arguments_fragment=' 2}'))
        result = acc.finalize()

        assert len(result) == 2
        assert result[0] == AccumulatedToolCall(index=0, call_id="c1", name="foo", arguments='{"a": 1}')
        assert result[1] == AccumulatedToolCall(index=1, call_id="c2", name="bar", arguments='{"b": 2}')

    def test_interleaving_never_mixes_indexes(self):
        """Every interleaving that keeps per-index order gives the same result."""
        first = [
            ToolCallDelta(index=0, call_id="a", name_fragment="lo"),
            ToolCallDelta(index=0, name_fragment="ok", arguments_fragment='{"q":'),
            ToolCallDelta(index=0, arguments_fragment='"x"}'),
        ]
        second = [
            ToolCallDelta(index=1, call_id="b", name_fragment="se"),
            ToolCallDelta(index=1, name_fragment="nd", arguments_fragment="[1,"),
            ToolCallDelta(index=1, arguments_fragment="2]"),
        ]
        seen = set()
        for positions in itertools.combinations(range(6), 3):
            a, b = iter(first), iter(second)
            order = [next(a) if i in positions else next(b) for i in range(6)]
            acc = ToolCallAccumulator()
            for delta in order:
                acc.apply(delta)
            seen.add(tuple(
                (tc.index, tc.call_id, tc.name, tc.arguments)
                for tc in acc.finalize()
            ))

        assert seen == {(
            (0, "a", "look", '{"q":"x"}'),
            (1, "b", "send", "[1,2]"),
        )}

    def test_finalize_returns_index_order(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=2, call_id="c3", name_fragment="c"))
        acc.apply(ToolCallDelta(index=0, call_id="c1", name_fragment="a"))
        acc.apply(ToolCallDelta(index=1, call_id="c2", name_fragment="b"))
        result = acc.finalize()

        assert [tc.name for tc in result] == ["a", "b", "c"]

    def test_finalize_returns_snapshot(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, arguments_fragment="{"))
        snapshot = acc.finalize()
        acc.apply(ToolCallDelta(index=0, arguments_fragment="}"))

        assert snapshot[0].arguments == "{"
        assert acc.finalize()[0].arguments == "{}"

    def test_call_id_recorded_once(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, name_fragment="f"))
        acc.apply(ToolCallDelta(index=0, call_id="c1"))
        acc.apply(ToolCallDelta(index=0, call_id="c1", arguments_fragment="{}"))

        assert acc.finalize()[0].call_id == "c1"

    def test_changed_call_id_is_protocol_violation(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, call_id="c1", name_fragment="f"))

        with pytest.raises(ProtocolViolation, match="changed call_id"):
            acc.apply(ToolCallDelta(index=0, call_id="c2", arguments_fragment="{}"))

        # The offending fragment is not applied.
        assert acc.finalize()[0].arguments == ""

    def test_clear(self):
        acc = ToolCallAccumulator()
        acc.apply(ToolCallDelta(index=0, name_fragment="f"))
        acc.clear()

        assert len(acc) == 0
        assert acc.finalize() == []

    def test_empty_accumulator(self):
        acc = ToolCallAccumulator()
        assert acc.finalize() == []
