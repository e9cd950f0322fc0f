"""
Tests for streamed delta accumulation.
"""

from agentloop.core.providers import split_turn_into_deltas
from agentloop.core.streaming import (
    ContentEvent,
    FinishedEvent,
    StreamDelta,
    StreamEventType,
    ToolCallAccumulator,
    ToolCallDelta,
    create_error_event,
)
from agentloop.core.turn import Role, Turn
from agentloop.tools.types import ToolCallRequest


def fragment(**kwargs) -> StreamDelta:
    return StreamDelta(tool_call=ToolCallDelta(**kwargs))


class TestToolCallAccumulator:
    """Test merging of streamed fragments."""

    def test_text_only(self):
        accumulator = ToolCallAccumulator()
        forwarded = [accumulator.add(StreamDelta(text=t)) for t in ("Hel", "lo")]
        accumulator.add(StreamDelta(is_final=True))

        assert forwarded == ["Hel", "lo"]
        assert accumulator.finished is True
        turn = accumulator.finalize()
        assert turn.role == Role.ASSISTANT
        assert turn.content == "Hello"
        assert turn.tool_calls == ()

    def test_arguments_split_across_three_deltas(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(index=0, id="call_1", namespace="HelperFunctions",
                                 name="Get_Weather_For_City", arguments='{"city'))
        accumulator.add(fragment(index=0, arguments='Name": "Pa'))
        accumulator.add(fragment(index=0, arguments='ris"}'))

        buffered = ToolCallRequest(
            id="call_1",
            namespace="HelperFunctions",
            name="Get_Weather_For_City",
            arguments='{"cityName": "Paris"}'
        )
        assert accumulator.finalize().tool_calls == (buffered,)

    def test_fragments_keyed_by_id(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(id="a", name="Ns-first", arguments='{"x":'))
        accumulator.add(fragment(id="b", name="Ns-second", arguments='{"y":'))
        accumulator.add(fragment(id="a", arguments=' 1}'))
        accumulator.add(fragment(id="b", arguments=' 2}'))

        calls = accumulator.finalize().tool_calls
        assert [(c.id, c.arguments) for c in calls] == [("a", '{"x": 1}'), ("b", '{"y": 2}')]

    def test_interleaved_indices(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(index=0, id="a", name="Ns-one"))
        accumulator.add(fragment(index=1, id="b", name="Ns-two"))
        accumulator.add(fragment(index=1, arguments="{}"))
        accumulator.add(fragment(index=0, arguments='{"q": 1}'))

        calls = accumulator.finalize().tool_calls
        assert [(c.id, c.arguments) for c in calls] == [("a", '{"q": 1}'), ("b", "{}")]

    def test_id_arriving_after_index_fragments(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(index=0, name="Ns-late", arguments='{"a"'))
        accumulator.add(fragment(index=0, id="late", arguments=': 1'))
        accumulator.add(fragment(id="late", arguments='}'))

        calls = accumulator.finalize().tool_calls
        assert len(calls) == 1
        assert calls[0].id == "late"
        assert calls[0].arguments == '{"a": 1}'

    def test_reused_id_on_new_index_stays_separate(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(index=0, id="same", name="Ns-one", arguments='{"a"'))
        accumulator.add(fragment(index=0, arguments=': 1}'))
        accumulator.add(fragment(index=1, id="same", name="Ns-two", arguments='{"b"'))
        accumulator.add(fragment(index=1, arguments=': 2}'))

        calls = accumulator.finalize().tool_calls
        assert [(c.id, c.name, c.arguments) for c in calls] == [
            ("same", "Ns-one", '{"a": 1}'),
            ("same", "Ns-two", '{"b": 2}'),
        ]

    def test_missing_ids_are_generated(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(index=0, name="Ns-one"))
        accumulator.add(fragment(index=1, name="Ns-two"))

        assert [c.id for c in accumulator.finalize().tool_calls] == ["call_001", "call_002"]

    def test_qualified_names_are_kept_for_resolution(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(fragment(id="1", name="HelperFunctions-GetCurrentUtcTime"))

        call = accumulator.finalize().tool_calls[0]
        assert call.namespace == ""
        assert call.qualified_name == "HelperFunctions-GetCurrentUtcTime"


class TestSplitTurnIntoDeltas:
    """Test that split deltas merge back into the original turn."""

    def test_round_trip_turn(self):
        turn = Turn.assistant("Checking the weather now.", [
            ToolCallRequest(id="t", namespace="HelperFunctions", name="GetCurrentUtcTime"),
            ToolCallRequest(id="w", namespace="HelperFunctions", name="Get_Weather_For_City",
                            arguments='{"cityName": "Paris"}'),
        ])
        deltas = split_turn_into_deltas(turn, chunk_size=4)

        assert deltas[-1].is_final is True
        weather_fragments = [d for d in deltas if d.tool_call and d.tool_call.index == 1]
        assert len(weather_fragments) > 3
        assert all(f.tool_call.id is None for f in weather_fragments[1:])

        accumulator = ToolCallAccumulator()
        for delta in deltas:
            accumulator.add(delta)
        assert accumulator.finalize() == turn


class TestLoopEvents:
    """Test event models."""

    def test_event_types(self):
        assert ContentEvent(value="hi").type == StreamEventType.CONTENT
        assert FinishedEvent(value={"status": "completed"}).type == StreamEventType.FINISHED

    def test_error_event(self):
        event = create_error_event("boom", code="PROVIDER_UNAVAILABLE", status=503)
        assert event.type == StreamEventType.ERROR
        assert event.value.status == 503
