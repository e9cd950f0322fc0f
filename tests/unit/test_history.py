"""Tests for turns and the history log."""

import pytest
from pydantic import ValidationError

from agentloop.core.history import HistoryLog
from agentloop.core.turn import Role, Turn
from agentloop.tools.types import ToolCallRequest, ToolError, ToolErrorKind, ToolResult


def call(call_id: str) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, namespace="HelperFunctions", name="GetCurrentUtcTime")


class TestTurn:
    """Test the Turn variants."""

    def test_factories(self):
        assert Turn.system("be brief").role == Role.SYSTEM
        assert Turn.user("hi").content == "hi"
        assistant = Turn.assistant("thinking", [call("1")])
        assert assistant.has_tool_calls is True
        assert assistant.tool_calls[0].id == "1"

    def test_empty_content_is_none(self):
        assert Turn.assistant("").content is None

    def test_only_assistant_turns_carry_tool_calls(self):
        with pytest.raises(ValidationError):
            Turn(role=Role.USER, content="hi", tool_calls=(call("1"),))

    def test_tool_result_turn_requires_result(self):
        with pytest.raises(ValidationError):
            Turn(role=Role.TOOL_RESULT)
        with pytest.raises(ValidationError):
            Turn(role=Role.USER, content="x", tool_result=ToolResult(call_id="1"))

    def test_turns_are_frozen(self):
        turn = Turn.user("hi")
        with pytest.raises(ValidationError):
            turn.content = "changed"

    def test_error_result_text(self):
        result = ToolResult(
            call_id="1",
            error=ToolError(kind=ToolErrorKind.UNKNOWN_FUNCTION, message="Function 'X' is not registered")
        )
        turn = Turn.from_tool_result(result)
        assert turn.get_text_content() == "Error (unknown_function): Function 'X' is not registered"


class TestHistoryLog:
    """Test HistoryLog."""

    def test_append_and_snapshot(self):
        history = HistoryLog()
        history.append(Turn.user("one"))
        history.append(Turn.assistant("two"))

        snapshot = history.snapshot()
        assert isinstance(snapshot, tuple)
        assert [t.content for t in snapshot] == ["one", "two"]
        assert len(history) == 2
        assert history.last().content == "two"

    def test_snapshot_is_not_affected_by_later_appends(self):
        history = HistoryLog([Turn.user("one")])
        snapshot = history.snapshot()
        history.append(Turn.assistant("two"))

        assert len(snapshot) == 1

    def test_append_rejects_non_turns(self):
        with pytest.raises(TypeError):
            HistoryLog().append({"role": "user", "content": "hi"})

    def test_pending_tool_calls(self):
        history = HistoryLog([
            Turn.user("time?"),
            Turn.assistant(tool_calls=[call("a"), call("b")]),
            Turn.from_tool_result(ToolResult(call_id="a", value="now")),
        ])
        assert [c.id for c in history.pending_tool_calls()] == ["b"]

        history.append(Turn.from_tool_result(ToolResult(call_id="b", value="now")))
        assert history.pending_tool_calls() == []

    def test_pending_tool_calls_without_assistant(self):
        assert HistoryLog([Turn.user("hi")]).pending_tool_calls() == []

    def test_json_round_trip(self):
        history = HistoryLog([
            Turn.system("sys"),
            Turn.user("weather?"),
            Turn.assistant(tool_calls=[call("a")]),
            Turn.from_tool_result(ToolResult(
                call_id="a",
                error=ToolError(kind=ToolErrorKind.TIMEOUT, message="too slow")
            )),
            Turn.assistant("done"),
        ])

        restored = HistoryLog.from_json(history.to_json())
        assert restored.snapshot() == history.snapshot()
