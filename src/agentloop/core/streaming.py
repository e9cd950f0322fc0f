"""
Streaming primitives for agentloop.

This module provides the incremental delta types a model provider yields,
the accumulator that merges tool-call fragments back into complete requests,
and the typed events emitted while a conversation runs.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..tools.types import ToolCallRequest, ToolResult
from .turn import Turn


class ToolCallDelta(BaseModel):
    """A fragment of one tool call in a streamed response."""
    index: int = Field(default=0, description="Position of the call within the response")
    id: Optional[str] = Field(default=None, description="Call id, usually only on the first fragment")
    namespace: Optional[str] = Field(default=None, description="Function namespace")
    name: Optional[str] = Field(default=None, description="Function name or qualified name")
    arguments: str = Field(default="", description="Argument payload fragment")


class StreamDelta(BaseModel):
    """One increment of a streamed model response."""
    text: Optional[str] = Field(default=None, description="Text fragment")
    tool_call: Optional[ToolCallDelta] = Field(default=None, description="Tool-call fragment")
    is_final: bool = Field(default=False, description="Set on the last delta of the response")


class _PartialCall:
    __slots__ = ("id", "namespace", "name", "fragments")

    def __init__(self) -> None:
        self.id: Optional[str] = None
        self.namespace: Optional[str] = None
        self.name: Optional[str] = None
        self.fragments: List[str] = []


class ToolCallAccumulator:
    """
    Merges streamed deltas into one assistant turn.

    Fragments are keyed by call id; fragments that only carry an index are
    attached to the call first seen at that index. Argument fragments are
    concatenated in arrival order, and requests exist only after finalize().
    """

    def __init__(self) -> None:
        self._text: List[str] = []
        self._calls: Dict[str, _PartialCall] = {}
        self._order: List[str] = []
        self._index_keys: Dict[int, str] = {}
        self._id_keys: Dict[str, str] = {}
        self._key_indices: Dict[str, int] = {}
        self.finished = False

    def add(self, delta: StreamDelta) -> Optional[str]:
        """
        Merge a delta.

        Returns:
            The delta's text fragment, if any, for immediate forwarding
        """
        if delta.text:
            self._text.append(delta.text)
        if delta.tool_call is not None:
            self._add_tool_call(delta.tool_call)
        if delta.is_final:
            self.finished = True
        return delta.text or None

    def _add_tool_call(self, fragment: ToolCallDelta) -> None:
        key = self._key_for(fragment)
        partial = self._calls.get(key)
        if partial is None:
            partial = _PartialCall()
            self._calls[key] = partial
            self._order.append(key)

        if fragment.id and not partial.id:
            partial.id = fragment.id
        if fragment.namespace and not partial.namespace:
            partial.namespace = fragment.namespace
        if fragment.name and not partial.name:
            partial.name = fragment.name
        if fragment.arguments:
            partial.fragments.append(fragment.arguments)

    def _key_for(self, fragment: ToolCallDelta) -> str:
        index_key = self._index_keys.get(fragment.index)

        if fragment.id:
            key = self._id_keys.get(fragment.id)
            if key is not None:
                if self._key_indices[key] == fragment.index:
                    return key
                # The same id on another index is a separate call with a duplicate id
                return self._bind_index(fragment.index, f"{fragment.id}#index-{fragment.index}")
            if index_key is not None and self._calls[index_key].id is None:
                # The id arrived after id-less fragments for the same index
                key = index_key
            else:
                key = self._bind_index(fragment.index, fragment.id)
            self._id_keys[fragment.id] = key
            return key

        if index_key is None:
            index_key = self._bind_index(fragment.index, f"#index-{fragment.index}")
        return index_key

    def _bind_index(self, index: int, key: str) -> str:
        self._index_keys[index] = key
        self._key_indices.setdefault(key, index)
        return key

    @property
    def text(self) -> str:
        return "".join(self._text)

    def finalize(self) -> Turn:
        """Build the assistant turn from everything accumulated so far."""
        tool_calls: List[ToolCallRequest] = []
        for position, key in enumerate(self._order, start=1):
            partial = self._calls[key]
            tool_calls.append(ToolCallRequest(
                id=partial.id or f"call_{position:03d}",
                namespace=partial.namespace or "",
                name=partial.name or "",
                arguments="".join(partial.fragments)
            ))

        self.finished = True
        return Turn.assistant(self.text or None, tool_calls)


class StreamEventType(Enum):
    """Types of loop events."""
    CONTENT = "content"
    TOOL_CALL_REQUEST = "tool_call_request"
    TOOL_RESULT = "tool_result"
    SUSPENDED = "suspended"
    ERROR = "error"
    FINISHED = "finished"


class LoopEvent(BaseModel):
    """Base class for all loop events."""
    type: StreamEventType
    value: Optional[Any] = None


class ContentEvent(LoopEvent):
    """Event containing generated text."""
    type: StreamEventType = StreamEventType.CONTENT
    value: str = Field(description="Generated text fragment")


class ToolCallRequestEvent(LoopEvent):
    """Event announcing a tool call requested by the model."""
    type: StreamEventType = StreamEventType.TOOL_CALL_REQUEST
    value: ToolCallRequest


class ToolResultEvent(LoopEvent):
    """Event carrying the result of one tool call."""
    type: StreamEventType = StreamEventType.TOOL_RESULT
    value: ToolResult


class SuspendedEvent(LoopEvent):
    """Event indicating the loop waits for caller-supplied results."""
    type: StreamEventType = StreamEventType.SUSPENDED
    value: List[ToolCallRequest] = Field(description="Tool calls awaiting results")


class StructuredError(BaseModel):
    """Structured error information."""
    message: str = Field(description="Error message")
    code: Optional[str] = Field(default=None, description="Error code")
    status: Optional[int] = Field(default=None, description="HTTP status code if applicable")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")


class ErrorEvent(LoopEvent):
    """Event containing a terminal error."""
    type: StreamEventType = StreamEventType.ERROR
    value: StructuredError


class FinishedEvent(LoopEvent):
    """Event indicating the loop stopped."""
    type: StreamEventType = StreamEventType.FINISHED
    value: Optional[Dict[str, Any]] = Field(default=None, description="Final metadata")


def create_content_event(text: str) -> ContentEvent:
    """Create a content event."""
    return ContentEvent(value=text)


def create_error_event(
    message: str,
    code: Optional[str] = None,
    status: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None
) -> ErrorEvent:
    """Create an error event."""
    return ErrorEvent(value=StructuredError(message=message, code=code, status=status, details=details))


def create_finished_event(metadata: Optional[Dict[str, Any]] = None) -> FinishedEvent:
    """Create a finished event."""
    return FinishedEvent(value=metadata)
