"""
Conversation turns for agentloop.

A Turn is a tagged variant keyed by role: assistant turns may carry tool-call
requests, tool-result turns carry exactly one ToolResult, and system and user
turns carry text only.
"""

from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..tools.types import ToolCallRequest, ToolResult


class Role(Enum):
    """Turn roles in a conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class Turn(BaseModel):
    """One immutable entry of the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Optional[str] = Field(default=None, description="Text content")
    tool_calls: Tuple[ToolCallRequest, ...] = Field(
        default=(), description="Tool calls requested by an assistant turn"
    )
    tool_result: Optional[ToolResult] = Field(
        default=None, description="Result carried by a tool-result turn"
    )

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: Any) -> Any:
        """Empty text is stored as no text."""
        if v == "":
            return None
        return v

    @model_validator(mode="after")
    def check_variant(self) -> "Turn":
        if self.tool_calls and self.role != Role.ASSISTANT:
            raise ValueError(f"{self.role.value} turns cannot carry tool calls")
        if self.role == Role.TOOL_RESULT and self.tool_result is None:
            raise ValueError("tool_result turns must carry a tool result")
        if self.role != Role.TOOL_RESULT and self.tool_result is not None:
            raise ValueError(f"{self.role.value} turns cannot carry a tool result")
        return self

    @classmethod
    def system(cls, text: str) -> "Turn":
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(
        cls,
        text: Optional[str] = None,
        tool_calls: Iterable[ToolCallRequest] = ()
    ) -> "Turn":
        return cls(role=Role.ASSISTANT, content=text, tool_calls=tuple(tool_calls))

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "Turn":
        return cls(role=Role.TOOL_RESULT, tool_result=result)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def get_text_content(self) -> str:
        """Get the text of the turn; tool-result turns render their result."""
        if self.tool_result is not None:
            return self.tool_result.content_text()
        return self.content or ""
