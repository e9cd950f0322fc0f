"""
Model provider interface for agentloop.

A ChatProvider turns the conversation so far into the next assistant turn,
either in one piece or as a stream of deltas. ScriptedProvider replays
prepared responses and backs the tests and the replay command.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from ..tools.types import ToolCallRequest
from .errors import ProviderUnavailableError
from .streaming import StreamDelta, ToolCallAccumulator, ToolCallDelta
from .turn import Role, Turn

logger = logging.getLogger(__name__)


class GenerationSettings(BaseModel):
    """Settings sent with every completion request."""
    model: str = Field(default="gpt-4o-mini", description="Model name")
    temperature: float = Field(default=0.7, description="Sampling temperature")
    max_tokens: int = Field(default=4096, description="Maximum tokens to generate")
    tools: List[Dict[str, Any]] = Field(default_factory=list, description="Tool declarations")


class ChatProvider(ABC):
    """Abstract base class for model providers."""

    @abstractmethod
    async def complete(self, turns: Sequence[Turn], settings: GenerationSettings) -> Turn:
        """
        Request one complete assistant turn.

        Raises:
            ProviderUnavailableError: If no response could be produced
        """
        pass

    @abstractmethod
    def complete_streaming(
        self,
        turns: Sequence[Turn],
        settings: GenerationSettings
    ) -> AsyncIterator[StreamDelta]:
        """
        Request an assistant turn as a stream of deltas.

        Raises:
            ProviderUnavailableError: If the stream cannot be produced
        """
        pass

    async def aclose(self) -> None:
        """Release resources held by the provider."""
        pass


ScriptedResponse = Union[Turn, List[StreamDelta]]


def _chunks(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)] or [""]


def split_turn_into_deltas(turn: Turn, chunk_size: int = 8) -> List[StreamDelta]:
    """
    Split an assistant turn into streaming deltas.

    Text comes first, then each tool call: its first fragment carries the
    id and name, later fragments only the index and an argument chunk.
    """
    deltas: List[StreamDelta] = []
    if turn.content:
        deltas.extend(StreamDelta(text=chunk) for chunk in _chunks(turn.content, chunk_size))

    for index, call in enumerate(turn.tool_calls):
        for position, chunk in enumerate(_chunks(call.arguments, chunk_size)):
            if position == 0:
                fragment = ToolCallDelta(
                    index=index,
                    id=call.id,
                    namespace=call.namespace or None,
                    name=call.name,
                    arguments=chunk
                )
            else:
                fragment = ToolCallDelta(index=index, arguments=chunk)
            deltas.append(StreamDelta(tool_call=fragment))

    deltas.append(StreamDelta(is_final=True))
    return deltas


def _turn_from_data(item: Mapping[str, Any]) -> Turn:
    tool_calls = []
    for position, call in enumerate(item.get("tool_calls") or [], start=1):
        call_id = call.get("id") or f"call_{position:03d}"
        if call.get("namespace"):
            tool_calls.append(ToolCallRequest(
                id=call_id,
                namespace=call["namespace"],
                name=call["name"],
                arguments=call.get("arguments")
            ))
        else:
            tool_calls.append(
                ToolCallRequest.from_qualified_name(call_id, call["name"], call.get("arguments"))
            )

    role = Role(item.get("role", Role.ASSISTANT.value))
    return Turn(role=role, content=item.get("content"), tool_calls=tuple(tool_calls))


class ScriptedProvider(ChatProvider):
    """
    Provider that replays prepared responses in order.

    Responses are assistant turns, or explicit delta lists for streaming.
    Every request is recorded in `requests` as (turns, settings).
    """

    def __init__(self, responses: Sequence[ScriptedResponse], chunk_size: int = 8):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._responses: List[ScriptedResponse] = list(responses)
        self.chunk_size = chunk_size
        self.requests: List[Tuple[Tuple[Turn, ...], GenerationSettings]] = []

    @property
    def remaining(self) -> int:
        return len(self._responses)

    def _next(self, turns: Sequence[Turn], settings: GenerationSettings) -> ScriptedResponse:
        self.requests.append((tuple(turns), settings))
        if not self._responses:
            raise ProviderUnavailableError("Scripted provider has no responses left")
        return self._responses.pop(0)

    async def complete(self, turns: Sequence[Turn], settings: GenerationSettings) -> Turn:
        response = self._next(turns, settings)
        if isinstance(response, Turn):
            return response

        accumulator = ToolCallAccumulator()
        for delta in response:
            accumulator.add(delta)
        return accumulator.finalize()

    async def complete_streaming(
        self,
        turns: Sequence[Turn],
        settings: GenerationSettings
    ) -> AsyncIterator[StreamDelta]:
        response = self._next(turns, settings)
        deltas = split_turn_into_deltas(response, self.chunk_size) if isinstance(response, Turn) else response
        for delta in deltas:
            yield delta

    @classmethod
    def from_data(cls, data: Sequence[Mapping[str, Any]], chunk_size: int = 8) -> "ScriptedProvider":
        """
        Create a provider from plain data.

        Each item is either a turn ({"content", "tool_calls"}) or
        {"deltas": [...]} holding StreamDelta dictionaries.
        """
        responses: List[ScriptedResponse] = []
        for item in data:
            if "deltas" in item:
                responses.append([StreamDelta.model_validate(delta) for delta in item["deltas"]])
            else:
                responses.append(_turn_from_data(item))
        return cls(responses, chunk_size=chunk_size)

    @classmethod
    def from_file(cls, path: Union[str, Path], chunk_size: int = 8) -> "ScriptedProvider":
        """Create a provider from a JSON file holding a list of responses."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, Mapping):
            data = data.get("responses", [])
        logger.debug(f"Loaded {len(data)} scripted responses from {path}")
        return cls.from_data(data, chunk_size=chunk_size)

