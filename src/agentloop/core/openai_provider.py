"""
OpenAI-compatible chat completions provider for agentloop.

This module talks to any endpoint implementing the OpenAI chat completions
API (OpenAI, Moonshot, DeepInfra, Together AI, local servers, ...) over
httpx, in buffered mode or with server-sent-event streaming.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel

from .. import USER_AGENT
from ..config.settings import AgentLoopSettings
from ..tools.types import ToolCallRequest, split_qualified_name
from .errors import ProviderUnavailableError, classify_provider_error
from .providers import ChatProvider, GenerationSettings
from .streaming import StreamDelta, ToolCallDelta
from .turn import Role, Turn

logger = logging.getLogger(__name__)


class OpenAIFunctionCall(BaseModel):
    """OpenAI-compatible function call format."""
    name: str
    arguments: str = ""


class OpenAIToolCall(BaseModel):
    """OpenAI-compatible tool call format."""
    id: str
    type: str = "function"
    function: OpenAIFunctionCall


class OpenAIMessage(BaseModel):
    """OpenAI-compatible message format."""
    role: str
    content: Optional[str] = None
    tool_calls: Optional[List[OpenAIToolCall]] = None
    tool_call_id: Optional[str] = None


class OpenAIRequest(BaseModel):
    """OpenAI-compatible request format."""
    model: str
    messages: List[OpenAIMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[List[Dict[str, Any]]] = None
    stream: bool = False


class OpenAIChoice(BaseModel):
    """OpenAI-compatible choice format."""
    index: int = 0
    message: Optional[OpenAIMessage] = None
    finish_reason: Optional[str] = None


class OpenAIResponse(BaseModel):
    """OpenAI-compatible response format."""
    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[OpenAIChoice]


_ROLE_MAP = {
    Role.SYSTEM: "system",
    Role.USER: "user",
    Role.ASSISTANT: "assistant",
    Role.TOOL_RESULT: "tool",
}


class OpenAICompatibleProvider(ChatProvider):
    """Chat provider for OpenAI-compatible chat completions endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the provider.

        Args:
            api_key: Bearer token for the endpoint
            base_url: API base URL
            timeout: Request timeout in seconds
            client: Preconfigured client; the provider creates one if omitted
        """
        self.base_url = base_url
        self._owns_client = client is None
        if client is None:
            headers = {
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT
            }
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            client = httpx.AsyncClient(
                base_url=base_url,
                headers=headers,
                timeout=httpx.Timeout(timeout)
            )
        self._client = client

    @classmethod
    def from_settings(cls, settings: AgentLoopSettings) -> "OpenAICompatibleProvider":
        """Create a provider from agentloop settings."""
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout
        )

    async def complete(self, turns: Sequence[Turn], settings: GenerationSettings) -> Turn:
        request = self._create_request(turns, settings, stream=False)
        try:
            response = await self._client.post(
                "/chat/completions",
                json=request.model_dump(exclude_none=True)
            )
            response.raise_for_status()
            openai_response = OpenAIResponse(**response.json())
        except httpx.HTTPError as e:
            error = classify_provider_error(e)
            logger.error(f"Error generating content: {error}")
            raise error from e
        except ValueError as e:
            raise ProviderUnavailableError(
                f"Invalid response from model provider: {e}", original_error=e
            ) from e

        return self._convert_response(openai_response)

    async def complete_streaming(
        self,
        turns: Sequence[Turn],
        settings: GenerationSettings
    ) -> AsyncIterator[StreamDelta]:
        request = self._create_request(turns, settings, stream=True)
        try:
            async with self._client.stream(
                "POST",
                "/chat/completions",
                json=request.model_dump(exclude_none=True)
            ) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[6:]  # Remove "data: " prefix

                    if data.strip() == "[DONE]":
                        break

                    try:
                        chunk_data = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping undecodable stream chunk: {data[:80]}")
                        continue

                    for delta in self._convert_chunk(chunk_data):
                        yield delta
        except httpx.HTTPError as e:
            error = classify_provider_error(e)
            logger.error(f"Error in streaming generation: {error}")
            raise error from e

        yield StreamDelta(is_final=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _create_request(
        self,
        turns: Sequence[Turn],
        settings: GenerationSettings,
        stream: bool
    ) -> OpenAIRequest:
        tools = [{"type": "function", "function": declaration} for declaration in settings.tools]
        return OpenAIRequest(
            model=settings.model,
            messages=self._convert_turns(turns),
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            tools=tools or None,
            stream=stream
        )

    def _convert_turns(self, turns: Sequence[Turn]) -> List[OpenAIMessage]:
        """Convert conversation turns to OpenAI messages."""
        messages = []
        for turn in turns:
            if turn.role == Role.TOOL_RESULT:
                messages.append(OpenAIMessage(
                    role="tool",
                    content=turn.tool_result.content_text(),
                    tool_call_id=turn.tool_result.call_id
                ))
            elif turn.tool_calls:
                messages.append(OpenAIMessage(
                    role="assistant",
                    content=turn.content,
                    tool_calls=[
                        OpenAIToolCall(
                            id=call.id,
                            function=OpenAIFunctionCall(
                                name=call.qualified_name,
                                arguments=call.arguments or "{}"
                            )
                        )
                        for call in turn.tool_calls
                    ]
                ))
            else:
                messages.append(OpenAIMessage(role=_ROLE_MAP[turn.role], content=turn.content or ""))
        return messages

    def _convert_response(self, openai_response: OpenAIResponse) -> Turn:
        """Convert a buffered response into an assistant turn."""
        if not openai_response.choices or openai_response.choices[0].message is None:
            raise ProviderUnavailableError("Model provider returned no choices")

        message = openai_response.choices[0].message
        tool_calls = []
        for call in message.tool_calls or []:
            namespace, name = split_qualified_name(call.function.name)
            tool_calls.append(ToolCallRequest(
                id=call.id,
                namespace=namespace,
                name=name,
                arguments=call.function.arguments
            ))
        return Turn.assistant(message.content, tool_calls)

    def _convert_chunk(self, chunk_data: Dict[str, Any]) -> List[StreamDelta]:
        """Convert one streaming chunk into deltas."""
        deltas = []
        for choice in chunk_data.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                deltas.append(StreamDelta(text=delta["content"]))

            for call in delta.get("tool_calls") or []:
                function = call.get("function") or {}
                namespace, name = (None, None)
                if function.get("name"):
                    namespace, name = split_qualified_name(function["name"])
                deltas.append(StreamDelta(tool_call=ToolCallDelta(
                    index=call.get("index", 0),
                    id=call.get("id"),
                    namespace=namespace or None,
                    name=name,
                    arguments=function.get("arguments") or ""
                )))
        return deltas
