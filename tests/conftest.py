"""Shared fixtures for agentloop tests."""

from typing import Any, Callable

import pytest

from agentloop.core.function_calling import InvocationMode, LoopConfig, OrchestrationLoop
from agentloop.core.providers import ChatProvider, ScriptedProvider
from agentloop.core.turn import Turn
from agentloop.tools.builtin import create_helper_functions
from agentloop.tools.registry import FunctionCatalog
from agentloop.tools.types import ToolCallRequest


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep settings independent of the developer's environment."""
    for name in ("AGENTLOOP_API_KEY", "AGENTLOOP_MAX_ITERATIONS", "AGENTLOOP_LOG_LEVEL",
                 "AGENTLOOP_INVOCATION_MODE", "AGENTLOOP_STREAMING", "AGENTLOOP_MODEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def catalog() -> FunctionCatalog:
    """Catalog holding the HelperFunctions namespace."""
    catalog = FunctionCatalog()
    catalog.register_provider(create_helper_functions())
    return catalog


@pytest.fixture
def paris_responses() -> list:
    """Model responses for 'What is the weather in Paris right now?'."""
    return [
        Turn.assistant(tool_calls=[
            ToolCallRequest(id="call_time", namespace="HelperFunctions", name="GetCurrentUtcTime"),
        ]),
        Turn.assistant(tool_calls=[
            ToolCallRequest(
                id="call_weather",
                namespace="HelperFunctions",
                name="Get_Weather_For_City",
                arguments='{"cityName": "Paris"}',
            ),
        ]),
        Turn.assistant("It is currently 60 and rainy in Paris."),
    ]


@pytest.fixture
def make_loop(catalog: FunctionCatalog) -> Callable[..., OrchestrationLoop]:
    """Factory for loops over the helper catalog."""

    def factory(provider: ChatProvider, **options: Any) -> OrchestrationLoop:
        options.setdefault("mode", InvocationMode.AUTO)
        return OrchestrationLoop(LoopConfig(provider=provider, catalog=catalog, **options))

    return factory


@pytest.fixture
def scripted() -> Callable[..., ScriptedProvider]:
    def factory(*responses: Any, chunk_size: int = 8) -> ScriptedProvider:
        return ScriptedProvider(list(responses), chunk_size=chunk_size)

    return factory
