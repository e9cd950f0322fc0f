"""
Tests for invocation execution and tool-call scheduling.
"""

import asyncio
import time

import pytest
from pydantic import BaseModel

from agentloop.tools.functions import create_function
from agentloop.tools.registry import FunctionCatalog
from agentloop.tools.resolver import FunctionResolver
from agentloop.tools.scheduler import InvocationExecutor, ToolCallScheduler, ToolCallStatus
from agentloop.tools.types import ToolCallRequest, ToolErrorKind


class Point(BaseModel):
    x: int
    y: int


def divide(a: float, b: float) -> float:
    return a / b


async def slow(seconds: float) -> str:
    await asyncio.sleep(seconds)
    return "finished"


def blocking(seconds: float) -> str:
    time.sleep(seconds)
    return "finished"


def make_point(x: int, y: int) -> Point:
    return Point(x=x, y=y)


@pytest.fixture
def catalog():
    catalog = FunctionCatalog()
    for fn in (divide, slow, blocking, make_point):
        catalog.register(create_function(fn, namespace="Test"))
    return catalog


@pytest.fixture
def resolver(catalog):
    return FunctionResolver(catalog)


def request(call_id: str, name: str, arguments: str = "") -> ToolCallRequest:
    return ToolCallRequest(id=call_id, namespace="Test", name=name, arguments=arguments)


class TestInvocationExecutor:
    """Test InvocationExecutor.execute."""

    @pytest.mark.asyncio
    async def test_sync_function_result(self, resolver):
        bound = resolver.resolve(request("1", "divide", '{"a": 6, "b": 3}'))
        result = await InvocationExecutor().execute(bound)

        assert result.success is True
        assert result.call_id == "1"
        assert result.name == "Test-divide"
        assert result.value == 2.0

    @pytest.mark.asyncio
    async def test_exception_becomes_invocation_failure(self, resolver):
        bound = resolver.resolve(request("1", "divide", '{"a": 1, "b": 0}'))
        result = await InvocationExecutor().execute(bound)

        assert result.success is False
        assert result.error.kind == ToolErrorKind.INVOCATION_FAILURE
        assert "ZeroDivisionError" in result.error.message

    @pytest.mark.asyncio
    async def test_models_are_normalized(self, resolver):
        bound = resolver.resolve(request("1", "make_point", '{"x": 1, "y": 2}'))
        result = await InvocationExecutor().execute(bound)

        assert result.value == {"x": 1, "y": 2}
        assert result.content_text() == '{"x": 1, "y": 2}'

    @pytest.mark.asyncio
    async def test_timeout_async(self, resolver):
        bound = resolver.resolve(request("1", "slow", '{"seconds": 5}'))
        result = await InvocationExecutor(timeout=0.05).execute(bound)

        assert result.error.kind == ToolErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_timeout_sync(self, resolver):
        bound = resolver.resolve(request("1", "blocking", '{"seconds": 0.3}'))
        result = await InvocationExecutor(timeout=0.05).execute(bound)

        assert result.error.kind == ToolErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_cancellation_mid_execution(self, resolver):
        cancel_event = asyncio.Event()
        bound = resolver.resolve(request("1", "slow", '{"seconds": 5}'))

        asyncio.get_running_loop().call_later(0.05, cancel_event.set)
        result = await InvocationExecutor().execute(bound, cancel_event)

        assert result.error.kind == ToolErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_already_cancelled(self, resolver):
        cancel_event = asyncio.Event()
        cancel_event.set()
        bound = resolver.resolve(request("1", "divide", '{"a": 1, "b": 1}'))

        result = await InvocationExecutor().execute(bound, cancel_event)
        assert result.error.kind == ToolErrorKind.CANCELLED


class TestToolCallScheduler:
    """Test ToolCallScheduler.run."""

    @pytest.mark.asyncio
    async def test_results_in_request_order(self, resolver):
        scheduler = ToolCallScheduler(resolver, InvocationExecutor())
        results = await scheduler.run([
            request("a", "slow", '{"seconds": 0.1}'),
            request("b", "slow", '{"seconds": 0.01}'),
            request("c", "divide", '{"a": 1, "b": 2}'),
        ])

        assert [r.call_id for r in results] == ["a", "b", "c"]
        assert [r.value for r in results] == ["finished", "finished", 0.5]

    @pytest.mark.asyncio
    async def test_concurrent_execution(self, resolver):
        scheduler = ToolCallScheduler(resolver, InvocationExecutor(), concurrent=True)
        started = time.monotonic()
        await scheduler.run([request(str(i), "slow", '{"seconds": 0.2}') for i in range(5)])

        assert time.monotonic() - started < 0.8

    @pytest.mark.asyncio
    async def test_resolution_errors_do_not_abort_turn(self, resolver):
        scheduler = ToolCallScheduler(resolver, InvocationExecutor())
        results = await scheduler.run([
            request("1", "DoesNotExist"),
            request("2", "divide", "not json"),
            request("3", "divide", '{"a": 4, "b": 2}'),
        ])

        assert results[0].error.kind == ToolErrorKind.UNKNOWN_FUNCTION
        assert results[1].error.kind == ToolErrorKind.MALFORMED_ARGUMENTS
        assert results[2].value == 2.0

    @pytest.mark.asyncio
    async def test_sequential_execution_and_updates(self, resolver):
        updates = []
        scheduler = ToolCallScheduler(
            resolver,
            InvocationExecutor(),
            concurrent=False,
            on_tool_calls_update=lambda calls: updates.append([c.status for c in calls])
        )
        await scheduler.run([request("1", "divide", '{"a": 1, "b": 1}')])

        assert updates[0] == [ToolCallStatus.SCHEDULED]
        assert updates[-1] == [ToolCallStatus.SUCCESS]
