"""Tool execution with timeouts, cancellation and per-turn scheduling."""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from pydantic_core import to_jsonable_python

from ..core.errors import (
    AgentLoopError,
    InvocationFailureError,
    OperationCancelledError,
    ToolTimeoutError,
)
from .resolver import FunctionResolver
from .types import BoundInvocation, ToolCallRequest, ToolResult

logger = logging.getLogger(__name__)


def _consume_task_result(task: "asyncio.Task[Any]") -> None:
    # Abandoned invocations still finish; retrieve their outcome so it is not reported as unhandled
    if not task.cancelled():
        task.exception()


class InvocationExecutor:
    """
    Runs bound invocations and normalizes every outcome into a ToolResult.

    Failures raised by the function, timeouts and cancellation become
    errors on the result; they are never propagated to the caller.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize the executor.

        Args:
            timeout: Per-call wall-clock budget in seconds (None for no limit)
        """
        self.timeout = timeout

    async def execute(
        self,
        bound: BoundInvocation,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ToolResult:
        """
        Execute a bound invocation.

        Args:
            bound: Invocation produced by the resolver
            cancel_event: Cooperative cancellation signal

        Returns:
            Tool result carrying either the value or the error
        """
        request = bound.request
        function_name = bound.descriptor.qualified_name

        if cancel_event is not None and cancel_event.is_set():
            return ToolResult.from_error(
                request, OperationCancelledError(f"Call to '{function_name}' was cancelled")
            )

        logger.debug(f"Invoking function: {function_name} (id: {request.id})")
        start_time = time.monotonic()

        task = asyncio.ensure_future(self._invoke(bound))
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return self._result_from_task(task, request, function_name, start_time)

        # Abandon the invocation; a worker thread keeps running but its result is discarded
        task.cancel()
        task.add_done_callback(_consume_task_result)

        error: AgentLoopError
        if cancel_event is not None and cancel_event.is_set():
            error = OperationCancelledError(f"Call to '{function_name}' was cancelled")
        else:
            error = ToolTimeoutError(
                f"Call to '{function_name}' exceeded {self.timeout}s",
                timeout_seconds=self.timeout
            )
        logger.warning(f"Function {function_name} (id: {request.id}) did not finish: {error.message}")
        return ToolResult.from_error(request, error)

    def _result_from_task(
        self,
        task: "asyncio.Task[Any]",
        request: ToolCallRequest,
        function_name: str,
        start_time: float
    ) -> ToolResult:
        duration_ms = int((time.monotonic() - start_time) * 1000)

        if task.cancelled():
            return ToolResult.from_error(
                request, OperationCancelledError(f"Call to '{function_name}' was cancelled")
            )

        error = task.exception()
        if error is not None:
            logger.warning(f"Function {function_name} (id: {request.id}) failed: {error}")
            return ToolResult.from_error(
                request,
                InvocationFailureError(
                    f"{type(error).__name__}: {error}",
                    function=function_name,
                    original_error=error
                )
            )

        value = to_jsonable_python(task.result(), fallback=str)
        logger.info(
            f"Invoked function: {function_name} in {duration_ms}ms: {type(task.result()).__name__}"
        )
        return ToolResult(call_id=request.id, name=request.qualified_name, value=value)

    async def _invoke(self, bound: BoundInvocation) -> Any:
        fn = bound.descriptor.invoke
        kwargs = bound.kwargs()

        if inspect.iscoroutinefunction(fn):
            return await fn(**kwargs)

        # Synchronous functions run in a worker thread so they cannot block the loop
        result = await asyncio.to_thread(fn, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


class ToolCallStatus(Enum):
    """Status of a tool call within one scheduling pass."""
    VALIDATING = "validating"
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class ToolCall:
    """Represents a tool call in various states of execution."""
    status: ToolCallStatus
    request: ToolCallRequest
    bound: Optional[BoundInvocation] = None
    result: Optional[ToolResult] = None
    start_time: Optional[datetime] = None
    duration_ms: Optional[int] = None


ToolCallsUpdateHandler = Callable[[List[ToolCall]], None]


class ToolCallScheduler:
    """Resolves and executes all tool calls of one assistant turn."""

    def __init__(
        self,
        resolver: FunctionResolver,
        executor: InvocationExecutor,
        concurrent: bool = True,
        on_tool_calls_update: Optional[ToolCallsUpdateHandler] = None
    ):
        self.resolver = resolver
        self.executor = executor
        self.concurrent = concurrent
        self.on_tool_calls_update = on_tool_calls_update

    async def run(
        self,
        requests: Sequence[ToolCallRequest],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[ToolResult]:
        """
        Resolve and execute the requests.

        Returns only after every request has a result; results are in
        request order regardless of completion order.
        """
        calls = [self._validate(request) for request in requests]
        self._notify(calls)

        scheduled = [call for call in calls if call.status == ToolCallStatus.SCHEDULED]
        if scheduled:
            logger.info(
                f"Executing {len(scheduled)} of {len(calls)} tool calls"
                f"{' concurrently' if self.concurrent else ''}"
            )
        if self.concurrent:
            await asyncio.gather(*[self._execute(call, calls, cancel_event) for call in scheduled])
        else:
            for call in scheduled:
                await self._execute(call, calls, cancel_event)

        return [call.result for call in calls if call.result is not None]

    def _validate(self, request: ToolCallRequest) -> ToolCall:
        call = ToolCall(
            status=ToolCallStatus.VALIDATING,
            request=request,
            start_time=datetime.now()
        )
        try:
            call.bound = self.resolver.resolve(request)
            call.status = ToolCallStatus.SCHEDULED
        except AgentLoopError as e:
            logger.warning(f"Could not resolve tool call {request.id} ({request.qualified_name}): {e.message}")
            call.result = ToolResult.from_error(request, e)
            call.status = ToolCallStatus.ERROR
            call.duration_ms = 0
        return call

    async def _execute(
        self,
        call: ToolCall,
        calls: List[ToolCall],
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        call.status = ToolCallStatus.EXECUTING
        self._notify(calls)

        call.result = await self.executor.execute(call.bound, cancel_event)
        if call.result.success:
            call.status = ToolCallStatus.SUCCESS
        elif cancel_event is not None and cancel_event.is_set():
            call.status = ToolCallStatus.CANCELLED
        else:
            call.status = ToolCallStatus.ERROR
        if call.start_time:
            call.duration_ms = int((datetime.now() - call.start_time).total_seconds() * 1000)
        self._notify(calls)

    def _notify(self, calls: List[ToolCall]) -> None:
        """Notify listeners of tool call updates."""
        if self.on_tool_calls_update:
            self.on_tool_calls_update(list(calls))
