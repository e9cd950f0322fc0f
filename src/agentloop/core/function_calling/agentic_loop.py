"""
Function-calling orchestration loop.

The loop sends the conversation to the model provider, executes the tool
calls the model requests, appends their results and asks again, until the
model answers without tool calls, the iteration budget runs out, the
provider fails, or the conversation is cancelled.

In manual mode the loop suspends instead of executing tool calls; the caller
supplies results (or asks the engine to invoke the pending calls) and
resumes.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncGenerator,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
)

from ...config.settings import AgentLoopSettings
from ...tools.registry import FunctionCatalog
from ...tools.resolver import FunctionResolver
from ...tools.scheduler import InvocationExecutor, ToolCallScheduler, ToolCallsUpdateHandler
from ...tools.types import ToolCallRequest, ToolResult
from ..errors import (
    AgentLoopError,
    InvalidToolResultError,
    IterationBudgetExceededError,
    LoopStateError,
    OperationCancelledError,
    ProviderUnavailableError,
    classify_provider_error,
)
from ..providers import ChatProvider, GenerationSettings
from ..streaming import (
    LoopEvent,
    ContentEvent,
    StreamDelta,
    SuspendedEvent,
    ToolCallAccumulator,
    ToolCallRequestEvent,
    ToolResultEvent,
    create_error_event,
    create_finished_event,
)
from ..turn import Role, Turn
from .conversation import (
    Conversation,
    FailureReason,
    InvocationMode,
    LoopOutcome,
    LoopState,
    OutcomeStatus,
)

logger = logging.getLogger(__name__)

_STREAM_END = object()


@dataclass
class LoopConfig:
    """Configuration passed to the orchestration loop."""
    provider: ChatProvider
    catalog: FunctionCatalog
    max_iterations: int = 8
    mode: InvocationMode = InvocationMode.AUTO
    streaming: bool = False
    tool_timeout: Optional[float] = None
    concurrent_tool_calls: bool = True
    default_namespace: Optional[str] = None
    generation: GenerationSettings = field(default_factory=GenerationSettings)

    def __post_init__(self):
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if not isinstance(self.mode, InvocationMode):
            self.mode = InvocationMode(str(self.mode).lower())

    @classmethod
    def from_settings(
        cls,
        settings: AgentLoopSettings,
        provider: ChatProvider,
        catalog: FunctionCatalog
    ) -> "LoopConfig":
        """Create a loop configuration from agentloop settings."""
        return cls(
            provider=provider,
            catalog=catalog,
            max_iterations=settings.max_iterations,
            mode=InvocationMode(settings.invocation_mode),
            streaming=settings.streaming,
            tool_timeout=settings.tool_timeout,
            concurrent_tool_calls=settings.concurrent_tool_calls,
            default_namespace=settings.default_namespace,
            generation=GenerationSettings(
                model=settings.model,
                temperature=settings.temperature,
                max_tokens=settings.max_tokens
            )
        )


class OrchestrationLoop:
    """
    Drives conversations through the function-calling state machine.

    One loop can serve many conversations; all per-session state lives on
    the Conversation.
    """

    def __init__(
        self,
        config: LoopConfig,
        on_text: Optional[Callable[[str], None]] = None,
        on_tool_calls_update: Optional[ToolCallsUpdateHandler] = None
    ):
        """
        Initialize the loop.

        Args:
            config: Loop configuration
            on_text: Called with every text fragment as soon as it arrives
            on_tool_calls_update: Called with tool call status updates
        """
        self.config = config
        self.on_text = on_text
        self.resolver = FunctionResolver(config.catalog, config.default_namespace)
        self.executor = InvocationExecutor(timeout=config.tool_timeout)
        self.scheduler = ToolCallScheduler(
            self.resolver,
            self.executor,
            concurrent=config.concurrent_tool_calls,
            on_tool_calls_update=on_tool_calls_update
        )

    def new_conversation(self, system_prompt: Optional[str] = None) -> Conversation:
        """Create an idle conversation, optionally seeded with a system turn."""
        return Conversation(system_prompt=system_prompt)

    async def send(self, conversation: Conversation, text: str) -> LoopOutcome:
        """
        Submit a user turn and run the loop until it stops.

        Returns:
            Completed, failed or (manual mode) suspended outcome
        """
        async for _ in self.run_stream(conversation, text):
            pass
        return conversation.outcome

    async def run_stream(
        self,
        conversation: Conversation,
        text: str
    ) -> AsyncGenerator[LoopEvent, None]:
        """
        Submit a user turn and yield events while the loop runs.

        The last event is always a FinishedEvent carrying the outcome.
        """
        async with conversation.lock:
            self._check_can_submit(conversation)

            if conversation.cancelled:
                for event in self._fail(
                    conversation,
                    FailureReason.CANCELLED,
                    OperationCancelledError("Conversation was cancelled")
                ):
                    yield event
                return

            conversation.history.append(Turn.user(text))
            conversation._mark_submission()
            conversation.outcome = None
            logger.info(f"Conversation {conversation.id}: user turn submitted")

            drive = self._drive(conversation)
            try:
                async for event in drive:
                    yield event
            finally:
                await drive.aclose()
                self._abandon_unfinished(conversation)

    async def resume(self, conversation: Conversation) -> LoopOutcome:
        """
        Continue a suspended conversation with the supplied results.

        If any pending call still lacks a result, nothing changes and the
        same suspended outcome is returned.
        """
        async for _ in self.resume_stream(conversation):
            pass
        return conversation.outcome

    async def resume_stream(self, conversation: Conversation) -> AsyncGenerator[LoopEvent, None]:
        """Event-yielding form of resume()."""
        async with conversation.lock:
            self._check_suspended(conversation)

            if conversation.cancelled:
                for event in self._fail(
                    conversation,
                    FailureReason.CANCELLED,
                    OperationCancelledError("Conversation was cancelled")
                ):
                    yield event
                return

            missing = self.get_pending_tool_calls(conversation)
            if missing:
                logger.info(
                    f"Conversation {conversation.id}: {len(missing)} tool calls still need results"
                )
                yield SuspendedEvent(value=missing)
                yield create_finished_event(conversation.outcome.to_dict())
                return

            requests = conversation.history.pending_tool_calls()
            results = [conversation.supplied_results[request.id] for request in requests]
            conversation.supplied_results = {}
            conversation.outcome = None
            drive = self._drive(conversation)
            try:
                for event in self._append_results(conversation, results):
                    yield event

                async for event in drive:
                    yield event
            finally:
                await drive.aclose()
                self._abandon_unfinished(conversation)

    def get_pending_tool_calls(self, conversation: Conversation) -> List[ToolCallRequest]:
        """Tool calls of a suspended conversation that still need a result."""
        if conversation.state != LoopState.TOOL_CALLS_PENDING:
            return []
        return [
            request
            for request in conversation.history.pending_tool_calls()
            if request.id not in conversation.supplied_results
        ]

    def supply_result(self, conversation: Conversation, result: ToolResult) -> None:
        """
        Provide the result of a pending tool call.

        Raises:
            LoopStateError: If the conversation is not suspended or was cancelled
            InvalidToolResultError: If the call id is unknown or already answered
        """
        self._check_suspended(conversation)
        self._check_not_cancelled(conversation)

        pending = {request.id: request for request in conversation.history.pending_tool_calls()}
        request = pending.get(result.call_id)
        if request is None:
            raise InvalidToolResultError(
                f"No pending tool call with id '{result.call_id}'",
                call_id=result.call_id
            )
        if result.call_id in conversation.supplied_results:
            raise InvalidToolResultError(
                f"A result for tool call '{result.call_id}' was already supplied",
                call_id=result.call_id
            )

        if not result.name:
            result = result.model_copy(update={"name": request.qualified_name})
        conversation.supplied_results[result.call_id] = result
        logger.debug(f"Conversation {conversation.id}: result supplied for {result.call_id}")

    async def invoke_pending(
        self,
        conversation: Conversation,
        call_id: Optional[str] = None
    ) -> List[ToolResult]:
        """
        Resolve and execute pending tool calls with the engine's own executor.

        Args:
            conversation: Suspended conversation
            call_id: Invoke only this call (all pending calls if None)

        Returns:
            Results, which are also recorded as supplied
        """
        self._check_suspended(conversation)
        self._check_not_cancelled(conversation)

        requests = self.get_pending_tool_calls(conversation)
        if call_id is not None:
            requests = [request for request in requests if request.id == call_id]
            if not requests:
                raise InvalidToolResultError(
                    f"No unanswered tool call with id '{call_id}'",
                    call_id=call_id
                )

        results = await self.scheduler.run(requests, conversation.cancel_event)
        for result in results:
            self.supply_result(conversation, result)
        return results

    async def _drive(self, conversation: Conversation) -> AsyncGenerator[LoopEvent, None]:
        """Run the state machine from REQUESTING_COMPLETION until it stops."""
        while True:
            if conversation.cancelled:
                for event in self._fail(
                    conversation,
                    FailureReason.CANCELLED,
                    OperationCancelledError("Conversation was cancelled")
                ):
                    yield event
                return

            self._set_state(conversation, LoopState.REQUESTING_COMPLETION)
            try:
                if self.config.streaming:
                    accumulator = ToolCallAccumulator()
                    stream = self._iterate_stream(conversation)
                    try:
                        async for delta in stream:
                            text = accumulator.add(delta)
                            if text:
                                self._emit_text(text)
                                yield ContentEvent(value=text)
                            if accumulator.finished:
                                break
                    finally:
                        await stream.aclose()
                    assistant_turn = accumulator.finalize()
                else:
                    assistant_turn = await self._race_cancellation(
                        conversation,
                        self.config.provider.complete(
                            conversation.history.snapshot(), self._generation_settings()
                        )
                    )
                    if assistant_turn.content:
                        self._emit_text(assistant_turn.content)
                        yield ContentEvent(value=assistant_turn.content)
                self._validate_assistant_turn(assistant_turn)
            except OperationCancelledError as e:
                for event in self._fail(conversation, FailureReason.CANCELLED, e):
                    yield event
                return
            except Exception as e:
                error = classify_provider_error(e)
                for event in self._fail(conversation, FailureReason.PROVIDER_UNAVAILABLE, error):
                    yield event
                return

            if conversation.cancelled:
                for event in self._fail(
                    conversation,
                    FailureReason.CANCELLED,
                    OperationCancelledError("Conversation was cancelled")
                ):
                    yield event
                return

            conversation.history.append(assistant_turn)

            if not assistant_turn.tool_calls:
                self._complete(conversation, assistant_turn)
                yield create_finished_event(conversation.outcome.to_dict())
                return

            self._set_state(conversation, LoopState.TOOL_CALLS_PENDING)
            for request in assistant_turn.tool_calls:
                yield ToolCallRequestEvent(value=request)

            if conversation.iterations_since_submission >= self.config.max_iterations:
                for event in self._fail(
                    conversation,
                    FailureReason.ITERATION_BUDGET_EXCEEDED,
                    IterationBudgetExceededError(self.config.max_iterations)
                ):
                    yield event
                return

            if self.config.mode == InvocationMode.MANUAL:
                self._suspend(conversation, list(assistant_turn.tool_calls))
                yield SuspendedEvent(value=list(assistant_turn.tool_calls))
                yield create_finished_event(conversation.outcome.to_dict())
                return

            self._set_state(conversation, LoopState.EXECUTING_TOOLS)
            results = await self.scheduler.run(assistant_turn.tool_calls, conversation.cancel_event)

            if conversation.cancelled:
                for event in self._fail(
                    conversation,
                    FailureReason.CANCELLED,
                    OperationCancelledError("Conversation was cancelled")
                ):
                    yield event
                return

            for event in self._append_results(conversation, results):
                yield event

    def _append_results(self, conversation: Conversation, results: List[ToolResult]) -> List[LoopEvent]:
        self._set_state(conversation, LoopState.APPENDING_RESULTS)
        events: List[LoopEvent] = []
        for result in results:
            conversation.history.append(Turn.from_tool_result(result))
            events.append(ToolResultEvent(value=result))
        conversation._advance_iteration()
        logger.info(
            f"Conversation {conversation.id}: appended {len(results)} tool results "
            f"(iteration {conversation.iterations})"
        )
        return events

    async def _iterate_stream(self, conversation: Conversation) -> AsyncIterator[StreamDelta]:
        """Iterate the provider stream, racing each step against cancellation."""
        stream = self.config.provider.complete_streaming(
            conversation.history.snapshot(), self._generation_settings()
        )
        iterator = stream.__aiter__()
        try:
            while True:
                delta = await self._race_cancellation(conversation, self._next_delta(iterator))
                if delta is _STREAM_END:
                    return
                yield delta
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _next_delta(self, iterator: AsyncIterator[StreamDelta]) -> Any:
        try:
            return await iterator.__anext__()
        except StopAsyncIteration:
            return _STREAM_END

    async def _race_cancellation(
        self,
        conversation: Conversation,
        awaitable: Awaitable[Any]
    ) -> Any:
        """
        Await a provider operation unless the conversation is cancelled first.

        Raises:
            OperationCancelledError: If the cancel signal fires first
        """
        if conversation.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelledError("Conversation was cancelled")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(conversation.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelledError("Model request was cancelled")

    def _validate_assistant_turn(self, turn: Turn) -> None:
        if turn.role != Role.ASSISTANT:
            raise ProviderUnavailableError(
                f"Model provider returned a {turn.role.value} turn instead of an assistant turn"
            )
        ids = [call.id for call in turn.tool_calls]
        if len(ids) != len(set(ids)):
            raise ProviderUnavailableError("Model response contains duplicate tool call ids")

    def _generation_settings(self) -> GenerationSettings:
        return self.config.generation.model_copy(
            update={"tools": self.config.catalog.tool_declarations()}
        )

    def _emit_text(self, text: str) -> None:
        if self.on_text:
            self.on_text(text)

    def _set_state(self, conversation: Conversation, state: LoopState) -> None:
        if conversation.state != state:
            logger.debug(f"Conversation {conversation.id}: {conversation.state.value} -> {state.value}")
        conversation.state = state

    def _check_can_submit(self, conversation: Conversation) -> None:
        if conversation.state == LoopState.FAILED:
            raise LoopStateError(
                f"Conversation {conversation.id} has failed and accepts no more turns",
                state=conversation.state.value
            )
        if conversation.state not in (LoopState.IDLE, LoopState.COMPLETED):
            raise LoopStateError(
                f"Conversation {conversation.id} is busy or waiting for tool results",
                state=conversation.state.value
            )

    def _check_suspended(self, conversation: Conversation) -> None:
        if (
            conversation.state != LoopState.TOOL_CALLS_PENDING
            or conversation.outcome is None
            or not conversation.outcome.suspended
        ):
            raise LoopStateError(
                f"Conversation {conversation.id} is not waiting for tool results",
                state=conversation.state.value
            )

    def _check_not_cancelled(self, conversation: Conversation) -> None:
        if conversation.cancelled:
            raise LoopStateError(
                f"Conversation {conversation.id} was cancelled and accepts no tool results",
                state=conversation.state.value
            )

    def _abandon_unfinished(self, conversation: Conversation) -> None:
        """Fail a run whose event stream was closed before the loop stopped."""
        if conversation.state in (LoopState.IDLE, LoopState.COMPLETED, LoopState.FAILED):
            return
        if conversation.outcome is not None and conversation.outcome.suspended:
            return
        self._fail(
            conversation,
            FailureReason.CANCELLED,
            OperationCancelledError("Event stream was closed before the loop finished")
        )

    def _complete(self, conversation: Conversation, turn: Turn) -> None:
        self._set_state(conversation, LoopState.COMPLETED)
        conversation.outcome = LoopOutcome(
            status=OutcomeStatus.COMPLETED,
            answer=turn.content,
            iterations=conversation.iterations
        )
        logger.info(
            f"Conversation {conversation.id} completed after "
            f"{conversation.iterations_since_submission} tool-call cycles"
        )

    def _suspend(self, conversation: Conversation, pending: List[ToolCallRequest]) -> None:
        conversation.supplied_results = {}
        conversation.outcome = LoopOutcome(
            status=OutcomeStatus.SUSPENDED,
            pending_tool_calls=pending,
            iterations=conversation.iterations
        )
        logger.info(f"Conversation {conversation.id} suspended with {len(pending)} pending tool calls")

    def _fail(
        self,
        conversation: Conversation,
        reason: FailureReason,
        error: AgentLoopError
    ) -> List[LoopEvent]:
        self._set_state(conversation, LoopState.FAILED)
        conversation.failure = reason
        conversation.error = error
        conversation.outcome = LoopOutcome(
            status=OutcomeStatus.FAILED,
            failure=reason,
            error=error,
            iterations=conversation.iterations
        )
        logger.error(f"Conversation {conversation.id} failed ({reason.value}): {error.message}")
        return [
            create_error_event(
                message=error.message,
                code=error.code,
                status=getattr(error, "status", None),
                details=error.details
            ),
            create_finished_event(conversation.outcome.to_dict()),
        ]

