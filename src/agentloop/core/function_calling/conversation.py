"""Conversation state for the orchestration loop."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ...tools.types import ToolCallRequest, ToolResult
from ..errors import AgentLoopError
from ..history import HistoryLog
from ..turn import Turn

logger = logging.getLogger(__name__)


class InvocationMode(Enum):
    """Who executes the tool calls requested by the model."""
    AUTO = "auto"
    MANUAL = "manual"


class LoopState(Enum):
    """States of the orchestration loop."""
    IDLE = "idle"
    REQUESTING_COMPLETION = "requesting_completion"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"
    APPENDING_RESULTS = "appending_results"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(Enum):
    """Why a conversation failed."""
    ITERATION_BUDGET_EXCEEDED = "iteration_budget_exceeded"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CANCELLED = "cancelled"


class OutcomeStatus(Enum):
    """Status reported to the caller when the loop stops."""
    COMPLETED = "completed"
    FAILED = "failed"
    SUSPENDED = "suspended"


@dataclass
class LoopOutcome:
    """What the caller gets back whenever the loop stops."""
    status: OutcomeStatus
    answer: Optional[str] = None
    failure: Optional[FailureReason] = None
    error: Optional[AgentLoopError] = None
    pending_tool_calls: List[ToolCallRequest] = field(default_factory=list)
    iterations: int = 0

    @property
    def completed(self) -> bool:
        return self.status == OutcomeStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @property
    def suspended(self) -> bool:
        return self.status == OutcomeStatus.SUSPENDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "answer": self.answer,
            "failure": self.failure.value if self.failure else None,
            "error": self.error.to_dict() if self.error else None,
            "pending_tool_calls": [call.id for call in self.pending_tool_calls],
            "iterations": self.iterations,
        }


class Conversation:
    """
    One session: the history log plus the loop's bookkeeping.

    The iteration counter only moves forward and only the loop moves it.
    """

    def __init__(
        self,
        system_prompt: Optional[str] = None,
        history: Optional[HistoryLog] = None,
        conversation_id: Optional[str] = None
    ):
        self.id = conversation_id or str(uuid.uuid4())
        self.history = history if history is not None else HistoryLog()
        if system_prompt and not len(self.history):
            self.history.append(Turn.system(system_prompt))

        self.state = LoopState.IDLE
        self.failure: Optional[FailureReason] = None
        self.error: Optional[AgentLoopError] = None
        self.outcome: Optional[LoopOutcome] = None

        self.cancel_event = asyncio.Event()
        self.supplied_results: Dict[str, ToolResult] = {}
        self.lock = asyncio.Lock()

        self._iterations = 0
        self._submission_base = 0

    @property
    def iterations(self) -> int:
        """Tool-call cycles completed over the whole conversation."""
        return self._iterations

    @property
    def iterations_since_submission(self) -> int:
        """Tool-call cycles completed since the latest user turn."""
        return self._iterations - self._submission_base

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def answer(self) -> Optional[str]:
        return self.outcome.answer if self.outcome else None

    def cancel(self) -> None:
        """Signal cancellation to the in-flight request and tool calls."""
        if not self.cancel_event.is_set():
            logger.info(f"Cancellation requested for conversation {self.id}")
        self.cancel_event.set()

    def _advance_iteration(self) -> None:
        self._iterations += 1

    def _mark_submission(self) -> None:
        self._submission_base = self._iterations
