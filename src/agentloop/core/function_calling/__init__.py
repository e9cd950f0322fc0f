"""Function-calling orchestration: conversation state and the agentic loop."""

from .agentic_loop import LoopConfig, OrchestrationLoop
from .conversation import (
    Conversation,
    FailureReason,
    InvocationMode,
    LoopOutcome,
    LoopState,
    OutcomeStatus,
)

__all__ = [
    'Conversation',
    'FailureReason',
    'InvocationMode',
    'LoopConfig',
    'LoopOutcome',
    'LoopState',
    'OrchestrationLoop',
    'OutcomeStatus',
]
