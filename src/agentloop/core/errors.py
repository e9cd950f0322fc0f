"""
Structured error system for agentloop.

Registration, resolution, execution and orchestration failures all derive
from AgentLoopError, which carries a machine-readable code and details.
Per-call errors (unknown function, malformed arguments, invocation failure,
timeout, cancellation) are converted into tool results by the executor;
loop-level errors (iteration budget, provider failure) end a conversation.
"""

from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class AgentLoopError(Exception):
    """Base exception for all agentloop errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "type": self.__class__.__name__
        }

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} (Code: {self.code})"
        return self.message


class DuplicateFunctionError(AgentLoopError):
    """A function with the same namespace and name is already registered."""

    def __init__(self, namespace: str, name: str, **kwargs):
        super().__init__(
            f"Function '{namespace}.{name}' is already registered",
            code="DUPLICATE_FUNCTION",
            **kwargs
        )
        self.namespace = namespace
        self.name = name
        self.details.update({"namespace": namespace, "name": name})


class UnknownFunctionError(AgentLoopError):
    """No function is registered under the requested namespace and name."""

    def __init__(self, namespace: str, name: str, **kwargs):
        label = f"{namespace}.{name}" if namespace else name
        super().__init__(
            f"Function '{label}' is not registered",
            code="UNKNOWN_FUNCTION",
            **kwargs
        )
        self.namespace = namespace
        self.name = name
        self.details.update({"namespace": namespace, "name": name})


class MalformedArgumentsError(AgentLoopError):
    """Tool-call arguments could not be parsed or do not match the schema."""

    def __init__(
        self,
        message: str = "Malformed arguments",
        function: Optional[str] = None,
        errors: Optional[list] = None,
        **kwargs
    ):
        super().__init__(message, code="MALFORMED_ARGUMENTS", **kwargs)
        if function:
            self.details["function"] = function
        if errors:
            self.details["errors"] = errors


class InvocationFailureError(AgentLoopError):
    """The function raised while executing."""

    def __init__(
        self,
        message: str = "Function invocation failed",
        function: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code="INVOCATION_FAILURE", **kwargs)
        if function:
            self.details["function"] = function
        if self.original_error is not None:
            self.details["exception_type"] = type(self.original_error).__name__


class ToolTimeoutError(AgentLoopError):
    """The function exceeded its wall-clock budget."""

    def __init__(
        self,
        message: str = "Function invocation timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        super().__init__(message, code="TIMEOUT", **kwargs)
        if timeout_seconds:
            self.details["timeout_seconds"] = timeout_seconds


class OperationCancelledError(AgentLoopError):
    """The operation was cancelled through the conversation's cancel signal."""

    def __init__(self, message: str = "Operation cancelled", **kwargs):
        super().__init__(message, code="CANCELLED", **kwargs)


class IterationBudgetExceededError(AgentLoopError):
    """The model kept requesting tools beyond the configured iteration budget."""

    def __init__(self, max_iterations: int, **kwargs):
        super().__init__(
            f"Iteration budget of {max_iterations} tool-call cycles exceeded",
            code="ITERATION_BUDGET_EXCEEDED",
            **kwargs
        )
        self.max_iterations = max_iterations
        self.details["max_iterations"] = max_iterations


class ProviderUnavailableError(AgentLoopError):
    """The model provider failed to produce a response."""

    def __init__(
        self,
        message: str = "Model provider unavailable",
        status: Optional[int] = None,
        retryable: bool = False,
        **kwargs
    ):
        super().__init__(message, code="PROVIDER_UNAVAILABLE", **kwargs)
        self.status = status
        self.retryable = retryable
        if status:
            self.details["status"] = status
        self.details["retryable"] = retryable


class InvalidToolResultError(AgentLoopError):
    """A caller-supplied tool result does not match a pending tool call."""

    def __init__(self, message: str, call_id: Optional[str] = None, **kwargs):
        super().__init__(message, code="INVALID_TOOL_RESULT", **kwargs)
        if call_id:
            self.details["call_id"] = call_id


class LoopStateError(AgentLoopError):
    """An operation was attempted in a loop state that does not allow it."""

    def __init__(self, message: str, state: Optional[str] = None, **kwargs):
        super().__init__(message, code="INVALID_STATE", **kwargs)
        if state:
            self.details["state"] = state


def classify_provider_error(error: BaseException) -> ProviderUnavailableError:
    """
    Classify an exception raised by a model provider.

    Args:
        error: The original exception

    Returns:
        ProviderUnavailableError flagged retryable for rate limits, server
        errors and network failures
    """
    if isinstance(error, ProviderUnavailableError):
        return error

    error_message = str(error) or type(error).__name__
    error_lower = error_message.lower()

    # httpx.HTTPStatusError keeps the status on its response
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    response = getattr(error, "response", None)
    if status is None and response is not None:
        status = getattr(response, "status_code", None)

    if status is not None:
        retryable = status == 429 or 500 <= status < 600
        return ProviderUnavailableError(
            error_message, status=status, retryable=retryable, original_error=error
        )

    retryable = any(
        marker in error_lower or marker in type(error).__name__.lower()
        for marker in ("timeout", "network", "connect")
    )
    return ProviderUnavailableError(error_message, retryable=retryable, original_error=error)
