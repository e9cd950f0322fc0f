"""Function descriptor, tool-call and tool-result types."""

import json
import re
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.errors import (
    AgentLoopError,
    InvocationFailureError,
    MalformedArgumentsError,
    OperationCancelledError,
    ToolTimeoutError,
    UnknownFunctionError,
)

# Separator between namespace and name in flattened function names
QUALIFIED_NAME_SEPARATOR = "-"

_IDENTIFIER = re.compile(r"^[0-9A-Za-z_]+$")


def qualify_name(namespace: str, name: str) -> str:
    """Build the flattened name used in provider tool declarations."""
    if not namespace:
        return name
    return f"{namespace}{QUALIFIED_NAME_SEPARATOR}{name}"


def split_qualified_name(qualified_name: str) -> Tuple[str, str]:
    """Split a flattened name into (namespace, name); namespace may be empty."""
    if QUALIFIED_NAME_SEPARATOR in qualified_name:
        namespace, name = qualified_name.split(QUALIFIED_NAME_SEPARATOR, 1)
        return namespace, name
    return "", qualified_name


class ToolErrorKind(Enum):
    """Kinds of per-call failures reported back to the model."""
    UNKNOWN_FUNCTION = "unknown_function"
    MALFORMED_ARGUMENTS = "malformed_arguments"
    INVOCATION_FAILURE = "invocation_failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


_ERROR_KINDS: Dict[Type[AgentLoopError], ToolErrorKind] = {
    UnknownFunctionError: ToolErrorKind.UNKNOWN_FUNCTION,
    MalformedArgumentsError: ToolErrorKind.MALFORMED_ARGUMENTS,
    InvocationFailureError: ToolErrorKind.INVOCATION_FAILURE,
    ToolTimeoutError: ToolErrorKind.TIMEOUT,
    OperationCancelledError: ToolErrorKind.CANCELLED,
}


class ToolError(BaseModel):
    """Error attached to a tool result."""

    model_config = ConfigDict(frozen=True)

    kind: ToolErrorKind
    message: str

    @classmethod
    def from_exception(cls, error: AgentLoopError) -> "ToolError":
        """Map a per-call exception onto its error kind."""
        kind = _ERROR_KINDS.get(type(error), ToolErrorKind.INVOCATION_FAILURE)
        return cls(kind=kind, message=error.message)


class ToolCallRequest(BaseModel):
    """A request, emitted by the model, to invoke a registered function."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Opaque identifier, unique within one model response")
    namespace: str = Field(default="", description="Namespace of the function")
    name: str = Field(description="Name of the function")
    arguments: str = Field(default="", description="Raw JSON argument payload")

    @field_validator("arguments", mode="before")
    @classmethod
    def encode_arguments(cls, v: Any) -> Any:
        """Store decoded payloads in their JSON form."""
        if v is None:
            return ""
        if isinstance(v, Mapping):
            return json.dumps(dict(v))
        return v

    @classmethod
    def from_qualified_name(
        cls,
        call_id: str,
        qualified_name: str,
        arguments: Union[str, Mapping[str, Any], None] = None
    ) -> "ToolCallRequest":
        """Create a request from a flattened 'namespace-name' function name."""
        namespace, name = split_qualified_name(qualified_name)
        return cls(id=call_id, namespace=namespace, name=name, arguments=arguments)

    @property
    def qualified_name(self) -> str:
        return qualify_name(self.namespace, self.name)


class ToolResult(BaseModel):
    """Result of one tool call; exactly one exists per request."""

    model_config = ConfigDict(frozen=True)

    call_id: str = Field(description="Identifier of the originating request")
    name: str = Field(default="", description="Qualified name of the called function")
    value: Any = Field(default=None, description="JSON-compatible return value")
    error: Optional[ToolError] = Field(default=None, description="Set when the call failed")

    @classmethod
    def from_error(cls, request: ToolCallRequest, error: AgentLoopError) -> "ToolResult":
        """Create an error result for a request."""
        return cls(
            call_id=request.id,
            name=request.qualified_name,
            error=ToolError.from_exception(error)
        )

    @property
    def success(self) -> bool:
        return self.error is None

    def content_text(self) -> str:
        """Render the result as text for the model."""
        if self.error is not None:
            return f"Error ({self.error.kind.value}): {self.error.message}"
        if isinstance(self.value, str):
            return self.value
        return json.dumps(self.value)


class FunctionDescriptor(BaseModel):
    """A registered, callable function."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    description: str = ""
    parameters: Type[BaseModel] = Field(description="Model validating the call arguments")
    invoke: Callable[..., Any] = Field(description="Sync or async callable taking keyword arguments")

    @field_validator("namespace", "name")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Only ASCII letters, digits and underscores are allowed."""
        if not _IDENTIFIER.match(v):
            raise ValueError(
                f"Invalid identifier '{v}': use only ASCII letters, digits and underscores"
            )
        return v

    @property
    def key(self) -> Tuple[str, str]:
        return self.namespace, self.name

    @property
    def qualified_name(self) -> str:
        return qualify_name(self.namespace, self.name)

    @property
    def parameter_schema(self) -> Dict[str, Any]:
        """JSON Schema of the parameters."""
        return self.parameters.model_json_schema()

    def to_declaration(self) -> Dict[str, Any]:
        """Declaration passed to model providers."""
        schema = self.parameter_schema
        schema.pop("title", None)
        return {
            "name": self.qualified_name,
            "description": self.description,
            "parameters": schema,
        }


class BoundInvocation(BaseModel):
    """A request matched to its descriptor with validated arguments."""

    model_config = ConfigDict(frozen=True)

    descriptor: FunctionDescriptor
    request: ToolCallRequest
    arguments: BaseModel

    def kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the function, nested models kept as instances."""
        return {
            field_name: getattr(self.arguments, field_name)
            for field_name in type(self.arguments).model_fields
        }
