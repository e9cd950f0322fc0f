"""
Function providers and descriptor factories.

A function provider is anything that can enumerate FunctionDescriptors for
one namespace. This module offers FunctionSet, a provider assembled from
explicitly chosen callables, plus helpers that build parameter models from a
callable's signature or from a JSON Schema document.
"""

import inspect
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Type,
    Union,
    runtime_checkable,
)

from pydantic import BaseModel, ConfigDict, Field, create_model

from .types import FunctionDescriptor

logger = logging.getLogger(__name__)

ParametersSpec = Union[Type[BaseModel], Mapping[str, Any], None]

# JSON Schema types to Python types
TYPE_MAPPING: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}

_FORBID_EXTRA = ConfigDict(extra="forbid")


@runtime_checkable
class FunctionProvider(Protocol):
    """Anything that can produce descriptors for registration."""

    namespace: str

    def get_functions(self) -> Iterable[FunctionDescriptor]:
        ...


def parameters_model_from_callable(fn: Callable[..., Any], name: str) -> Type[BaseModel]:
    """Create a parameters model from a function's signature."""
    sig = inspect.signature(fn, eval_str=True)
    fields = {
        pname: (
            param.annotation if param.annotation is not inspect.Parameter.empty else str,
            param.default if param.default is not inspect.Parameter.empty else ...,
        )
        for pname, param in sig.parameters.items()
        if pname not in {"self", "cls"}
        and param.kind not in {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}
    }
    return create_model(f"{name}_input", __config__=_FORBID_EXTRA, **fields)


def parameters_model_from_schema(name: str, schema: Mapping[str, Any]) -> Type[BaseModel]:
    """
    Create a parameters model from a JSON Schema object definition.

    Supports primitive types, arrays, plain objects, enums and defaults;
    nested object properties are validated as dictionaries.

    Args:
        name: Function name, used for the model name
        schema: JSON Schema with 'properties' and optional 'required'

    Returns:
        The dynamically created model class
    """
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])

    field_definitions: Dict[str, Any] = {}
    for prop_name, prop_details in properties.items():
        if "enum" in prop_details:
            python_type: Any = Literal[tuple(prop_details["enum"])]
        else:
            python_type = TYPE_MAPPING.get(prop_details.get("type", "string"), Any)
            if python_type is list and isinstance(prop_details.get("items"), Mapping):
                item_type = TYPE_MAPPING.get(prop_details["items"].get("type", "string"), Any)
                python_type = List[item_type]  # type: ignore[valid-type]

        field_kwargs: Dict[str, Any] = {}
        if prop_details.get("description"):
            field_kwargs["description"] = prop_details["description"]

        if prop_name in required:
            field_definitions[prop_name] = (python_type, Field(..., **field_kwargs))
        else:
            field_definitions[prop_name] = (
                Optional[python_type],
                Field(prop_details.get("default"), **field_kwargs),
            )

    return create_model(f"{name}_input", __config__=_FORBID_EXTRA, **field_definitions)


def _resolve_parameters(fn: Callable[..., Any], name: str, parameters: ParametersSpec) -> Type[BaseModel]:
    if parameters is None:
        return parameters_model_from_callable(fn, name)
    if inspect.isclass(parameters) and issubclass(parameters, BaseModel):
        return parameters
    if isinstance(parameters, Mapping):
        return parameters_model_from_schema(name, parameters)
    raise TypeError("parameters must be a pydantic BaseModel subclass or a JSON schema mapping")


def create_function(
    fn: Callable[..., Any],
    *,
    namespace: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    parameters: ParametersSpec = None
) -> FunctionDescriptor:
    """
    Wrap a callable in a FunctionDescriptor.

    Args:
        fn: Sync or async callable taking keyword arguments
        namespace: Namespace to register the function under
        name: Function name (defaults to the callable's __name__)
        description: Description for the model (defaults to the docstring's first line)
        parameters: Parameters model, JSON schema, or None to derive from the signature

    Returns:
        The descriptor, ready for registration
    """
    function_name = name or getattr(fn, "__name__", None)
    if not function_name or function_name == "<lambda>":
        raise ValueError("A name is required for anonymous callables")

    if description is None:
        doc = inspect.getdoc(fn)
        description = doc.splitlines()[0] if doc else ""

    return FunctionDescriptor(
        namespace=namespace,
        name=function_name,
        description=description,
        parameters=_resolve_parameters(fn, function_name, parameters),
        invoke=fn,
    )


class FunctionSet:
    """A function provider built from explicitly added callables."""

    def __init__(
        self,
        namespace: str,
        functions: Iterable[Union[FunctionDescriptor, Callable[..., Any]]] = (),
        description: str = ""
    ):
        self.namespace = namespace
        self.description = description
        self._functions: List[FunctionDescriptor] = []
        for function in functions:
            if isinstance(function, FunctionDescriptor):
                self.add_descriptor(function)
            else:
                self.add(function)

    def add(
        self,
        fn: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: ParametersSpec = None
    ) -> FunctionDescriptor:
        """Add a callable to the set."""
        descriptor = create_function(
            fn,
            namespace=self.namespace,
            name=name,
            description=description,
            parameters=parameters,
        )
        return self.add_descriptor(descriptor)

    def add_descriptor(self, descriptor: FunctionDescriptor) -> FunctionDescriptor:
        if descriptor.namespace != self.namespace:
            raise ValueError(
                f"Function '{descriptor.qualified_name}' does not belong to namespace '{self.namespace}'"
            )
        self._functions.append(descriptor)
        return descriptor

    def function(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of add(); returns the callable unchanged."""
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add(fn, name=name, description=description)
            return fn
        return decorator

    def get_functions(self) -> Iterable[FunctionDescriptor]:
        return iter(list(self._functions))

    def __len__(self) -> int:
        return len(self._functions)
