"""Binding of tool-call requests to registered functions."""

import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from ..core.errors import MalformedArgumentsError, UnknownFunctionError
from .registry import FunctionCatalog
from .types import BoundInvocation, ToolCallRequest, split_qualified_name

logger = logging.getLogger(__name__)


class FunctionResolver:
    """
    Validates tool-call requests against the catalog.

    Resolution is side-effect free: it looks up the descriptor and parses
    the argument payload, but never calls the function.
    """

    def __init__(self, catalog: FunctionCatalog, default_namespace: Optional[str] = None):
        self.catalog = catalog
        self.default_namespace = default_namespace

    def resolve(self, request: ToolCallRequest) -> BoundInvocation:
        """
        Bind a request to its function.

        Args:
            request: Tool call emitted by the model

        Returns:
            Bound invocation with validated arguments

        Raises:
            UnknownFunctionError: If no function matches the request
            MalformedArgumentsError: If the payload cannot be parsed or
                does not satisfy the parameter schema
        """
        namespace, name = self._split_name(request)
        descriptor = self.catalog.lookup(namespace, name)
        payload = self._decode_payload(request)

        try:
            # Strict JSON validation: no string-to-number or number-to-bool coercion
            arguments = descriptor.parameters.model_validate_json(json.dumps(payload), strict=True)
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
                for error in e.errors()
            ]
            summary = "; ".join(
                f"{error['loc']}: {error['msg']}" if error["loc"] else error["msg"]
                for error in errors
            )
            raise MalformedArgumentsError(
                f"Invalid arguments for '{descriptor.qualified_name}': {summary}",
                function=descriptor.qualified_name,
                errors=errors,
                original_error=e
            ) from e

        logger.debug(f"Resolved {request.id} to {descriptor.qualified_name}")
        return BoundInvocation(descriptor=descriptor, request=request, arguments=arguments)

    def parse_qualified_name(self, qualified_name: str) -> Tuple[str, str]:
        """
        Split a flattened 'namespace-name' into its parts.

        Names without a separator fall into the default namespace.

        Raises:
            UnknownFunctionError: If the name has no namespace and no
                default namespace is configured
        """
        namespace, name = split_qualified_name(qualified_name)
        if namespace:
            return namespace, name
        if self.default_namespace:
            return self.default_namespace, name
        raise UnknownFunctionError("", qualified_name)

    def _split_name(self, request: ToolCallRequest) -> Tuple[str, str]:
        if request.namespace:
            return request.namespace, request.name
        return self.parse_qualified_name(request.name)

    def _decode_payload(self, request: ToolCallRequest) -> Dict[str, Any]:
        raw = request.arguments
        if not raw.strip():
            return {}

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedArgumentsError(
                f"Arguments for '{request.qualified_name}' are not valid JSON: {e.msg}",
                function=request.qualified_name,
                original_error=e
            ) from e

        if not isinstance(payload, Mapping):
            raise MalformedArgumentsError(
                f"Arguments for '{request.qualified_name}' must be a JSON object",
                function=request.qualified_name
            )
        return dict(payload)
