"""
Tests for tool-call resolution.
"""

from unittest.mock import Mock

import pytest

from agentloop.core.errors import MalformedArgumentsError, UnknownFunctionError
from agentloop.tools.functions import create_function
from agentloop.tools.registry import FunctionCatalog
from agentloop.tools.resolver import FunctionResolver
from agentloop.tools.types import ToolCallRequest


@pytest.fixture
def invoke():
    return Mock(return_value="done")


@pytest.fixture
def resolver(invoke):
    def book(city: str, nights: int, breakfast: bool = False) -> str:
        return invoke(city=city, nights=nights, breakfast=breakfast)

    catalog = FunctionCatalog()
    catalog.register(create_function(book, namespace="Travel"))
    return FunctionResolver(catalog)


class TestFunctionResolver:
    """Test FunctionResolver.resolve."""

    def test_resolves_valid_request(self, resolver):
        request = ToolCallRequest(id="1", namespace="Travel", name="book",
                                  arguments='{"city": "Paris", "nights": 2}')
        bound = resolver.resolve(request)

        assert bound.request is request
        assert bound.descriptor.qualified_name == "Travel-book"
        assert bound.kwargs() == {"city": "Paris", "nights": 2, "breakfast": False}

    def test_resolution_never_invokes(self, resolver, invoke):
        resolver.resolve(ToolCallRequest(id="1", namespace="Travel", name="book",
                                         arguments='{"city": "Paris", "nights": 2}'))
        invoke.assert_not_called()

    def test_mapping_arguments_accepted(self, resolver):
        request = ToolCallRequest(id="1", namespace="Travel", name="book",
                                  arguments={"city": "Oslo", "nights": 1})
        assert request.arguments == '{"city": "Oslo", "nights": 1}'
        assert resolver.resolve(request).kwargs()["city"] == "Oslo"

    def test_qualified_name_resolves(self, resolver):
        request = ToolCallRequest(id="1", name="Travel-book", arguments='{"city": "Rome", "nights": 3}')
        assert resolver.resolve(request).descriptor.name == "book"

    def test_unknown_function(self, resolver):
        with pytest.raises(UnknownFunctionError) as exc_info:
            resolver.resolve(ToolCallRequest(id="1", namespace="Travel", name="DoesNotExist"))
        assert exc_info.value.code == "UNKNOWN_FUNCTION"

    def test_name_without_namespace_is_unknown(self, resolver):
        with pytest.raises(UnknownFunctionError):
            resolver.resolve(ToolCallRequest(id="1", name="book"))

    def test_default_namespace(self, resolver):
        resolver.default_namespace = "Travel"
        bound = resolver.resolve(ToolCallRequest(id="1", name="book", arguments='{"city": "A", "nights": 1}'))
        assert bound.descriptor.namespace == "Travel"

    def test_parse_qualified_name(self, resolver):
        assert resolver.parse_qualified_name("Travel-book") == ("Travel", "book")
        resolver.default_namespace = "Travel"
        assert resolver.parse_qualified_name("book") == ("Travel", "book")

    @pytest.mark.parametrize("arguments", [
        '{"city": "Paris"',          # truncated JSON
        '["Paris", 2]',              # not an object
        '{"city": "Paris"}',         # missing required parameter
        '{"city": "Paris", "nights": "many"}',  # type mismatch
        '{"city": "Paris", "nights": "2"}',     # numeric string for an int
        '{"city": "Paris", "nights": 2, "breakfast": 1}',  # number for a bool
        '{"city": "Paris", "nights": 2, "pets": true}',  # unknown parameter
    ])
    def test_malformed_arguments(self, resolver, arguments):
        request = ToolCallRequest(id="1", namespace="Travel", name="book", arguments=arguments)
        with pytest.raises(MalformedArgumentsError) as exc_info:
            resolver.resolve(request)
        assert exc_info.value.code == "MALFORMED_ARGUMENTS"
        assert exc_info.value.details["function"] == "Travel-book"

    def test_validation_errors_are_listed(self, resolver):
        request = ToolCallRequest(id="1", namespace="Travel", name="book", arguments='{"city": "Paris"}')
        with pytest.raises(MalformedArgumentsError) as exc_info:
            resolver.resolve(request)
        assert exc_info.value.details["errors"][0]["loc"] == "nights"

    @pytest.mark.parametrize("arguments", ["", "   ", None])
    def test_empty_payload_means_no_arguments(self, arguments):
        catalog = FunctionCatalog()
        catalog.register(create_function(lambda: "now", namespace="Clock", name="now"))
        resolver = FunctionResolver(catalog)

        bound = resolver.resolve(ToolCallRequest(id="1", namespace="Clock", name="now", arguments=arguments))
        assert bound.kwargs() == {}

    def test_values_are_not_coerced(self):
        def add(a: int, b: int) -> int:
            return a + b

        catalog = FunctionCatalog()
        catalog.register(create_function(add, namespace="Math"))
        resolver = FunctionResolver(catalog)

        with pytest.raises(MalformedArgumentsError) as exc_info:
            resolver.resolve(ToolCallRequest(id="1", namespace="Math", name="add", arguments='{"a": "5", "b": true}'))
        assert {error["loc"] for error in exc_info.value.details["errors"]} == {"a", "b"}

    def test_integers_accepted_for_floats(self):
        def scale(factor: float) -> float:
            return factor

        catalog = FunctionCatalog()
        catalog.register(create_function(scale, namespace="Math"))
        bound = FunctionResolver(catalog).resolve(
            ToolCallRequest(id="1", namespace="Math", name="scale", arguments='{"factor": 2}')
        )
        assert bound.kwargs() == {"factor": 2.0}
