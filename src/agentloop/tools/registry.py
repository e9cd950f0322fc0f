"""
Function catalog for agentloop.

This module provides registration and lookup of function descriptors,
keyed by (namespace, name).
"""

import threading
from typing import Dict, Iterator, List, Optional, Tuple, Any
import logging

from ..core.errors import DuplicateFunctionError, UnknownFunctionError
from .functions import FunctionProvider
from .types import FunctionDescriptor

logger = logging.getLogger(__name__)


class CatalogView:
    """Lazy, restartable view over the catalog's descriptors."""

    def __init__(self, catalog: "FunctionCatalog", namespace: Optional[str] = None):
        self._catalog = catalog
        self._namespace = namespace

    def __iter__(self) -> Iterator[FunctionDescriptor]:
        # Each iteration starts from a fresh snapshot of the registrations
        for namespace, functions in self._catalog._snapshot():
            if self._namespace is not None and namespace != self._namespace:
                continue
            yield from functions.values()

    def __len__(self) -> int:
        return sum(1 for _ in self)


class FunctionCatalog:
    """
    Registry of callable functions addressable by namespace and name.

    Each namespace holds an immutable mapping that is replaced on write, so
    lookups never block and never observe a half-applied registration.
    Writes to different namespaces use different locks.
    """

    def __init__(self):
        """Initialize the function catalog."""
        self._namespaces: Dict[str, Dict[str, FunctionDescriptor]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, namespace: str) -> threading.Lock:
        lock = self._locks.get(namespace)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(namespace, threading.Lock())
        return lock

    def _snapshot(self) -> List[Tuple[str, Dict[str, FunctionDescriptor]]]:
        return list(self._namespaces.items())

    def register(self, descriptor: FunctionDescriptor) -> FunctionDescriptor:
        """Register a function descriptor.

        Args:
            descriptor: Descriptor to register

        Returns:
            The registered descriptor

        Raises:
            DuplicateFunctionError: If (namespace, name) is already registered
        """
        namespace, name = descriptor.key
        with self._lock_for(namespace):
            current = self._namespaces.get(namespace, {})
            if name in current:
                raise DuplicateFunctionError(namespace, name)
            updated = dict(current)
            updated[name] = descriptor
            self._namespaces[namespace] = updated

        logger.info(f"Registered function: {namespace}.{name}")
        return descriptor

    def register_provider(self, provider: FunctionProvider) -> List[FunctionDescriptor]:
        """Register every function of a provider, or none of them.

        Args:
            provider: Function provider whose descriptors all share its namespace

        Returns:
            The registered descriptors

        Raises:
            DuplicateFunctionError: If any name collides with a registered
                function or another function of the same provider
        """
        namespace = provider.namespace
        descriptors = list(provider.get_functions())
        for descriptor in descriptors:
            if descriptor.namespace != namespace:
                raise ValueError(
                    f"Provider for namespace '{namespace}' produced function "
                    f"'{descriptor.qualified_name}' from another namespace"
                )

        with self._lock_for(namespace):
            updated = dict(self._namespaces.get(namespace, {}))
            for descriptor in descriptors:
                if descriptor.name in updated:
                    raise DuplicateFunctionError(namespace, descriptor.name)
                updated[descriptor.name] = descriptor
            self._namespaces[namespace] = updated

        logger.info(f"Registered {len(descriptors)} functions from provider '{namespace}'")
        return descriptors

    def unregister(self, namespace: str, name: str) -> bool:
        """Unregister a function.

        Returns:
            True if the function was registered
        """
        with self._lock_for(namespace):
            current = self._namespaces.get(namespace, {})
            if name not in current:
                return False
            updated = dict(current)
            del updated[name]
            self._namespaces[namespace] = updated

        logger.info(f"Unregistered function: {namespace}.{name}")
        return True

    def get(self, namespace: str, name: str) -> Optional[FunctionDescriptor]:
        """Get a descriptor, or None if it is not registered."""
        return self._namespaces.get(namespace, {}).get(name)

    def lookup(self, namespace: str, name: str) -> FunctionDescriptor:
        """Get a descriptor.

        Raises:
            UnknownFunctionError: If the function is not registered
        """
        descriptor = self.get(namespace, name)
        if descriptor is None:
            raise UnknownFunctionError(namespace, name)
        return descriptor

    def list(self, namespace: Optional[str] = None) -> CatalogView:
        """Lazy view of registered descriptors, optionally for one namespace."""
        return CatalogView(self, namespace)

    def namespaces(self) -> List[str]:
        """Namespaces that currently hold at least one function."""
        return [namespace for namespace, functions in self._snapshot() if functions]

    def tool_declarations(self, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """Declarations of registered functions for model providers."""
        return [descriptor.to_declaration() for descriptor in self.list(namespace)]

    def get_stats(self) -> Dict[str, Any]:
        """Get catalog statistics.

        Returns:
            Dictionary with catalog statistics
        """
        namespace_counts = {
            namespace: len(functions)
            for namespace, functions in self._snapshot()
            if functions
        }
        return {
            'total_functions': sum(namespace_counts.values()),
            'namespaces': namespace_counts,
        }

    def __contains__(self, key: Tuple[str, str]) -> bool:
        namespace, name = key
        return self.get(namespace, name) is not None

    def __len__(self) -> int:
        return sum(len(functions) for _, functions in self._snapshot())
