"""
Service container for the long-lived engine components.

Every component (accumulator, market context builder, rule registry, audit
store, orchestrator, guard) is created exactly once per process and shared.
The container replaces module-level globals so tests can build isolated
instances.

Usage:
    container = ServiceContainer()
    container.register_singleton("rules", registry)
    container.register_factory("audit_store", lambda c: InMemoryAuditStore())
    store = container.resolve("audit_store")
"""

import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class DependencyResolutionError(Exception):
    """Raised when a service cannot be resolved."""
    pass


class CircularDependencyError(DependencyResolutionError):
    """Raised when a circular dependency is detected."""
    pass


class ServiceContainer:
    """
    Lightweight dependency container with lazily created singletons.

    Two kinds of registrations:
    1. Singleton: pre-built instance
    2. Factory: callable receiving the container, invoked on first
       resolution; the result is cached unless registered as transient
    """

    def __init__(self):
        self._singletons: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[["ServiceContainer"], Any]] = {}
        self._transient: set = set()
        self._resolution_stack: List[str] = []

    def register_singleton(self, name: str, instance: Any) -> None:
        if name in self._singletons:
            logger.warning("Overwriting existing singleton: %s", name)
        self._singletons[name] = instance
        logger.debug("Registered singleton: %s -> %s", name, type(instance).__name__)

    def register_factory(
        self,
        name: str,
        factory: Callable[["ServiceContainer"], Any],
        transient: bool = False
    ) -> None:
        """
        Register a factory for a service.

        Args:
            name: Service name for resolution
            factory: Callable taking the container and returning the service
            transient: If True, call the factory on every resolution
        """
        if name in self._factories:
            logger.warning("Overwriting existing factory: %s", name)
        self._factories[name] = factory
        if transient:
            self._transient.add(name)
        else:
            self._transient.discard(name)
        logger.debug("Registered factory: %s", name)

    def resolve(self, name: str) -> Any:
        """
        Resolve a service by name.

        Raises:
            DependencyResolutionError: If the service is not registered
            CircularDependencyError: If factories depend on each other
        """
        if name in self._resolution_stack:
            cycle = " -> ".join(self._resolution_stack + [name])
            raise CircularDependencyError(f"Circular dependency detected: {cycle}")

        if name in self._singletons:
            return self._singletons[name]

        if name not in self._factories:
            raise DependencyResolutionError(
                f"Service '{name}' not registered. "
                f"Available services: {self.services()}"
            )

        self._resolution_stack.append(name)
        try:
            instance = self._factories[name](self)
        finally:
            self._resolution_stack.pop()

        if name not in self._transient:
            self._singletons[name] = instance
        return instance

    def resolve_optional(self, name: str) -> Optional[Any]:
        try:
            return self.resolve(name)
        except DependencyResolutionError:
            logger.debug("Optional service not found: %s", name)
            return None

    def has_service(self, name: str) -> bool:
        return name in self._singletons or name in self._factories

    def services(self) -> List[str]:
        return sorted(set(self._singletons) | set(self._factories))

    def clear(self) -> None:
        """Clear all registered services (useful for testing)."""
        self._singletons.clear()
        self._factories.clear()
        self._transient.clear()
        self._resolution_stack.clear()

    def __repr__(self) -> str:
        return (
            f"ServiceContainer(singletons={len(self._singletons)}, "
            f"factories={len(self._factories)})"
        )
