"""
Service Registry with lazy loading
Factory-based registration with dependency resolution and lifecycle management
"""
from typing import Dict, Any, Callable, Optional, Set, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # Single instance per application
    TRANSIENT = "transient"  # New instance per lookup
    SCOPED = "scoped"        # Single instance per request/scope


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None
    ):
        self.name = name
        self.factory = factory
        self.instance = None
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.Lock()


class ServiceRegistryEnhanced:
    """
    Service registry used as ``app.services``.

    Services are registered as factories and built on first lookup. Declared
    dependencies are resolved by name and passed to the factory as keyword
    arguments. Circular dependencies are detected per thread.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._scoped_instances: Dict[str, Dict[str, Any]] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register_factory(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None
    ) -> None:
        """
        Register a factory function for lazy service instantiation.

        Args:
            name: Service identifier
            factory: Callable that returns a service instance
            lifecycle: Service lifecycle type
            dependencies: Services this factory depends on
        """
        if factory is None:
            raise ValueError(f"A factory must be provided for '{name}'")

        with self._lock:
            self._descriptors[name] = ServiceDescriptor(
                name=name,
                factory=factory,
                lifecycle=lifecycle,
                dependencies=dependencies
            )

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        """Register a singleton service factory"""
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def register_transient(self, name: str, factory: Callable, **kwargs) -> None:
        """Register a transient service factory"""
        self.register_factory(name, factory, ServiceLifecycle.TRANSIENT, **kwargs)

    def get(self, name: str, scope_id: Optional[str] = None) -> Any:
        """
        Get a service by name, building it and its dependencies if needed.

        Args:
            name: Service identifier
            scope_id: Scope identifier for scoped services

        Returns:
            Service instance

        Raises:
            ValueError: If service is not registered
            RuntimeError: If circular dependency detected
        """
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        descriptor = self._descriptors[name]
        stack = self._initialization_stack()

        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        if descriptor.lifecycle == ServiceLifecycle.SINGLETON:
            return self._get_singleton(descriptor)
        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)
        return self._get_scoped(descriptor, scope_id)

    def _initialization_stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        return self._thread_local.initialization_stack

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.instance is not None:
            return descriptor.instance

        with descriptor.lock:
            # Double-check pattern
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _get_scoped(self, descriptor: ServiceDescriptor, scope_id: Optional[str]) -> Any:
        scope_id = scope_id or "default"

        with self._lock:
            scope = self._scoped_instances.setdefault(scope_id, {})
            if descriptor.name in scope:
                return scope[descriptor.name]

        instance = self._create_instance(descriptor)
        with self._lock:
            return self._scoped_instances[scope_id].setdefault(descriptor.name, instance)

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        stack = self._initialization_stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def clear_scope(self, scope_id: str) -> None:
        """Clear all services in a specific scope"""
        with self._lock:
            self._scoped_instances.pop(scope_id, None)

    def validate_dependencies(self) -> List[str]:
        """
        Validate all service dependencies are registered.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for name, descriptor in self._descriptors.items():
            for dep in descriptor.dependencies:
                if dep not in self._descriptors:
                    errors.append(f"Service '{name}' depends on unregistered service '{dep}'")
        return errors

    def get_initialization_order(self) -> List[str]:
        """
        Calculate an initialization order with dependencies first.

        Raises:
            RuntimeError: If circular dependency exists
        """
        visited: Set[str] = set()
        order: List[str] = []

        def visit(node: str, path: List[str]):
            if node in path:
                raise RuntimeError(f"Circular dependency detected: {' -> '.join(path + [node])}")
            if node in visited:
                return
            descriptor = self._descriptors.get(node)
            for dep in (descriptor.dependencies if descriptor else []):
                visit(dep, path + [node])
            visited.add(node)
            order.append(node)

        for service in self._descriptors:
            visit(service, [])
        return order


def create_enhanced_registry() -> ServiceRegistryEnhanced:
    """Factory function to create the service registry"""
    return ServiceRegistryEnhanced()
