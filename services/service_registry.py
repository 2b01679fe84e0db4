"""
Service Registry - lazy dependency injection for the application factory.

Every repository and service is registered under a name with a factory and
the names of the services it needs. Nothing is built until first requested;
then the dependencies are resolved by name and passed to the factory as
keyword arguments.

Lifecycles:
    singleton: one instance for the application (parser, validator, ...)
    transient: a fresh instance per get() (one executor per import run)
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"


@dataclass
class ServiceDescriptor:
    name: str
    factory: Optional[Callable[..., Any]] = None
    instance: Any = None
    lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON
    dependencies: List[str] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class ServiceRegistry:
    """Named factories resolved on demand, with cycle detection"""

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._lock = threading.Lock()
        # Names being built by the current thread, innermost last
        self._resolving = threading.local()

    # Registration

    def register(self, name: str, service: Any = None, factory: Optional[Callable] = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None) -> None:
        """Register a ready instance (`service`) or a `factory` taking `dependencies` by name"""
        if service is None and factory is None:
            raise ValueError(f"Either service instance or factory must be provided for '{name}'")
        with self._lock:
            self._descriptors[name] = ServiceDescriptor(
                name=name,
                factory=factory,
                instance=service,
                lifecycle=lifecycle,
                dependencies=list(dependencies or []),
            )

    def register_factory(self, name: str, factory: Callable,
                         lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                         dependencies: Optional[List[str]] = None) -> None:
        self.register(name, factory=factory, lifecycle=lifecycle, dependencies=dependencies)

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def register_transient(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.TRANSIENT, **kwargs)

    # Resolution

    def get(self, name: str) -> Any:
        """
        Return the service, building it and its dependencies if needed.

        Raises:
            ValueError: If the service is not registered
            RuntimeError: If resolving it requires itself
        """
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ValueError(f"Service '{name}' is not registered")

        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._build(descriptor)

        if descriptor.instance is None:
            with descriptor.lock:
                if descriptor.instance is None:
                    descriptor.instance = self._build(descriptor)
        return descriptor.instance

    def _build(self, descriptor: ServiceDescriptor) -> Any:
        resolving = self._resolving_stack()
        if descriptor.name in resolving:
            cycle = " -> ".join(resolving + [descriptor.name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        resolving.append(descriptor.name)
        try:
            kwargs = {dependency: self.get(dependency) for dependency in descriptor.dependencies}
            instance = descriptor.factory(**kwargs)
        finally:
            resolving.pop()
        logger.debug(f"Built service '{descriptor.name}' ({descriptor.lifecycle.value})")
        return instance

    def _resolving_stack(self) -> List[str]:
        if not hasattr(self._resolving, 'names'):
            self._resolving.names = []
        return self._resolving.names

    # Introspection

    def list_services(self) -> List[str]:
        return sorted(self._descriptors)

    def validate_dependencies(self) -> List[str]:
        """Messages for every dependency that is not registered; empty when complete"""
        return [
            f"Service '{name}' depends on unregistered service '{dependency}'"
            for name, descriptor in self._descriptors.items()
            for dependency in descriptor.dependencies
            if dependency not in self._descriptors
        ]

    def get_initialization_order(self) -> List[str]:
        """
        Services ordered so that each comes after its dependencies.

        Raises:
            RuntimeError: If the dependency graph has a cycle
        """
        order: List[str] = []
        done = set()

        def visit(name: str, path: List[str]) -> None:
            if name in path:
                raise RuntimeError(f"Circular dependency detected: {' -> '.join(path + [name])}")
            if name in done:
                return
            descriptor = self._descriptors.get(name)
            for dependency in (descriptor.dependencies if descriptor else []):
                visit(dependency, path + [name])
            done.add(name)
            order.append(name)

        for name in self._descriptors:
            visit(name, [])
        return order


def create_registry() -> ServiceRegistry:
    return ServiceRegistry()
