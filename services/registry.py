"""
Service Registry - central wiring for repositories, channel adapters and services
Factories are resolved lazily with their declared dependencies injected by name
"""
from typing import Dict, Any, Callable, Optional, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # One instance per application
    TRANSIENT = "transient"  # New instance on every get()


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(self, name: str, factory: Callable, lifecycle: ServiceLifecycle,
                 dependencies: Optional[List[str]] = None):
        self.name = name
        self.factory = factory
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.instance = None
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Registry with lazy, dependency-resolving factories.

    Example:
        registry.register_factory(
            'notification',
            lambda user_repository, sms_channel: NotificationService(user_repository, sms_channel),
            dependencies=['user_repository', 'sms_channel']
        )
        registry.get('notification')
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._resolving = threading.local()

    def register(self, name: str, service: Any) -> None:
        """Register an already-built instance (used by tests to swap in fakes)"""
        descriptor = ServiceDescriptor(name, factory=lambda: service, lifecycle=ServiceLifecycle.SINGLETON)
        descriptor.instance = service
        self._descriptors[name] = descriptor

    def register_factory(self, name: str, factory: Callable,
                         lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                         dependencies: Optional[List[str]] = None) -> None:
        """
        Args:
            name: Service identifier
            factory: Callable receiving each dependency as a keyword argument
            lifecycle: SINGLETON caches the first instance, TRANSIENT never caches
            dependencies: Names of services passed to the factory
        """
        self._descriptors[name] = ServiceDescriptor(name, factory, lifecycle, dependencies)

    def get(self, name: str) -> Any:
        """
        Raises:
            ValueError: If service is not registered
            RuntimeError: If a circular dependency is detected
        """
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        descriptor = self._descriptors[name]
        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)

        if descriptor.instance is None:
            with descriptor.lock:
                if descriptor.instance is None:
                    descriptor.instance = self._create_instance(descriptor)
        return descriptor.instance

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        stack = getattr(self._resolving, 'stack', None)
        if stack is None:
            stack = self._resolving.stack = []

        if descriptor.name in stack:
            cycle = " -> ".join(stack + [descriptor.name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def has(self, name: str) -> bool:
        return name in self._descriptors

    def reset_service(self, name: str) -> None:
        """Force re-instantiation on next get"""
        if name in self._descriptors:
            self._descriptors[name].instance = None

    def list_services(self) -> List[str]:
        return sorted(self._descriptors.keys())

    def validate_dependencies(self) -> List[str]:
        """
        Returns:
            List of validation errors (empty if every dependency is registered)
        """
        return [
            f"Service '{name}' depends on unregistered service '{dep}'"
            for name, descriptor in self._descriptors.items()
            for dep in descriptor.dependencies
            if dep not in self._descriptors
        ]
