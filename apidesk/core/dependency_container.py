"""
Dependency Container for apidesk
"""

import logging
from typing import Dict, Any, Optional, Callable, List, Set
from enum import Enum
from dataclasses import dataclass, field

logger = logging.getLogger('apidesk.core.dependency_container')

class ServiceLifetime(Enum):
    """Service lifetime management options"""
    SINGLETON = "singleton"
    TRANSIENT = "transient"

class ServiceNotRegisteredError(Exception):
    """Raised when a requested service name is not registered"""

    def __init__(self, name: str, available: Optional[List[str]] = None):
        self.name = name
        self.available = available or []
        available_text = ', '.join(self.available) or 'none'
        super().__init__(
            f"Service '{name}' is not registered. Available services: {available_text}"
        )

class CircularDependencyError(Exception):
    """Raised when a factory resolves a service that is still being built"""
    pass

class ServiceCreationError(Exception):
    """Raised when a service factory fails"""
    pass

ServiceFactory = Callable[['DependencyContainer'], Any]

@dataclass
class ServiceDefinition:
    """Metadata for a registered service"""
    name: str
    factory: ServiceFactory
    lifetime: ServiceLifetime = ServiceLifetime.SINGLETON
    tags: List[str] = field(default_factory=list)
    priority: int = 0
    instance: Optional[Any] = None
    resolved: bool = False

    @property
    def singleton(self) -> bool:
        return self.lifetime == ServiceLifetime.SINGLETON

class DependencyContainer:
    """
    Lazy-singleton dependency container keyed by service name.

    Factories receive the container itself so they can pull their own
    dependencies at resolution time, which keeps construction order out of
    the registration code. Each container is an independent graph; the
    application builds one at its composition root and passes it down.

    Usage:
        container = DependencyContainer()
        container.register('event_bus', lambda c: EventBus())
        container.register('auth_manager', lambda c: AuthManager(event_bus=c.get('event_bus')))
        auth = container.get('auth_manager')
    """

    def __init__(self):
        self._services: Dict[str, ServiceDefinition] = {}
        self._aliases: Dict[str, str] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._resolving: List[str] = []  # Resolution chain for cycle detection
        logger.debug("DependencyContainer initialized")

    def register(
        self,
        name: str,
        factory: ServiceFactory,
        lifetime: ServiceLifetime = ServiceLifetime.SINGLETON,
        tags: Optional[List[str]] = None,
        priority: int = 0
    ) -> 'DependencyContainer':
        """
        Register a service factory with the container.

        Args:
            name: Service name used for lookups
            factory: Callable receiving the container and returning the instance
            lifetime: Service lifetime management
            tags: Optional tags used by get_by_tag()
            priority: Ordering among services sharing a tag (higher first)

        Returns:
            Self for method chaining
        """
        if not callable(factory):
            raise TypeError(f"Factory for service '{name}' must be callable")

        if name in self._services:
            logger.warning(f"Service '{name}' is already registered. Overwriting.")
            self._untag(name)

        service_def = ServiceDefinition(
            name=name,
            factory=factory,
            lifetime=lifetime,
            tags=list(tags or []),
            priority=priority
        )
        self._services[name] = service_def

        for tag in service_def.tags:
            self._tags.setdefault(tag, set()).add(name)

        logger.debug(f"Registered service: {name} ({lifetime.value})")
        return self

    def register_instance(self, name: str, instance: Any) -> 'DependencyContainer':
        """
        Register a pre-created instance as a singleton service.

        Args:
            name: Service name
            instance: The pre-created instance

        Returns:
            Self for method chaining
        """
        self.register(name, lambda container: instance)
        service_def = self._services[name]
        service_def.instance = instance
        service_def.resolved = True
        return self

    def has(self, name: str) -> bool:
        """Check if a service (or an alias to one) is registered"""
        return self._canonical_name(name) in self._services

    def is_registered(self, name: str) -> bool:
        return self.has(name)

    def get(self, name: str) -> Any:
        """
        Resolve a service instance from the container.

        Singletons are built on first use and cached for the container's
        lifetime; every later call returns the identical object.

        Raises:
            ServiceNotRegisteredError: If the name is not registered
            CircularDependencyError: If the name is already being resolved
            ServiceCreationError: If the factory raises
        """
        return self._resolve(self._canonical_name(name), fresh=False)

    def get_optional(self, name: str) -> Optional[Any]:
        """Resolve a service instance, returning None if not registered"""
        try:
            return self.get(name)
        except ServiceNotRegisteredError:
            return None

    def create(self, name: str) -> Any:
        """Build a new instance of a service, ignoring any cached singleton"""
        return self._resolve(self._canonical_name(name), fresh=True)

    def alias(self, alias: str, name: str) -> None:
        """Register an alternative name for an existing service"""
        if name not in self._services:
            logger.warning(f"Cannot create alias '{alias}' for unknown service '{name}'")
            return

        self._aliases[alias] = name
        logger.debug(f"Registered alias '{alias}' for service '{name}'")

    def get_by_tag(self, tag: str) -> List[Any]:
        """Resolve every service carrying a tag, highest priority first"""
        names = self._tags.get(tag)
        if not names:
            return []

        ordered = sorted(
            names,
            key=lambda service_name: self._services[service_name].priority,
            reverse=True
        )
        return [self.get(service_name) for service_name in ordered]

    def remove(self, name: str) -> bool:
        """
        Remove a service, its tags and every alias pointing at it.

        Returns:
            True if the service was registered
        """
        if name not in self._services:
            return False

        self._untag(name)
        del self._services[name]

        for alias_name, target in list(self._aliases.items()):
            if target == name:
                del self._aliases[alias_name]

        logger.debug(f"Removed service '{name}'")
        return True

    def get_service_names(self) -> List[str]:
        return list(self._services.keys())

    def get_tags(self) -> List[str]:
        return list(self._tags.keys())

    def get_registered_services(self) -> Dict[str, ServiceDefinition]:
        """Get all registered services (for debugging/monitoring)"""
        return self._services.copy()

    def reset(self) -> None:
        """Remove every registration"""
        self._services.clear()
        self._aliases.clear()
        self._tags.clear()
        self._resolving.clear()
        logger.info("Dependency container reset")

    def _canonical_name(self, name: str) -> str:
        return self._aliases.get(name, name)

    def _untag(self, name: str) -> None:
        for tag in self._services[name].tags:
            tagged = self._tags.get(tag)
            if tagged is None:
                continue
            tagged.discard(name)
            if not tagged:
                del self._tags[tag]

    def _resolve(self, name: str, fresh: bool) -> Any:
        """Internal service resolution with circular dependency detection"""
        if name not in self._services:
            available = self.get_service_names()
            logger.error(f"Service '{name}' not found in container")
            raise ServiceNotRegisteredError(name, available)

        service_def = self._services[name]

        if not fresh and service_def.singleton and service_def.resolved:
            return service_def.instance

        if name in self._resolving:
            chain = " -> ".join(self._resolving + [name])
            raise CircularDependencyError(f"Circular dependency detected: {chain}")

        self._resolving.append(name)

        try:
            instance = service_def.factory(self)
        except (ServiceNotRegisteredError, CircularDependencyError, ServiceCreationError):
            raise
        except Exception as e:
            logger.error(f"Error creating service '{name}': {e}")
            raise ServiceCreationError(f"Error creating service '{name}': {e}") from e
        finally:
            self._resolving.remove(name)

        if service_def.singleton and not fresh:
            service_def.instance = instance
            service_def.resolved = True

        logger.debug(f"Resolved service: {name}")
        return instance
