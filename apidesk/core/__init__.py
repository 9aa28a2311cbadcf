"""
Core Infrastructure for apidesk

Provides the foundational pieces the admin runtime is assembled from:
dependency injection, configuration, durable key-value storage and
event-driven communication.

Key Components:
- DependencyContainer: Lazy-singleton service container keyed by name
- ConfigurationManager: Layered configuration with environment support
- KeyValueStorage: Durable string storage for sessions and logs
- EventBus: Synchronous publish/subscribe hub for component communication
"""

from .dependency_container import (
    DependencyContainer, ServiceLifetime, ServiceNotRegisteredError,
    CircularDependencyError, ServiceCreationError
)
from .config_manager import ConfigurationManager, ConfigurationError, AppConfiguration, Environment
from .storage import KeyValueStorage, MemoryStorage, JsonFileStorage, StorageError
from .event_bus import EventBus, Event, Subscription, EventRecursionError

__all__ = [
    'DependencyContainer',
    'ServiceLifetime',
    'ServiceNotRegisteredError',
    'CircularDependencyError',
    'ServiceCreationError',
    'ConfigurationManager',
    'ConfigurationError',
    'AppConfiguration',
    'Environment',
    'KeyValueStorage',
    'MemoryStorage',
    'JsonFileStorage',
    'StorageError',
    'EventBus',
    'Event',
    'Subscription',
    'EventRecursionError'
]
