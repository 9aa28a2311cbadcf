"""
apidesk - admin runtime for an API testing desk

Dependency container, event bus, leveled logging, endpoint catalog loading,
auth session management and flow rendering, wired together by
AdminApplication.
"""

__version__ = "1.0.0"

from .core import DependencyContainer, EventBus, ConfigurationManager, AppConfiguration
from .services import (
    AdminApplication, create_application, EndpointManager, AuthManager, FlowUIService, LogLevel
)

__all__ = [
    '__version__',
    'DependencyContainer',
    'EventBus',
    'ConfigurationManager',
    'AppConfiguration',
    'AdminApplication',
    'create_application',
    'EndpointManager',
    'AuthManager',
    'FlowUIService',
    'LogLevel'
]
