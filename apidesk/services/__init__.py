"""
Application services for apidesk

- LoggingService family: leveled loggers with console, storage and composite sinks
- EndpointManager: tiered endpoint catalog loading, search and customisation
- AuthManager: persisted session state and auth HTTP calls
- FlowUIService: flow rendering and click-to-event translation
- AdminApplication: composition root wiring everything into one container
"""

from .logging_service import (
    LogLevel, LogEntry, LoggingService, ConsoleLoggingService, StorageLoggingService,
    CompositeLoggingService, create_logging_service, setup_logging
)
from .endpoint_manager import (
    EndpointManager, EndpointLoadError, AuthenticationRequiredError, EndpointFormatError
)
from .auth_manager import AuthManager, AuthError, NotAuthenticatedError
from .flow_ui_service import FlowUIService, StepStatus
from .admin_application import AdminApplication, create_application

__all__ = [
    'LogLevel',
    'LogEntry',
    'LoggingService',
    'ConsoleLoggingService',
    'StorageLoggingService',
    'CompositeLoggingService',
    'create_logging_service',
    'setup_logging',
    'EndpointManager',
    'EndpointLoadError',
    'AuthenticationRequiredError',
    'EndpointFormatError',
    'AuthManager',
    'AuthError',
    'NotAuthenticatedError',
    'FlowUIService',
    'StepStatus',
    'AdminApplication',
    'create_application'
]
