"""
apidesk Admin Application
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
from xml.dom.minidom import Document

from ..core import (
    ConfigurationManager, DependencyContainer, EventBus, JsonFileStorage, KeyValueStorage,
    MemoryStorage
)
from ..data import get_bundled_endpoints
from ..ui.dom_service import ConfirmFn, DomService, console_confirm, create_document
from .auth_manager import AuthManager
from .endpoint_manager import EndpointFormatError, EndpointLoadError, EndpointManager
from .flow_ui_service import FlowUIService
from .logging_service import create_logging_service, setup_logging

logger = logging.getLogger('apidesk.services.admin_application')

class AdminApplication:
    """
    Composition root of the admin runtime.

    Owns one DependencyContainer and registers a lazy factory for every
    service. Nothing is global: two applications never share instances.
    """

    def __init__(
        self,
        config_manager: Optional[ConfigurationManager] = None,
        container: Optional[DependencyContainer] = None,
        *,
        storage: Optional[KeyValueStorage] = None,
        document: Optional[Document] = None,
        confirm: ConfirmFn = console_confirm
    ):
        self.config_manager = config_manager or ConfigurationManager()
        self.container = container or DependencyContainer()
        self._storage = storage
        self._document = document
        self._confirm = confirm
        self._startup_complete = False

        self._register_services()
        logger.info("AdminApplication initialized")

    def _register_services(self) -> None:
        """Register every service factory with the container"""
        c = self.container

        c.register_instance('container', c)
        c.register_instance('config_manager', self.config_manager)
        c.register('config', lambda c: c.get('config_manager').get_configuration(), tags=['core'], priority=100)
        c.register('storage', self._create_storage, tags=['core'], priority=90)
        c.register('logger', self._create_logger, tags=['core'], priority=80)
        c.register('event_bus', lambda c: EventBus(max_depth=c.get('config').max_emit_depth), tags=['core'], priority=70)
        c.register('http_session', self._create_http_session, tags=['core'])
        c.register('document', self._create_dom, tags=['ui'])

        c.register('endpoint_manager', self._create_endpoint_manager, tags=['service'], priority=20)
        c.register('auth_manager', self._create_auth_manager, tags=['service'], priority=10)
        c.register('flow_ui_service', self._create_flow_ui_service, tags=['service', 'ui'])

        logger.debug("Services registered")

    def _create_dom(self, c: DependencyContainer) -> DomService:
        if self._document is not None:
            return DomService(self._document)

        config = c.get('config')
        return DomService(create_document(config.flow_menu_container_id, config.flow_details_container_id))

    def _create_storage(self, c: DependencyContainer) -> KeyValueStorage:
        if self._storage is not None:
            return self._storage

        storage_path = c.get('config').storage_path
        if storage_path:
            return JsonFileStorage(Path(storage_path))
        return MemoryStorage()

    def _create_logger(self, c: DependencyContainer):
        config = c.get('config')
        return create_logging_service(
            context='app',
            level=config.log_level,
            storage=c.get('storage') if config.persist_logs else None,
            storage_key=config.log_storage_key,
            max_log_size=config.max_log_size
        )

    def _create_http_session(self, c: DependencyContainer) -> aiohttp.ClientSession:
        # Must be resolved inside the running event loop
        timeout = aiohttp.ClientTimeout(total=c.get('config').request_timeout)
        return aiohttp.ClientSession(timeout=timeout)

    def _create_endpoint_manager(self, c: DependencyContainer) -> EndpointManager:
        config = c.get('config')
        return EndpointManager(
            c.get('event_bus'),
            c.get('logger'),
            c.get('storage'),
            session_provider=lambda: c.get('http_session'),
            base_url=config.base_url,
            endpoints_file_path=config.endpoints_file_path,
            dynamic_endpoints_path=config.dynamic_endpoints_path,
            use_dynamic_endpoints=config.use_dynamic_endpoints,
            use_local_endpoints=config.use_local_endpoints,
            support_multiple_formats=config.support_multiple_formats,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            request_timeout=config.request_timeout,
            auth_token_key=config.auth_token_key,
            api_key_key=config.api_key_key
        )

    def _create_auth_manager(self, c: DependencyContainer) -> AuthManager:
        config = c.get('config')
        return AuthManager(
            c.get('storage'),
            c.get('event_bus'),
            c.get('logger'),
            session_provider=lambda: c.get('http_session'),
            base_url=config.base_url,
            token_key=config.auth_token_key,
            user_key=config.auth_user_key,
            last_email_key=config.last_email_key,
            login_endpoint=config.login_endpoint,
            register_endpoint=config.register_endpoint,
            logout_endpoint=config.logout_endpoint,
            profile_endpoint=config.profile_endpoint,
            request_timeout=config.request_timeout
        )

    def _create_flow_ui_service(self, c: DependencyContainer) -> FlowUIService:
        config = c.get('config')
        return FlowUIService(
            c.get('document'),
            c.get('event_bus'),
            c.get('logger'),
            confirm=self._confirm,
            flow_details_container_id=config.flow_details_container_id,
            flow_menu_container_id=config.flow_menu_container_id
        )

    async def initialize(self) -> None:
        """
        Bring the runtime up: logging, auth session, endpoint catalog, UI.

        An endpoint load failure is logged and leaves the catalog empty; it
        does not stop the application.
        """
        try:
            logger.info("Initializing AdminApplication services...")

            config = self.container.get('config')
            setup_logging(config.log_level, config.log_file_path)

            self.container.get('auth_manager').init()

            endpoint_manager: EndpointManager = self.container.get('endpoint_manager')
            if config.use_bundled_endpoints:
                endpoint_manager.set_bundled_endpoints(get_bundled_endpoints())

            try:
                await endpoint_manager.load_endpoints()
            except (EndpointLoadError, EndpointFormatError, ValueError) as e:
                logger.error(f"Failed to load endpoints: {e}")

            self.container.get('flow_ui_service')

            self._startup_complete = True
            logger.info("AdminApplication services initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize AdminApplication: {e}")
            raise

    async def run(self) -> Dict[str, Any]:
        """Initialize, report the loaded state and shut down"""
        try:
            await self.initialize()

            endpoint_manager = self.container.get('endpoint_manager')
            auth_manager = self.container.get('auth_manager')
            summary = {
                'endpoints': endpoint_manager.get_endpoint_count(),
                'categories': endpoint_manager.get_categories(),
                'authenticated': auth_manager.check_authenticated(),
                'last_email': auth_manager.get_last_email()
            }

            logger.info(
                f"Loaded {summary['endpoints']} endpoints in {len(summary['categories'])} categories; "
                f"{'authenticated' if summary['authenticated'] else 'anonymous'} session"
            )
            return summary

        finally:
            await self.shutdown()

    def run_sync(self) -> Optional[Dict[str, Any]]:
        """Run the application synchronously (for main entry point)"""
        try:
            return asyncio.run(self.run())
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
            return None

    async def shutdown(self) -> None:
        """Detach the UI and close network resources"""
        logger.info("Shutting down AdminApplication...")
        services = self.container.get_registered_services()

        def resolved(name: str) -> bool:
            return name in services and services[name].resolved

        if resolved('flow_ui_service'):
            self.container.get('flow_ui_service').destroy()

        for name in ('endpoint_manager', 'auth_manager'):
            if resolved(name):
                await self.container.get(name).close()

        if resolved('http_session'):
            session: aiohttp.ClientSession = self.container.get('http_session')
            if not session.closed:
                await session.close()

        self._startup_complete = False
        logger.info("AdminApplication shutdown complete")

    def get_service_stats(self) -> Dict[str, Any]:
        """Get statistics about all registered services"""
        registered_services = self.container.get_registered_services()

        service_stats = {}
        for name, service_def in registered_services.items():
            service_stats[name] = {
                'lifetime': service_def.lifetime.value,
                'has_instance': service_def.instance is not None,
                'tags': list(service_def.tags),
                'priority': service_def.priority
            }

        return {
            'total_services': len(registered_services),
            'startup_complete': self._startup_complete,
            'services': service_stats
        }

def create_application(
    base_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    **kwargs
) -> AdminApplication:
    """Create and configure a new AdminApplication instance"""
    config_manager = ConfigurationManager(base_path=base_path, overrides=overrides)
    return AdminApplication(config_manager, DependencyContainer(), **kwargs)
