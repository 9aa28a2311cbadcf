"""
Endpoint Manager for apidesk

Loads the catalog of API endpoint descriptors used by the request builder.

Sources are tried in tiers:

1. dynamic - GET the backend's endpoint listing with the stored credentials
2. static - read the configured JSON file, retrying transient failures
3. fallback - the bundled catalog registered with set_bundled_endpoints()

Every lifecycle step is published on the shared EventBus under an
``endpoints:*`` topic with a dict payload.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import aiohttp
from pydantic import ValidationError

from ..core.event_bus import EventBus
from ..core.storage import KeyValueStorage
from ..models.endpoint import EndpointDescriptor
from .logging_service import LoggingService

DEFAULT_SEARCH_FIELDS = ('name', 'path', 'description', 'category', 'tags')

# Header spellings accepted by the different backend deployments
API_KEY_HEADERS = ('x-api-key', 'api-key', 'X-Api-Key')

class EndpointLoadError(Exception):
    """Raised when an endpoint source cannot be fetched"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

class AuthenticationRequiredError(EndpointLoadError):
    """Raised when an endpoint source answers 401 or 403"""
    pass

class EndpointFormatError(Exception):
    """Raised when endpoint data has no recognisable shape"""
    pass

def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None

class EndpointManager:
    """
    Endpoint catalog with tiered loading and runtime customisation.

    Loading state (the endpoint list and the category map) is replaced as a
    whole by each successful process_endpoints() call; a failed load leaves
    the previous catalog in place.
    """

    def __init__(
        self,
        event_bus: EventBus,
        logger: LoggingService,
        storage: Optional[KeyValueStorage] = None,
        session: Optional[aiohttp.ClientSession] = None,
        session_provider: Optional[Callable[[], aiohttp.ClientSession]] = None,
        *,
        base_url: Optional[str] = None,
        endpoints_file_path: str = "data/endpoints.json",
        dynamic_endpoints_path: str = "/api/v1/api-tester/endpoints",
        use_dynamic_endpoints: bool = True,
        use_local_endpoints: bool = True,
        support_multiple_formats: bool = True,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        request_timeout: float = 30.0,
        auth_token_key: str = "auth_token",
        api_key_key: str = "api_key"
    ):
        self.event_bus = event_bus
        self.logger = logger.child('EndpointManager')
        self.storage = storage

        self.base_url = base_url
        self.endpoints_file_path = endpoints_file_path
        self.dynamic_endpoints_path = dynamic_endpoints_path
        self.use_dynamic_endpoints = use_dynamic_endpoints
        self.use_local_endpoints = use_local_endpoints
        self.support_multiple_formats = support_multiple_formats
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self.auth_token_key = auth_token_key
        self.api_key_key = api_key_key

        self._session = session
        self._session_provider = session_provider
        self._owns_session = False

        self._endpoints: List[EndpointDescriptor] = []
        self._categories: Dict[str, List[EndpointDescriptor]] = {}
        self._bundled_endpoints: Any = None
        self._loaded = False

    def set_bundled_endpoints(self, endpoints: Any) -> None:
        """Register the catalog used when every other source has failed"""
        self._bundled_endpoints = endpoints

    def has_bundled_endpoints(self) -> bool:
        return self._bundled_endpoints is not None

    async def load_endpoints(self) -> List[EndpointDescriptor]:
        """
        Load the catalog from the first source tier that succeeds.

        Returns:
            The loaded endpoints

        Raises:
            EndpointLoadError: If the static tier fails and no fallback is set
            EndpointFormatError: If the static data has no recognisable shape
        """
        if self.use_dynamic_endpoints:
            try:
                return await self.load_dynamic_endpoints()
            except (EndpointLoadError, EndpointFormatError) as e:
                self.logger.debug(f"Failed to load dynamic endpoints, falling back to static: {e}")

        return await self.load_static_endpoints()

    async def load_dynamic_endpoints(self) -> List[EndpointDescriptor]:
        """
        Load the catalog from the backend.

        A 401/403 answer raises AuthenticationRequiredError immediately; the
        dynamic tier is never retried.
        """
        path = self.dynamic_endpoints_path
        self._emit('endpoints:loading', {'path': path, 'type': 'dynamic'})

        try:
            if not path:
                raise EndpointLoadError("Dynamic endpoints path is not defined")

            url = self._resolve_url(path)
            if url is None:
                raise EndpointLoadError(
                    f"Cannot load dynamic endpoints from '{path}': base_url is not configured"
                )

            data = await self._fetch_json(url, headers=self.get_auth_headers())
            self.process_endpoints(data)

        except (EndpointLoadError, EndpointFormatError) as e:
            self.logger.error(f"Error loading dynamic endpoints: {e}", e)
            self._emit('endpoints:error', {'error': e, 'message': str(e), 'source': 'dynamic'})
            raise

        return self._mark_loaded('dynamic')

    async def load_static_endpoints(self) -> List[EndpointDescriptor]:
        """
        Load the catalog from the static JSON source.

        Failures are retried max_retries times, retry_delay seconds apart.
        When retries are exhausted the bundled catalog is used if one is
        registered; otherwise endpoints:error is emitted and the last error
        re-raised.

        Raises:
            ValueError: If no static path is configured
        """
        path = self.endpoints_file_path
        if not path:
            raise ValueError("Endpoints file path is not defined")

        retry_count = 0
        while True:
            self._emit('endpoints:loading', {'path': path, 'type': 'static'})

            try:
                data = await self._read_static(path)
                self.process_endpoints(data)
                return self._mark_loaded('static')

            except (EndpointLoadError, EndpointFormatError) as e:
                self.logger.error(f"Error loading static endpoints: {e}")
                last_error = e

            if retry_count >= self.max_retries:
                break

            retry_count += 1
            self._emit('endpoints:retry', {
                'error': last_error,
                'message': str(last_error),
                'retry_count': retry_count,
                'max_retries': self.max_retries
            })
            self.logger.info(f"Retrying static endpoints ({retry_count}/{self.max_retries}) in {self.retry_delay}s")
            await asyncio.sleep(self.retry_delay)

        if self.use_local_endpoints and self._bundled_endpoints is not None:
            self.logger.warn("Using bundled endpoints as fallback")
            try:
                self.process_endpoints(self._bundled_endpoints)
            except EndpointFormatError as e:
                self.logger.error(f"Bundled endpoints are unusable: {e}", e)
                self._emit('endpoints:error', {'error': e, 'message': str(e), 'source': 'fallback'})
                raise
            return self._mark_loaded('fallback')

        self._emit('endpoints:error', {'error': last_error, 'message': str(last_error), 'source': 'static'})
        raise last_error

    async def refresh_endpoints(self) -> List[EndpointDescriptor]:
        """Reload the catalog through the full tier sequence"""
        self._emit('endpoints:refreshing', {})

        try:
            endpoints = await self.load_endpoints()
        except (EndpointLoadError, EndpointFormatError, ValueError) as e:
            self._emit('endpoints:refresh-error', {'error': e, 'message': str(e)})
            raise

        self._emit('endpoints:refreshed', {
            'endpoints': self.get_endpoints(),
            'categories': self._categories_snapshot()
        })
        return endpoints

    def process_endpoints(self, data: Any) -> List[EndpointDescriptor]:
        """
        Normalize raw endpoint data and replace the catalog with it.

        Accepted shapes: a plain list of endpoints, ``{"endpoints": [...]}``,
        or an object mapping category names to lists. With
        support_multiple_formats disabled only ``{"endpoints": [...]}`` is
        accepted. Entries without a path are dropped with a warning.

        Raises:
            EndpointFormatError: If the data shape is not accepted
        """
        if self.support_multiple_formats:
            if isinstance(data, list):
                endpoints = self._process_array(data)
            elif isinstance(data, dict) and isinstance(data.get('endpoints'), list):
                endpoints = self._process_array(data['endpoints'])
            elif isinstance(data, dict):
                endpoints = self._process_categories(data)
            else:
                raise EndpointFormatError("Invalid endpoints data format - could not detect format")
        else:
            if not isinstance(data, dict) or not isinstance(data.get('endpoints'), list):
                raise EndpointFormatError("Invalid endpoints data format - expected {endpoints: [...]}")
            endpoints = self._process_array(data['endpoints'])

        categories: Dict[str, List[EndpointDescriptor]] = {}
        for endpoint in endpoints:
            categories.setdefault(endpoint.category, []).append(endpoint)

        self._endpoints = endpoints
        self._categories = categories

        self.logger.debug(f"Processed {len(endpoints)} endpoints in {len(categories)} categories")
        return list(endpoints)

    def get_endpoints(self) -> List[EndpointDescriptor]:
        return list(self._endpoints)

    def get_endpoints_by_category(self, category: str) -> List[EndpointDescriptor]:
        return list(self._categories.get(category, []))

    def get_categories(self) -> List[str]:
        return list(self._categories.keys())

    def get_endpoint_by_id(self, endpoint_id: str) -> Optional[EndpointDescriptor]:
        for endpoint in self._endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        return None

    def get_endpoint_by_path_and_method(self, path: Optional[str], method: Optional[str]) -> Optional[EndpointDescriptor]:
        if not path or not method:
            return None

        method = method.upper()
        for endpoint in self._endpoints:
            if endpoint.path == path and endpoint.method == method:
                return endpoint
        return None

    def search_endpoints(
        self,
        query: str,
        fields: Optional[Sequence[str]] = None,
        case_sensitive: bool = False,
        exact_match: bool = False
    ) -> List[EndpointDescriptor]:
        """
        Find endpoints where any of the given fields matches the query.

        Args:
            query: Text to look for; an empty query returns every endpoint
            fields: Field names to scan (snake_case or camelCase); list
                values such as tags are matched element by element
            case_sensitive: Compare without lower-casing
            exact_match: Require equality instead of substring containment

        Returns:
            Matching endpoints in catalog order
        """
        if not query:
            return self.get_endpoints()

        fields = fields or DEFAULT_SEARCH_FIELDS
        needle = query if case_sensitive else query.lower()

        def matches(value: Any) -> bool:
            text = str(value) if case_sensitive else str(value).lower()
            return text == needle if exact_match else needle in text

        results = []
        for endpoint in self._endpoints:
            for field_name in fields:
                value = self._field_value(endpoint, field_name)
                if value is None:
                    continue

                values: Iterable[Any] = value if isinstance(value, (list, tuple)) else (value,)
                if any(matches(item) for item in values):
                    results.append(endpoint)
                    break

        return results

    def add_custom_endpoint(self, data: Dict[str, Any]) -> EndpointDescriptor:
        """
        Add a user-defined endpoint to the catalog.

        Args:
            data: Endpoint fields; name and path (or url) are required

        Returns:
            The stored endpoint, marked is_custom

        Raises:
            ValueError: If name or path is missing or the fields are invalid
        """
        name = data.get('name')
        if not name:
            raise ValueError("Endpoint name is required")

        url = data.get('url') or ''
        path = data.get('path') or url
        if not path:
            raise ValueError("Either URL or path is required for the endpoint")

        endpoint = EndpointDescriptor(
            id=data.get('id') or self._generate_custom_id(),
            method=data.get('method') or 'GET',
            name=name,
            url=url,
            path=path,
            description=data.get('description') or '',
            category=data.get('category') or 'Custom',
            parameters=data.get('parameters') or [],
            headers=data.get('headers') or {},
            request_body=_first(data, 'request_body', 'requestBody'),
            response_example=_first(data, 'response_example', 'responseExample'),
            requires_auth=bool(_first(data, 'requires_auth', 'requiresAuth')),
            tags=data.get('tags') or [],
            is_custom=True
        )

        self._endpoints.append(endpoint)
        self._categories.setdefault(endpoint.category, []).append(endpoint)

        self.logger.info(f"Added custom endpoint {endpoint.id}: {endpoint.method} {endpoint.path}")
        self._emit('endpoints:custom-added', {'endpoint': endpoint})
        return endpoint

    def remove_custom_endpoint(self, endpoint_id: str) -> bool:
        """
        Remove a custom endpoint; loaded endpoints are never removed.

        Returns:
            True if a custom endpoint with that id was removed
        """
        endpoint = self.get_endpoint_by_id(endpoint_id)
        if endpoint is None or not endpoint.is_custom:
            return False

        self._endpoints = [e for e in self._endpoints if e.id != endpoint_id]

        remaining = [e for e in self._categories.get(endpoint.category, []) if e.id != endpoint_id]
        if remaining:
            self._categories[endpoint.category] = remaining
        else:
            self._categories.pop(endpoint.category, None)

        self.logger.info(f"Removed custom endpoint {endpoint_id}")
        self._emit('endpoints:custom-removed', {'endpoint': endpoint})
        return True

    def is_loaded(self) -> bool:
        return self._loaded

    def get_endpoint_count(self) -> int:
        return len(self._endpoints)

    def set_dynamic_endpoints_path(self, path: str) -> None:
        if not path:
            raise ValueError("Dynamic endpoints path cannot be empty")

        self.dynamic_endpoints_path = path
        self._emit('endpoints:config-changed', {'property': 'dynamic_endpoints_path', 'value': path})

    def get_dynamic_endpoints_path(self) -> str:
        return self.dynamic_endpoints_path or ''

    def get_auth_headers(self) -> Dict[str, str]:
        """Headers carrying the stored bearer token and API key"""
        headers = {'Accept': 'application/json'}
        if self.storage is None:
            return headers

        token = self.storage.get_item(self.auth_token_key)
        if token:
            headers['Authorization'] = f"Bearer {token}"

        api_key = self.storage.get_item(self.api_key_key)
        if api_key:
            for header in API_KEY_HEADERS:
                headers[header] = api_key

        return headers

    async def close(self) -> None:
        """Close the HTTP session if this manager created it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._owns_session = False

    def _process_array(self, items: List[Any], category: Optional[str] = None, start: int = 0) -> List[EndpointDescriptor]:
        endpoints = []
        for index, item in enumerate(items):
            endpoint = self._normalize_endpoint(item, start + len(endpoints) + 1, category)
            if endpoint is None:
                where = f" in category {category}" if category else ""
                self.logger.warn(f"Skipping invalid endpoint{where} at index {index}", item)
                continue
            endpoints.append(endpoint)
        return endpoints

    def _process_categories(self, data: Dict[str, Any]) -> List[EndpointDescriptor]:
        endpoints: List[EndpointDescriptor] = []
        for category, items in data.items():
            if category == 'endpoints':
                continue
            if not isinstance(items, list):
                self.logger.warn(f"Skipping invalid category {category}: expected list, got {type(items).__name__}")
                continue
            endpoints.extend(self._process_array(items, category=category, start=len(endpoints)))
        return endpoints

    def _normalize_endpoint(self, raw: Any, position: int, category: Optional[str] = None) -> Optional[EndpointDescriptor]:
        if not isinstance(raw, dict):
            return None

        path = _first(raw, 'path', 'url', 'endpoint')
        if not path:
            return None

        try:
            return EndpointDescriptor(
                id=str(raw.get('id') or f"endpoint-{position}"),
                method=raw.get('method') or 'GET',
                path=path,
                name=_first(raw, 'name', 'title', 'label') or path,
                url=raw.get('url') or '',
                description=raw.get('description') or '',
                category=category or _first(raw, 'category', 'group') or 'Uncategorized',
                parameters=_first(raw, 'parameters', 'params') or [],
                headers=raw.get('headers') or {},
                request_body=_first(raw, 'requestBody', 'request_body', 'body'),
                response_example=_first(raw, 'responseExample', 'response_example', 'example'),
                requires_auth=bool(_first(raw, 'requiresAuth', 'requires_auth', 'authenticated')),
                tags=raw.get('tags') or [],
                is_custom=bool(_first(raw, 'isCustom', 'is_custom'))
            )
        except ValidationError as e:
            self.logger.warn(f"Endpoint {path} failed validation: {e.error_count()} error(s)")
            return None

    def _field_value(self, endpoint: EndpointDescriptor, field_name: str) -> Any:
        if field_name in EndpointDescriptor.model_fields:
            return getattr(endpoint, field_name)

        for name, info in EndpointDescriptor.model_fields.items():
            if info.alias == field_name:
                return getattr(endpoint, name)
        return None

    def _generate_custom_id(self) -> str:
        endpoint_id = f"custom-endpoint-{int(time.time() * 1000)}"
        suffix = 1
        candidate = endpoint_id
        while self.get_endpoint_by_id(candidate) is not None:
            suffix += 1
            candidate = f"{endpoint_id}-{suffix}"
        return candidate

    def _mark_loaded(self, source: str) -> List[EndpointDescriptor]:
        self._loaded = True
        self.logger.info(f"Loaded {len(self._endpoints)} endpoints from {source} source")
        self._emit('endpoints:loaded', {
            'endpoints': self.get_endpoints(),
            'categories': self._categories_snapshot(),
            'source': source
        })
        return self.get_endpoints()

    def _categories_snapshot(self) -> Dict[str, List[EndpointDescriptor]]:
        return {name: list(items) for name, items in self._categories.items()}

    def _emit(self, topic: str, payload: Dict[str, Any]) -> None:
        self.event_bus.emit(topic, payload)

    def _resolve_url(self, path: str) -> Optional[str]:
        """Absolute URL for path, or None when it names a local file"""
        if path.startswith(('http://', 'https://')):
            return path
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        return None

    async def _read_static(self, path: str) -> Any:
        url = self._resolve_url(path)
        if url is not None:
            return await self._fetch_json(url)

        try:
            text = await asyncio.to_thread(Path(path).read_text, encoding='utf-8')
        except OSError as e:
            raise EndpointLoadError(f"Failed to read static endpoints from {path}: {e}") from e

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise EndpointLoadError(f"Invalid JSON in {path}: {e}") from e

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            if self._session_provider is not None:
                self._session = self._session_provider()
                self._owns_session = False
                return self._session

            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _fetch_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with session.get(url, headers=headers, timeout=timeout) as response:
                if response.status in (401, 403):
                    raise AuthenticationRequiredError(
                        f"Authentication required: {response.status} {response.reason}",
                        status=response.status
                    )
                if not 200 <= response.status < 300:
                    raise EndpointLoadError(
                        f"Failed to load endpoints: {response.status} {response.reason}",
                        status=response.status
                    )
                return await response.json(content_type=None)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise EndpointLoadError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise EndpointLoadError(f"Invalid JSON from {url}: {e}") from e
