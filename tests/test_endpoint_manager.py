"""
Endpoint Manager Tests

HTTP sources are served by real aiohttp test servers.
"""

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from apidesk.services.endpoint_manager import (
    EndpointManager, EndpointLoadError, EndpointFormatError, AuthenticationRequiredError
)


ENDPOINT_TOPICS = (
    'endpoints:loading', 'endpoints:loaded', 'endpoints:error', 'endpoints:retry',
    'endpoints:refreshing', 'endpoints:refreshed', 'endpoints:refresh-error',
    'endpoints:custom-added', 'endpoints:custom-removed', 'endpoints:config-changed'
)


@pytest.fixture
def make_manager(event_bus, app_logger, storage):
    """Factory for managers that never wait between retries"""
    def factory(**options) -> EndpointManager:
        options.setdefault('retry_delay', 0)
        return EndpointManager(event_bus, app_logger, storage, **options)
    return factory


def write_catalog(path, data):
    path.write_text(json.dumps(data), encoding='utf-8')
    return str(path)


class TestProcessEndpoints:
    """Test normalization of the supported input shapes"""

    @pytest.mark.parametrize('data', [
        [{'path': '/a'}],
        {'endpoints': [{'path': '/a'}]},
        {'Cat1': [{'path': '/a'}]},
    ])
    def test_three_shapes_produce_one_endpoint(self, make_manager, data):
        manager = make_manager()
        endpoints = manager.process_endpoints(data)

        assert len(endpoints) == 1
        assert endpoints[0].path == '/a'
        assert endpoints[0].method == 'GET'
        assert endpoints[0].name == '/a'

    def test_endpoint_without_path_is_dropped(self, make_manager):
        manager = make_manager()
        endpoints = manager.process_endpoints([
            {'path': '/kept'},
            {'name': 'No path here'},
            'not an object',
            None
        ])

        assert [e.path for e in endpoints] == ['/kept']

    def test_defaults_are_applied(self, make_manager):
        manager = make_manager()
        endpoint = manager.process_endpoints([{'path': '/users'}])[0]

        assert endpoint.id == 'endpoint-1'
        assert endpoint.category == 'Uncategorized'
        assert endpoint.parameters == []
        assert endpoint.tags == []
        assert endpoint.headers == {}
        assert endpoint.requires_auth is False
        assert endpoint.is_custom is False

    def test_field_aliases(self, make_manager):
        manager = make_manager()
        endpoint = manager.process_endpoints([{
            'url': '/orders',
            'title': 'Orders',
            'group': 'Shop',
            'method': 'post',
            'params': [{'name': 'id', 'in': 'path', 'required': True}],
            'body': {'qty': 1},
            'example': {'ok': True},
            'authenticated': True
        }])[0]

        assert endpoint.path == '/orders'
        assert endpoint.url == '/orders'
        assert endpoint.name == 'Orders'
        assert endpoint.category == 'Shop'
        assert endpoint.method == 'POST'
        assert endpoint.parameters[0].name == 'id'
        assert endpoint.parameters[0].location == 'path'
        assert endpoint.request_body == {'qty': 1}
        assert endpoint.response_example == {'ok': True}
        assert endpoint.requires_auth is True

    def test_category_key_overrides_endpoint_category(self, make_manager):
        manager = make_manager()
        manager.process_endpoints({
            'Users': [{'path': '/users', 'category': 'Ignored'}],
            'Broken': 'not a list',
            'Admin': [{'path': '/admin'}, {'path': '/admin/stats'}]
        })

        assert manager.get_categories() == ['Users', 'Admin']
        assert manager.get_endpoints_by_category('Users')[0].category == 'Users'
        assert [e.id for e in manager.get_endpoints()] == ['endpoint-1', 'endpoint-2', 'endpoint-3']

    def test_unrecognised_shape_raises(self, make_manager):
        with pytest.raises(EndpointFormatError):
            make_manager().process_endpoints("nonsense")

    @pytest.mark.parametrize('data', [
        [{'path': '/a'}],
        {'Cat1': [{'path': '/a'}]},
    ])
    def test_strict_mode_only_accepts_wrapped_shape(self, make_manager, data):
        manager = make_manager(support_multiple_formats=False)

        with pytest.raises(EndpointFormatError):
            manager.process_endpoints(data)

        assert len(manager.process_endpoints({'endpoints': [{'path': '/a'}]})) == 1

    def test_failed_processing_keeps_previous_catalog(self, make_manager):
        manager = make_manager()
        manager.process_endpoints([{'path': '/a'}])

        with pytest.raises(EndpointFormatError):
            manager.process_endpoints(42)

        assert manager.get_endpoint_count() == 1


class TestStaticLoading:
    """Test the static tier, retries and the bundled fallback"""

    @pytest.mark.asyncio
    async def test_loads_local_file(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        path = write_catalog(tmp_path / 'endpoints.json', {'endpoints': [{'path': '/a'}, {'path': '/b'}]})
        manager = make_manager(use_dynamic_endpoints=False, endpoints_file_path=path)

        endpoints = await manager.load_endpoints()

        assert [e.path for e in endpoints] == ['/a', '/b']
        assert manager.is_loaded()
        assert recorder.payloads('endpoints:loading') == [{'path': path, 'type': 'static'}]
        loaded = recorder.payloads('endpoints:loaded')[0]
        assert loaded['source'] == 'static'
        assert list(loaded['categories']) == ['Uncategorized']

    @pytest.mark.asyncio
    async def test_retries_then_uses_fallback(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager(
            use_dynamic_endpoints=False,
            endpoints_file_path=str(tmp_path / 'missing.json'),
            max_retries=3
        )
        manager.set_bundled_endpoints([{'path': '/bundled'}])

        endpoints = await manager.load_static_endpoints()

        retries = recorder.payloads('endpoints:retry')
        assert [r['retry_count'] for r in retries] == [1, 2, 3]
        assert all(r['max_retries'] == 3 for r in retries)
        assert len(recorder.payloads('endpoints:loading')) == 4
        assert recorder.payloads('endpoints:loaded')[0]['source'] == 'fallback'
        assert recorder.payloads('endpoints:error') == []
        assert [e.path for e in endpoints] == ['/bundled']

    @pytest.mark.asyncio
    async def test_exhausted_retries_without_fallback_raise(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager(
            use_dynamic_endpoints=False,
            endpoints_file_path=str(tmp_path / 'missing.json'),
            max_retries=2
        )

        with pytest.raises(EndpointLoadError) as exc_info:
            await manager.load_endpoints()

        assert len(recorder.payloads('endpoints:retry')) == 2
        errors = recorder.payloads('endpoints:error')
        assert len(errors) == 1
        assert errors[0]['source'] == 'static'
        assert errors[0]['error'] is exc_info.value
        assert not manager.is_loaded()

    @pytest.mark.asyncio
    async def test_fallback_disabled(self, make_manager, tmp_path):
        manager = make_manager(
            use_dynamic_endpoints=False,
            use_local_endpoints=False,
            endpoints_file_path=str(tmp_path / 'missing.json'),
            max_retries=0
        )
        manager.set_bundled_endpoints([{'path': '/bundled'}])

        with pytest.raises(EndpointLoadError):
            await manager.load_endpoints()

    @pytest.mark.asyncio
    async def test_unusable_bundled_catalog_reports_error(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager(
            use_dynamic_endpoints=False,
            endpoints_file_path=str(tmp_path / 'missing.json'),
            max_retries=0
        )
        manager.set_bundled_endpoints("not a catalog")

        with pytest.raises(EndpointFormatError) as exc_info:
            await manager.load_endpoints()

        errors = recorder.payloads('endpoints:error')
        assert len(errors) == 1
        assert errors[0]['source'] == 'fallback'
        assert errors[0]['error'] is exc_info.value
        assert recorder.payloads('endpoints:loaded') == []
        assert not manager.is_loaded()

    @pytest.mark.asyncio
    async def test_malformed_static_file_is_retried(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        path = tmp_path / 'endpoints.json'
        path.write_text('{broken', encoding='utf-8')
        manager = make_manager(use_dynamic_endpoints=False, endpoints_file_path=str(path), max_retries=1)

        with pytest.raises(EndpointLoadError):
            await manager.load_endpoints()

        assert len(recorder.payloads('endpoints:retry')) == 1

    @pytest.mark.asyncio
    async def test_missing_static_path_fails_fast(self, make_manager):
        manager = make_manager(use_dynamic_endpoints=False, endpoints_file_path='')

        with pytest.raises(ValueError):
            await manager.load_endpoints()

    @pytest.mark.asyncio
    async def test_transient_http_failure_recovers(self, make_manager, record_events):
        recorder = record_events(*ENDPOINT_TOPICS)
        hits = []

        async def static_handler(request):
            hits.append(request.path)
            if len(hits) < 3:
                return web.json_response({'message': 'unavailable'}, status=503)
            return web.json_response([{'path': '/recovered'}])

        app = web.Application()
        app.router.add_get('/data/endpoints.json', static_handler)

        async with TestServer(app) as server:
            manager = make_manager(
                base_url=str(server.make_url('/')),
                use_dynamic_endpoints=False,
                endpoints_file_path='/data/endpoints.json',
                max_retries=3
            )
            try:
                endpoints = await manager.load_endpoints()
            finally:
                await manager.close()

        assert len(hits) == 3
        assert [r['retry_count'] for r in recorder.payloads('endpoints:retry')] == [1, 2]
        assert recorder.payloads('endpoints:loaded')[0]['source'] == 'static'
        assert endpoints[0].path == '/recovered'


class TestDynamicLoading:
    """Test the dynamic tier and its fall-through policy"""

    @staticmethod
    def backend(dynamic_status=200, dynamic_payload=None, static_payload=None):
        """Application with a dynamic listing and a static catalog"""
        state = {'dynamic_hits': 0, 'static_hits': 0, 'headers': None}

        async def dynamic_handler(request):
            state['dynamic_hits'] += 1
            state['headers'] = request.headers
            if dynamic_status != 200:
                return web.json_response({'message': 'nope'}, status=dynamic_status)
            return web.json_response(dynamic_payload or {'endpoints': [{'path': '/dynamic'}]})

        async def static_handler(request):
            state['static_hits'] += 1
            return web.json_response(static_payload or {'endpoints': [{'path': '/static'}]})

        app = web.Application()
        app.router.add_get('/api/v1/api-tester/endpoints', dynamic_handler)
        app.router.add_get('/data/endpoints.json', static_handler)
        return app, state

    @pytest.mark.asyncio
    async def test_dynamic_success_sends_credentials(self, make_manager, record_events, storage):
        recorder = record_events(*ENDPOINT_TOPICS)
        storage.set_item('auth_token', 'token-123')
        storage.set_item('api_key', 'key-456')
        app, state = self.backend()

        async with TestServer(app) as server:
            manager = make_manager(base_url=str(server.make_url('/')), endpoints_file_path='/data/endpoints.json')
            try:
                endpoints = await manager.load_endpoints()
            finally:
                await manager.close()

        assert [e.path for e in endpoints] == ['/dynamic']
        assert recorder.payloads('endpoints:loaded')[0]['source'] == 'dynamic'
        assert state['static_hits'] == 0

        headers = state['headers']
        assert headers['Authorization'] == 'Bearer token-123'
        assert headers['api-key'] == 'key-456'
        assert set(headers.getall('X-Api-Key')) == {'key-456'}

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', [401, 403])
    async def test_auth_failure_falls_through_without_retry(self, make_manager, record_events, status):
        recorder = record_events(*ENDPOINT_TOPICS)
        app, state = self.backend(dynamic_status=status)

        async with TestServer(app) as server:
            manager = make_manager(
                base_url=str(server.make_url('/')),
                endpoints_file_path='/data/endpoints.json',
                max_retries=3
            )
            try:
                endpoints = await manager.load_endpoints()
            finally:
                await manager.close()

        assert state['dynamic_hits'] == 1
        assert state['static_hits'] == 1
        assert recorder.payloads('endpoints:retry') == []
        assert [e.path for e in endpoints] == ['/static']

        dynamic_error = recorder.payloads('endpoints:error')[0]
        assert dynamic_error['source'] == 'dynamic'
        assert isinstance(dynamic_error['error'], AuthenticationRequiredError)
        assert dynamic_error['error'].status == status

    @pytest.mark.asyncio
    async def test_server_error_falls_through_to_static(self, make_manager, record_events):
        recorder = record_events(*ENDPOINT_TOPICS)
        app, state = self.backend(dynamic_status=500)

        async with TestServer(app) as server:
            manager = make_manager(base_url=str(server.make_url('/')), endpoints_file_path='/data/endpoints.json')
            try:
                await manager.load_endpoints()
            finally:
                await manager.close()

        assert state['dynamic_hits'] == 1
        assert recorder.payloads('endpoints:loaded')[0]['source'] == 'static'
        assert not isinstance(recorder.payloads('endpoints:error')[0]['error'], AuthenticationRequiredError)

    @pytest.mark.asyncio
    async def test_no_base_url_falls_through_to_local_file(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        path = write_catalog(tmp_path / 'endpoints.json', [{'path': '/local'}])
        manager = make_manager(endpoints_file_path=path)

        endpoints = await manager.load_endpoints()

        assert [e.path for e in endpoints] == ['/local']
        assert recorder.payloads('endpoints:error')[0]['source'] == 'dynamic'
        assert [p['type'] for p in recorder.payloads('endpoints:loading')] == ['dynamic', 'static']

    @pytest.mark.asyncio
    async def test_load_dynamic_directly_raises(self, make_manager):
        app, _ = self.backend(dynamic_status=401)

        async with TestServer(app) as server:
            manager = make_manager(base_url=str(server.make_url('/')))
            try:
                with pytest.raises(AuthenticationRequiredError):
                    await manager.load_dynamic_endpoints()
            finally:
                await manager.close()

    def test_auth_headers_without_credentials(self, make_manager):
        assert make_manager().get_auth_headers() == {'Accept': 'application/json'}


class TestQueries:
    """Test lookups and search"""

    @pytest.fixture
    def manager(self, make_manager):
        manager = make_manager()
        manager.process_endpoints({
            'Users': [
                {'id': 'users-list', 'name': 'List Users', 'path': '/api/users', 'tags': ['Users', 'read']},
                {'id': 'users-create', 'name': 'Create User', 'path': '/api/users', 'method': 'POST',
                 'description': 'Creates an account', 'tags': ['write']},
            ],
            'System': [
                {'id': 'health', 'name': 'Health', 'path': '/api/health', 'tags': ['system']},
            ]
        })
        return manager

    def test_lookups(self, manager):
        assert manager.get_endpoint_by_id('health').name == 'Health'
        assert manager.get_endpoint_by_id('missing') is None
        assert manager.get_endpoint_by_path_and_method('/api/users', 'post').id == 'users-create'
        assert manager.get_endpoint_by_path_and_method('/api/users', None) is None
        assert manager.get_endpoint_count() == 3

    def test_search_is_case_insensitive_substring(self, manager):
        assert [e.id for e in manager.search_endpoints('USER')] == ['users-list', 'users-create']

    def test_search_scans_tags_element_wise(self, manager):
        assert [e.id for e in manager.search_endpoints('write', fields=['tags'])] == ['users-create']

    def test_search_exact_match(self, manager):
        assert [e.id for e in manager.search_endpoints('read', fields=['tags'], exact_match=True)] == ['users-list']
        assert manager.search_endpoints('rea', fields=['tags'], exact_match=True) == []

    def test_search_case_sensitive(self, manager):
        assert manager.search_endpoints('users', fields=['tags'], case_sensitive=True) == []
        assert len(manager.search_endpoints('Users', fields=['tags'], case_sensitive=True)) == 1

    def test_search_accepts_wire_field_names(self, manager):
        manager.add_custom_endpoint({'name': 'Secure', 'path': '/secure', 'requiresAuth': True})
        results = manager.search_endpoints('true', fields=['requiresAuth'])

        assert [e.name for e in results] == ['Secure']

    def test_empty_query_returns_everything(self, manager):
        assert len(manager.search_endpoints('')) == 3

    def test_returned_lists_are_copies(self, manager):
        manager.get_endpoints().clear()
        manager.get_endpoints_by_category('Users').clear()

        assert manager.get_endpoint_count() == 3
        assert len(manager.get_endpoints_by_category('Users')) == 2


class TestCustomEndpoints:
    """Test runtime customisation"""

    def test_add_custom_endpoint(self, make_manager, record_events):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager()

        endpoint = manager.add_custom_endpoint({'name': 'Ping', 'url': 'https://example.com/ping'})

        assert endpoint.is_custom
        assert endpoint.category == 'Custom'
        assert endpoint.path == 'https://example.com/ping'
        assert endpoint.id.startswith('custom-endpoint-')
        assert manager.get_categories() == ['Custom']
        assert recorder.payloads('endpoints:custom-added') == [{'endpoint': endpoint}]

    def test_custom_ids_are_unique(self, make_manager):
        manager = make_manager()
        first = manager.add_custom_endpoint({'name': 'A', 'path': '/a'})
        second = manager.add_custom_endpoint({'name': 'B', 'path': '/b'})

        assert first.id != second.id

    @pytest.mark.parametrize('data', [
        {'path': '/no-name'},
        {'name': 'No path'},
    ])
    def test_invalid_custom_endpoint(self, make_manager, data):
        with pytest.raises(ValueError):
            make_manager().add_custom_endpoint(data)

    def test_remove_custom_endpoint(self, make_manager, record_events):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager()
        manager.process_endpoints([{'id': 'loaded', 'path': '/loaded'}])
        endpoint = manager.add_custom_endpoint({'name': 'Mine', 'path': '/mine'})

        assert manager.remove_custom_endpoint('loaded') is False
        assert manager.remove_custom_endpoint(endpoint.id) is True
        assert manager.remove_custom_endpoint(endpoint.id) is False

        assert 'Custom' not in manager.get_categories()
        assert manager.get_endpoint_count() == 1
        assert recorder.payloads('endpoints:custom-removed') == [{'endpoint': endpoint}]

    def test_set_dynamic_endpoints_path(self, make_manager, record_events):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager()

        manager.set_dynamic_endpoints_path('/api/v2/endpoints')

        assert manager.get_dynamic_endpoints_path() == '/api/v2/endpoints'
        assert recorder.payloads('endpoints:config-changed') == [
            {'property': 'dynamic_endpoints_path', 'value': '/api/v2/endpoints'}
        ]

        with pytest.raises(ValueError):
            manager.set_dynamic_endpoints_path('')


class TestRefresh:
    """Test refresh events"""

    @pytest.mark.asyncio
    async def test_refresh_success(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        path = write_catalog(tmp_path / 'endpoints.json', [{'path': '/a'}])
        manager = make_manager(use_dynamic_endpoints=False, endpoints_file_path=path)

        await manager.refresh_endpoints()

        topics = recorder.topics()
        assert topics[0] == 'endpoints:refreshing'
        assert topics[-1] == 'endpoints:refreshed'
        assert len(recorder.payloads('endpoints:refreshed')[0]['endpoints']) == 1

    @pytest.mark.asyncio
    async def test_refresh_failure(self, make_manager, record_events, tmp_path):
        recorder = record_events(*ENDPOINT_TOPICS)
        manager = make_manager(
            use_dynamic_endpoints=False,
            endpoints_file_path=str(tmp_path / 'missing.json'),
            max_retries=0
        )

        with pytest.raises(EndpointLoadError):
            await manager.refresh_endpoints()

        assert len(recorder.payloads('endpoints:refresh-error')) == 1
        assert recorder.payloads('endpoints:refreshed') == []
