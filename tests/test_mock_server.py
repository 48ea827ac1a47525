"""
Tests for Stubtap Mock Server

Tests the FastAPI-based mock server including:
- Server initialization and fail-fast validation
- Request handling through the catch-all route
- Admin API endpoints
- Background serving and setup_server
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from stubtap.mock.config import MockConfig
from stubtap.mock.entry import Mock
from stubtap.mock.handler import MockValidationError
from stubtap.mock.loader import MockLoadError
from stubtap.mock.server import MockServer, create_mock_server, setup_server


@pytest.fixture
def sample_mocks():
    """Mocks built in code."""
    return [
        Mock.new('GET', '/health').with_name('health').with_response_status(200).with_response_body('OK'),
        Mock.new('GET', '/users/{id}')
            .with_name('get_user')
            .with_path_param('id', '123')
            .with_response_status(200)
            .with_response_body({'id': 123, 'name': 'John Doe'})
            .with_assertion(True, 1),
        Mock.new('POST', '/orders')
            .with_name('create_order')
            .with_header('Api-Key', 'secret')
            .with_body({'item': 'book', 'qty': 1})
            .with_response_status(201)
            .with_response_header('Location', '/orders/1'),
    ]


@pytest.fixture
def client(sample_mocks):
    """Test client for a server with the sample mocks."""
    server = MockServer(mocks=sample_mocks, config=MockConfig(mock_info_header='X-Mock'))
    return TestClient(server.get_app())


class TestMockServerInit:
    """Test MockServer setup."""

    def test_no_mocks_fails_fast(self):
        """Test a server without mocks is rejected."""
        with pytest.raises(MockValidationError):
            MockServer()

    def test_invalid_mocks_listed(self):
        """Test every invalid mock is reported."""
        with pytest.raises(MockValidationError) as exc_info:
            MockServer(mocks=[
                Mock.new('GET', '/a').with_name('a'),
                Mock.new('BREW', '/b').with_name('b').with_response_status(418)
            ])

        assert len(exc_info.value.errors) == 2

    def test_load_from_paths(self, tmp_path):
        """Test mocks are loaded from files after code mocks."""
        (tmp_path / 'ping.json').write_text(json.dumps({
            'request': {'method': 'GET', 'path': '/ping'},
            'response': {'status': 200, 'body': 'pong'}
        }), encoding='utf-8')
        code_mock = Mock.new('GET', '/ping').with_response_status(200).with_response_body('code')

        server = MockServer(mocks=[code_mock], mock_paths=[str(tmp_path)])

        assert [m.name for m in server.handler.mocks] == ['', 'ping']
        assert TestClient(server.get_app()).get('/ping').text == 'code'

    def test_broken_file_fails(self, tmp_path):
        """Test unreadable mock files fail setup."""
        (tmp_path / 'broken.yaml').write_text('', encoding='utf-8')

        with pytest.raises(MockLoadError):
            MockServer(mock_paths=[str(tmp_path)])

    def test_create_mock_server(self, sample_mocks):
        """Test the convenience constructor applies options."""
        server = create_mock_server(mocks=sample_mocks, port=9090, disable_partial_match=True)

        assert server.config.port == 9090
        assert server.config.disable_partial_match is True


class TestMockServerRequests:
    """Test serving mock responses."""

    def test_exact_match(self, client):
        """Test GET /health -> 200 OK."""
        response = client.get('/health')

        assert response.status_code == 200
        assert response.text == 'OK'

    def test_json_response(self, client):
        """Test structured bodies are served as JSON."""
        response = client.get('/users/123')

        assert response.status_code == 200
        assert response.headers['content-type'] == 'application/json'
        assert response.json() == {'id': 123, 'name': 'John Doe'}

    def test_mock_info_headers(self, client):
        """Test matched mock name and path headers."""
        response = client.get('/users/123')

        assert response.headers['x-mock-name'] == 'get_user'
        assert response.headers['x-mock-path'] == '/users/{id}'

    def test_body_match_order_independent(self, client):
        """Test JSON request bodies match regardless of key order."""
        response = client.post(
            '/orders',
            content='{"qty": 1, "item": "book"}',
            headers={'Api-Key': 'secret'}
        )

        assert response.status_code == 201
        assert response.headers['location'] == '/orders/1'

    def test_partial_candidate(self, client):
        """Test a wrong header gives 400."""
        response = client.post('/orders', content='{"item": "book", "qty": 1}', headers={'Api-Key': 'nope'})

        assert response.status_code == 400

    def test_path_param_mismatch(self, client):
        """Test a differing path param gives 400."""
        assert client.get('/users/456').status_code == 400

    def test_not_found(self, client):
        """Test unknown routes give 404 with no body."""
        response = client.delete('/health')

        assert response.status_code == 404
        assert response.content == b''

    def test_query_params_ignored_unless_required(self, client):
        """Test extra query params do not prevent a match."""
        assert client.get('/health?verbose=1').status_code == 200


class TestAdminAPI:
    """Test admin endpoints."""

    def test_metrics(self, client):
        """Test metrics reflect served requests."""
        client.get('/health')
        client.get('/missing')

        metrics = client.get('/__admin__/metrics').json()

        assert metrics['total_requests'] == 2
        assert metrics['matched_requests'] == 1
        assert metrics['unmatched_requests'] == 1

    def test_reset(self, client):
        """Test resetting metrics."""
        client.get('/health')

        assert client.post('/__admin__/reset').json() == {'status': 'reset'}
        assert client.get('/__admin__/metrics').json()['total_requests'] == 0

    def test_list_mocks(self, client):
        """Test listing mocks in priority order."""
        data = client.get('/__admin__/mocks').json()

        assert data['total'] == 3
        assert [m['name'] for m in data['mocks']] == ['health', 'get_user', 'create_order']
        assert data['mocks'][1]['path'] == '/users/{id}'

    def test_register_mock(self, client):
        """Test registering a mock at runtime."""
        response = client.post('/__admin__/mocks', json={
            'name': 'late',
            'request': {'method': 'GET', 'path': '/late'},
            'response': {'status': 202, 'body': 'accepted'}
        })

        assert response.status_code == 201
        assert response.json()['total'] == 4
        assert client.get('/late').text == 'accepted'

    def test_register_invalid_batch(self, client):
        """Test an invalid batch is rejected as a whole."""
        response = client.post('/__admin__/mocks', json=[
            {'name': 'ok', 'request': {'method': 'GET', 'path': '/ok'}, 'response': {'status': 200}},
            {'name': 'bad', 'request': {'method': 'GET'}, 'response': {'status': 200}}
        ])

        assert response.status_code == 400
        assert response.json()['errors'] == ['bad: request.path is required']
        assert client.get('/ok').status_code == 404

    def test_register_invalid_json(self, client):
        """Test a non-JSON body is rejected."""
        response = client.post('/__admin__/mocks', content='not json')

        assert response.status_code == 400

    def test_register_not_a_mapping(self, client):
        """Test non-mapping definitions are rejected."""
        response = client.post('/__admin__/mocks', json=['GET /x'])

        assert response.status_code == 400
        assert 'must be a mapping' in response.json()['error']

    def test_register_malformed_section(self, client):
        """Test a section with the wrong shape is rejected with 400."""
        response = client.post('/__admin__/mocks', json={
            'request': {'method': 'GET', 'path': '/x', 'headers': ['x']},
            'response': {'status': 200}
        })

        assert response.status_code == 400
        assert response.json()['error'] == 'request.headers must be a mapping, got list'

    def test_hits(self, client):
        """Test hit reports for mocks with assertion enabled."""
        client.get('/users/123')

        data = client.get('/__admin__/hits').json()

        assert data['test_id'] == 'default'
        assert data['hits'] == [{'name': 'get_user', 'expected': 1, 'actual': 1, 'ok': True}]

    def test_admin_disabled(self, sample_mocks):
        """Test admin routes fall through to mocks when disabled."""
        server = MockServer(mocks=sample_mocks, config=MockConfig(admin_enabled=False))

        assert TestClient(server.get_app()).get('/__admin__/metrics').status_code == 404


class TestAssertHits:
    """Test hit assertions through the server."""

    def test_assert_hits(self, sample_mocks):
        """Test server.assert_hits reports missing hits."""
        server = MockServer(mocks=sample_mocks)
        client = TestClient(server.get_app())

        with pytest.raises(AssertionError, match='get_user: expected 1 hits, got 0'):
            server.assert_hits()

        client.get('/users/123')
        server.assert_hits()


class TestBackgroundServer:
    """Test serving over a real socket."""

    def test_start_and_stop(self, sample_mocks):
        """Test a background server answers real HTTP requests."""
        server = MockServer(mocks=sample_mocks, config=MockConfig(port=0, log_level='warning'))
        url = server.start_background()
        try:
            assert url == server.url
            response = httpx.get(f"{url}/health")
            assert response.status_code == 200
            assert response.text == 'OK'
        finally:
            server.stop()

        with pytest.raises(RuntimeError):
            server.url

    def test_setup_server(self):
        """Test setup_server returns a running server and an assertion callable."""
        server, assert_hits = setup_server(
            Mock.new('GET', '/ping').with_response_status(200).with_assertion(True, 2),
            log_level='warning'
        )
        try:
            httpx.get(f"{server.url}/ping")
            with pytest.raises(AssertionError):
                assert_hits()

            httpx.get(f"{server.url}/ping")
            assert_hits()
        finally:
            server.stop()
