"""
Stubtap Mock Server

FastAPI-based HTTP mock server that serves responses from mock definitions.

Features:
- Mocks loaded from JSON/YAML files or built in code
- Request matching on method, path placeholders, query, headers and body
- Per-mock response delays
- Hit counting and assertions
- Admin API for runtime mock registration, metrics and hit reports
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .config import MockConfig
from .entry import Mock
from .handler import MockHandler, MockMetrics, MockValidationError, PreResponseHook
from .loader import MockLoader
from .matcher import HTTP_METHODS, IncomingRequest

# Name of the catch-all route parameter, not a mock path parameter
CATCH_ALL_PARAM = "mock_path"


class MockServer:
    """
    FastAPI-based mock server.

    Example:
        # Load mocks and start server
        server = MockServer(mock_paths=['tests/mocks'])
        server.start(host='0.0.0.0', port=8080)

        # In a test, serve in the background
        server = MockServer(mocks=[Mock.new('GET', '/health').with_response_status(200)])
        server.start_background()
        httpx.get(server.url + '/health')
        server.stop()
    """

    def __init__(
        self,
        mocks: Iterable[Mock] = (),
        mock_paths: Sequence[str] = (),
        config: Optional[MockConfig] = None,
        pre_response_hooks: Iterable[PreResponseHook] = (),
        extra_logger: Optional[logging.Logger] = None
    ):
        """
        Initialize mock server.

        Args:
            mocks: Mocks built in code (registered before file mocks)
            mock_paths: Mock files, directories or glob patterns
            config: Optional MockConfig for server behavior
            pre_response_hooks: Hooks run before each matched response
            extra_logger: Optional additional logger for match events

        Raises:
            MockLoadError: If mock files cannot be loaded
            MockValidationError: If no mocks are defined or any mock is invalid
        """
        self.config = config or MockConfig()

        self.logger = logging.getLogger("stubtap.mock")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper()))

        all_mocks = list(mocks)
        if mock_paths:
            all_mocks.extend(MockLoader(*mock_paths).load())

        self.handler = MockHandler(
            all_mocks,
            config=self.config,
            pre_response_hooks=pre_response_hooks,
            extra_logger=extra_logger
        )
        self.handler.validate()

        self.app = self._create_app()

        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with routes."""
        app = FastAPI(
            title="Stubtap Mock Server",
            description="Mock HTTP server serving responses from mock definitions",
            version="1.0.0"
        )

        if self.config.admin_enabled:
            @app.get(f"{self.config.admin_prefix}/metrics")
            async def get_metrics():
                """Get dispatch metrics."""
                return JSONResponse(content=self.handler.metrics.to_dict())

            @app.post(f"{self.config.admin_prefix}/reset")
            async def reset_metrics():
                """Reset metrics."""
                self.handler.metrics = MockMetrics()
                return JSONResponse(content={'status': 'reset'})

            @app.get(f"{self.config.admin_prefix}/mocks")
            async def list_mocks():
                """List registered mocks in priority order."""
                mocks = [
                    {
                        'name': m.name,
                        'method': m.request.method,
                        'path': m.request.path,
                        'status': m.response.status,
                        'source': m.source,
                        'partial_match': m.request.partial_match
                    }
                    for m in self.handler.mocks
                ]
                return JSONResponse(content={'total': len(mocks), 'mocks': mocks})

            @app.post(f"{self.config.admin_prefix}/mocks")
            async def register_mocks(request: Request):
                """
                Register mocks at runtime.

                POST body is one mock definition or a list of them, in the
                mock file format. The whole batch is rejected on any problem.
                """
                try:
                    body = await request.json()
                except ValueError as e:
                    return JSONResponse(content={'error': f'Invalid JSON: {e}'}, status_code=400)

                definitions = body if isinstance(body, list) else [body]
                try:
                    new_mocks = [Mock.from_dict(d, source='admin') for d in definitions]
                    self.handler.register_mocks(*new_mocks)
                except MockValidationError as e:
                    return JSONResponse(content={'error': 'Invalid mocks', 'errors': e.errors}, status_code=400)
                except (TypeError, ValueError) as e:
                    return JSONResponse(content={'error': str(e)}, status_code=400)

                return JSONResponse(
                    content={'status': 'registered', 'registered': len(new_mocks), 'total': len(self.handler.mocks)},
                    status_code=201
                )

            @app.get(f"{self.config.admin_prefix}/hits")
            async def get_hits(test_id: Optional[str] = None):
                """Get expected versus actual hits of mocks with assertion enabled."""
                reports = self.handler.hit_reports(test_id)
                return JSONResponse(content={
                    'test_id': test_id or self.config.test_id,
                    'hits': [
                        {'name': r.name, 'expected': r.expected, 'actual': r.actual, 'ok': r.ok}
                        for r in reports
                    ]
                })

        # Main catch-all route for mocking
        @app.api_route(f"/{{{CATCH_ALL_PARAM}:path}}", methods=list(HTTP_METHODS))
        async def mock_request(request: Request):
            """Handle incoming requests and serve mock responses."""
            return await self._handle_request(request)

        return app

    async def _handle_request(self, request: Request) -> Response:
        """
        Handle incoming request and serve mock response.

        Args:
            request: FastAPI Request object

        Returns:
            Response written by the matched mock, or a 400/404 status
        """
        start_time = time.time()

        incoming = await IncomingRequest.from_starlette(request, ignore_path_params=(CATCH_ALL_PARAM,))
        self.logger.debug(f"Incoming: {incoming.method} {incoming.url}")

        outgoing = await self.handler.dispatch(incoming)

        elapsed_ms = (time.time() - start_time) * 1000
        self.logger.debug(f"Response: {outgoing.status_code} ({elapsed_ms:.1f}ms)")

        return outgoing.to_starlette()

    def register_mocks(self, *mocks: Mock) -> None:
        """Append mocks to the running server. See MockHandler.register_mocks."""
        self.handler.register_mocks(*mocks)

    def assert_hits(self, test_id: Optional[str] = None) -> None:
        """Assert expected hits for every mock. See MockHandler.assert_all."""
        self.handler.assert_all(test_id)

    def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        access_log: bool = True
    ):
        """
        Start the mock server (blocking).

        Args:
            host: Host to bind to (overrides config)
            port: Port to bind to (overrides config)
            access_log: Enable access logging
        """
        actual_host = host or self.config.host
        actual_port = port if port is not None else self.config.port

        self.logger.info(
            f"{self.config.log_header} server starting on {actual_host}:{actual_port} "
            f"with {len(self.handler.mocks)} mocks"
        )

        uvicorn.run(
            self.app,
            host=actual_host,
            port=actual_port,
            log_level=self.config.log_level,
            access_log=access_log
        )

    def start_background(self, host: Optional[str] = None, port: Optional[int] = None, timeout: float = 5.0) -> str:
        """
        Start the mock server on a daemon thread.

        Port 0 picks a free port.

        Args:
            host: Host to bind to (overrides config)
            port: Port to bind to (overrides config)
            timeout: Seconds to wait for the server to accept connections

        Returns:
            Base URL of the running server

        Raises:
            RuntimeError: If the server is already running or fails to start
        """
        if self._server is not None:
            raise RuntimeError("Mock server is already running")

        uvicorn_config = uvicorn.Config(
            self.app,
            host=host or self.config.host,
            port=port if port is not None else self.config.port,
            log_level=self.config.log_level,
            access_log=False
        )
        self._server = uvicorn.Server(uvicorn_config)
        self._thread = threading.Thread(target=self._server.run, daemon=True)
        self._thread.start()

        deadline = time.time() + timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.time() > deadline:
                self.stop()
                raise RuntimeError("Mock server failed to start")
            time.sleep(0.01)

        self.logger.info(f"{self.config.log_header} server started at {self.url}")
        return self.url

    def stop(self, timeout: float = 5.0) -> None:
        """Stop a server started with start_background()."""
        if self._server is None:
            return

        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=timeout)

        self._server = None
        self._thread = None
        self.logger.info(f"{self.config.log_header} server stopped")

    @property
    def url(self) -> str:
        """Base URL of a server started with start_background()."""
        if self._server is None or not self._server.servers:
            raise RuntimeError("Mock server is not running")

        host, port = self._server.servers[0].sockets[0].getsockname()[:2]
        return f"http://{host}:{port}"

    def get_app(self) -> FastAPI:
        """
        Get the FastAPI app instance for testing or custom deployment.

        Returns:
            FastAPI application instance
        """
        return self.app


def create_mock_server(
    mock_paths: Sequence[str] = (),
    mocks: Iterable[Mock] = (),
    host: str = "127.0.0.1",
    port: int = 8080,
    disable_partial_match: bool = False,
    mock_info_header: Optional[str] = None,
    log_disabled: bool = False
) -> MockServer:
    """
    Convenience function to create and configure a mock server.

    Args:
        mock_paths: Mock files, directories or glob patterns
        mocks: Mocks built in code
        host: Host to bind to
        port: Port to bind to
        disable_partial_match: Treat every non-full match as no match
        mock_info_header: Header prefix for matched mock name/path headers
        log_disabled: Silence handler match logs

    Returns:
        Configured MockServer instance

    Example:
        server = create_mock_server(['tests/mocks'], port=8080, mock_info_header='X-Mock')
        server.start()
    """
    config = MockConfig(
        host=host,
        port=port,
        disable_partial_match=disable_partial_match,
        mock_info_header=mock_info_header,
        log_disabled=log_disabled
    )

    return MockServer(mocks=mocks, mock_paths=mock_paths, config=config)


def setup_server(
    *mocks: Mock,
    paths: Sequence[str] = (),
    **config: Any
) -> Tuple[MockServer, Callable[[Optional[str]], None]]:
    """
    Start a background mock server for a test.

    Args:
        mocks: Mocks built in code
        paths: Mock files, directories or glob patterns
        config: MockConfig fields; port defaults to 0 (any free port)

    Returns:
        Tuple of (running server, assertion callable); call the assertion
        callable at the end of the test, then server.stop()

    Example:
        server, assert_hits = setup_server(Mock.new('GET', '/health').with_response_status(200))
        try:
            httpx.get(server.url + '/health')
            assert_hits()
        finally:
            server.stop()
    """
    config.setdefault('port', 0)
    server = MockServer(mocks=mocks, mock_paths=paths, config=MockConfig.from_dict(config))
    server.start_background()

    def assert_hits(test_id: Optional[str] = None) -> None:
        server.assert_hits(test_id)

    return server, assert_hits
