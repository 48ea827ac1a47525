"""
Stubtap Mock Entry

A mock pairs request criteria with a response definition, plus hit-count
bookkeeping used to assert how many times a test exercised it.
"""

from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .body import BodyValue
from .matcher import IncomingRequest, MatchLevel, MatchOutcome, RequestCriteria, RequestMatcher
from .response import OutgoingResponse, ResponseDefinition, ResponseWriter
from ..common import int_field, StringParts

DEFAULT_TEST_ID = "default"

CustomHandler = Callable[
    ['MatchedMock', IncomingRequest, OutgoingResponse],
    Union[None, Awaitable[None]]
]

_matcher = RequestMatcher()
_writer = ResponseWriter()


@dataclass
class HitReport:
    """Expected versus actual hits of one mock for one test."""

    name: str
    expected: int
    actual: int

    @property
    def ok(self) -> bool:
        return self.expected == self.actual

    @property
    def discrepancy(self) -> int:
        return abs(self.expected - self.actual)

    def __str__(self) -> str:
        return f"{self.name}: expected {self.expected} hits, got {self.actual}"


@dataclass(eq=False)
class Mock:
    """
    A complete mock definition.

    Example:
        mock = Mock.new('GET', '/users/{id}') \\
            .with_path_param('id', '123') \\
            .with_response_status(200) \\
            .with_response_body({'id': 123})
    """

    name: str = ''
    request: RequestCriteria = field(default_factory=RequestCriteria)
    response: ResponseDefinition = field(default_factory=ResponseDefinition)
    assertion_enabled: bool = False
    expected_hits: int = 0
    source: str = ''
    custom_handler: Optional[CustomHandler] = None

    _hits: Dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _hits_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def new(cls, method: str, path: str) -> Mock:
        """Create a mock for method and path, to be configured with the with_* builders."""
        return cls(request=RequestCriteria(method=method, path=path))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = '') -> Mock:
        """
        Create a mock from a decoded mock file.

        Expected layout:
            name: get_user
            request: {method: GET, path: /users/{id}, ...}
            response: {status: 200, body: ..., headers: ..., delay_ms: 0}
            assertion: true
            expected_hits: 1
        """
        if not isinstance(data, dict):
            raise ValueError(f"mock definition must be a mapping, got {type(data).__name__}")

        return cls(
            name=str(data.get('name') or ''),
            request=RequestCriteria.from_dict(data.get('request')),
            response=ResponseDefinition.from_dict(data.get('response')),
            assertion_enabled=bool(data.get('assertion', False)),
            expected_hits=int_field(data, 'expected_hits', 'expected_hits'),
            source=source
        )

    # Builders

    def with_name(self, name: str) -> Mock:
        self.name = name
        return self

    def with_query_param(self, key: str, value: str) -> Mock:
        self.request.query_params[key] = value
        return self

    def with_path_param(self, key: str, value: str) -> Mock:
        self.request.path_params[key] = value
        return self

    def with_header(self, key: str, value: str) -> Mock:
        self.request.headers[key] = value
        return self

    def with_body(self, body: Any) -> Mock:
        self.request.body = BodyValue.of(body)
        return self

    def with_partial_match(self, enabled: bool = True) -> Mock:
        self.request.partial_match = enabled
        return self

    def with_response_status(self, status: int) -> Mock:
        self.response.status = status
        return self

    def with_response_body(self, body: Any) -> Mock:
        self.response.body = BodyValue.of(body)
        return self

    def with_response_header(self, key: str, value: str) -> Mock:
        self.response.headers[key] = value
        return self

    def with_response_delay(self, delay_ms: int) -> Mock:
        self.response.delay_ms = delay_ms
        return self

    def with_assertion(self, enabled: bool, expected_hits: int) -> Mock:
        self.assertion_enabled = enabled
        self.expected_hits = expected_hits
        return self

    def with_custom_handler(self, handler: CustomHandler) -> Mock:
        """
        Replace the configured response with a custom handler.

        The handler receives the MatchedMock context (to read captured path,
        query and header values), the request and the outgoing response. It
        may be a plain function or a coroutine function.
        """
        self.custom_handler = handler
        return self

    # Matching and responding

    def validate(self) -> List[str]:
        """
        Validate request criteria and response definition.

        Returns:
            List of problems prefixed with the mock name (empty if valid)
        """
        problems = self.request.validate() + self.response.validate()
        if self.expected_hits < 0:
            problems.append(f"expected_hits {self.expected_hits} must not be negative")

        label = self.name or self.source or '<unnamed>'
        return [f"{label}: {problem}" for problem in problems]

    def matches(self, request: IncomingRequest, allow_partial: bool = True) -> MatchOutcome:
        return _matcher.match(self.request, request, allow_partial)

    def accepts_partial_match(self) -> bool:
        return self.request.partial_match

    async def respond(self, matched: MatchedMock, request: IncomingRequest, outgoing: OutgoingResponse) -> None:
        """Write this mock's response, or delegate to its custom handler."""
        if self.custom_handler is None:
            await _writer.write(self.response, outgoing)
            return

        result = self.custom_handler(matched, request, outgoing)
        if inspect.isawaitable(result):
            await result

    # Hit bookkeeping

    def register_hit(self, test_id: str = DEFAULT_TEST_ID) -> None:
        """Record a hit for test_id. No-op unless assertion is enabled."""
        if not self.assertion_enabled:
            return

        with self._hits_lock:
            self._hits[test_id] = self._hits.get(test_id, 0) + 1

    def hits(self, test_id: str = DEFAULT_TEST_ID) -> int:
        with self._hits_lock:
            return self._hits.get(test_id, 0)

    def hit_report(self, test_id: str = DEFAULT_TEST_ID) -> Optional[HitReport]:
        """Expected versus actual hits, or None when assertion is disabled."""
        if not self.assertion_enabled:
            return None

        return HitReport(name=self.name or str(self), expected=self.expected_hits, actual=self.hits(test_id))

    def assert_hits(self, test_id: str = DEFAULT_TEST_ID) -> None:
        """
        Assert this mock was hit the expected number of times.

        Raises:
            AssertionError: On a hit count mismatch
        """
        report = self.hit_report(test_id)
        if report is not None and not report.ok:
            raise AssertionError(str(report))

    def __str__(self) -> str:
        parts = StringParts() \
            .set('name', self.name) \
            .set('from', self.source) \
            .set('req', str(self.request)) \
            .set('resp', str(self.response))
        return "Mock: " + str(parts)


@dataclass
class MatchedMock:
    """
    A mock selected for a request, together with the values captured while
    matching it. Handed to pre-response hooks and custom handlers.
    """

    mock: Mock
    outcome: MatchOutcome

    @property
    def name(self) -> str:
        return self.mock.name

    @property
    def level(self) -> MatchLevel:
        return self.outcome.level

    def get_path_value(self, key: str) -> str:
        """Value captured for a {key} path placeholder, or empty string."""
        return self.outcome.path_value(key)

    def get_query_value(self, key: str) -> str:
        """Value of a matched query parameter, or empty string."""
        return self.outcome.query_value(key)

    def get_header_value(self, key: str) -> str:
        """Value of a matched request header (case-insensitive), or empty string."""
        return self.outcome.header_value(key)

    def logs(self) -> List[str]:
        return list(self.outcome.log)
