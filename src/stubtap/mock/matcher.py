"""
Stubtap Request Matcher

Matching engine deciding how completely a mock's request criteria match an
incoming request.

Features:
- Exact method matching
- Path matching with {name} placeholders and value capture
- Query parameter, path parameter and header matching
- Body matching (text, raw bytes, or key-order independent JSON)
- Three-level outcome (none, partial, full) with a diagnostic match log
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse, parse_qs

from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect, Request

from .body import BodyValue
from ..common import default_value, describe_mismatch, mapping_section, StringParts, MATCH_MARK, NO_MATCH_MARK

HTTP_METHODS = ('GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'HEAD', 'OPTIONS')

# Namespaces for values captured during matching
PATH_PARAM_PREFIX = 'path:'
QUERY_PARAM_PREFIX = 'query:'
HEADER_PREFIX = 'header:'


class MatchLevel(IntEnum):
    """How completely a mock's criteria matched a request."""

    NONE = 0
    PARTIAL = 1
    FULL = 2


@dataclass
class IncomingRequest:
    """
    Buffered view of one inbound HTTP request.

    The body is read once when the request is built, so every mock can
    compare against it without consuming a stream.
    """

    method: str
    path: str
    query: Dict[str, List[str]] = field(default_factory=dict)
    headers: Headers = field(default_factory=Headers)
    body: bytes = b''
    path_values: Dict[str, str] = field(default_factory=dict)
    body_error: Optional[str] = None
    url: str = ''

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = b'',
        path_values: Optional[Dict[str, str]] = None
    ) -> IncomingRequest:
        """
        Build a request from plain values.

        Args:
            method: HTTP method
            url: Path with optional query string, or an absolute URL
            headers: Request headers
            body: Request body (bytes or str)
            path_values: Values exposed by a router's own path parameters

        Example:
            request = IncomingRequest.build('GET', '/users/123?verbose=1')
        """
        if isinstance(body, str):
            body = body.encode('utf-8')

        parsed = urlparse(url)
        return cls(
            method=method,
            path=parsed.path or '/',
            query=parse_qs(parsed.query, keep_blank_values=True),
            headers=Headers(headers=dict(headers or {})),
            body=bytes(body or b''),
            path_values=dict(path_values or {}),
            url=url
        )

    @classmethod
    async def from_starlette(cls, request: Request, ignore_path_params: tuple = ()) -> IncomingRequest:
        """
        Build a request from a Starlette/FastAPI request.

        A client disconnect while reading the body is recorded in body_error
        instead of being raised, so matching can report it as a body mismatch.

        Args:
            request: Starlette request
            ignore_path_params: Router parameter names that are not mock
                path parameters (e.g. a catch-all route parameter)
        """
        body = b''
        body_error = None
        try:
            body = await request.body()
        except ClientDisconnect as e:
            body_error = f"client disconnected: {e!r}"

        path_values = {
            key: str(value)
            for key, value in request.path_params.items()
            if key not in ignore_path_params
        }

        return cls(
            method=request.method,
            path=request.url.path,
            query=parse_qs(request.url.query, keep_blank_values=True),
            headers=request.headers,
            body=body,
            path_values=path_values,
            body_error=body_error,
            url=str(request.url)
        )

    def query_value(self, key: str) -> str:
        """First value of a query parameter, or empty string."""
        values = self.query.get(key)
        return values[0] if values else ''

    def header_value(self, key: str) -> str:
        """Header value (case-insensitive name), or empty string."""
        return self.headers.get(key, '')

    def path_value(self, key: str) -> str:
        """Router-provided path parameter value, or empty string."""
        return self.path_values.get(key, '')


@dataclass
class RequestCriteria:
    """Matching criteria for an incoming HTTP request."""

    method: str = ''
    path: str = ''
    query_params: Dict[str, str] = field(default_factory=dict)
    path_params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[BodyValue] = None
    partial_match: bool = False

    def __post_init__(self):
        self.body = BodyValue.of(self.body)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RequestCriteria:
        """
        Create criteria from a decoded mock file section.

        Raises:
            ValueError: If the section or one of its maps is not a mapping
        """
        data = mapping_section(data, 'request')
        return cls(
            method=str(data.get('method') or ''),
            path=str(data.get('path') or ''),
            query_params=_string_map(data.get('query_params'), 'request.query_params'),
            path_params=_string_map(data.get('path_params'), 'request.path_params'),
            headers=_string_map(data.get('headers'), 'request.headers'),
            body=data.get('body'),
            partial_match=bool(data.get('partial_match', False))
        )

    @property
    def has_placeholders(self) -> bool:
        return '{' in self.path

    def validate(self) -> List[str]:
        """
        Validate the criteria.

        Returns:
            List of problems (empty if valid)
        """
        problems = []

        if not self.method:
            problems.append("request.method is required")
        elif self.method not in HTTP_METHODS:
            problems.append(
                f"request.method {self.method!r} must be one of {' '.join(HTTP_METHODS)}"
            )

        if not self.path:
            problems.append("request.path is required")

        for key, value in self.headers.items():
            if not key or not value:
                problems.append(f"request.headers entry {key!r} must have a name and a value")

        return problems

    def __str__(self) -> str:
        parts = StringParts() \
            .set('method', self.method) \
            .set('path', self.path) \
            .set('query_params', self.query_params) \
            .set('path_params', self.path_params) \
            .set('headers', self.headers) \
            .set('body', str(self.body) if self.body is not None else None)
        return "Req: " + str(parts)


@dataclass
class MatchOutcome:
    """Result of matching one request against one set of criteria."""

    level: MatchLevel
    captured: Dict[str, str] = field(default_factory=dict)
    log: List[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.level is MatchLevel.FULL

    def path_value(self, key: str) -> str:
        return self.captured.get(PATH_PARAM_PREFIX + key, '')

    def query_value(self, key: str) -> str:
        return self.captured.get(QUERY_PARAM_PREFIX + key, '')

    def header_value(self, key: str) -> str:
        return self.captured.get(HEADER_PREFIX + key.lower(), '')


class RequestMatcher:
    """
    Evaluates request criteria against incoming requests.

    The matcher is stateless: every call builds its own MatchOutcome, so one
    instance can be shared by concurrent requests.

    Example:
        matcher = RequestMatcher()
        outcome = matcher.match(criteria, IncomingRequest.build('GET', '/users/123'))

        if outcome.level is MatchLevel.FULL:
            print(outcome.path_value('id'))
    """

    def match(
        self,
        criteria: RequestCriteria,
        request: IncomingRequest,
        allow_partial: bool = True
    ) -> MatchOutcome:
        """
        Match a request against criteria.

        Method and path decide whether the mock is a candidate at all; a
        mismatch there is always NONE. Query parameters, path parameters,
        headers and body then decide between FULL and PARTIAL.

        Args:
            criteria: Expected request
            request: Incoming request
            allow_partial: When False, a PARTIAL result is reported as NONE

        Returns:
            MatchOutcome with level, captured values and match log
        """
        outcome = MatchOutcome(level=MatchLevel.NONE)

        if criteria.method != request.method:
            outcome.log.append(describe_mismatch('METHOD', criteria.method, request.method))
            return outcome

        if not self._match_path(criteria, request, outcome):
            outcome.log.append(describe_mismatch('PATH', criteria.path, request.path))
            return outcome

        if (self._match_query_params(criteria, request, outcome)
                and self._match_path_params(criteria, request, outcome)
                and self._match_headers(criteria, request, outcome)
                and self._match_body(criteria, request, outcome)):
            outcome.level = MatchLevel.FULL
            outcome.log.append(f"{MATCH_MARK} MATCH")
            return outcome

        outcome.level = MatchLevel.PARTIAL if allow_partial else MatchLevel.NONE
        return outcome

    def _match_path(self, criteria: RequestCriteria, request: IncomingRequest, outcome: MatchOutcome) -> bool:
        """Match the path, capturing {name} placeholder segments."""
        if not criteria.has_placeholders:
            return criteria.path == request.path

        expected_parts = criteria.path.split('/')
        actual_parts = request.path.split('/')
        if len(expected_parts) != len(actual_parts):
            return False

        for expected, actual in zip(expected_parts, actual_parts):
            if expected.startswith('{') and expected.endswith('}'):
                outcome.captured[PATH_PARAM_PREFIX + expected.strip('{}')] = actual
                continue

            if expected != actual:
                return False

        return True

    def _match_query_params(self, criteria: RequestCriteria, request: IncomingRequest, outcome: MatchOutcome) -> bool:
        for key, value in criteria.query_params.items():
            actual = request.query_value(key)
            if actual != value:
                outcome.log.append(describe_mismatch(f'QUERY PARAM [{key}]', value, actual))
                return False

            outcome.captured[QUERY_PARAM_PREFIX + key] = actual

        return True

    def _match_path_params(self, criteria: RequestCriteria, request: IncomingRequest, outcome: MatchOutcome) -> bool:
        for key, value in criteria.path_params.items():
            actual = default_value(request.path_value(key), outcome.path_value(key))
            if actual != value:
                outcome.log.append(describe_mismatch(f'PATH PARAM [{key}]', value, actual))
                return False

        return True

    def _match_headers(self, criteria: RequestCriteria, request: IncomingRequest, outcome: MatchOutcome) -> bool:
        for key, value in criteria.headers.items():
            actual = request.header_value(key)
            if actual != value:
                outcome.log.append(describe_mismatch(f'HEADER [{key}]', value, actual))
                return False

            outcome.captured[HEADER_PREFIX + key.lower()] = actual

        return True

    def _match_body(self, criteria: RequestCriteria, request: IncomingRequest, outcome: MatchOutcome) -> bool:
        if criteria.body is None:
            return True

        if request.body_error:
            outcome.log.append(f"{NO_MATCH_MARK} BODY READ ERROR: {request.body_error}")
            return False

        matched, problem = criteria.body.compare(request.body)
        if not matched:
            outcome.log.append(problem)

        return matched


def _string_map(data: Any, field: str) -> Dict[str, str]:
    """Normalize a decoded mapping to str -> str (YAML may yield numbers)."""
    data = mapping_section(data, field)
    return {str(key): '' if value is None else str(value) for key, value in data.items()}
