"""
Stubtap Mock Handler

Holds the ordered mock registry and dispatches every incoming request to the
first mock that accepts it.

Dispatch policy:
- Mocks are evaluated in registration order; the first full match wins
- A partial match is served when the mock accepts partial matches
- Other partial matches are reported as candidates and answered with 400
- Requests no mock matched are answered with 404
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from http import HTTPStatus
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import MockConfig
from .entry import HitReport, MatchedMock, Mock
from .matcher import IncomingRequest, MatchLevel
from .response import OutgoingResponse

PreResponseHook = Callable[[MatchedMock, OutgoingResponse], None]


class MockValidationError(ValueError):
    """Raised when mock definitions are invalid. Lists every problem found."""

    def __init__(self, message: str, errors: List[str]):
        self.errors = list(errors)
        details = '\n'.join(f"  - {error}" for error in self.errors)
        super().__init__(f"{message}:\n{details}" if details else message)


@dataclass
class MockMetrics:
    """Track dispatch outcomes."""

    total_requests: int = 0
    matched_requests: int = 0
    partial_candidates: int = 0
    unmatched_requests: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, level: MatchLevel, served: bool) -> None:
        with self._lock:
            self.total_requests += 1
            if served:
                self.matched_requests += 1
            elif level is MatchLevel.PARTIAL:
                self.partial_candidates += 1
            else:
                self.unmatched_requests += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        with self._lock:
            uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
            return {
                'total_requests': self.total_requests,
                'matched_requests': self.matched_requests,
                'partial_candidates': self.partial_candidates,
                'unmatched_requests': self.unmatched_requests,
                'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
                'uptime_seconds': round(uptime_seconds, 2),
                'start_time': self.start_time
            }


def mock_info_hook(prefix: str) -> PreResponseHook:
    """
    Build a hook adding the matched mock's name and path to the response.

    Args:
        prefix: Header prefix; "Stubtap" yields Stubtap-Name and Stubtap-Path

    Example:
        handler.add_pre_response_hook(mock_info_hook("X-Mock"))
    """
    prefix = prefix.strip('-_.')

    def hook(matched: MatchedMock, outgoing: OutgoingResponse) -> None:
        outgoing.headers[f"{prefix}-Name"] = matched.name
        outgoing.headers[f"{prefix}-Path"] = matched.mock.request.path

    return hook


class MockHandler:
    """
    Mock registry and request dispatcher.

    The registry is an immutable tuple replaced on every registration, so a
    dispatch iterates the snapshot it read when it started and never holds a
    lock while a response is delayed or written. Registrations are serialized
    by a lock and become visible to dispatches that start after they return.

    Example:
        handler = MockHandler([
            Mock.new('GET', '/health').with_response_status(200).with_response_body('OK')
        ])
        handler.validate()

        response = await handler.dispatch(IncomingRequest.build('GET', '/health'))
        assert response.status_code == 200
    """

    def __init__(
        self,
        mocks: Iterable[Mock] = (),
        config: Optional[MockConfig] = None,
        pre_response_hooks: Iterable[PreResponseHook] = (),
        extra_logger: Optional[logging.Logger] = None
    ):
        """
        Initialize mock handler.

        Args:
            mocks: Mock definitions, highest priority first
            config: Optional MockConfig with matching and logging policy
            pre_response_hooks: Callables run on the outgoing response before
                the matched mock writes it
            extra_logger: Optional additional logger receiving structured events
        """
        self.config = config or MockConfig()
        self.logger = logging.getLogger("stubtap.mock")
        self.extra_logger = extra_logger
        self.metrics = MockMetrics()

        self._mocks: Tuple[Mock, ...] = tuple(mocks)
        self._register_lock = threading.Lock()
        self._hooks: List[PreResponseHook] = list(pre_response_hooks)

        if self.config.mock_info_header:
            self._hooks.append(mock_info_hook(self.config.mock_info_header))

        for mock in self._mocks:
            self._log(logging.INFO, f"registered {mock}", mock=str(mock))

    @property
    def mocks(self) -> Tuple[Mock, ...]:
        """Current registry snapshot."""
        return self._mocks

    def add_pre_response_hook(self, hook: PreResponseHook) -> None:
        with self._register_lock:
            self._hooks = self._hooks + [hook]

    def validate(self) -> None:
        """
        Validate the registry before serving.

        Raises:
            MockValidationError: If no mocks are registered or any mock is invalid
        """
        errors = self._validate(self._mocks)
        if errors:
            raise MockValidationError(f"{self.config.log_header} invalid mocks", errors)

    def register_mocks(self, *mocks: Mock) -> None:
        """
        Append mocks to the registry.

        The merged registry is validated as a whole. On failure nothing is
        appended and the registry keeps serving its previous mocks.

        Raises:
            MockValidationError: If the merged registry is invalid
        """
        with self._register_lock:
            merged = self._mocks + tuple(mocks)
            errors = self._validate(merged)
            if errors:
                self._log(logging.WARNING, f"rejected {len(mocks)} mocks", errors=errors)
                raise MockValidationError(f"{self.config.log_header} invalid mocks", errors)

            self._mocks = merged

        for mock in mocks:
            self._log(logging.INFO, f"registered {mock}", mock=str(mock))

    async def dispatch(self, request: IncomingRequest, test_id: Optional[str] = None) -> OutgoingResponse:
        """
        Handle one request.

        Args:
            request: Incoming request
            test_id: Identity hits are counted under (defaults to config.test_id)

        Returns:
            OutgoingResponse written by the matched mock, 400 when only
            non-accepted partial candidates were found, or 404
        """
        test_id = test_id or self.config.test_id
        allow_partial = not self.config.disable_partial_match
        mocks = self._mocks
        hooks = self._hooks
        candidates: List[Tuple[Mock, List[str]]] = []

        for mock in mocks:
            outcome = mock.matches(request, allow_partial)

            if outcome.level is MatchLevel.NONE:
                continue

            if outcome.level is MatchLevel.PARTIAL and not mock.accepts_partial_match():
                candidates.append((mock, outcome.log))
                self._log(
                    logging.INFO,
                    f"request did not match {mock}:\n" + '\n'.join(outcome.log),
                    mock=str(mock),
                    log='\n'.join(outcome.log)
                )
                continue

            verb = "matched" if outcome.level is MatchLevel.FULL else "partially matched"
            self._log(logging.INFO, f"request {verb} {mock}", mock=str(mock))

            matched = MatchedMock(mock=mock, outcome=outcome)
            outgoing = OutgoingResponse()
            try:
                for hook in hooks:
                    hook(matched, outgoing)

                await mock.respond(matched, request, outgoing)
            except Exception as e:
                self.logger.exception(f"{self.config.log_header} response failed for {mock}")
                outgoing.write_header(HTTPStatus.INTERNAL_SERVER_ERROR)
                outgoing.write(str(e).encode('utf-8'))

            mock.register_hit(test_id)
            self.metrics.record(outcome.level, served=True)
            return outgoing

        outgoing = OutgoingResponse()

        if candidates:
            self._log(logging.WARNING, f"mock candidates for request {request.method} {request.url or request.path}")
            for mock, log in candidates:
                self._log(logging.WARNING, f"partial match details: {mock}", mock=str(mock), log='\n'.join(log))

            outgoing.write_header(HTTPStatus.BAD_REQUEST)
            self.metrics.record(MatchLevel.PARTIAL, served=False)
            return outgoing

        self._log(logging.WARNING, f"request not matched {request.method} {request.url or request.path}")
        outgoing.write_header(HTTPStatus.NOT_FOUND)
        self.metrics.record(MatchLevel.NONE, served=False)
        return outgoing

    def hit_reports(self, test_id: Optional[str] = None) -> List[HitReport]:
        """Hit reports of every mock with assertion enabled."""
        test_id = test_id or self.config.test_id
        reports = []
        for mock in self._mocks:
            report = mock.hit_report(test_id)
            if report is not None:
                reports.append(report)
        return reports

    def assert_all(self, test_id: Optional[str] = None) -> None:
        """
        Assert expected against actual hits for every mock.

        Raises:
            AssertionError: Listing every mock with a hit count mismatch
        """
        failures = [report for report in self.hit_reports(test_id) if not report.ok]
        if failures:
            raise AssertionError(
                f"{self.config.log_header} hit assertions failed:\n"
                + '\n'.join(f"  - {failure}" for failure in failures)
            )

    def _validate(self, mocks: Tuple[Mock, ...]) -> List[str]:
        if not mocks:
            return ["no mocks registered"]

        errors = []
        for mock in mocks:
            errors.extend(mock.validate())
        return errors

    def _log(self, level: int, message: str, **fields: Any) -> None:
        if not self.config.log_disabled:
            self.logger.log(level, f"{self.config.log_header} {message}")

        # The extra logger is not affected by log_disabled
        if self.extra_logger is not None:
            self.extra_logger.log(level, f"{self.config.log_header} {message}", extra={'stubtap': fields})
