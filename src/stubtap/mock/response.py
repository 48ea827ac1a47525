"""
Stubtap Response Writer

Renders a mock's configured response onto a per-request response channel.

Features:
- Text, raw bytes or JSON bodies
- Configured headers with a JSON content-type default
- Per-mock artificial delay that suspends only the request being served
- Server error downgrade when a structured body cannot be serialized
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from starlette.datastructures import MutableHeaders
from starlette.responses import Response

from .body import BodyValue, BodySerializationError
from ..common import int_field, mapping_section, StringParts

JSON_CONTENT_TYPE = 'application/json'

logger = logging.getLogger("stubtap.mock")


@dataclass
class ResponseDefinition:
    """HTTP response returned when a mock matches. Read-only while serving."""

    status: int = 0
    body: Optional[BodyValue] = None
    headers: Dict[str, str] = field(default_factory=dict)
    delay_ms: int = 0

    def __post_init__(self):
        self.body = BodyValue.of(self.body)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ResponseDefinition:
        """
        Create a response definition from a decoded mock file section.

        Raises:
            ValueError: If the section or its headers are not mappings, or
                status/delay_ms are not integers
        """
        data = mapping_section(data, 'response')
        headers = mapping_section(data.get('headers'), 'response.headers')
        return cls(
            status=int_field(data, 'status', 'response.status'),
            body=data.get('body'),
            headers={str(k): str(v) for k, v in headers.items()},
            delay_ms=int_field(data, 'delay_ms', 'response.delay_ms')
        )

    def validate(self) -> List[str]:
        """
        Validate the response definition.

        Returns:
            List of problems (empty if valid)
        """
        problems = []
        if not 100 <= self.status <= 599:
            problems.append(f"response.status {self.status} must be between 100 and 599")
        if self.delay_ms < 0:
            problems.append(f"response.delay_ms {self.delay_ms} must not be negative")
        return problems

    def has_header(self, name: str) -> bool:
        """Check for a configured header (case-insensitive)."""
        return any(key.lower() == name.lower() for key in self.headers)

    def __str__(self) -> str:
        try:
            status = HTTPStatus(self.status).phrase
        except ValueError:
            status = str(self.status)

        parts = StringParts() \
            .set('status', status) \
            .set('body', str(self.body) if self.body is not None else None) \
            .set('headers', self.headers) \
            .set('delay_ms', self.delay_ms)
        return "Resp: " + str(parts)


class OutgoingResponse:
    """
    Response channel for one request.

    Headers may be changed until the status is written; the first
    write_header() call wins, and write() implies 200 when no status was set.
    """

    def __init__(self):
        self.headers = MutableHeaders()
        self.status_code: Optional[int] = None
        self._body = bytearray()

    def write_header(self, status_code: int) -> None:
        if self.status_code is None:
            self.status_code = status_code

    def write(self, data: bytes) -> int:
        if self.status_code is None:
            self.write_header(HTTPStatus.OK)
        self._body.extend(data)
        return len(data)

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    def to_starlette(self) -> Response:
        """Convert to a Starlette response."""
        response = Response(content=self.body, status_code=int(self.status_code or HTTPStatus.OK))
        for key, value in self.headers.items():
            if key.lower() == 'content-length':
                continue
            response.headers.append(key, value)
        return response


class ResponseWriter:
    """
    Writes response definitions onto outgoing responses.

    Example:
        outgoing = OutgoingResponse()
        await ResponseWriter().write(definition, outgoing)
    """

    async def write(self, definition: ResponseDefinition, outgoing: OutgoingResponse) -> None:
        """
        Write a response definition.

        Args:
            definition: Shared response definition (never modified)
            outgoing: Response channel of the current request
        """
        if definition.delay_ms > 0:
            await asyncio.sleep(definition.delay_ms / 1000)

        status_code = definition.status
        headers = dict(definition.headers)
        content = b''

        if definition.body is not None:
            try:
                content = definition.body.encode()
            except BodySerializationError as e:
                logger.warning(f"Failed to serialize response body: {e}")
                content = str(e).encode('utf-8')
                status_code = HTTPStatus.INTERNAL_SERVER_ERROR
            else:
                if definition.body.is_structured and not definition.has_header('Content-Type'):
                    headers['Content-Type'] = JSON_CONTENT_TYPE

        for key, value in headers.items():
            outgoing.headers.append(key, value)

        outgoing.write_header(status_code)

        if content:
            outgoing.write(content)
