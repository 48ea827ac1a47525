"""
Stubtap Body Values

Tagged representation of request/response bodies used by mock definitions.

A body is one of:
- TEXT: a raw string, compared and written as UTF-8 bytes
- BYTES: raw bytes, compared and written as-is
- STRUCTURED: any other JSON-compatible value (dict, list, number, bool),
  compared through a canonical JSON encoding and written as JSON
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from ..common import describe_mismatch, NO_MATCH_MARK


class BodySerializationError(ValueError):
    """Raised when a structured body cannot be encoded as JSON."""


class BodyKind(Enum):
    """Kind of a mock body value."""

    TEXT = "text"
    BYTES = "bytes"
    STRUCTURED = "structured"


def canonical_json(value: Any) -> bytes:
    """
    Encode a structured value in canonical form.

    The value is round-tripped through JSON so that every number becomes a
    float, then re-encoded with sorted keys and compact separators. Two values
    that differ only in key order, whitespace or int/float spelling produce
    identical bytes.

    Raises:
        TypeError, ValueError: If value is not JSON-serializable
    """
    encoded = json.dumps(value, allow_nan=False)
    return canonical_json_bytes(encoded.encode('utf-8'))


def canonical_json_bytes(raw: bytes) -> bytes:
    """
    Canonicalize a JSON document given as bytes.

    Raises:
        ValueError: If raw is not valid UTF-8 JSON
        RecursionError: If raw nests deeper than the decoder allows
    """
    tree = json.loads(raw, parse_int=float)
    return json.dumps(tree, sort_keys=True, separators=(',', ':'), allow_nan=False).encode('utf-8')


@dataclass(frozen=True)
class BodyValue:
    """A body with its kind resolved once at load time."""

    kind: BodyKind
    value: Any

    @classmethod
    def of(cls, value: Any) -> Optional['BodyValue']:
        """
        Classify a raw body value.

        Args:
            value: str, bytes, any JSON-compatible value, an existing
                BodyValue, or None

        Returns:
            BodyValue, or None when value is None
        """
        if value is None:
            return None
        if isinstance(value, BodyValue):
            return value
        if isinstance(value, str):
            return cls(BodyKind.TEXT, value)
        if isinstance(value, (bytes, bytearray)):
            return cls(BodyKind.BYTES, bytes(value))
        return cls(BodyKind.STRUCTURED, value)

    @property
    def is_structured(self) -> bool:
        return self.kind is BodyKind.STRUCTURED

    def compare(self, actual: bytes) -> Tuple[bool, str]:
        """
        Compare this expected body against the bytes of a request body.

        Args:
            actual: Request body bytes

        Returns:
            Tuple of (matched, problem); problem is empty when matched
        """
        if self.kind is BodyKind.TEXT:
            expected = self.value.encode('utf-8')
            if actual == expected:
                return True, ""
            return False, describe_mismatch("BODY", self.value, _preview(actual))

        if self.kind is BodyKind.BYTES:
            if actual == self.value:
                return True, ""
            return False, describe_mismatch("BODY", _preview(self.value), _preview(actual))

        try:
            expected = canonical_json(self.value)
        except (TypeError, ValueError, RecursionError) as e:
            return False, f"{NO_MATCH_MARK} BODY PARSE ERROR: expected body is not serializable: {e}"

        try:
            received = canonical_json_bytes(actual)
        except (ValueError, RecursionError) as e:
            return False, f"{NO_MATCH_MARK} BODY PARSE ERROR: request body is not valid JSON: {e}"

        if received == expected:
            return True, ""

        return False, describe_mismatch("BODY", expected.decode("utf-8"), received.decode("utf-8"))

    def encode(self) -> bytes:
        """
        Encode this body for an outgoing response.

        Raises:
            BodySerializationError: If a structured value cannot be encoded
        """
        if self.kind is BodyKind.TEXT:
            return self.value.encode('utf-8')
        if self.kind is BodyKind.BYTES:
            return self.value

        try:
            return json.dumps(self.value, allow_nan=False).encode('utf-8')
        except (TypeError, ValueError, RecursionError) as e:
            raise BodySerializationError(str(e)) from e

    def __str__(self) -> str:
        if self.kind is BodyKind.BYTES:
            return _preview(self.value)
        if self.kind is BodyKind.TEXT:
            return self.value
        return str(self.value)


def _preview(data: bytes, limit: int = 200) -> str:
    """Render body bytes for diagnostics."""
    if not data:
        return ""

    text = data.decode('utf-8', errors='replace')
    if len(text) > limit:
        text = text[:limit] + "... [truncated]"
    return text
