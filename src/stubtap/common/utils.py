"""
Stubtap Common Utilities

Small helpers shared by the matcher, the response writer and the handler.
"""

from typing import Any, Dict, List, Tuple

NO_MATCH_MARK = "❌"
MATCH_MARK = "✅"


def default_value(primary: Any, fallback: Any) -> Any:
    """
    Return fallback when primary is the zero/empty value for its type.

    Args:
        primary: Preferred value
        fallback: Value used when primary is None, "", 0, False or empty

    Returns:
        primary, or fallback if primary is empty

    Example:
        value = default_value(request.path_values.get('id'), captured.get('path:id'))
    """
    return primary if primary else fallback


class StringParts:
    """
    Ordered key/value display helper for building diagnostic strings.

    Keys keep their insertion order; setting an existing key replaces its
    value in place. Empty values are skipped when rendering.

    Example:
        text = str(StringParts().set('method', 'GET').set('path', '/health'))
        # "[method: GET] [path: /health]"
    """

    def __init__(self):
        self._parts: List[Tuple[str, Any]] = []

    def set(self, key: str, value: Any) -> 'StringParts':
        """Set key to value, keeping the original position of an existing key."""
        for index, (existing, _) in enumerate(self._parts):
            if existing == key:
                self._parts[index] = (key, value)
                return self

        self._parts.append((key, value))
        return self

    def __len__(self) -> int:
        return len(self._parts)

    def __str__(self) -> str:
        rendered = []
        for key, value in self._parts:
            if _is_empty(value):
                continue
            rendered.append(f"[{key}: {_format_value(value)}]")

        return ' '.join(rendered)


def _is_empty(value: Any) -> bool:
    """Check whether value is the zero value for its type."""
    if value is None or value is False:
        return True
    if isinstance(value, (str, bytes, bytearray, list, tuple, dict, set)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', errors='replace')
    if isinstance(value, dict):
        return '{' + ', '.join(f"{k}: {v}" for k, v in value.items()) + '}'
    return str(value)


def describe_mismatch(part: str, expected: str, actual: str) -> str:
    """
    Build a human-readable no-match line for the match log.

    Example:
        describe_mismatch('METHOD', 'GET', 'POST')
        # "❌ METHOD expected GET but got POST"
    """
    if not expected and actual:
        return f"{NO_MATCH_MARK} {part} expected empty but got {actual}"

    if expected and not actual:
        return f"{NO_MATCH_MARK} {part} expected {expected} but got empty"

    return f"{NO_MATCH_MARK} {part} expected {expected} but got {actual}"


def mapping_section(data: Any, field: str) -> Dict[str, Any]:
    """
    Return a decoded mapping section, or an empty dict when it is absent.

    Raises:
        ValueError: If the section is present but not a mapping
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{field} must be a mapping, got {type(data).__name__}")
    return data


def int_field(data: Dict[str, Any], key: str, field: str) -> int:
    """
    Read an integer from a decoded mapping section; absent or empty is 0.

    Raises:
        ValueError: If the value is not an integer
    """
    value = data.get(key)
    if value is None or value == '':
        return 0
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer, got {value!r}")

    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer, got {value!r}") from None
