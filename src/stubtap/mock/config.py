"""
Stubtap Mock Configuration

Policy flags and server options for the mock handler and server.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

DEFAULT_LOG_HEADER = "Stubtap"


@dataclass
class MockConfig:
    """Configuration for mock server behavior."""

    # Matching policy
    disable_partial_match: bool = False  # Treat every non-full match as no match

    # Logging
    log_header: str = DEFAULT_LOG_HEADER  # Prefix for handler log lines
    log_disabled: bool = False  # Silence handler match/registration logs
    log_level: str = "info"

    # Response decoration
    mock_info_header: Optional[str] = None  # Header prefix for <prefix>-Name / <prefix>-Path

    # Hit assertions
    test_id: str = "default"  # Identity used when counting hits

    # Server options
    host: str = "127.0.0.1"
    port: int = 8080

    # Admin API
    admin_enabled: bool = True
    admin_prefix: str = "/__admin__"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MockConfig':
        """
        Create configuration from a dictionary.

        Raises:
            ValueError: If data contains unknown keys
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown mock config keys: {', '.join(unknown)}")

        return cls(**data)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'MockConfig':
        """Load configuration from a YAML file."""
        with open(yaml_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Mock config {yaml_path} must be a mapping, got {type(data).__name__}")

        return cls.from_dict(data)
