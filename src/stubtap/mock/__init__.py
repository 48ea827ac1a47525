"""
Stubtap Mock Module

HTTP mock matching and serving for tests.

This module provides:
- Request matching with full/partial/none outcomes
- Response writing with delays and JSON bodies
- Mock definitions with hit assertions
- Ordered mock registry and dispatcher
- Mock file loading (JSON/YAML)
- FastAPI-based mock server
"""

from .body import BodyKind, BodyValue, BodySerializationError
from .config import MockConfig
from .entry import HitReport, MatchedMock, Mock
from .handler import MockHandler, MockMetrics, MockValidationError, mock_info_hook
from .loader import MockLoader, MockLoadError, load_mocks
from .matcher import IncomingRequest, MatchLevel, MatchOutcome, RequestCriteria, RequestMatcher
from .response import OutgoingResponse, ResponseDefinition, ResponseWriter
from .server import MockServer, create_mock_server, setup_server

__all__ = [
    # Body
    'BodyKind',
    'BodyValue',
    'BodySerializationError',

    # Matcher
    'IncomingRequest',
    'MatchLevel',
    'MatchOutcome',
    'RequestCriteria',
    'RequestMatcher',

    # Response
    'OutgoingResponse',
    'ResponseDefinition',
    'ResponseWriter',

    # Entry
    'HitReport',
    'MatchedMock',
    'Mock',

    # Handler
    'MockConfig',
    'MockHandler',
    'MockMetrics',
    'MockValidationError',
    'mock_info_hook',

    # Loader
    'MockLoader',
    'MockLoadError',
    'load_mocks',

    # Server
    'MockServer',
    'create_mock_server',
    'setup_server',
]

__version__ = '0.1.0'
