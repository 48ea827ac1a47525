"""
Stubtap - HTTP mock server for tests

Define expected requests and canned responses, serve them over HTTP, and
assert how many times each mock was hit.
"""

from .mock import Mock, MockConfig, MockHandler, MockServer, setup_server

__all__ = [
    'Mock',
    'MockConfig',
    'MockHandler',
    'MockServer',
    'setup_server',
]

__version__ = '0.1.0'
