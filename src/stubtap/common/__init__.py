"""
Stubtap Common Utilities

Shared helpers used across Stubtap modules.
"""

from .utils import default_value, describe_mismatch, int_field, mapping_section, StringParts, MATCH_MARK, NO_MATCH_MARK

__all__ = [
    'default_value',
    'describe_mismatch',
    'int_field',
    'mapping_section',
    'StringParts',
    'MATCH_MARK',
    'NO_MATCH_MARK'
]
