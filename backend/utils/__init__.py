"""
Utility modules for the backend.
"""
from .phone import (
    PLACEHOLDER_PHONE,
    normalize_digits,
    normalize_phone,
    is_usable_phone,
    parse_external_id,
)

__all__ = [
    'PLACEHOLDER_PHONE',
    'normalize_digits',
    'normalize_phone',
    'is_usable_phone',
    'parse_external_id',
]
