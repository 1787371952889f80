"""
Phone number and listing link normalization.

Handles the shapes the upstream catalog and the workers send us:
- any Unicode decimal digits (Persian, Arabic-Indic, fullwidth, ...) mapped to ASCII
- separators, spaces and "+" prefixes (stripped, digits only survive)
- listing links of the form https://host/v/<slug>/<token>?...
"""
import re
import unicodedata
from typing import Optional

# Upstream fills unknown phones with this value; it must never reach a post.
PLACEHOLDER_PHONE = '09000000000'

# str patterns match every Unicode decimal digit (category Nd) with \d
_ANY_DIGIT = re.compile(r'\d')
_NON_ASCII_DIGIT = re.compile(r'[^0-9]+')
_EXTERNAL_ID = re.compile(r'/v/([^/?#]+)', re.IGNORECASE)


def _to_ascii_digit(match: re.Match) -> str:
    return str(unicodedata.decimal(match.group(0)))


def normalize_digits(value: Optional[str]) -> str:
    """Map every decimal digit to ASCII and drop everything else."""
    if value is None:
        return ''
    return _NON_ASCII_DIGIT.sub('', _ANY_DIGIT.sub(_to_ascii_digit, str(value)))


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """
    Normalize a phone for storage on a listing post.

    Returns None for empty input and for the placeholder number.
    """
    digits = normalize_digits(value)
    if not digits or digits == PLACEHOLDER_PHONE:
        return None
    return digits


def is_usable_phone(value: Optional[str]) -> bool:
    return normalize_phone(value) is not None


def parse_external_id(link: Optional[str]) -> Optional[str]:
    """
    Extract the listing token from a link.

    Only the first path segment after /v/ is taken:
    "https://divar.ir/v/AZk3fQ9p?src=arka" -> "AZk3fQ9p".
    """
    if not link:
        return None
    match = _EXTERNAL_ID.search(str(link))
    if not match:
        return None
    return match.group(1)
