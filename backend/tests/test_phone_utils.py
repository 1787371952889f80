"""
Tests for phone and listing link normalization.
"""

import pytest

from utils.phone import (
    PLACEHOLDER_PHONE,
    is_usable_phone,
    normalize_digits,
    normalize_phone,
    parse_external_id,
)


# =============================================================================
# Digits
# =============================================================================

class TestNormalizeDigits:

    def test_persian_digits_mapped_to_ascii(self):
        assert normalize_digits('۰۹۱۲۳۴۵۶۷۸۹') == '09123456789'

    def test_arabic_indic_digits_mapped_to_ascii(self):
        assert normalize_digits('٠٩١٢٣٤٥٦٧٨٩') == '09123456789'

    def test_separators_and_plus_stripped(self):
        assert normalize_digits('+98 (912) 345-67 89') == '989123456789'

    def test_mixed_scripts(self):
        assert normalize_digits('09۱2 ٣45') == '0912345'

    @pytest.mark.parametrize('value', [
        '０９１２-123-4567',   # fullwidth
        '०९१२ १२३ ४५६७',      # Devanagari
    ])
    def test_other_decimal_scripts_mapped_to_ascii(self, value):
        result = normalize_digits(value)
        assert result == '09121234567'
        assert result.isascii()

    def test_non_decimal_numerals_dropped(self):
        assert normalize_digits('0912²123') == '0912123'

    def test_none_is_empty(self):
        assert normalize_digits(None) == ''


class TestNormalizePhone:

    def test_regular_phone(self):
        assert normalize_phone('0912 123 4567') == '09121234567'

    def test_placeholder_is_suppressed(self):
        assert normalize_phone(PLACEHOLDER_PHONE) is None

    def test_placeholder_in_persian_digits_is_suppressed(self):
        assert normalize_phone('۰۹۰۰۰۰۰۰۰۰۰') is None

    @pytest.mark.parametrize('value', [None, '', '   ', 'n/a'])
    def test_empty_values(self, value):
        assert normalize_phone(value) is None
        assert is_usable_phone(value) is False


# =============================================================================
# Links
# =============================================================================

class TestParseExternalId:

    def test_token_after_v_segment(self):
        assert parse_external_id('https://divar.ir/v/AZk3fQ9p') == 'AZk3fQ9p'

    def test_query_and_fragment_dropped(self):
        assert parse_external_id('https://divar.ir/v/AZk3fQ9p?src=arka#top') == 'AZk3fQ9p'

    def test_only_first_segment_taken(self):
        assert parse_external_id('https://divar.ir/v/AZk3fQ9p/extra') == 'AZk3fQ9p'

    def test_case_insensitive_prefix(self):
        assert parse_external_id('https://divar.ir/V/Tok123') == 'Tok123'

    @pytest.mark.parametrize('link', [None, '', 'https://divar.ir/s/tehran', 'https://divar.ir/v/'])
    def test_no_match(self, link):
        assert parse_external_id(link) is None
