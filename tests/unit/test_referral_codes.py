"""Unit tests for referral code generation."""

import string

from falvia.accounts.referral_codes import (
    REFERRAL_CHARSET,
    generate_referral_code,
    normalize_referral_code,
)


class TestReferralCodes:
    """Test referral code generation and normalization."""

    def test_default_length_is_8(self):
        assert len(generate_referral_code()) == 8

    def test_explicit_length(self):
        assert len(generate_referral_code(12)) == 12

    def test_code_only_contains_valid_chars(self):
        for _ in range(100):
            code = generate_referral_code()
            assert all(c in REFERRAL_CHARSET for c in code)

    def test_codes_are_unique(self):
        codes = {generate_referral_code() for _ in range(1000)}
        assert len(codes) == 1000

    def test_charset_is_correct(self):
        assert REFERRAL_CHARSET == string.ascii_uppercase + string.digits

    def test_normalize_uppercases(self):
        assert normalize_referral_code("abc12345") == "ABC12345"

    def test_normalize_strips_whitespace(self):
        assert normalize_referral_code("  Abc12345\n") == "ABC12345"
