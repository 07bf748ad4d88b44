"""Unit tests for token_utils module."""

import pytest

from studyroom_ai.utils.token_utils import InputValidator, truncate_text


class TestTruncateText:
    """Tests for truncate_text function."""

    def test_none_becomes_empty(self):
        assert truncate_text(None, 10) == ""

    def test_short_string_unchanged(self):
        assert truncate_text("abc", 10, suffix="...") == "abc"

    def test_exact_length_unchanged(self):
        assert truncate_text("a" * 10, 10, suffix="...") == "a" * 10

    def test_long_string_cut_with_suffix(self):
        assert truncate_text("abcdef", 3, suffix="...") == "abc..."

    def test_default_suffix_empty(self):
        assert truncate_text("abcdef", 3) == "abc"


class TestInputValidator:
    """Tests for InputValidator character limits."""

    def test_within_limit_passes(self):
        InputValidator.validate_char_limit("hello", 10)

    def test_over_limit_raises(self):
        with pytest.raises(ValueError, match="Input too large"):
            InputValidator.validate_char_limit("x" * 11, 10)

    def test_custom_message(self):
        with pytest.raises(ValueError, match="too long"):
            InputValidator.validate_char_limit("x" * 11, 10, error_message="too long")
