"""
Input size helpers for text generation requests and conversation summaries.

Uses plain character counts against hard limits.
"""

from typing import Optional


def truncate_text(text: Optional[str], max_length: int, suffix: str = "") -> str:
    """
    Cut text to at most ``max_length`` characters.

    Args:
        text: Text to shorten; None is treated as empty
        max_length: Maximum characters kept from the original text
        suffix: Appended only when something was cut

    Example:
        >>> truncate_text("abcdef", 3, suffix="...")
        'abc...'
        >>> truncate_text("abc", 10, suffix="...")
        'abc'
    """
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


class InputValidator:
    """
    Input validation utility for checking character limits.
    """

    @staticmethod
    def validate_char_limit(
        text: str,
        max_chars: int,
        error_message: Optional[str] = None
    ) -> None:
        """
        Validate that text does not exceed maximum character limit.

        Raises:
            ValueError: If text exceeds character limit
        """
        char_count = len(text)

        if char_count > max_chars:
            raise ValueError(
                error_message
                or f"Input too large: {char_count} characters, maximum allowed: {max_chars}"
            )

    @staticmethod
    def validate_total_chars(
        prompt: str,
        system_prompt: Optional[str] = None,
        max_chars: int = 0
    ) -> None:
        """
        Validate total character count for a generation request.

        Raises:
            ValueError: If total exceeds character limit
        """
        total_chars = len(prompt) + (len(system_prompt) if system_prompt else 0)

        if total_chars > max_chars:
            raise ValueError(
                f"Total input too large: {total_chars} characters, "
                f"maximum allowed: {max_chars}"
            )
