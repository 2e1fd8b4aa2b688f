"""Input validation and sanitization utilities for command arguments."""

import html
import re
from typing import Optional

from journalbot.time_conversion import InvalidOffsetError, is_valid_time, parse_utc_offset


USER_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass


def sanitize_text(input_text: Optional[str], max_length: int = 10000) -> str:
    """Sanitize text input by escaping HTML and removing dangerous characters.

    Args:
        input_text: The text to sanitize (can be None).
        max_length: Maximum allowed length.

    Returns:
        Sanitized text string.

    Raises:
        ValidationError: If validation fails.
    """
    if input_text is None:
        return ""

    if not isinstance(input_text, str):
        raise ValidationError("Input must be a string")

    if len(input_text) > max_length:
        raise ValidationError(
            f"Input exceeds maximum length of {max_length} characters"
        )

    sanitized = html.escape(input_text)

    sanitized = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", sanitized)

    return sanitized.strip()


def validate_telegram_id(telegram_id: int) -> int:
    """Validate that a Telegram ID is valid.

    Args:
        telegram_id: The Telegram user ID to validate.

    Returns:
        The validated Telegram ID.

    Raises:
        ValidationError: If ID is invalid.
    """
    if not isinstance(telegram_id, int):
        raise ValidationError("Telegram ID must be an integer")

    if telegram_id <= 0:
        raise ValidationError("Telegram ID must be a positive integer")

    if telegram_id > 2**63 - 1:
        raise ValidationError("Telegram ID is too large")

    return telegram_id


def validate_time_string(value: Optional[str]) -> str:
    """Validate a 24-hour reminder time and normalize it to HH:MM.

    Raises:
        ValidationError: If the time is missing or malformed.
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Time cannot be empty")

    match = USER_TIME_PATTERN.match(value.strip())
    normalized = f"{int(match.group(1)):02d}:{match.group(2)}" if match else ""
    if not is_valid_time(normalized):
        raise ValidationError("Time must be in HH:MM format (e.g. 21:00)")
    return normalized


def validate_utc_offset(value: Optional[str]) -> str:
    """Validate a UTC offset such as "+2", "-5:30" or "0".

    A leading "UTC" is accepted and stripped so keyboard labels like
    "UTC+3" can be passed straight through.

    Returns:
        The offset in canonical form: "0", "+2", "-5:30" ("+02" and
        "+5:00" become "+2" and "+5").

    Raises:
        ValidationError: If the offset is malformed or out of range.
    """
    if not value or not isinstance(value, str):
        raise ValidationError("UTC offset cannot be empty")

    value = value.strip()
    if value.upper().startswith("UTC"):
        value = value[3:] or "0"

    try:
        hours, minutes = parse_utc_offset(value)
    except InvalidOffsetError:
        raise ValidationError(
            "UTC offset must look like +2, -5:30 or 0 (between -12 and +14)"
        ) from None

    if hours == 0 and minutes == 0:
        return "0"
    sign = "-" if hours < 0 or minutes < 0 else "+"
    text = f"{sign}{abs(hours)}"
    return f"{text}:{abs(minutes):02d}" if minutes else text
