"""Conversion between a user's local wall-clock time and UTC.

Users store a fixed numeric UTC offset (e.g. "+5:30", "-3", "0") instead of an
IANA timezone, so there is no DST handling here. Everything except
``utc_now`` is pure.
"""

import re
from datetime import datetime
from zoneinfo import ZoneInfo


UTC = ZoneInfo("UTC")

OFFSET_PATTERN = re.compile(r"^([+-])(\d{1,2})(?::(\d{2}))?$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

MIN_OFFSET_MINUTES = -12 * 60
MAX_OFFSET_MINUTES = 14 * 60
MINUTES_PER_DAY = 24 * 60

ZERO_OFFSETS = ("0", "+0", "-0")


class TimeConversionError(Exception):
    """Base exception for time conversion errors."""


class InvalidOffsetError(TimeConversionError):
    """Raised when a UTC offset string is malformed or out of range."""


class InvalidTimeError(TimeConversionError):
    """Raised when a time string is not a valid 24-hour HH:MM value."""


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _offset_minutes(utc_offset: str) -> int:
    """Return the signed offset in minutes, or raise InvalidOffsetError."""
    if utc_offset == "0":
        return 0

    match = OFFSET_PATTERN.match(utc_offset or "")
    if not match:
        raise InvalidOffsetError(f"Invalid UTC offset: {utc_offset!r}")

    sign = -1 if match.group(1) == "-" else 1
    hours = int(match.group(2))
    minutes = int(match.group(3)) if match.group(3) else 0
    if minutes > 59:
        raise InvalidOffsetError(f"Invalid UTC offset minutes: {utc_offset!r}")

    total = sign * (hours * 60 + minutes)
    if not MIN_OFFSET_MINUTES <= total <= MAX_OFFSET_MINUTES:
        raise InvalidOffsetError(f"UTC offset out of range: {utc_offset!r}")
    return total


def parse_utc_offset(utc_offset: str) -> tuple[int, int]:
    """Parse a UTC offset string into signed hours and minutes.

    Args:
        utc_offset: Offset such as "+2", "-5:30" or "0".

    Returns:
        Tuple of (hours, minutes), both carrying the offset's sign.

    Raises:
        InvalidOffsetError: If the offset is malformed or out of range.
    """
    total = _offset_minutes(utc_offset)
    sign = -1 if total < 0 else 1
    hours, minutes = divmod(abs(total), 60)
    return sign * hours, sign * minutes


def is_valid_utc_offset(utc_offset: str) -> bool:
    """Check whether a string is a valid UTC offset between -12:00 and +14:00.

    A sign is required except for the bare "0".
    """
    try:
        _offset_minutes(utc_offset)
    except InvalidOffsetError:
        return False
    return True


def is_valid_time(time_str: str) -> bool:
    """Check whether a string is a 24-hour time in zero-padded HH:MM format."""
    return bool(TIME_PATTERN.match(time_str or ""))


def _time_to_minutes(time_str: str) -> int:
    match = TIME_PATTERN.match(time_str or "")
    if not match:
        raise InvalidTimeError(f"Invalid time (expected HH:MM): {time_str!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def _minutes_to_time(total_minutes: int) -> str:
    hours, minutes = divmod(total_minutes % MINUTES_PER_DAY, 60)
    return f"{hours:02d}:{minutes:02d}"


def convert_to_utc(local_time: str, utc_offset: str) -> str:
    """Convert a local HH:MM time to UTC HH:MM, wrapping across midnight.

    Example: "00:30" at "+1" is "23:30" UTC.

    Raises:
        InvalidTimeError: If local_time is malformed.
        InvalidOffsetError: If utc_offset is malformed.
    """
    return _minutes_to_time(_time_to_minutes(local_time) - _offset_minutes(utc_offset))


def convert_from_utc(utc_time: str, utc_offset: str) -> str:
    """Convert a UTC HH:MM time to local HH:MM, wrapping across midnight.

    Raises:
        InvalidTimeError: If utc_time is malformed.
        InvalidOffsetError: If utc_offset is malformed.
    """
    return _minutes_to_time(_time_to_minutes(utc_time) + _offset_minutes(utc_offset))


def format_time_with_offset(local_time: str, utc_offset: str) -> str:
    """Format a local time with its offset, e.g. "21:00 (UTC+2)".

    Zero offsets collapse to "(UTC)". A missing sign on a non-zero offset is
    displayed as "+".
    """
    if utc_offset in ZERO_OFFSETS:
        return f"{local_time} (UTC)"
    display_offset = utc_offset if utc_offset[:1] in ("+", "-") else f"+{utc_offset}"
    return f"{local_time} (UTC{display_offset})"



def offset_choices() -> list[str]:
    """Whole-hour offsets from -12 to +14, as offered on the offset keyboard."""
    return [
        "0" if hours == 0 else f"{hours:+d}"
        for hours in range(MIN_OFFSET_MINUTES // 60, MAX_OFFSET_MINUTES // 60 + 1)
    ]
