"""Data models for the journal bot."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from journalbot.time_conversion import is_valid_time, is_valid_utc_offset


DEFAULT_FIRE_TIME_UTC = "21:00"
DEFAULT_UTC_OFFSET = "0"
SUPPORTED_LANGUAGES = ("en", "ru")


class ValidationError(Exception):
    """Raised when model validation fails."""


@dataclass
class User:
    """Represents a Telegram user of the bot."""

    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language: str = "en"
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        """Validate the user data.

        Raises:
            ValidationError: If validation fails.
        """
        if not isinstance(self.telegram_id, int) or isinstance(self.telegram_id, bool):
            raise ValidationError("telegram_id must be an integer")
        if self.telegram_id <= 0:
            raise ValidationError("telegram_id must be a positive integer")
        if self.username is not None and not isinstance(self.username, str):
            raise ValidationError("username must be a string or None")
        if self.first_name is not None and not isinstance(self.first_name, str):
            raise ValidationError("first_name must be a string or None")
        if self.last_name is not None and not isinstance(self.last_name, str):
            raise ValidationError("last_name must be a string or None")
        if self.language not in SUPPORTED_LANGUAGES:
            raise ValidationError(
                f"language must be one of {', '.join(SUPPORTED_LANGUAGES)}"
            )

    @property
    def display_name(self) -> str:
        """Best available human-readable name."""
        return self.first_name or self.username or str(self.telegram_id)

    def __post_init__(self) -> None:
        """Validate after initialization."""
        self.validate()


@dataclass
class NotificationPreference:
    """A user's daily reminder preference and its scheduling bookkeeping.

    ``fire_time_utc`` is the user's local reminder time already shifted by
    ``utc_offset``. ``last_delivered_at`` holds the ``next_fire_at`` slot that
    was serviced, not the wall-clock time of the send, so a slot can be
    recognised as delivered by exact comparison.
    """

    telegram_id: int
    enabled: bool = False
    fire_time_utc: str = DEFAULT_FIRE_TIME_UTC
    utc_offset: str = DEFAULT_UTC_OFFSET
    next_fire_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_delivered_at: Optional[datetime] = None
    last_error: Optional[str] = None
    claimed_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        """Validate the preference data.

        Raises:
            ValidationError: If validation fails.
        """
        if not isinstance(self.telegram_id, int) or self.telegram_id <= 0:
            raise ValidationError("telegram_id must be a positive integer")
        if not isinstance(self.enabled, bool):
            raise ValidationError("enabled must be a boolean")
        if not isinstance(self.fire_time_utc, str) or not is_valid_time(
            self.fire_time_utc
        ):
            raise ValidationError("fire_time_utc must be in HH:MM format")
        if not isinstance(self.utc_offset, str) or not is_valid_utc_offset(
            self.utc_offset
        ):
            raise ValidationError(f"Invalid utc_offset: {self.utc_offset}")
        for name in ("next_fire_at", "last_attempt_at", "last_delivered_at"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise ValidationError(f"{name} must be timezone-aware")

    def is_slot_serviced(self) -> bool:
        """True when the current ``next_fire_at`` slot was already delivered."""
        return (
            self.next_fire_at is not None
            and self.last_delivered_at is not None
            and self.last_delivered_at == self.next_fire_at
        )

    def is_due(self, now: datetime) -> bool:
        """True when the slot has arrived and has not been serviced yet."""
        if not self.enabled or self.next_fire_at is None:
            return False
        if self.next_fire_at > now:
            return False
        return not self.is_slot_serviced()

    def __post_init__(self) -> None:
        """Validate after initialization."""
        self.validate()
