"""Reminder schedule calculation and user-facing notification settings."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from journalbot.models import DEFAULT_FIRE_TIME_UTC, NotificationPreference
from journalbot.repository import NotificationPreferenceRepository, UserRepository
from journalbot.time_conversion import (
    InvalidOffsetError,
    InvalidTimeError,
    UTC,
    convert_from_utc,
    convert_to_utc,
    format_time_with_offset,
    is_valid_time,
    is_valid_utc_offset,
    utc_now,
)


logger = logging.getLogger(__name__)


class SchedulerError(Exception):
    """Base exception for scheduler errors."""


class InvalidScheduleError(SchedulerError):
    """Raised when schedule parameters are invalid."""


class UserNotFoundError(SchedulerError):
    """Raised when user is not found."""


def next_fire_instant(
    fire_time_utc: str,
    now: datetime,
    buffer: timedelta = timedelta(0),
) -> datetime:
    """Compute the next UTC instant at which a daily reminder is due.

    Builds today's UTC instant at ``fire_time_utc``. If that instant is not
    later than ``now + buffer`` it moves forward one UTC calendar day.

    Args:
        fire_time_utc: Daily fire time in UTC, "HH:MM".
        now: Current time (aware; naive values are taken as UTC).
        buffer: Instants this close to ``now`` count as already passed.

    Returns:
        Aware UTC datetime strictly after ``now``.

    Raises:
        InvalidTimeError: If fire_time_utc is not HH:MM.
    """
    if not is_valid_time(fire_time_utc):
        raise InvalidTimeError(f"Invalid time (expected HH:MM): {fire_time_utc!r}")

    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    now = now.astimezone(UTC)

    hour, minute = map(int, fire_time_utc.split(":"))
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    threshold = now + max(buffer, timedelta(0))
    while candidate <= threshold:
        candidate += timedelta(days=1)
    return candidate


@dataclass
class NotificationTimeInfo:
    """A user's reminder time for display."""

    local_time: str
    utc_time: str
    utc_offset: str
    enabled: bool
    next_fire_at: Optional[datetime] = None

    def format_for_display(self) -> str:
        """Format the reminder settings for a Telegram message."""
        status = "🟢 Enabled" if self.enabled else "⏸️ Disabled"
        lines = [
            "⏰ *Daily reminder*",
            f"🕘 {format_time_with_offset(self.local_time, self.utc_offset)}",
            f"🌍 UTC time: {self.utc_time}",
            f"📊 *Status:* {status}",
        ]
        if self.enabled and self.next_fire_at:
            lines.append(f"⏭️ *Next reminder:* {self.next_fire_at.strftime('%b %d, %H:%M')} UTC")
        return "\n".join(lines)


class NotificationScheduler:
    """Manages users' reminder settings and keeps next_fire_at in sync with them."""

    def __init__(
        self,
        preference_repo: NotificationPreferenceRepository,
        user_repo: UserRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            preference_repo: Preference store.
            user_repo: User repository, used to check the user exists.
            clock: Source of the current UTC time.
        """
        self.preference_repo = preference_repo
        self.user_repo = user_repo
        self.clock = clock

    def get_or_create_preference(self, telegram_id: int) -> NotificationPreference:
        """Return the user's preference, creating a disabled default one.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        preference = self.preference_repo.get(telegram_id)
        if preference is not None:
            return preference

        if self.user_repo.get_by_telegram_id(telegram_id) is None:
            raise UserNotFoundError(f"User with telegram_id {telegram_id} not found")

        preference = NotificationPreference(telegram_id=telegram_id)
        self.preference_repo.save(preference)
        logger.info(f"Created default notification preference for user {telegram_id}")
        return preference

    def update_notification_settings(
        self,
        telegram_id: int,
        enabled: bool,
        local_time: Optional[str] = None,
        utc_offset: Optional[str] = None,
    ) -> NotificationPreference:
        """Update a user's reminder settings and reschedule.

        Args:
            telegram_id: Telegram user ID.
            enabled: Whether reminders should be active.
            local_time: New reminder time in the user's local time, "HH:MM".
            utc_offset: New UTC offset. Without local_time, the stored local
                time is kept and re-converted with the new offset.

        Returns:
            The updated preference.

        Raises:
            UserNotFoundError: If the user does not exist.
            InvalidScheduleError: If the time or offset is invalid.
        """
        if local_time is not None and not is_valid_time(local_time):
            raise InvalidScheduleError(f"Invalid time format: {local_time}")
        if utc_offset is not None and not is_valid_utc_offset(utc_offset):
            raise InvalidScheduleError(f"Invalid UTC offset: {utc_offset}")

        preference = self.get_or_create_preference(telegram_id)

        if utc_offset is not None and utc_offset != preference.utc_offset:
            if local_time is None:
                local_time = convert_from_utc(preference.fire_time_utc, preference.utc_offset)
            preference.utc_offset = utc_offset
            logger.info(f"User {telegram_id} changed UTC offset to {utc_offset}")

        if local_time is not None:
            try:
                preference.fire_time_utc = convert_to_utc(local_time, preference.utc_offset)
            except (InvalidTimeError, InvalidOffsetError) as e:
                raise InvalidScheduleError(str(e)) from e
            logger.info(
                f"User {telegram_id} changed notification time to "
                f"{preference.fire_time_utc} UTC (local: {local_time} UTC{preference.utc_offset})"
            )

        if preference.enabled != enabled:
            logger.info(
                f"User {telegram_id} {'enabled' if enabled else 'disabled'} notifications"
            )
        preference.enabled = enabled

        self._reschedule(preference)
        self.preference_repo.save(preference)
        return preference

    def set_enabled(self, telegram_id: int, enabled: bool) -> NotificationPreference:
        """Enable or disable reminders, keeping the stored time and offset."""
        return self.update_notification_settings(telegram_id, enabled)

    def toggle_notifications(self, telegram_id: int) -> NotificationPreference:
        """Flip the enabled flag."""
        preference = self.get_or_create_preference(telegram_id)
        return self.set_enabled(telegram_id, not preference.enabled)

    def get_notification_time(self, telegram_id: int) -> Optional[NotificationTimeInfo]:
        """Get the user's reminder time in local and UTC form.

        Returns:
            NotificationTimeInfo, or None if the user has no preference.
        """
        preference = self.preference_repo.get(telegram_id)
        if preference is None:
            return None

        local_time = convert_from_utc(preference.fire_time_utc, preference.utc_offset)
        logger.debug(
            f"Retrieved notification time for user {telegram_id}: "
            f"{preference.fire_time_utc} UTC -> {local_time} UTC{preference.utc_offset}"
        )
        return NotificationTimeInfo(
            local_time=local_time,
            utc_time=preference.fire_time_utc,
            utc_offset=preference.utc_offset,
            enabled=preference.enabled,
            next_fire_at=preference.next_fire_at,
        )

    def _reschedule(self, preference: NotificationPreference) -> None:
        """Recompute next_fire_at from the preference, or clear it when disabled."""
        if not preference.enabled:
            if preference.next_fire_at is not None:
                logger.info(
                    f"Removed scheduled notification for user {preference.telegram_id}"
                )
            preference.next_fire_at = None
            return

        preference.next_fire_at = next_fire_instant(
            preference.fire_time_utc or DEFAULT_FIRE_TIME_UTC, self.clock()
        )
        logger.info(
            f"Next notification for user {preference.telegram_id} scheduled to: "
            f"{preference.next_fire_at.isoformat()}"
        )
