"""Tests for next-slot calculation and reminder settings."""

from datetime import datetime, timedelta

import pytest

from journalbot.delivery_scheduler import (
    InvalidScheduleError,
    NotificationScheduler,
    UserNotFoundError,
    next_fire_instant,
)
from journalbot.time_conversion import InvalidTimeError, UTC


NOW = datetime(2023, 10, 27, 10, 0, tzinfo=UTC)


class TestNextFireInstant:
    def test_later_today(self):
        assert next_fire_instant("12:00", NOW) == datetime(2023, 10, 27, 12, 0, tzinfo=UTC)

    def test_already_passed_moves_to_tomorrow(self):
        assert next_fire_instant("08:00", NOW) == datetime(2023, 10, 28, 8, 0, tzinfo=UTC)

    def test_equal_to_now_moves_to_tomorrow(self):
        assert next_fire_instant("10:00", NOW) == datetime(2023, 10, 28, 10, 0, tzinfo=UTC)

    def test_within_buffer_moves_to_tomorrow(self):
        result = next_fire_instant("10:01", NOW, buffer=timedelta(seconds=60))
        assert result == datetime(2023, 10, 28, 10, 1, tzinfo=UTC)

    def test_outside_buffer_stays_today(self):
        result = next_fire_instant("10:02", NOW, buffer=timedelta(seconds=60))
        assert result == datetime(2023, 10, 27, 10, 2, tzinfo=UTC)

    def test_naive_now_is_treated_as_utc(self):
        result = next_fire_instant("12:00", datetime(2023, 10, 27, 10, 0))
        assert result == datetime(2023, 10, 27, 12, 0, tzinfo=UTC)

    def test_month_rollover(self):
        now = datetime(2023, 10, 31, 23, 30, tzinfo=UTC)
        assert next_fire_instant("00:15", now) == datetime(2023, 11, 1, 0, 15, tzinfo=UTC)

    @pytest.mark.parametrize("fire_time", ["00:00", "09:59", "10:00", "10:01", "23:59"])
    @pytest.mark.parametrize("buffer_seconds", [0, 60, 3600])
    def test_always_strictly_after_now(self, fire_time, buffer_seconds):
        now = NOW + timedelta(seconds=17, microseconds=250)
        result = next_fire_instant(fire_time, now, buffer=timedelta(seconds=buffer_seconds))
        assert result > now
        assert result - now <= timedelta(days=1, seconds=buffer_seconds)

    def test_invalid_time_raises(self):
        with pytest.raises(InvalidTimeError):
            next_fire_instant("25:00", NOW)


@pytest.fixture
def scheduler(preference_repo, user_repo, clock):
    return NotificationScheduler(preference_repo, user_repo, clock=clock)


class TestNotificationScheduler:
    def test_unknown_user_raises(self, scheduler):
        with pytest.raises(UserNotFoundError):
            scheduler.get_or_create_preference(999)

    def test_default_preference_is_disabled(self, scheduler, make_user):
        make_user()
        preference = scheduler.get_or_create_preference(12345)
        assert preference.enabled is False
        assert preference.fire_time_utc == "21:00"
        assert preference.next_fire_at is None

    def test_set_time_converts_and_schedules(self, scheduler, make_user, preference_repo):
        make_user()
        scheduler.update_notification_settings(12345, True, "12:30", "+2")

        stored = preference_repo.get(12345)
        assert stored.enabled is True
        assert stored.fire_time_utc == "10:30"
        assert stored.utc_offset == "+2"
        assert stored.next_fire_at == datetime(2023, 10, 27, 10, 30, tzinfo=UTC)

    def test_offset_change_keeps_local_time(self, scheduler, make_user, preference_repo):
        make_user()
        scheduler.update_notification_settings(12345, True, "21:00", "+2")
        scheduler.update_notification_settings(12345, True, utc_offset="-1")

        stored = preference_repo.get(12345)
        assert stored.fire_time_utc == "22:00"
        info = scheduler.get_notification_time(12345)
        assert info.local_time == "21:00"

    def test_invalid_time_rejected(self, scheduler, make_user):
        make_user()
        with pytest.raises(InvalidScheduleError):
            scheduler.update_notification_settings(12345, True, "7pm")

    def test_invalid_offset_rejected(self, scheduler, make_user):
        make_user()
        with pytest.raises(InvalidScheduleError):
            scheduler.update_notification_settings(12345, True, "21:00", "UTC+5")

    def test_disable_clears_next_fire_at(self, scheduler, make_user, preference_repo):
        make_user()
        scheduler.update_notification_settings(12345, True, "21:00", "0")
        assert preference_repo.get(12345).next_fire_at is not None

        scheduler.set_enabled(12345, False)
        stored = preference_repo.get(12345)
        assert stored.enabled is False
        assert stored.next_fire_at is None
        assert stored.fire_time_utc == "21:00"

    def test_toggle_flips_and_reschedules(self, scheduler, make_user, preference_repo):
        make_user()
        assert scheduler.toggle_notifications(12345).enabled is True
        assert preference_repo.get(12345).next_fire_at == datetime(
            2023, 10, 27, 21, 0, tzinfo=UTC
        )
        assert scheduler.toggle_notifications(12345).enabled is False
        assert preference_repo.get(12345).next_fire_at is None

    def test_get_notification_time_missing(self, scheduler):
        assert scheduler.get_notification_time(42) is None

    def test_display_includes_local_time(self, scheduler, make_user):
        make_user()
        scheduler.update_notification_settings(12345, True, "21:00", "+3")
        text = scheduler.get_notification_time(12345).format_for_display()
        assert "21:00 (UTC+3)" in text
        assert "18:00" in text
        assert "Enabled" in text
