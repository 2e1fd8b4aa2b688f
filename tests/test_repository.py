"""Tests for the SQLite user and preference repositories."""

from datetime import datetime, timedelta

import pytest

from journalbot.models import NotificationPreference, User
from journalbot.repository import (
    MAX_ERROR_LENGTH,
    DatabaseConnectionManager,
    format_datetime,
    parse_datetime,
)
from journalbot.time_conversion import UTC


SLOT = datetime(2023, 10, 27, 21, 0, tzinfo=UTC)


class TestDatetimeSerialization:
    def test_fixed_width_utc(self):
        assert format_datetime(SLOT) == "2023-10-27T21:00:00.000000+00:00"

    def test_naive_database_timestamp_is_utc(self):
        assert parse_datetime("2023-10-27 21:00:00") == SLOT

    def test_none_passthrough(self):
        assert format_datetime(None) is None
        assert parse_datetime(None) is None


class TestUserRepository:
    def test_create_and_get(self, user_repo):
        user_repo.create(User(telegram_id=7, first_name="Bob", language="ru"))

        user = user_repo.get_by_telegram_id(7)
        assert user.id is not None
        assert user.first_name == "Bob"
        assert user.language == "ru"
        assert user.created_at is not None

    def test_update(self, user_repo, make_user):
        user = make_user(telegram_id=7)
        user.username = "bobby"
        user_repo.update(user)
        assert user_repo.get_by_telegram_id(7).username == "bobby"

    def test_update_without_id_fails(self, user_repo):
        with pytest.raises(ValueError):
            user_repo.update(User(telegram_id=7))

    def test_delete_cascades_to_preference(self, user_repo, preference_repo, make_user):
        make_user(telegram_id=7)
        preference_repo.save(NotificationPreference(telegram_id=7))

        assert user_repo.delete(7) is True
        assert preference_repo.get(7) is None
        assert user_repo.delete(7) is False


class TestNotificationPreferenceRepository:
    def test_save_round_trip(self, preference_repo, make_user):
        make_user()
        preference_repo.save(
            NotificationPreference(
                telegram_id=12345,
                enabled=True,
                fire_time_utc="19:00",
                utc_offset="+2",
                next_fire_at=SLOT,
            )
        )

        stored = preference_repo.get(12345)
        assert stored.enabled is True
        assert stored.fire_time_utc == "19:00"
        assert stored.utc_offset == "+2"
        assert stored.next_fire_at == SLOT

    def test_save_overwrites(self, preference_repo, make_user):
        make_user()
        preference_repo.save(NotificationPreference(telegram_id=12345, enabled=True))
        preference_repo.save(NotificationPreference(telegram_id=12345, enabled=False))
        assert preference_repo.get(12345).enabled is False

    def test_list_enabled_orders_by_next_fire_at(self, preference_repo, make_user):
        for telegram_id, hours in ((1, 3), (2, 1), (3, 2)):
            make_user(telegram_id=telegram_id)
            preference_repo.save(
                NotificationPreference(
                    telegram_id=telegram_id,
                    enabled=True,
                    next_fire_at=SLOT + timedelta(hours=hours),
                )
            )
        make_user(telegram_id=4)
        preference_repo.save(NotificationPreference(telegram_id=4, enabled=False))

        assert [p.telegram_id for p in preference_repo.list_enabled()] == [2, 3, 1]

    def test_mark_delivered_clears_error(self, preference_repo, make_user):
        make_user()
        preference_repo.save(
            NotificationPreference(telegram_id=12345, enabled=True, next_fire_at=SLOT)
        )
        preference_repo.record_error(12345, "boom")
        preference_repo.mark_delivered(12345, SLOT)

        stored = preference_repo.get(12345)
        assert stored.last_delivered_at == SLOT
        assert stored.last_error is None
        assert stored.is_slot_serviced() is True

    def test_record_error_truncates(self, preference_repo, make_user):
        make_user()
        preference_repo.save(NotificationPreference(telegram_id=12345))
        preference_repo.record_error(12345, "x" * (MAX_ERROR_LENGTH + 100))
        assert len(preference_repo.get(12345).last_error) == MAX_ERROR_LENGTH

    def test_disable_clears_schedule(self, preference_repo, make_user):
        make_user()
        preference_repo.save(
            NotificationPreference(telegram_id=12345, enabled=True, next_fire_at=SLOT)
        )
        preference_repo.disable(12345, "Forbidden")

        stored = preference_repo.get(12345)
        assert stored.enabled is False
        assert stored.next_fire_at is None
        assert stored.last_error == "Forbidden"

    def test_claim_is_exclusive_until_released(self, preference_repo, make_user):
        make_user()
        preference_repo.save(
            NotificationPreference(telegram_id=12345, enabled=True, next_fire_at=SLOT)
        )
        now = SLOT + timedelta(seconds=5)
        lease = now + timedelta(minutes=5)

        assert preference_repo.claim(12345, SLOT, now, lease) is True
        assert preference_repo.claim(12345, SLOT, now, lease) is False

        assert preference_repo.release_claim(12345, lease) is True
        assert preference_repo.claim(12345, SLOT, now, lease) is True

    def test_release_leaves_a_newer_claim_alone(self, preference_repo, make_user):
        make_user()
        preference_repo.save(
            NotificationPreference(telegram_id=12345, enabled=True, next_fire_at=SLOT)
        )
        first_now = SLOT + timedelta(seconds=5)
        first_lease = first_now + timedelta(minutes=5)
        second_now = first_now + timedelta(minutes=6)
        second_lease = second_now + timedelta(minutes=5)

        assert preference_repo.claim(12345, SLOT, first_now, first_lease) is True
        assert preference_repo.claim(12345, SLOT, second_now, second_lease) is True

        assert preference_repo.release_claim(12345, first_lease) is False
        assert preference_repo.get(12345).claimed_until == second_lease
        assert preference_repo.claim(12345, SLOT, second_now, second_lease) is False

    def test_claim_rejects_stale_or_serviced_slot(self, preference_repo, make_user):
        make_user()
        preference_repo.save(
            NotificationPreference(telegram_id=12345, enabled=True, next_fire_at=SLOT)
        )
        now = SLOT + timedelta(seconds=5)
        lease = now + timedelta(minutes=5)

        assert preference_repo.claim(12345, SLOT - timedelta(days=1), now, lease) is False

        preference_repo.mark_delivered(12345, SLOT)
        assert preference_repo.claim(12345, SLOT, now, lease) is False

    def test_ping(self, preference_repo, make_user):
        assert preference_repo.ping() is None
        make_user()
        preference_repo.save(NotificationPreference(telegram_id=12345))
        assert preference_repo.ping() == 12345


class TestDatabaseInitialization:
    def test_integrity_check_passes_on_fresh_database(self, db_manager):
        assert db_manager.initialize() is True

    def test_schema_is_idempotent(self, tmp_path):
        path = tmp_path / "again.db"
        for _ in range(2):
            manager = DatabaseConnectionManager(path)
            assert manager.initialize() is True
            manager.close()

    def test_missing_table_fails_integrity_check(self, db_manager):
        db_manager.get_connection().execute("DROP TABLE notification_preferences")
        assert db_manager.initialize() is False
