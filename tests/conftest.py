"""Shared fixtures for journalbot tests."""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from journalbot.failure_tracker import FailureTracker
from journalbot.models import NotificationPreference, User
from journalbot.repository import (
    DatabaseConnectionManager,
    NotificationPreferenceRepository,
    UserRepository,
)
from journalbot.time_conversion import UTC


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Records sends; raises queued errors first."""

    def __init__(self, token: str = "test-token") -> None:
        self._token = token
        self.sent: list[tuple[int, str]] = []
        self.calls = 0
        self.errors: list[Exception] = []

    @property
    def token(self) -> str:
        return self._token

    async def send(self, telegram_id: int, content: str) -> None:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append((telegram_id, content))


class RecordingSink:
    """Collects monitoring alerts."""

    def __init__(self) -> None:
        self.alerts: list[tuple[str, bool]] = []

    async def alert(self, message: str, is_error: bool = False) -> None:
        self.alerts.append((message, is_error))

    @property
    def messages(self) -> list[str]:
        return [message for message, _ in self.alerts]


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseConnectionManager(tmp_path / "test.db")
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def user_repo(db_manager):
    return UserRepository(db_manager)


@pytest.fixture
def preference_repo(db_manager):
    return NotificationPreferenceRepository(db_manager)


@pytest.fixture
def clock():
    return FakeClock(datetime(2023, 10, 27, 10, 0, tzinfo=UTC))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failure_tracker(sink, clock):
    return FailureTracker(sink, alert_threshold=3, clock=clock)


@pytest.fixture
def make_user(user_repo):
    def _make(telegram_id: int = 12345, first_name: Optional[str] = "Alice", **kwargs) -> User:
        return user_repo.create(User(telegram_id=telegram_id, first_name=first_name, **kwargs))

    return _make


@pytest.fixture
def due_preference(make_user, preference_repo, clock):
    """An enabled preference whose slot fired one minute ago."""

    def _make(telegram_id: int = 12345, **kwargs) -> NotificationPreference:
        make_user(telegram_id=telegram_id)
        fields = {
            "enabled": True,
            "fire_time_utc": "09:59",
            "next_fire_at": clock() - timedelta(minutes=1),
            **kwargs,
        }
        preference = NotificationPreference(telegram_id=telegram_id, **fields)
        return preference_repo.save(preference)

    return _make
