"""Tests for the notification health check."""

import asyncio
from unittest.mock import MagicMock

import pytest

from journalbot.health_monitor import HealthMonitor
from journalbot.models import NotificationPreference

from conftest import FakeGateway


@pytest.fixture
def stored_preference(make_user, preference_repo):
    make_user()
    preference_repo.save(NotificationPreference(telegram_id=12345))


class TestCheckHealth:
    @pytest.mark.asyncio
    async def test_healthy_when_store_answers_and_token_present(
        self, preference_repo, gateway, sink, stored_preference
    ):
        monitor = HealthMonitor(preference_repo, gateway, sink)

        assert await monitor.check_health() is True
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_empty_store_is_unhealthy(self, preference_repo, gateway, sink):
        monitor = HealthMonitor(preference_repo, gateway, sink)

        assert await monitor.check_health() is False
        message, is_error = sink.alerts[0]
        assert is_error is True
        assert "Database status: FAILED" in message
        assert "Telegram API status: OK" in message

    @pytest.mark.asyncio
    async def test_empty_token_is_unhealthy(self, preference_repo, sink, stored_preference):
        monitor = HealthMonitor(preference_repo, FakeGateway(token=""), sink)

        assert await monitor.check_health() is False
        message, _ = sink.alerts[0]
        assert "Database status: OK" in message
        assert "Telegram API status: FAILED" in message

    @pytest.mark.asyncio
    async def test_store_exception_is_reported(self, gateway, sink):
        preference_repo = MagicMock()
        preference_repo.ping.side_effect = RuntimeError("disk gone")
        monitor = HealthMonitor(preference_repo, gateway, sink)

        assert await monitor.check_health() is False
        assert sink.alerts == [
            ("⚠️ Notification system health check threw an exception: disk gone", True)
        ]


class TestPeriodicChecks:
    @pytest.mark.asyncio
    async def test_runs_until_stopped(self, gateway, sink):
        preference_repo = MagicMock()
        preference_repo.ping.return_value = 1
        monitor = HealthMonitor(preference_repo, gateway, sink, check_interval_seconds=0)

        await monitor.start()
        assert monitor.is_running() is True
        for _ in range(5):
            await asyncio.sleep(0)
        await monitor.stop()

        assert monitor.is_running() is False
        assert preference_repo.ping.call_count >= 1
