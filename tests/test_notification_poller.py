"""Tests for the recurring sweep that dispatches due reminders."""

import asyncio
import sqlite3
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from journalbot.delivery_executor import DeliveryExecutor, TransientDeliveryError
from journalbot.notification_poller import NotificationPoller, PollerState


class GatedGateway:
    token = "test-token"

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.sent: list[int] = []

    async def send(self, telegram_id: int, content: str) -> None:
        await self.gate.wait()
        self.sent.append(telegram_id)


def build_poller(preference_repo, user_repo, gateway, failure_tracker, sink, clock, **kwargs):
    executor = DeliveryExecutor(
        preference_repo,
        user_repo,
        gateway,
        failure_tracker,
        clock=clock,
        max_retries=kwargs.pop("max_retries", 3),
        initial_backoff_seconds=0,
    )
    return NotificationPoller(
        preference_repo, executor, failure_tracker, sink, clock=clock, **kwargs
    )


@pytest.fixture
def poller(preference_repo, user_repo, gateway, failure_tracker, sink, clock):
    return build_poller(preference_repo, user_repo, gateway, failure_tracker, sink, clock)


class TestSweep:
    @pytest.mark.asyncio
    async def test_delivers_due_and_skips_future(
        self, poller, due_preference, gateway, clock
    ):
        due_preference(telegram_id=1)
        due_preference(telegram_id=2, next_fire_at=clock() + timedelta(minutes=5))

        results = await poller.run_once()

        assert [r.telegram_id for r in results] == [1]
        assert [telegram_id for telegram_id, _ in gateway.sent] == [1]

    @pytest.mark.asyncio
    async def test_skips_disabled_and_unscheduled(self, poller, due_preference, gateway):
        due_preference(telegram_id=1, enabled=False)
        due_preference(telegram_id=2, next_fire_at=None)

        assert await poller.run_once() == []
        assert gateway.calls == 0

    @pytest.mark.asyncio
    async def test_serviced_slot_is_not_redelivered(self, poller, due_preference, gateway, clock):
        slot = clock() - timedelta(minutes=1)
        due_preference(next_fire_at=slot, last_delivered_at=slot)

        assert await poller.run_once() == []
        assert gateway.calls == 0

    @pytest.mark.asyncio
    async def test_second_sweep_after_delivery_sends_nothing(self, poller, due_preference, gateway):
        due_preference()

        await poller.run_once()
        await poller.run_once()

        assert len(gateway.sent) == 1

    @pytest.mark.asyncio
    async def test_sweep_does_not_wait_for_delivery(
        self, preference_repo, user_repo, failure_tracker, sink, clock, due_preference
    ):
        gateway = GatedGateway()
        poller = build_poller(preference_repo, user_repo, gateway, failure_tracker, sink, clock)
        due_preference()

        tasks = await poller.sweep()

        assert poller.state is PollerState.IDLE
        assert len(tasks) == 1
        assert not tasks[0].done()
        assert poller.in_flight() == {12345}

        assert await poller.sweep() == []

        gateway.gate.set()
        results = await asyncio.gather(*tasks)
        assert results[0].success is True
        assert poller.in_flight() == set()

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(
        self, preference_repo, user_repo, failure_tracker, sink, clock, due_preference
    ):
        gateway = GatedGateway()
        poller = build_poller(
            preference_repo, user_repo, gateway, failure_tracker, sink, clock,
            max_concurrent_deliveries=2,
        )
        for telegram_id in (1, 2, 3):
            due_preference(telegram_id=telegram_id)

        tasks = await poller.sweep()
        for _ in range(5):
            await asyncio.sleep(0)
        assert poller._semaphore.locked()

        gateway.gate.set()
        await asyncio.gather(*tasks)
        assert sorted(gateway.sent) == [1, 2, 3]


class TestFailureReporting:
    @pytest.mark.asyncio
    async def test_exhausted_slot_is_retried_next_sweep_and_alerts_once(
        self, preference_repo, user_repo, gateway, failure_tracker, sink, clock, due_preference
    ):
        poller = build_poller(
            preference_repo, user_repo, gateway, failure_tracker, sink, clock, max_retries=1
        )
        gateway.errors = [TransientDeliveryError("network down") for _ in range(5)]
        due_preference()

        for _ in range(5):
            await poller.run_once()
            clock.advance(minutes=1)

        assert gateway.calls == 5
        assert failure_tracker.get(12345).consecutive_failures == 5
        alerts = [m for m in sink.messages if m.startswith("Failed to send")]
        assert alerts == [
            "Failed to send notification to user 12345 (Alice) 3 times.\n"
            "Last error: network down"
        ]

    @pytest.mark.asyncio
    async def test_executor_exception_is_counted(
        self, preference_repo, failure_tracker, sink, clock, due_preference
    ):
        executor = MagicMock()
        executor.deliver = AsyncMock(side_effect=RuntimeError("kaboom"))
        poller = NotificationPoller(preference_repo, executor, failure_tracker, sink, clock=clock)
        due_preference()

        results = await poller.run_once()

        assert results[0].success is False
        assert results[0].error == "kaboom"
        assert failure_tracker.get(12345).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_store_error_alerts_and_keeps_going(self, failure_tracker, sink, clock):
        preference_repo = MagicMock()
        preference_repo.list_enabled.side_effect = sqlite3.OperationalError("database is locked")
        poller = NotificationPoller(
            preference_repo, MagicMock(), failure_tracker, sink, clock=clock
        )

        assert await poller.sweep() == []

        assert poller.state is PollerState.IDLE
        assert sink.alerts == [
            ("Error in notification check process: database is locked", True)
        ]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop_are_announced(self, poller, sink):
        await poller.start()
        assert poller.is_running() is True

        await poller.stop()
        assert poller.is_running() is False
        assert sink.messages == [
            "ℹ️ Notification service started",
            "⚠️ Notification service stopped",
        ]

    @pytest.mark.asyncio
    async def test_double_start_and_stop_are_ignored(self, poller, sink):
        await poller.stop()
        await poller.start()
        await poller.start()
        await poller.stop()

        assert len(sink.messages) == 2

    @pytest.mark.asyncio
    async def test_loop_sweeps_on_start(self, poller, due_preference, gateway):
        due_preference()

        await poller.start()
        for _ in range(20):
            if gateway.sent:
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        assert len(gateway.sent) == 1

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_delivery(
        self, preference_repo, user_repo, failure_tracker, sink, clock, due_preference
    ):
        gateway = GatedGateway()
        poller = build_poller(preference_repo, user_repo, gateway, failure_tracker, sink, clock)
        due_preference()

        await poller.start()
        for _ in range(20):
            if poller.in_flight():
                break
            await asyncio.sleep(0.01)

        stop_task = asyncio.create_task(poller.stop())
        await asyncio.sleep(0.01)
        assert not stop_task.done()

        gateway.gate.set()
        await stop_task
        assert gateway.sent == [12345]
