"""Recurring sweep that finds due reminders and fans out delivery."""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from journalbot.delivery_executor import DeliveryExecutor, DeliveryResult
from journalbot.failure_tracker import FailureTracker
from journalbot.models import NotificationPreference
from journalbot.monitoring import MonitoringSink
from journalbot.repository import NotificationPreferenceRepository
from journalbot.time_conversion import utc_now


logger = logging.getLogger(__name__)


class PollerState(Enum):
    """Whether a sweep is currently running."""

    IDLE = "idle"
    SWEEPING = "sweeping"


class NotificationPoller:
    """Periodically checks for due reminders and hands them to the executor.

    A sweep only dispatches deliveries; it does not wait for them. Results
    are reported to the failure tracker as each delivery finishes.
    """

    def __init__(
        self,
        preference_repo: NotificationPreferenceRepository,
        executor: DeliveryExecutor,
        failure_tracker: FailureTracker,
        sink: MonitoringSink,
        clock: Callable[[], datetime] = utc_now,
        check_interval_seconds: int = 60,
        max_concurrent_deliveries: int = 10,
    ) -> None:
        """Initialize the poller.

        Args:
            preference_repo: Preference store.
            executor: Performs each user's delivery.
            failure_tracker: Receives exhausted and permanent failures.
            sink: Receives start/stop announcements and sweep errors.
            clock: Source of the current UTC time.
            check_interval_seconds: Time between sweeps.
            max_concurrent_deliveries: Upper bound on deliveries in flight.
        """
        self.preference_repo = preference_repo
        self.executor = executor
        self.failure_tracker = failure_tracker
        self.sink = sink
        self.clock = clock
        self.check_interval = check_interval_seconds

        self.state = PollerState.IDLE
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self._in_flight: dict[int, asyncio.Task[DeliveryResult]] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent_deliveries)
        self._sweep_lock = asyncio.Lock()

    async def start(self) -> None:
        """Start the sweep loop and announce it."""
        logger.info("Attempting to start notification poller...")
        if self._running:
            logger.warning("Notification poller is already running")
            return

        self._running = True
        self.executor.reset_stop()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Started notification poller (check interval: {self.check_interval}s)"
        )
        await self.sink.alert("ℹ️ Notification service started")

    async def stop(self) -> None:
        """Stop the sweep loop.

        In-flight deliveries finish their current send but start no new
        retries.
        """
        logger.info("Attempting to stop notification poller...")
        if not self._running:
            logger.warning("Notification poller was not running")
            return

        self._running = False
        self.executor.request_stop()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = list(self._in_flight.values())
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight deliveries to finish")
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Stopped notification poller")
        await self.sink.alert("⚠️ Notification service stopped")

    def is_running(self) -> bool:
        """Check if the sweep loop is active."""
        return self._running

    def in_flight(self) -> set[int]:
        """Telegram IDs whose delivery is currently running."""
        return set(self._in_flight)

    async def _run_loop(self) -> None:
        while self._running:
            await self.sweep()
            await asyncio.sleep(self.check_interval)

    def find_due(
        self,
        preferences: list[NotificationPreference],
        now: datetime,
    ) -> list[NotificationPreference]:
        """Select preferences whose slot has arrived and is not yet serviced.

        Args:
            preferences: Enabled preferences.
            now: Current time.

        Returns:
            Preferences to deliver now.
        """
        due = []
        for preference in preferences:
            telegram_id = preference.telegram_id
            if preference.next_fire_at is None:
                logger.debug(f"User {telegram_id} has no next_fire_at set, skipping")
                continue
            if preference.is_slot_serviced():
                logger.debug(
                    f"Notification for {preference.next_fire_at.isoformat()} was already "
                    f"sent to user {telegram_id}. Skipping."
                )
                continue
            if not preference.is_due(now):
                continue
            if telegram_id in self._in_flight:
                logger.debug(f"Delivery for user {telegram_id} still in flight, skipping")
                continue
            due.append(preference)
        return due

    async def sweep(self) -> list["asyncio.Task[DeliveryResult]"]:
        """Run one sweep: find due users and dispatch their deliveries.

        Errors while loading preferences are logged and alerted; the next
        sweep simply tries again.

        Returns:
            The dispatched delivery tasks (not awaited).
        """
        async with self._sweep_lock:
            self.state = PollerState.SWEEPING
            try:
                return self._dispatch_due()
            except Exception as e:
                logger.error(f"Error checking notifications: {e}", exc_info=True)
                await self.sink.alert(
                    f"Error in notification check process: {e}", is_error=True
                )
                return []
            finally:
                self.state = PollerState.IDLE

    def _dispatch_due(self) -> list["asyncio.Task[DeliveryResult]"]:
        now = self.clock()
        self.failure_tracker.prune()
        preferences = self.preference_repo.list_enabled()
        due = self.find_due(preferences, now)

        tasks = []
        for preference in due:
            task = asyncio.create_task(self._deliver(preference))
            self._track(preference.telegram_id, task)
            tasks.append(task)

        logger.debug(
            f"Checked {len(preferences)} enabled users, dispatched {len(tasks)} notifications"
        )
        return tasks

    def _track(self, telegram_id: int, task: "asyncio.Task[DeliveryResult]") -> None:
        self._in_flight[telegram_id] = task

        def _done(finished: "asyncio.Task[DeliveryResult]") -> None:
            if self._in_flight.get(telegram_id) is finished:
                del self._in_flight[telegram_id]

        task.add_done_callback(_done)

    async def _deliver(self, preference: NotificationPreference) -> DeliveryResult:
        telegram_id = preference.telegram_id
        async with self._semaphore:
            try:
                result = await self.executor.deliver(preference)
            except Exception as e:
                logger.error(
                    f"Final failure sending notification to user {telegram_id}: {e}",
                    exc_info=True,
                )
                result = DeliveryResult(
                    telegram_id,
                    preference.next_fire_at,
                    success=False,
                    error=str(e) or type(e).__name__,
                )

        if result.is_failure:
            await self.failure_tracker.record_failure(
                telegram_id, result.error or "unknown error", result.display_name
            )
        return result

    async def run_once(self) -> list[DeliveryResult]:
        """Run a single sweep and wait for its deliveries.

        Useful for testing or manual triggering.

        Returns:
            List of delivery results.
        """
        tasks = await self.sweep()
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))
