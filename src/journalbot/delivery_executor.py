"""Single-user reminder delivery with bounded retries and exponential backoff."""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from journalbot.delivery_scheduler import next_fire_instant
from journalbot.failure_tracker import FailureTracker
from journalbot.models import NotificationPreference, User
from journalbot.reminder_formatter import format_reminder
from journalbot.repository import NotificationPreferenceRepository, UserRepository
from journalbot.time_conversion import InvalidTimeError, utc_now


logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Base exception for message delivery failures."""


class TransientDeliveryError(DeliveryError):
    """A failure worth retrying (network error, rate limiting, timeouts)."""


class PermanentDeliveryError(DeliveryError):
    """A failure that will not go away by retrying (e.g. the user blocked the bot)."""


class MessageGateway(Protocol):
    """The only way to reach a user."""

    @property
    def token(self) -> str:
        ...

    async def send(self, telegram_id: int, content: str) -> None:
        ...


@dataclass
class DeliveryResult:
    """Outcome of one delivery sequence for a user's slot."""

    telegram_id: int
    slot: Optional[datetime]
    success: bool
    attempts: int = 0
    error: Optional[str] = None
    permanent: bool = False
    skipped: bool = False
    cancelled: bool = False
    next_fire_at: Optional[datetime] = None
    display_name: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        """True for failures the failure tracker should count."""
        return not (self.success or self.skipped or self.cancelled)


class DeliveryExecutor:
    """Delivers one reminder slot, keeping the preference bookkeeping current.

    ``last_attempt_at`` is written before every send so a crash mid-send
    leaves a trace. On success ``last_delivered_at`` is set to the slot that
    was serviced and the next slot is computed. Transient failures are
    retried with ``min(base * 2**attempt, cap)`` backoff; a permanent failure
    disables the preference immediately.
    """

    def __init__(
        self,
        preference_repo: NotificationPreferenceRepository,
        user_repo: UserRepository,
        gateway: MessageGateway,
        failure_tracker: FailureTracker,
        clock: Callable[[], datetime] = utc_now,
        max_retries: int = 3,
        initial_backoff_seconds: float = 0.1,
        max_backoff_seconds: float = 10.0,
        send_timeout_seconds: float = 30.0,
        schedule_buffer: timedelta = timedelta(seconds=60),
        claim_lease: timedelta = timedelta(minutes=5),
        formatter: Callable[[Optional[User]], str] = format_reminder,
    ) -> None:
        """Initialize the executor.

        Args:
            preference_repo: Preference store.
            user_repo: User repository, used to personalise the message.
            gateway: Messaging gateway.
            failure_tracker: Reset after each successful delivery.
            clock: Source of the current UTC time.
            max_retries: Attempts per slot, including the first.
            initial_backoff_seconds: Backoff base.
            max_backoff_seconds: Backoff cap.
            send_timeout_seconds: Limit for a single gateway call.
            schedule_buffer: Slots closer than this to now roll to the next day.
            claim_lease: How long a claim survives if never released.
            formatter: Renders the reminder text for a user.
        """
        self.preference_repo = preference_repo
        self.user_repo = user_repo
        self.gateway = gateway
        self.failure_tracker = failure_tracker
        self.clock = clock
        self.max_retries = max_retries
        self.initial_backoff_seconds = initial_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.send_timeout_seconds = send_timeout_seconds
        self.schedule_buffer = schedule_buffer
        self.claim_lease = claim_lease
        self.formatter = formatter
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        """Stop starting new retries. Sends already in progress still finish."""
        self._stop_event.set()

    def reset_stop(self) -> None:
        """Allow retries again after a previous stop request."""
        self._stop_event.clear()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt``."""
        return min(self.initial_backoff_seconds * (2**attempt), self.max_backoff_seconds)

    async def deliver(self, preference: NotificationPreference) -> DeliveryResult:
        """Deliver the reminder for the preference's current slot.

        Args:
            preference: A due preference as observed by the poller.

        Returns:
            DeliveryResult describing what happened.
        """
        telegram_id = preference.telegram_id
        slot = preference.next_fire_at
        if slot is None:
            return DeliveryResult(telegram_id, None, success=False, skipped=True)

        now = self.clock()
        lease_until = now + self.claim_lease
        if not self.preference_repo.claim(telegram_id, slot, now, lease_until):
            logger.info(
                f"Slot {slot.isoformat()} for user {telegram_id} already claimed or delivered, skipping"
            )
            return DeliveryResult(telegram_id, slot, success=False, skipped=True)

        try:
            return await self._deliver_claimed(telegram_id, slot)
        finally:
            if not self.preference_repo.release_claim(telegram_id, lease_until):
                logger.warning(
                    f"Claim on slot {slot.isoformat()} for user {telegram_id} expired "
                    f"before delivery finished"
                )

    async def _deliver_claimed(self, telegram_id: int, slot: datetime) -> DeliveryResult:
        user = self.user_repo.get_by_telegram_id(telegram_id)
        display_name = user.display_name if user else None
        content = self.formatter(user)

        last_error = ""
        for attempt in range(1, self.max_retries + 1):
            logger.info(
                f"Attempting to send notification to user {telegram_id} "
                f"(Attempt {attempt}/{self.max_retries})..."
            )
            self.preference_repo.record_attempt(telegram_id, self.clock())
            try:
                await asyncio.wait_for(
                    self.gateway.send(telegram_id, content),
                    timeout=self.send_timeout_seconds,
                )
            except PermanentDeliveryError as e:
                last_error = str(e) or type(e).__name__
                logger.error(
                    f"Permanent failure sending notification to user {telegram_id}: "
                    f"{last_error}. Disabling notifications"
                )
                self.preference_repo.disable(telegram_id, last_error)
                return DeliveryResult(
                    telegram_id,
                    slot,
                    success=False,
                    attempts=attempt,
                    error=last_error,
                    permanent=True,
                    display_name=display_name,
                )
            except asyncio.TimeoutError:
                last_error = f"Send timed out after {self.send_timeout_seconds}s"
            except Exception as e:
                # unclassified errors are retried like transient ones
                last_error = str(e) or type(e).__name__
            else:
                return self._complete_delivery(telegram_id, slot, attempt, display_name)

            self.preference_repo.record_error(telegram_id, last_error)

            if attempt < self.max_retries:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_retries} failed for user {telegram_id}: "
                    f"{last_error}. Retrying in {delay:.1f}s"
                )
                if await self._wait_or_stopped(delay):
                    logger.info(
                        f"Shutdown requested, abandoning retries for user {telegram_id}"
                    )
                    return DeliveryResult(
                        telegram_id,
                        slot,
                        success=False,
                        attempts=attempt,
                        error=last_error,
                        cancelled=True,
                        display_name=display_name,
                    )

        logger.error(
            f"All {self.max_retries} attempts failed for user {telegram_id}: {last_error}"
        )
        return DeliveryResult(
            telegram_id,
            slot,
            success=False,
            attempts=self.max_retries,
            error=last_error,
            display_name=display_name,
        )

    def _complete_delivery(
        self,
        telegram_id: int,
        slot: datetime,
        attempts: int,
        display_name: Optional[str],
    ) -> DeliveryResult:
        self.preference_repo.mark_delivered(telegram_id, slot)

        next_fire_at: Optional[datetime] = None
        try:
            current = self.preference_repo.get(telegram_id)
            if current is not None and current.enabled:
                next_fire_at = next_fire_instant(
                    current.fire_time_utc, self.clock(), self.schedule_buffer
                )
                self.preference_repo.set_next_fire_at(telegram_id, next_fire_at)
        except (sqlite3.Error, InvalidTimeError) as e:
            logger.error(
                f"Error scheduling next notification for user {telegram_id} "
                f"after successful send: {e}",
                exc_info=True,
            )

        self.failure_tracker.record_success(telegram_id)

        logger.info(
            f"✅ Notification sent to user {telegram_id} for slot {slot.isoformat()} "
            f"on attempt {attempts}. Next notification: "
            f"{next_fire_at.isoformat() if next_fire_at else 'not scheduled'}"
        )
        return DeliveryResult(
            telegram_id,
            slot,
            success=True,
            attempts=attempts,
            next_fire_at=next_fire_at,
            display_name=display_name,
        )

    async def _wait_or_stopped(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds. Returns True if a stop was requested."""
        if self._stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
