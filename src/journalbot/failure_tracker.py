"""In-memory tracking of consecutive reminder delivery failures."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from journalbot.monitoring import MonitoringSink
from journalbot.time_conversion import utc_now


logger = logging.getLogger(__name__)


@dataclass
class FailureRecord:
    """Failure state for one user. Lost on restart."""

    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_alert_sent_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None


class FailureTracker:
    """Counts consecutive failures per user and raises rate-limited alerts.

    Once a user reaches ``alert_threshold`` consecutive failures, one alert is
    sent; further alerts for that user are suppressed for
    ``suppression_window``.
    """

    def __init__(
        self,
        sink: MonitoringSink,
        alert_threshold: int = 3,
        suppression_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.sink = sink
        self.alert_threshold = alert_threshold
        self.suppression_window = suppression_window
        self.clock = clock
        self._records: dict[int, FailureRecord] = {}

    def get(self, user_id: int) -> FailureRecord:
        """Return the user's record (an empty one if nothing was recorded)."""
        return self._records.get(user_id, FailureRecord())

    async def record_failure(
        self,
        user_id: int,
        error: str,
        display_name: Optional[str] = None,
    ) -> bool:
        """Record a failed delivery and alert if the threshold is reached.

        Args:
            user_id: Telegram user ID.
            error: Description of the last error.
            display_name: Optional name included in the alert text.

        Returns:
            True if an alert was sent.
        """
        now = self.clock()
        record = self._records.setdefault(user_id, FailureRecord())
        record.consecutive_failures += 1
        record.last_error = error
        record.last_failure_at = now

        if record.consecutive_failures < self.alert_threshold:
            return False

        if (
            record.last_alert_sent_at is not None
            and now - record.last_alert_sent_at <= self.suppression_window
        ):
            logger.debug(
                f"Alert for user {user_id} suppressed, last sent at "
                f"{record.last_alert_sent_at.isoformat()}"
            )
            return False

        who = f"{user_id} ({display_name})" if display_name else str(user_id)
        await self.sink.alert(
            f"Failed to send notification to user {who} "
            f"{record.consecutive_failures} times.\nLast error: {error}",
            is_error=True,
        )
        record.last_alert_sent_at = now
        return True

    def record_success(self, user_id: int) -> None:
        """Reset the consecutive failure count after a successful delivery.

        The alert timestamp survives so a flapping user still gets at most
        one alert per suppression window.
        """
        record = self._records.get(user_id)
        if record is None:
            return
        if record.last_alert_sent_at is None:
            del self._records[user_id]
        else:
            record.consecutive_failures = 0
            record.last_error = None

    def prune(self) -> int:
        """Drop records with no failure and no alert inside the suppression window.

        Covers users whose counter was reset long after their last alert and
        users who stopped being retried (disabled or deleted) without ever
        succeeding.

        Returns:
            Number of records removed.
        """
        cutoff = self.clock() - self.suppression_window
        stale = [
            user_id
            for user_id, record in self._records.items()
            if all(
                timestamp is None or timestamp < cutoff
                for timestamp in (record.last_failure_at, record.last_alert_sent_at)
            )
        ]
        for user_id in stale:
            del self._records[user_id]
        if stale:
            logger.debug(f"Pruned {len(stale)} stale failure records")
        return len(stale)
