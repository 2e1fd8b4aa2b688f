"""Operator-facing monitoring alerts."""

import html
import logging
from datetime import datetime
from typing import Callable, Optional, Protocol

from telegram import Bot
from telegram.error import TelegramError

from journalbot.time_conversion import utc_now


logger = logging.getLogger(__name__)


class MonitoringSink(Protocol):
    """Accepts free-text alerts for human operators."""

    async def alert(self, message: str, is_error: bool = False) -> None:
        ...


def format_alert(message: str, is_error: bool, timestamp: datetime) -> str:
    """Render an alert as Telegram HTML."""
    prefix = "🚨 " if is_error else ""
    return (
        "🤖 <b>Bot Monitoring Alert</b>\n\n"
        f"{prefix}{html.escape(message)}\n\n"
        f"<i>{timestamp.isoformat(timespec='seconds')}</i>"
    )


class TelegramMonitoringSink:
    """Sends monitoring alerts to a support chat.

    Alerts are best effort: without a support chat they are only logged, and
    a failed send is logged rather than raised.
    """

    def __init__(
        self,
        bot: Optional[Bot],
        support_chat_id: Optional[str],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the sink.

        Args:
            bot: Telegram bot used to send alerts.
            support_chat_id: Chat that receives alerts. None disables sending.
            clock: Source of the alert timestamp.
        """
        self.bot = bot
        self.support_chat_id = support_chat_id
        self.clock = clock

    @property
    def enabled(self) -> bool:
        """True if alerts are delivered to a chat."""
        return self.bot is not None and bool(self.support_chat_id)

    async def alert(self, message: str, is_error: bool = False) -> None:
        """Send an alert to the support chat.

        Args:
            message: Alert text.
            is_error: Marks the alert as critical.
        """
        log = logger.error if is_error else logger.info
        log(f"Monitoring alert: {message}")

        if not self.enabled:
            logger.warning("Support chat ID not configured, monitoring alerts disabled")
            return

        try:
            await self.bot.send_message(  # type: ignore[union-attr]
                chat_id=self.support_chat_id,
                text=format_alert(message, is_error, self.clock()),
                parse_mode="HTML",
            )
        except TelegramError as e:
            logger.error(f"Failed to send monitoring alert: {e}")
