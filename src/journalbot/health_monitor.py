"""Liveness checks for the preference store and the messaging gateway."""

import asyncio
import logging
from typing import Optional

from journalbot.delivery_executor import MessageGateway
from journalbot.monitoring import MonitoringSink
from journalbot.repository import NotificationPreferenceRepository


logger = logging.getLogger(__name__)


def _status(ok: bool) -> str:
    return "OK" if ok else "FAILED"


class HealthMonitor:
    """Reports whether reminders can currently be delivered."""

    def __init__(
        self,
        preference_repo: NotificationPreferenceRepository,
        gateway: MessageGateway,
        sink: MonitoringSink,
        check_interval_seconds: int = 300,
    ) -> None:
        self.preference_repo = preference_repo
        self.gateway = gateway
        self.sink = sink
        self.check_interval = check_interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task[None]] = None

    async def check_health(self) -> bool:
        """Probe the preference store and the gateway credentials.

        An empty preference store counts as unhealthy. Problems are reported
        to the monitoring sink; this method never raises.

        Returns:
            True if both the store and the gateway look usable.
        """
        try:
            db_ok = self.preference_repo.ping() is not None
            api_ok = bool(self.gateway.token)

            if db_ok and api_ok:
                logger.debug("Notification system health check passed")
                return True

            logger.warning(
                f"Health check failed: database={_status(db_ok)}, telegram={_status(api_ok)}"
            )
            await self.sink.alert(
                "⚠️ Notification system health check failed:\n"
                f"- Database status: {_status(db_ok)}\n"
                f"- Telegram API status: {_status(api_ok)}",
                is_error=True,
            )
            return False
        except Exception as e:
            logger.error(f"Error during health check: {e}", exc_info=True)
            await self.sink.alert(
                f"⚠️ Notification system health check threw an exception: {e}",
                is_error=True,
            )
            return False

    async def start(self) -> None:
        """Run ``check_health`` periodically in the background."""
        if self._running:
            logger.warning("Health monitor is already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Started health monitor (interval: {self.check_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic checks."""
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Stopped health monitor")

    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.check_interval)
            await self.check_health()
