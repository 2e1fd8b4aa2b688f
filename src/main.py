"""Main entry point for the JournalBot application."""

import asyncio
import logging
import signal
import sys
from datetime import timedelta
from typing import Optional


from journalbot.config import AppConfig, load_config, setup_logging, validate_config
from journalbot.database import DatabaseConnectionError
from journalbot.delivery_executor import DeliveryExecutor
from journalbot.failure_tracker import FailureTracker
from journalbot.health_monitor import HealthMonitor
from journalbot.monitoring import TelegramMonitoringSink
from journalbot.notification_poller import NotificationPoller
from journalbot.repository import DatabaseConnectionManager
from journalbot.telegram_bot import TelegramBotInterface, TelegramMessageGateway


logger = logging.getLogger(__name__)


class JournalBotApplication:
    """Main application class for JournalBot."""

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        """Initialize the application.

        Args:
            config: Optional pre-loaded configuration. If None, loads from environment.
        """
        self.config = config or load_config()
        self.db_manager: Optional[DatabaseConnectionManager] = None
        self.bot_interface: Optional[TelegramBotInterface] = None
        self.poller: Optional[NotificationPoller] = None
        self.health_monitor: Optional[HealthMonitor] = None
        self._running = False
        self._stopped = False

    def initialize(self) -> None:
        """Initialize all application components.

        Raises:
            DatabaseConnectionError: If database connection fails.
            ValueError: If configuration is invalid.
        """
        logger.info("Initializing JournalBot application...")

        if not validate_config(self.config):
            raise ValueError("Invalid configuration")

        setup_logging(self.config.logging)

        try:
            self.db_manager = DatabaseConnectionManager(
                self.config.database.path, self.config.database.max_retries
            )
            self.db_manager.initialize()
            logger.info("Database initialized successfully")
        except DatabaseConnectionError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

        self.bot_interface = TelegramBotInterface(
            token=self.config.telegram.token,
            db_manager=self.db_manager,
            config=self.config,
        )
        application = self.bot_interface.build_application()
        logger.info("Telegram bot interface initialized")

        notifications = self.config.notifications
        gateway = TelegramMessageGateway(application.bot, self.config.telegram.token)
        sink = TelegramMonitoringSink(application.bot, self.config.telegram.support_chat_id)
        failure_tracker = FailureTracker(
            sink,
            alert_threshold=notifications.alert_threshold,
            suppression_window=timedelta(hours=notifications.alert_suppression_hours),
        )

        executor = DeliveryExecutor(
            preference_repo=self.bot_interface.preference_repo,
            user_repo=self.bot_interface.user_repo,
            gateway=gateway,
            failure_tracker=failure_tracker,
            max_retries=notifications.max_retries,
            initial_backoff_seconds=notifications.initial_backoff_seconds,
            max_backoff_seconds=notifications.max_backoff_seconds,
            send_timeout_seconds=notifications.send_timeout_seconds,
            schedule_buffer=timedelta(seconds=notifications.schedule_buffer_seconds),
            claim_lease=timedelta(seconds=notifications.claim_lease_seconds),
        )

        self.poller = NotificationPoller(
            preference_repo=self.bot_interface.preference_repo,
            executor=executor,
            failure_tracker=failure_tracker,
            sink=sink,
            check_interval_seconds=notifications.check_interval_seconds,
            max_concurrent_deliveries=notifications.max_concurrent_deliveries,
        )
        logger.info("Notification poller initialized")

        self.health_monitor = HealthMonitor(
            self.bot_interface.preference_repo,
            gateway,
            sink,
            check_interval_seconds=notifications.health_check_interval_seconds,
        )
        self.bot_interface.health_monitor = self.health_monitor
        self.bot_interface.gateway = gateway

        logger.info("JournalBot application initialized successfully")

    async def start(self) -> None:
        """Start the application and all components."""
        if self.db_manager is None:
            self.initialize()

        self._running = True
        logger.info("Starting JournalBot application...")

        try:
            await self.bot_interface.run_polling()  # type: ignore[union-attr]
            logger.info("Telegram bot started polling")

            await self.poller.start()  # type: ignore[union-attr]
            logger.info("Notification poller started")

            await self.health_monitor.check_health()  # type: ignore[union-attr]
            await self.health_monitor.start()  # type: ignore[union-attr]

            logger.info("JournalBot application is running")

            while self._running:
                await asyncio.sleep(1.0)

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise

    def request_shutdown(self) -> None:
        """Ask the main loop to exit; cleanup happens in stop()."""
        self._running = False

    async def stop(self) -> None:
        """Stop the application and cleanup resources."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping JournalBot application...")
        self._running = False

        if self.health_monitor:
            await self.health_monitor.stop()

        if self.poller:
            await self.poller.stop()
            logger.info("Notification poller stopped")

        if self.bot_interface:
            await self.bot_interface.stop()
            logger.info("Telegram bot stopped")

        if self.db_manager:
            self.db_manager.close()

        logger.info("JournalBot application stopped")


async def run_application() -> None:
    """Run the JournalBot application with proper startup and shutdown."""
    app = JournalBotApplication()

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        app.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await app.stop()


def main() -> None:
    """Main entry point."""
    try:
        asyncio.run(run_application())
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
