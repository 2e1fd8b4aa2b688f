"""Configuration management for the journal bot."""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    path: str = "journalbot.db"
    max_retries: int = 3


@dataclass
class TelegramConfig:
    """Telegram bot configuration settings."""

    token: str = ""
    support_chat_id: Optional[str] = None


@dataclass
class NotificationConfig:
    """Reminder scheduling and delivery settings."""

    check_interval_seconds: int = 60
    max_retries: int = 3
    initial_backoff_seconds: float = 0.1
    max_backoff_seconds: float = 10.0
    send_timeout_seconds: float = 30.0
    alert_threshold: int = 3
    alert_suppression_hours: int = 24
    schedule_buffer_seconds: int = 60
    claim_lease_seconds: int = 300
    max_concurrent_deliveries: int = 10
    health_check_interval_seconds: int = 300

    def worst_case_delivery_seconds(self) -> float:
        """Longest a delivery sequence can run: every send times out and every backoff is waited."""
        backoff = sum(
            min(self.initial_backoff_seconds * (2**attempt), self.max_backoff_seconds)
            for attempt in range(1, self.max_retries)
        )
        return self.max_retries * self.send_timeout_seconds + backoff


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _int_from_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {name} value: {value}")
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {name} value: {value}")
        return default


def load_config() -> AppConfig:
    """Load configuration from environment variables and an optional .env file.

    Returns:
        AppConfig with all settings loaded.
    """
    load_dotenv()
    config = AppConfig()

    database_path = os.environ.get("JOURNALBOT_DB_PATH")
    if database_path:
        config.database.path = os.path.expanduser(database_path)
    config.database.max_retries = _int_from_env(
        "JOURNALBOT_DB_MAX_RETRIES", config.database.max_retries
    )

    telegram_token = os.environ.get("TELEGRAM_BOT_TOKEN")
    if telegram_token:
        config.telegram.token = telegram_token
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set - bot will not be able to run")

    support_chat_id = os.environ.get("SUPPORT_CHAT_ID", "").strip()
    if support_chat_id:
        config.telegram.support_chat_id = support_chat_id

    notifications = config.notifications
    notifications.check_interval_seconds = _int_from_env(
        "JOURNALBOT_CHECK_INTERVAL", notifications.check_interval_seconds
    )
    notifications.max_retries = _int_from_env(
        "MAX_NOTIFICATION_RETRIES", notifications.max_retries
    )
    notifications.alert_threshold = _int_from_env(
        "NOTIFICATION_ALERT_THRESHOLD", notifications.alert_threshold
    )
    notifications.send_timeout_seconds = _float_from_env(
        "JOURNALBOT_SEND_TIMEOUT", notifications.send_timeout_seconds
    )
    notifications.claim_lease_seconds = _int_from_env(
        "JOURNALBOT_CLAIM_LEASE", notifications.claim_lease_seconds
    )
    notifications.max_concurrent_deliveries = _int_from_env(
        "JOURNALBOT_MAX_CONCURRENT_DELIVERIES", notifications.max_concurrent_deliveries
    )
    notifications.health_check_interval_seconds = _int_from_env(
        "JOURNALBOT_HEALTH_CHECK_INTERVAL", notifications.health_check_interval_seconds
    )

    log_level = os.environ.get("JOURNALBOT_LOG_LEVEL")
    if log_level:
        config.logging.level = log_level.upper()

    log_file = os.environ.get("JOURNALBOT_LOG_FILE")
    if log_file:
        config.logging.file = log_file

    return config


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging based on the provided configuration.

    Args:
        config: Logging configuration settings.
    """
    log_level = getattr(logging, config.level, logging.INFO)

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(config.format))
    handlers.append(console_handler)

    if config.file:
        try:
            file_handler = logging.FileHandler(config.file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(config.format))
            handlers.append(file_handler)
        except OSError as e:
            logger.error(f"Failed to create log file {config.file}: {e}")

    logging.basicConfig(
        level=log_level,
        format=config.format,
        handlers=handlers,
    )

    # httpx logs every Telegram API request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info(f"Logging configured with level: {config.level}")


def validate_config(config: AppConfig) -> bool:
    """Validate that the configuration is complete and valid.

    Args:
        config: Application configuration to validate.

    Returns:
        True if configuration is valid.
    """
    if not config.telegram.token:
        logger.error("TELEGRAM_BOT_TOKEN is required")
        return False

    if config.database.max_retries < 1:
        logger.error("Database max_retries must be at least 1")
        return False

    notifications = config.notifications
    if notifications.check_interval_seconds < 1:
        logger.error("Notification check interval must be at least 1 second")
        return False

    if notifications.max_retries < 1:
        logger.error("MAX_NOTIFICATION_RETRIES must be at least 1")
        return False

    if notifications.alert_threshold < 1:
        logger.error("NOTIFICATION_ALERT_THRESHOLD must be at least 1")
        return False

    if notifications.max_concurrent_deliveries < 1:
        logger.error("Max concurrent deliveries must be at least 1")
        return False

    if notifications.send_timeout_seconds <= 0:
        logger.error("Send timeout must be positive")
        return False

    worst_case = notifications.worst_case_delivery_seconds()
    if notifications.claim_lease_seconds < worst_case:
        logger.error(
            f"Claim lease of {notifications.claim_lease_seconds}s is shorter than the "
            f"longest delivery sequence ({worst_case:.1f}s)"
        )
        return False

    if not config.telegram.support_chat_id:
        logger.warning("SUPPORT_CHAT_ID not set - monitoring alerts will only be logged")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.logging.level not in valid_log_levels:
        logger.error(f"Invalid log level: {config.logging.level}")
        return False

    return True
