"""JournalBot - Telegram bot that sends daily journaling reminders."""

from journalbot.models import (
    NotificationPreference,
    User,
    ValidationError,
)
from journalbot.time_conversion import (
    InvalidOffsetError,
    InvalidTimeError,
    TimeConversionError,
    convert_from_utc,
    convert_to_utc,
    format_time_with_offset,
    is_valid_time,
    is_valid_utc_offset,
    offset_choices,
    parse_utc_offset,
)
from journalbot.delivery_scheduler import (
    InvalidScheduleError,
    NotificationScheduler,
    NotificationTimeInfo,
    SchedulerError,
    UserNotFoundError,
    next_fire_instant,
)
from journalbot.delivery_executor import (
    DeliveryError,
    DeliveryExecutor,
    DeliveryResult,
    MessageGateway,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from journalbot.failure_tracker import FailureRecord, FailureTracker
from journalbot.health_monitor import HealthMonitor
from journalbot.monitoring import MonitoringSink, TelegramMonitoringSink
from journalbot.notification_poller import NotificationPoller
from journalbot.reminder_formatter import format_reminder
from journalbot.telegram_bot import (
    TelegramBotInterface,
    TelegramMessageGateway,
    WELCOME_MESSAGE,
    HELP_MESSAGE,
)
from journalbot.input_validator import (
    sanitize_text,
    validate_telegram_id,
    validate_time_string,
    validate_utc_offset,
    ValidationError as InputValidationError,
)


__all__ = [
    "convert_from_utc",
    "convert_to_utc",
    "DeliveryError",
    "DeliveryExecutor",
    "DeliveryResult",
    "FailureRecord",
    "FailureTracker",
    "format_reminder",
    "format_time_with_offset",
    "HealthMonitor",
    "HELP_MESSAGE",
    "InputValidationError",
    "InvalidOffsetError",
    "InvalidScheduleError",
    "InvalidTimeError",
    "is_valid_time",
    "is_valid_utc_offset",
    "MessageGateway",
    "MonitoringSink",
    "next_fire_instant",
    "NotificationPoller",
    "NotificationPreference",
    "NotificationScheduler",
    "NotificationTimeInfo",
    "offset_choices",
    "parse_utc_offset",
    "PermanentDeliveryError",
    "sanitize_text",
    "SchedulerError",
    "TelegramBotInterface",
    "TelegramMessageGateway",
    "TelegramMonitoringSink",
    "TimeConversionError",
    "TransientDeliveryError",
    "User",
    "UserNotFoundError",
    "validate_telegram_id",
    "validate_time_string",
    "validate_utc_offset",
    "ValidationError",
    "WELCOME_MESSAGE",
]
