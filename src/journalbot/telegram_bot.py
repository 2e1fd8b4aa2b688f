"""Telegram bot interface: reminder settings commands and the delivery gateway."""

import logging
import sqlite3
from typing import Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import (
    BadRequest,
    Forbidden,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from journalbot.config import AppConfig
from journalbot.delivery_executor import (
    MessageGateway,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from journalbot.delivery_scheduler import (
    InvalidScheduleError,
    NotificationScheduler,
    UserNotFoundError,
)
from journalbot.health_monitor import HealthMonitor
from journalbot.input_validator import (
    ValidationError,
    sanitize_text,
    validate_telegram_id,
    validate_time_string,
    validate_utc_offset,
)
from journalbot.models import User
from journalbot.reminder_formatter import TELEGRAM_MAX_MESSAGE_LENGTH
from journalbot.repository import (
    DatabaseConnectionManager,
    NotificationPreferenceRepository,
    UserRepository,
)
from journalbot.time_conversion import format_time_with_offset, offset_choices


logger = logging.getLogger(__name__)


PERMANENT_BAD_REQUESTS = ("chat not found", "user not found", "user is deactivated")

OFFSET_CALLBACK_PREFIX = "settime:"
OFFSET_CANCEL = "cancel"
OFFSET_KEYBOARD_COLUMNS = 3


class TelegramMessageGateway:
    """Sends reminders through the Bot API and classifies failures.

    Blocked bots and vanished chats are permanent; rate limiting, timeouts
    and network problems are transient.
    """

    def __init__(self, bot: Bot, token: str) -> None:
        self.bot = bot
        self._token = token

    @property
    def token(self) -> str:
        return self._token

    async def send(self, telegram_id: int, content: str) -> None:
        """Send an HTML message to a user.

        Raises:
            PermanentDeliveryError: If the user can never receive messages.
            TransientDeliveryError: If the send may succeed later.
        """
        try:
            await self.bot.send_message(
                chat_id=telegram_id,
                text=content,
                parse_mode="HTML",
            )
        except Forbidden as e:
            raise PermanentDeliveryError(f"Bot was blocked or removed: {e.message}") from e
        except BadRequest as e:
            if any(reason in e.message.lower() for reason in PERMANENT_BAD_REQUESTS):
                raise PermanentDeliveryError(e.message) from e
            raise TransientDeliveryError(e.message) from e
        except RetryAfter as e:
            raise TransientDeliveryError(f"Rate limited, retry after {e.retry_after}") from e
        except TimedOut as e:
            raise TransientDeliveryError(f"Telegram request timed out: {e.message}") from e
        except NetworkError as e:
            raise TransientDeliveryError(f"Network error: {e.message}") from e
        except TelegramError as e:
            raise TransientDeliveryError(e.message) from e


def build_offset_keyboard(local_time: str) -> InlineKeyboardMarkup:
    """Build the UTC offset picker shown after /settime HH:MM.

    Each button carries the chosen time and offset, e.g. "settime:21:00|+3".

    Args:
        local_time: Normalized HH:MM reminder time.

    Returns:
        Keyboard with whole-hour offsets, three per row, and a cancel button.
    """
    buttons = [
        InlineKeyboardButton(
            f"UTC{offset}" if offset != "0" else "UTC",
            callback_data=f"{OFFSET_CALLBACK_PREFIX}{local_time}|{offset}",
        )
        for offset in offset_choices()
    ]
    keyboard = [
        buttons[i : i + OFFSET_KEYBOARD_COLUMNS]
        for i in range(0, len(buttons), OFFSET_KEYBOARD_COLUMNS)
    ]
    keyboard.append(
        [
            InlineKeyboardButton(
                "❌ Cancel", callback_data=f"{OFFSET_CALLBACK_PREFIX}{OFFSET_CANCEL}"
            )
        ]
    )
    return InlineKeyboardMarkup(keyboard)


WELCOME_MESSAGE = """📔 *Welcome to your journal!*

Every evening I'll remind you to write down how your day went.

Here's how it works:
1. Set your reminder time with /settime 21:00 +2
2. Turn reminders on or off with /notifications
3. Check your settings with /mytime

Use /help to see all available commands."""


HELP_MESSAGE = """📖 *Journal Bot Commands*

*Getting Started:*
/start - Start the bot and create your profile
/help - Show this help message

*Reminders:*
/settime HH:MM [offset] - Set your daily reminder time, e.g. /settime 21:30 -5
/notifications - Turn daily reminders on or off
/mytime - Show your reminder time

Offsets are hours from UTC, like +2, -5:30 or 0.
Leave the offset out to pick one from a list."""


UNRECOGNIZED_COMMAND_MESSAGE = """❓ *Unrecognized Command*

I didn't understand that command.

*Available commands:*
/start - Start the bot and create your profile
/help - Show all available commands
/settime - Set your daily reminder time
/notifications - Turn reminders on or off
/mytime - Show your reminder time

Tip: Commands always start with a forward slash (/)"""


VALID_COMMANDS = [
    "start",
    "help",
    "settime",
    "notifications",
    "mytime",
    "health",
    "notifyusers",
]


class TelegramBotInterface:
    """Interface for handling Telegram bot commands and interactions."""

    def __init__(
        self,
        token: str,
        db_manager: DatabaseConnectionManager,
        config: AppConfig,
        scheduler: Optional[NotificationScheduler] = None,
        health_monitor: Optional[HealthMonitor] = None,
        gateway: Optional[MessageGateway] = None,
    ) -> None:
        """Initialize the Telegram bot interface.

        Args:
            token: Telegram bot API token.
            db_manager: Database connection manager.
            config: Application configuration.
            scheduler: Reminder settings service. Built from db_manager if omitted.
            health_monitor: Backs the /health command. Can be attached later.
            gateway: Sends /notifyusers broadcasts. Can be attached later.
        """
        self.token = token
        self.db_manager = db_manager
        self.config = config
        self.user_repo = UserRepository(db_manager)
        self.preference_repo = NotificationPreferenceRepository(db_manager)
        self.scheduler = scheduler or NotificationScheduler(self.preference_repo, self.user_repo)
        self.health_monitor = health_monitor
        self.gateway = gateway
        self.application: Optional[Application] = None  # type: ignore[type-arg]

    def build_application(self) -> Application:  # type: ignore[type-arg]
        """Build and configure the Telegram application.

        Returns:
            Configured Telegram Application instance.
        """
        self.application = Application.builder().token(self.token).build()
        self._register_handlers()
        return self.application

    def _register_handlers(self) -> None:
        """Register all command handlers with the application."""
        if self.application is None:
            raise RuntimeError("Application not built. Call build_application() first.")

        self.application.add_handler(CommandHandler("start", self._handle_start))
        self.application.add_handler(CommandHandler("help", self._handle_help))
        self.application.add_handler(CommandHandler("settime", self._handle_settime))
        self.application.add_handler(
            CommandHandler("notifications", self._handle_notifications)
        )
        self.application.add_handler(CommandHandler("mytime", self._handle_mytime))
        self.application.add_handler(CommandHandler("health", self._handle_health))
        self.application.add_handler(
            CommandHandler("notifyusers", self._handle_notifyusers)
        )
        self.application.add_handler(
            CallbackQueryHandler(
                self._handle_offset_selection, pattern=rf"^{OFFSET_CALLBACK_PREFIX}"
            )
        )

        self.application.add_handler(
            MessageHandler(
                filters.COMMAND
                & ~filters.Regex(rf"^/({'|'.join(VALID_COMMANDS)})\b"),
                self._handle_unrecognized_command,
            )
        )

    def ensure_user(self, update: Update) -> Optional[User]:
        """Create or refresh the user record for the sender of an update.

        Returns:
            The stored user, or None if the update has no sender.
        """
        telegram_user = update.effective_user
        if telegram_user is None:
            return None

        validate_telegram_id(telegram_user.id)
        language = "ru" if (telegram_user.language_code or "").startswith("ru") else "en"
        existing_user = self.user_repo.get_by_telegram_id(telegram_user.id)

        if existing_user is None:
            user = User(
                telegram_id=telegram_user.id,
                username=telegram_user.username,
                first_name=telegram_user.first_name,
                last_name=telegram_user.last_name,
                language=language,
            )
            self.user_repo.create(user)
            logger.info(f"Created new user with telegram_id={telegram_user.id}")
            return user

        existing_user.username = telegram_user.username
        existing_user.first_name = telegram_user.first_name
        existing_user.last_name = telegram_user.last_name
        self.user_repo.update(existing_user)
        return existing_user

    async def _handle_start(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle the /start command.

        Creates the user profile and a disabled default reminder preference.
        """
        if update.effective_user is None or update.message is None:
            return

        user = self.ensure_user(update)
        if user is not None:
            self.scheduler.get_or_create_preference(user.telegram_id)

        await update.message.reply_text(
            WELCOME_MESSAGE,
            parse_mode="Markdown",
        )

    async def _handle_help(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle the /help command."""
        if update.message is None:
            return

        await update.message.reply_text(
            HELP_MESSAGE,
            parse_mode="Markdown",
        )

    async def _handle_settime(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /settime HH:MM [offset].

        Setting a time also enables reminders. Without an offset the user
        picks one from an inline keyboard.

        Args:
            update: Telegram update object.
            context: Callback context.
        """
        if update.effective_user is None or update.message is None:
            return

        args = context.args or []
        if not args or len(args) > 2:
            await update.message.reply_text(
                "⚠️ *Usage:* /settime HH:MM [offset]\n\n"
                "Example: /settime 21:00 +2",
                parse_mode="Markdown",
            )
            return

        try:
            local_time = validate_time_string(args[0])
            utc_offset = validate_utc_offset(args[1]) if len(args) == 2 else None
        except ValidationError as e:
            await update.message.reply_text(f"❌ {e}")
            return

        if utc_offset is None:
            await update.message.reply_text(
                f"🌍 *Pick your UTC offset*\n\n"
                f"Which offset should {local_time} be in?",
                parse_mode="Markdown",
                reply_markup=build_offset_keyboard(local_time),
            )
            return

        reply = self._apply_reminder_time(update, local_time, utc_offset)
        if reply is not None:
            await update.message.reply_text(reply, parse_mode="Markdown")

    async def _handle_offset_selection(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle a button press on the offset keyboard.

        Args:
            update: Telegram update object with callback query.
            context: Callback context.
        """
        query = update.callback_query
        if query is None or update.effective_user is None:
            return

        await query.answer()

        choice = (query.data or "").removeprefix(OFFSET_CALLBACK_PREFIX)
        if choice == OFFSET_CANCEL:
            await query.edit_message_text("Reminder time unchanged.")
            return

        local_time, _, utc_offset = choice.partition("|")
        try:
            local_time = validate_time_string(local_time)
            utc_offset = validate_utc_offset(utc_offset)
        except ValidationError:
            await query.edit_message_text(
                "Invalid selection. Please use /settime HH:MM again."
            )
            return

        reply = self._apply_reminder_time(update, local_time, utc_offset)
        if reply is not None:
            await query.edit_message_text(reply, parse_mode="Markdown")

    def _apply_reminder_time(
        self, update: Update, local_time: str, utc_offset: str
    ) -> Optional[str]:
        """Store a validated reminder time and enable reminders.

        Returns:
            The reply for the user, or None if the update has no sender.
        """
        user = self.ensure_user(update)
        if user is None:
            return None

        try:
            preference = self.scheduler.update_notification_settings(
                user.telegram_id,
                enabled=True,
                local_time=local_time,
                utc_offset=utc_offset,
            )
        except (InvalidScheduleError, UserNotFoundError) as e:
            logger.error(f"Error setting notification time for {user.telegram_id}: {e}")
            return "Sorry, I couldn't set your notification time. Please try again later."

        return (
            f"✅ *Reminder set*\n\n"
            f"I'll remind you every day at "
            f"{format_time_with_offset(local_time, preference.utc_offset)}."
        )

    async def _handle_notifications(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /notifications by flipping the enabled flag."""
        if update.effective_user is None or update.message is None:
            return

        user = self.ensure_user(update)
        if user is None:
            return

        try:
            preference = self.scheduler.toggle_notifications(user.telegram_id)
        except UserNotFoundError as e:
            logger.error(f"Error toggling notifications for {user.telegram_id}: {e}")
            await update.message.reply_text(
                "Sorry, I couldn't update your notification settings."
            )
            return

        if preference.enabled:
            info = self.scheduler.get_notification_time(user.telegram_id)
            when = (
                format_time_with_offset(info.local_time, info.utc_offset) if info else ""
            )
            await update.message.reply_text(
                f"▶️ *Reminders enabled*\n\nYou'll hear from me every day at {when}.\n"
                "Use /settime HH:MM [offset] to change it.",
                parse_mode="Markdown",
            )
        else:
            await update.message.reply_text(
                "⏸️ *Reminders disabled*\n\nUse /notifications to turn them back on.",
                parse_mode="Markdown",
            )

    async def _handle_mytime(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /mytime by showing the stored reminder settings."""
        if update.effective_user is None or update.message is None:
            return

        info = self.scheduler.get_notification_time(update.effective_user.id)
        if info is None:
            await update.message.reply_text(
                "You haven't set a reminder time yet. Use /settime HH:MM [offset] to pick one."
            )
            return

        await update.message.reply_text(info.format_for_display(), parse_mode="Markdown")

    async def _handle_health(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /health, available only in the support chat."""
        if update.message is None or not self._is_support_chat(update, "/health"):
            return

        if self.health_monitor is None:
            await update.message.reply_text("Health monitor is not running.")
            return

        healthy = await self.health_monitor.check_health()
        await update.message.reply_text(
            "✅ Notification system is healthy" if healthy
            else "❌ Notification system is unhealthy, see the alert above"
        )

    async def _handle_notifyusers(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /notifyusers <text>, available only in the support chat.

        Sends the text to every known user and reports the counts.
        """
        if update.message is None or not self._is_support_chat(update, "/notifyusers"):
            return

        text = " ".join(context.args or []).strip()
        if not text:
            await update.message.reply_text(
                "Please provide a message to broadcast after the command. "
                "Usage: /notifyusers Your message here"
            )
            return

        if self.gateway is None:
            await update.message.reply_text("Message gateway is not running.")
            return

        try:
            sent, failed = await self.broadcast(text)
        except ValidationError as e:
            await update.message.reply_text(f"❌ {e}")
            return
        except sqlite3.Error as e:
            logger.error(f"Error loading users for broadcast: {e}", exc_info=True)
            await update.message.reply_text(
                "An unexpected error occurred while broadcasting. Please check the logs."
            )
            return

        if sent + failed == 0:
            await update.message.reply_text("No users found to send the message to.")
            return

        await update.message.reply_text(
            f"Broadcast complete. Sent to {sent} users. Failed for {failed} users."
        )

    async def broadcast(self, text: str) -> tuple[int, int]:
        """Send a message to every user through the gateway.

        A failure for one user is logged and does not stop the broadcast.

        Args:
            text: Plain message text; HTML is escaped.

        Returns:
            Tuple of (sent, failed) counts.

        Raises:
            ValidationError: If the text is too long for one message.
        """
        if self.gateway is None:
            raise RuntimeError("No message gateway attached")

        content = sanitize_text(text, max_length=TELEGRAM_MAX_MESSAGE_LENGTH)
        users = self.user_repo.list_all()
        logger.info(f"Broadcasting to {len(users)} users: {content[:50]!r}")

        sent = failed = 0
        for user in users:
            try:
                await self.gateway.send(user.telegram_id, content)
            except (PermanentDeliveryError, TransientDeliveryError) as e:
                failed += 1
                logger.error(f"Failed to send broadcast to user {user.telegram_id}: {e}")
            else:
                sent += 1

        logger.info(f"Broadcast complete. Sent to {sent} users. Failed for {failed} users.")
        return sent, failed

    def _is_support_chat(self, update: Update, command: str) -> bool:
        """True if the update came from the configured support chat."""
        chat = update.effective_chat
        if chat is None:
            return False
        support_chat_id = self.config.telegram.support_chat_id
        if not support_chat_id or str(chat.id) != support_chat_id:
            logger.info(f"Ignoring {command} from chat {chat.id}")
            return False
        return True

    async def _handle_unrecognized_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle unrecognized commands."""
        if update.message is None:
            return

        text = update.message.text or ""
        logger.info(f"Unrecognized command received: {text}")

        await update.message.reply_text(
            UNRECOGNIZED_COMMAND_MESSAGE,
            parse_mode="Markdown",
        )

    async def run_polling(self) -> None:
        """Start the bot in polling mode."""
        if self.application is None:
            self.build_application()

        if self.application is not None:
            logger.info("Starting bot polling...")
            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()  # type: ignore[union-attr]

    async def stop(self) -> None:
        """Stop polling and shut the application down."""
        if self.application is None:
            return
        if self.application.updater is not None and self.application.updater.running:
            await self.application.updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()
