"""Reminder message rendering for Telegram delivery."""

from typing import Optional

from journalbot.input_validator import sanitize_text
from journalbot.models import User


TELEGRAM_MAX_MESSAGE_LENGTH = 4096

REMINDER_TEMPLATES = {
    "en": (
        "<b>Hey {name}!</b> 😏\n\n"
        "How is your day? Share any thoughts, your mood, what you did today?\n\n"
        "<i>At least a quick voice 🥹</i>\n\n"
        "Also, if you sent voices or videos to other people today, let's save those!"
    ),
    "ru": (
        "<b>Привет, {name}!</b> 😏\n\n"
        "Как твой день? Поделись любыми мыслями, своим состоянием, "
        "<b>хотя бы коротенький войс 🥹</b>\n\n"
        "<i>Записывал(-а) войсы/видео другим людям? Наверняка интересные, "
        "давай запомним, пересылай сюда 😉</i>"
    ),
}

FALLBACK_NAME = {"en": "there", "ru": "друг"}


def format_reminder(user: Optional[User] = None) -> str:
    """Render the daily journaling reminder for a user.

    Args:
        user: The user record, if known; selects name and language.

    Returns:
        HTML message text.
    """
    language = user.language if user and user.language in REMINDER_TEMPLATES else "en"
    name = (user.first_name or user.username) if user else None
    safe_name = sanitize_text(name, max_length=256) if name else FALLBACK_NAME[language]

    text = REMINDER_TEMPLATES[language].format(name=safe_name)
    return text[:TELEGRAM_MAX_MESSAGE_LENGTH]
