"""Database repositories for users and notification preferences."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional

from journalbot.database import (
    check_database_integrity,
    close_database,
    initialize_database,
)
from journalbot.models import NotificationPreference, User
from journalbot.time_conversion import UTC


logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as a fixed-width UTC ISO-8601 string.

    Fixed microsecond precision keeps string comparison in SQL chronological.
    """
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a datetime string from the database as an aware UTC datetime."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace(" ", "T"))
    except (ValueError, AttributeError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class DatabaseConnectionManager:
    """Manages SQLite database connections with context manager support."""

    def __init__(self, db_path: str | Path = "journalbot.db", max_retries: int = 3) -> None:
        """Initialize the connection manager.

        Args:
            db_path: Path to the SQLite database file.
            max_retries: Connection attempts before giving up.
        """
        self.db_path = Path(db_path)
        self.max_retries = max_retries
        self._connection: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Establish a database connection, creating the schema if needed.

        Returns:
            Active database connection.

        Raises:
            DatabaseConnectionError: If the database cannot be opened.
        """
        if self._connection is None:
            self._connection = initialize_database(self.db_path, self.max_retries)
        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            close_database(self._connection)
            self._connection = None

    def initialize(self) -> bool:
        """Open the database and run integrity checks.

        Returns:
            True if the integrity checks passed.
        """
        conn = self.connect()
        healthy = check_database_integrity(conn)
        if not healthy:
            logger.error(f"Database at {self.db_path} failed integrity checks")
        return healthy

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database transactions with automatic commit/rollback.

        Yields:
            Active database connection within a transaction.

        Raises:
            Exception: Re-raises any exception after rollback.
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def get_connection(self) -> sqlite3.Connection:
        """Get the current connection, creating one if needed.

        Returns:
            Active database connection.
        """
        return self.connect()


class UserRepository:
    """Repository for User CRUD operations."""

    def __init__(self, db_manager: DatabaseConnectionManager) -> None:
        """Initialize the repository.

        Args:
            db_manager: Database connection manager.
        """
        self.db = db_manager

    def create(self, user: User) -> User:
        """Create a new user in the database.

        Args:
            user: User object to create.

        Returns:
            User with assigned ID.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (telegram_id, username, first_name, last_name, language)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user.telegram_id, user.username, user.first_name, user.last_name, user.language),
            )
            user.id = cursor.lastrowid
        return user

    def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Retrieve a user by Telegram ID.

        Args:
            telegram_id: Telegram user ID.

        Returns:
            User if found, None otherwise.
        """
        conn = self.db.get_connection()
        cursor = conn.execute("SELECT * FROM users WHERE telegram_id = ?", (telegram_id,))
        row = cursor.fetchone()
        return self._row_to_user(row) if row else None

    def list_all(self) -> list[User]:
        """Get all users ordered by Telegram ID."""
        conn = self.db.get_connection()
        cursor = conn.execute("SELECT * FROM users ORDER BY telegram_id")
        return [self._row_to_user(row) for row in cursor.fetchall()]

    def update(self, user: User) -> User:
        """Update an existing user.

        Args:
            user: User object with updated fields.

        Returns:
            Updated user.

        Raises:
            ValueError: If user has no ID.
        """
        if user.id is None:
            raise ValueError("Cannot update user without ID")
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE users
                SET username = ?, first_name = ?, last_name = ?, language = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (user.username, user.first_name, user.last_name, user.language, user.id),
            )
        return user

    def delete(self, telegram_id: int) -> bool:
        """Delete a user and, through the foreign key, their preference.

        Args:
            telegram_id: Telegram user ID.

        Returns:
            True if user was deleted, False if not found.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM users WHERE telegram_id = ?", (telegram_id,))
            return cursor.rowcount > 0

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            telegram_id=row["telegram_id"],
            username=row["username"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            language=row["language"] or "en",
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )


class NotificationPreferenceRepository:
    """Preference store for reminder settings and delivery bookkeeping.

    Field updates are unconditional last-write-wins writes. The only
    conditional write is ``claim``, which reserves a due slot so that two
    pollers sharing the database cannot both deliver it.
    """

    def __init__(self, db_manager: DatabaseConnectionManager) -> None:
        """Initialize the repository.

        Args:
            db_manager: Database connection manager.
        """
        self.db = db_manager

    def get(self, telegram_id: int) -> Optional[NotificationPreference]:
        """Retrieve the preference for a user.

        Args:
            telegram_id: Telegram user ID.

        Returns:
            NotificationPreference if found, None otherwise.
        """
        conn = self.db.get_connection()
        cursor = conn.execute(
            "SELECT * FROM notification_preferences WHERE telegram_id = ?",
            (telegram_id,),
        )
        row = cursor.fetchone()
        return self._row_to_preference(row) if row else None

    def save(self, preference: NotificationPreference) -> NotificationPreference:
        """Insert or fully overwrite a user's preference.

        Args:
            preference: Preference to persist.

        Returns:
            The persisted preference.
        """
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO notification_preferences
                    (telegram_id, enabled, fire_time_utc, utc_offset, next_fire_at,
                     last_attempt_at, last_delivered_at, last_error, claimed_until)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(telegram_id) DO UPDATE SET
                    enabled = excluded.enabled,
                    fire_time_utc = excluded.fire_time_utc,
                    utc_offset = excluded.utc_offset,
                    next_fire_at = excluded.next_fire_at,
                    last_attempt_at = excluded.last_attempt_at,
                    last_delivered_at = excluded.last_delivered_at,
                    last_error = excluded.last_error,
                    claimed_until = excluded.claimed_until,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    preference.telegram_id,
                    1 if preference.enabled else 0,
                    preference.fire_time_utc,
                    preference.utc_offset,
                    format_datetime(preference.next_fire_at),
                    format_datetime(preference.last_attempt_at),
                    format_datetime(preference.last_delivered_at),
                    preference.last_error,
                    format_datetime(preference.claimed_until),
                ),
            )
        return preference

    def list_enabled(self) -> list[NotificationPreference]:
        """Retrieve every preference with reminders enabled.

        Returns:
            Enabled preferences ordered by next_fire_at.
        """
        conn = self.db.get_connection()
        cursor = conn.execute(
            """
            SELECT * FROM notification_preferences
            WHERE enabled = 1
            ORDER BY next_fire_at ASC
            """
        )
        return [self._row_to_preference(row) for row in cursor.fetchall()]

    def record_attempt(self, telegram_id: int, attempted_at: datetime) -> None:
        """Stamp last_attempt_at before a send is attempted."""
        self._update(telegram_id, "last_attempt_at = ?", (format_datetime(attempted_at),))

    def record_error(self, telegram_id: int, error: str) -> None:
        """Persist the most recent delivery error."""
        self._update(telegram_id, "last_error = ?", (error[:MAX_ERROR_LENGTH],))

    def mark_delivered(self, telegram_id: int, slot: datetime) -> None:
        """Record a confirmed delivery of the given slot and clear the last error."""
        self._update(
            telegram_id,
            "last_delivered_at = ?, last_error = NULL",
            (format_datetime(slot),),
        )

    def set_next_fire_at(self, telegram_id: int, next_fire_at: Optional[datetime]) -> None:
        """Persist the next scheduled slot (None clears it)."""
        self._update(telegram_id, "next_fire_at = ?", (format_datetime(next_fire_at),))

    def disable(self, telegram_id: int, error: Optional[str] = None) -> None:
        """Turn reminders off and clear the schedule, optionally noting why."""
        self._update(
            telegram_id,
            "enabled = 0, next_fire_at = NULL, last_error = COALESCE(?, last_error)",
            (error[:MAX_ERROR_LENGTH] if error else None,),
        )

    def claim(
        self,
        telegram_id: int,
        slot: datetime,
        now: datetime,
        lease_until: datetime,
    ) -> bool:
        """Atomically reserve a due slot for delivery.

        The claim succeeds only if the record is still enabled, still points at
        ``slot``, has not delivered it, and holds no unexpired claim.

        Args:
            telegram_id: Telegram user ID.
            slot: The next_fire_at value about to be serviced.
            now: Current time, used to expire stale claims.
            lease_until: When this claim expires if never released.

        Returns:
            True if this caller now owns the slot.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE notification_preferences
                SET claimed_until = ?
                WHERE telegram_id = ?
                  AND enabled = 1
                  AND next_fire_at = ?
                  AND (last_delivered_at IS NULL OR last_delivered_at != next_fire_at)
                  AND (claimed_until IS NULL OR claimed_until <= ?)
                """,
                (
                    format_datetime(lease_until),
                    telegram_id,
                    format_datetime(slot),
                    format_datetime(now),
                ),
            )
            return cursor.rowcount == 1

    def release_claim(self, telegram_id: int, lease_until: datetime) -> bool:
        """Release a slot claim, but only if it is still the caller's.

        A claim that expired and was taken over by another delivery carries a
        different ``claimed_until`` and is left alone.

        Args:
            telegram_id: Telegram user ID.
            lease_until: The lease written by the caller's ``claim``.

        Returns:
            True if the claim was released.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE notification_preferences
                SET claimed_until = NULL
                WHERE telegram_id = ? AND claimed_until = ?
                """,
                (telegram_id, format_datetime(lease_until)),
            )
            return cursor.rowcount == 1

    def ping(self) -> Optional[int]:
        """Trivial read used by health checks.

        Returns:
            Any stored telegram_id, or None when nothing answers.
        """
        conn = self.db.get_connection()
        cursor = conn.execute("SELECT telegram_id FROM notification_preferences LIMIT 1")
        row = cursor.fetchone()
        return row["telegram_id"] if row else None

    def _update(self, telegram_id: int, assignments: str, params: tuple) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                f"""
                UPDATE notification_preferences
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE telegram_id = ?
                """,
                (*params, telegram_id),
            )

    def _row_to_preference(self, row: sqlite3.Row) -> NotificationPreference:
        return NotificationPreference(
            telegram_id=row["telegram_id"],
            enabled=bool(row["enabled"]),
            fire_time_utc=row["fire_time_utc"],
            utc_offset=row["utc_offset"],
            next_fire_at=parse_datetime(row["next_fire_at"]),
            last_attempt_at=parse_datetime(row["last_attempt_at"]),
            last_delivered_at=parse_datetime(row["last_delivered_at"]),
            last_error=row["last_error"],
            claimed_until=parse_datetime(row["claimed_until"]),
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )
