"""SQLite database initialization and schema management."""

import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database errors."""


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""


class DatabaseIntegrityError(DatabaseError):
    """Raised when data integrity check fails."""


TABLES = [
    (
        "users",
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            telegram_id INTEGER UNIQUE NOT NULL,
            username TEXT,
            first_name TEXT,
            last_name TEXT,
            language TEXT DEFAULT 'en',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    ),
    (
        "notification_preferences",
        """
        CREATE TABLE IF NOT EXISTS notification_preferences (
            telegram_id INTEGER PRIMARY KEY,
            enabled INTEGER DEFAULT 0,
            fire_time_utc TEXT NOT NULL DEFAULT '21:00',
            utc_offset TEXT NOT NULL DEFAULT '0',
            next_fire_at TEXT,
            last_attempt_at TEXT,
            last_delivered_at TEXT,
            last_error TEXT,
            claimed_until TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (telegram_id) REFERENCES users(telegram_id) ON DELETE CASCADE
        )
    """,
    ),
]

INDEXES = [
    (
        "idx_users_telegram_id",
        "CREATE INDEX IF NOT EXISTS idx_users_telegram_id ON users(telegram_id)",
    ),
    (
        "idx_notification_preferences_next",
        "CREATE INDEX IF NOT EXISTS idx_notification_preferences_next "
        "ON notification_preferences(enabled, next_fire_at)",
    ),
]


def get_database_path(db_name: str = "journalbot.db") -> Path:
    """Get the path to the database file."""
    return Path(db_name)


def initialize_database(
    db_path: str | Path | None = None, max_retries: int = 3
) -> sqlite3.Connection:
    """Initialize the SQLite database with required tables.

    Args:
        db_path: Path to the database file. If None, uses default 'journalbot.db'.
        max_retries: Maximum number of connection retries.

    Returns:
        Connection to the initialized database.

    Raises:
        DatabaseConnectionError: If connection fails after max retries.
    """
    if db_path is None:
        db_path = get_database_path()

    last_error: Optional[Exception] = None
    for attempt in range(1, max_retries + 1):
        try:
            conn = sqlite3.connect(db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            create_tables(conn)

            logger.info(f"Database initialized successfully at {db_path}")
            return conn
        except sqlite3.OperationalError as e:
            last_error = e
            logger.warning(
                f"Database connection attempt {attempt}/{max_retries} failed: {e}"
            )
            if attempt < max_retries:
                time.sleep(1.0)

    raise DatabaseConnectionError(
        f"Failed to connect to database after {max_retries} attempts: {last_error}"
    )


def create_tables(conn: sqlite3.Connection, verify_only: bool = False) -> None:
    """Create all required database tables if they don't exist.

    Args:
        conn: Database connection.
        verify_only: If True, only verify tables exist without creating.

    Raises:
        DatabaseIntegrityError: If verify_only is set and a table is missing.
    """
    cursor = conn.cursor()

    for table_name, create_sql in TABLES:
        if verify_only:
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (table_name,),
            )
            if cursor.fetchone() is None:
                raise DatabaseIntegrityError(f"Table {table_name} is missing")
        else:
            cursor.execute(create_sql)

    for index_name, create_sql in INDEXES:
        if verify_only:
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND name=?",
                (index_name,),
            )
            if cursor.fetchone() is None:
                logger.warning(f"Index {index_name} is missing, creating...")
        cursor.execute(create_sql)

    conn.commit()


def check_database_integrity(conn: sqlite3.Connection) -> bool:
    """Run database integrity checks.

    Args:
        conn: Database connection.

    Returns:
        True if database integrity is valid.
    """
    try:
        create_tables(conn, verify_only=True)

        cursor = conn.cursor()

        cursor.execute("PRAGMA integrity_check")
        result = cursor.fetchone()
        if result and result[0] != "ok":
            logger.error(f"Database integrity check failed: {result[0]}")
            return False

        cursor.execute(
            """
            SELECT COUNT(*) FROM notification_preferences
            WHERE enabled = 1 AND next_fire_at IS NULL
            """
        )
        unscheduled = cursor.fetchone()[0]
        if unscheduled > 0:
            logger.warning(
                f"{unscheduled} enabled notification preference(s) have no next_fire_at"
            )

        cursor.execute("PRAGMA foreign_key_check")
        fk_violations = cursor.fetchall()
        for violation in fk_violations:
            logger.error(f"Foreign key violation: {tuple(violation)}")
        return not fk_violations
    except DatabaseIntegrityError as e:
        logger.error(f"Database schema check failed: {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database integrity check error: {e}", exc_info=True)
        return False


def close_database(conn: sqlite3.Connection) -> None:
    """Close the database connection."""
    try:
        conn.close()
        logger.info("Database connection closed")
    except sqlite3.Error as e:
        logger.error(f"Error closing database connection: {e}")
