"""
SQLite database connection and schema management.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


class StorageUnavailable(Exception):
    """Raised when the underlying store cannot be read or written."""

    pass


class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._transaction_depth = 0
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        try:
            # Passes run in whichever thread raised the event; the
            # coordinator lock serializes access.
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False
            )
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """
        Execute a statement.

        Raises:
            StorageUnavailable: On any SQLite failure, including a closed connection
        """
        try:
            cursor = self.connection.cursor()
            cursor.execute(sql, params)
            return cursor
        except sqlite3.Error as e:
            raise StorageUnavailable(str(e)) from e

    def commit(self) -> None:
        """Commit, unless a surrounding transaction() block owns the commit."""
        if self._transaction_depth:
            return
        try:
            self.connection.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(str(e)) from e

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """
        Group writes so they are applied together or not at all.

        Nested blocks join the outermost one.
        """
        self._transaction_depth += 1
        try:
            yield self
        except BaseException:
            self._transaction_depth -= 1
            if self._transaction_depth == 0 and self._connection is not None:
                self._connection.rollback()
            raise
        self._transaction_depth -= 1
        if self._transaction_depth == 0:
            self.commit()

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        self.execute("""
            CREATE TABLE IF NOT EXISTS mood_entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                entry_date TEXT NOT NULL,
                mood INTEGER NOT NULL CHECK (mood BETWEEN 1 AND 10),
                notes TEXT,
                warning_signs TEXT NOT NULL,
                coping_strategies TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS crisis_alerts (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                severity TEXT NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                triggers TEXT NOT NULL,
                recommended_actions TEXT NOT NULL,
                emergency_contacts_notified INTEGER NOT NULL DEFAULT 0
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT NOT NULL,
                priority TEXT NOT NULL,
                scheduled_time TIMESTAMP,
                payload TEXT NOT NULL,
                sent INTEGER NOT NULL DEFAULT 0,
                trigger_id TEXT,
                trigger_kind TEXT,
                alert_id TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS notification_opens (
                notification_id TEXT PRIMARY KEY,
                opened_at TIMESTAMP NOT NULL,
                FOREIGN KEY (notification_id) REFERENCES notifications(id)
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS notification_dismissals (
                notification_id TEXT PRIMARY KEY,
                dismissed_at TIMESTAMP NOT NULL,
                FOREIGN KEY (notification_id) REFERENCES notifications(id)
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS alert_dismissals (
                alert_id TEXT PRIMARY KEY,
                dismissed_at TIMESTAMP NOT NULL,
                FOREIGN KEY (alert_id) REFERENCES crisis_alerts(id)
            )
        """)

        # Key/value documents: preferences, analytics, evaluation state
        self.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        self.execute("""
            CREATE INDEX IF NOT EXISTS idx_mood_entries_created
            ON mood_entries(created_at)
        """)
        self.execute("""
            CREATE INDEX IF NOT EXISTS idx_notifications_type
            ON notifications(type, scheduled_time)
        """)

        self.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
