# persistence/db.py
"""
SQLite database connection and schema management.

Uses a file-based SQLite database for persistence.
On Railway, use a persistent volume to survive restarts.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

_logger = logging.getLogger(__name__)

# Database file location (configurable via env var)
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "auth.db"


def get_db_path() -> Path:
    """Get the configured database file path."""
    return Path(os.environ.get("AUTH_DB_PATH", str(DEFAULT_DB_PATH)))


class Database:
    """
    One shared SQLite connection guarded by a lock.

    Usage:
        db = Database("data/auth.db")
        with db.transaction() as conn:
            conn.execute("SELECT ...")
    """

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            self.path,
            timeout=30.0,
            check_same_thread=False,
        )
        # Return rows as dicts
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements as one unit; commit on success, roll back on error."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def init_schema(self) -> None:
        """
        Create tables if they don't exist.

        Safe to call multiple times (idempotent).
        """
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    name TEXT NOT NULL,
                    password_hash TEXT NOT NULL,
                    is_account_verified INTEGER NOT NULL DEFAULT 0,
                    verify_otp TEXT NOT NULL DEFAULT '',
                    verify_otp_expires_at TEXT,
                    reset_otp TEXT NOT NULL DEFAULT '',
                    reset_otp_expires_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email
                ON users(email)
            """)

        _logger.info(f"Database initialized at {self.path}")

    def reset(self) -> None:
        """Reset database (for testing). Drops all tables."""
        with self.transaction() as conn:
            conn.execute("DROP TABLE IF EXISTS users")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
