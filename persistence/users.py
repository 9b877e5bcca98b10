# persistence/users.py
"""
User record storage.

Records are keyed by store-assigned ID and unique by email. `save`
overwrites the whole record, so one call persists an OTP change together
with whatever it confirmed.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import sqlite3
import threading
import uuid
from datetime import datetime
from typing import Optional, Protocol

from auth.models import User
from persistence.db import Database

_logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base user store error."""
    pass


class DuplicateEmailError(StoreError):
    """Another user already has this email."""
    pass


class UserNotFoundError(StoreError):
    """No user with this ID."""
    pass


class UserStore(Protocol):
    async def find_by_email(self, email: str) -> Optional[User]: ...

    async def find_by_id(self, user_id: str) -> Optional[User]: ...

    async def insert(self, user: User) -> User: ...

    async def save(self, user: User) -> None: ...


def new_user_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# SQLite store
# =============================================================================


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_user(row: sqlite3.Row) -> User:
    """Convert a database row to a User object."""
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        password_hash=row["password_hash"],
        is_account_verified=bool(row["is_account_verified"]),
        verify_otp=row["verify_otp"],
        verify_otp_expires_at=_parse_dt(row["verify_otp_expires_at"]),
        reset_otp=row["reset_otp"],
        reset_otp_expires_at=_parse_dt(row["reset_otp_expires_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SqliteUserStore:
    """
    User store backed by the SQLite `users` table.

    Queries run in a worker thread; the shared connection is serialised by
    the Database lock.
    """

    def __init__(self, db: Database):
        self._db = db
        self._db.init_schema()

    async def find_by_email(self, email: str) -> Optional[User]:
        return await asyncio.to_thread(self._find_one, "email", email)

    async def find_by_id(self, user_id: str) -> Optional[User]:
        return await asyncio.to_thread(self._find_one, "id", user_id)

    async def insert(self, user: User) -> User:
        """
        Persist a new user and assign its ID.

        Raises:
            DuplicateEmailError: If the email is already taken
            StoreError: If the database fails
        """
        stored = copy.copy(user)
        stored.id = new_user_id()
        await asyncio.to_thread(self._insert, stored)
        _logger.info(f"Created user {stored.id}")
        return stored

    async def save(self, user: User) -> None:
        """
        Overwrite a stored user with the given record.

        Raises:
            UserNotFoundError: If no user has this ID
            DuplicateEmailError: If the new email belongs to another user
            StoreError: If the database fails
        """
        await asyncio.to_thread(self._update, user)

    def _find_one(self, column: str, value: str) -> Optional[User]:
        try:
            with self._db.transaction() as conn:
                row = conn.execute(
                    f"SELECT * FROM users WHERE {column} = ?",
                    (value,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"User lookup failed: {e}") from e
        return _row_to_user(row) if row else None

    def _insert(self, user: User) -> None:
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO users
                    (id, email, name, password_hash, is_account_verified,
                     verify_otp, verify_otp_expires_at, reset_otp,
                     reset_otp_expires_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user.id,
                        user.email,
                        user.name,
                        user.password_hash,
                        int(user.is_account_verified),
                        user.verify_otp,
                        _dt(user.verify_otp_expires_at),
                        user.reset_otp,
                        _dt(user.reset_otp_expires_at),
                        user.created_at.isoformat(),
                        user.updated_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateEmailError(f"Email already registered: {user.email}") from e
        except sqlite3.Error as e:
            raise StoreError(f"User insert failed: {e}") from e

    def _update(self, user: User) -> None:
        try:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE users SET
                        email = ?, name = ?, password_hash = ?,
                        is_account_verified = ?, verify_otp = ?,
                        verify_otp_expires_at = ?, reset_otp = ?,
                        reset_otp_expires_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        user.email,
                        user.name,
                        user.password_hash,
                        int(user.is_account_verified),
                        user.verify_otp,
                        _dt(user.verify_otp_expires_at),
                        user.reset_otp,
                        _dt(user.reset_otp_expires_at),
                        user.updated_at.isoformat(),
                        user.id,
                    ),
                )
                if cursor.rowcount == 0:
                    raise UserNotFoundError(f"User not found: {user.id}")
        except sqlite3.IntegrityError as e:
            raise DuplicateEmailError(f"Email already registered: {user.email}") from e
        except sqlite3.Error as e:
            raise StoreError(f"User update failed: {e}") from e


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryUserStore:
    """
    Dict-backed user store for tests and local runs.

    Holds copies, so callers only change stored state through `save`.
    """

    def __init__(self):
        self._users: dict[str, User] = {}
        self._ids_by_email: dict[str, str] = {}
        self._lock = threading.Lock()

    async def find_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            user_id = self._ids_by_email.get(email)
            return copy.copy(self._users[user_id]) if user_id else None

    async def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    async def insert(self, user: User) -> User:
        with self._lock:
            if user.email in self._ids_by_email:
                raise DuplicateEmailError(f"Email already registered: {user.email}")
            stored = copy.copy(user)
            stored.id = new_user_id()
            self._users[stored.id] = stored
            self._ids_by_email[stored.email] = stored.id
            return copy.copy(stored)

    async def save(self, user: User) -> None:
        with self._lock:
            current = self._users.get(user.id)
            if current is None:
                raise UserNotFoundError(f"User not found: {user.id}")
            owner = self._ids_by_email.get(user.email)
            if owner is not None and owner != user.id:
                raise DuplicateEmailError(f"Email already registered: {user.email}")
            del self._ids_by_email[current.email]
            self._users[user.id] = copy.copy(user)
            self._ids_by_email[user.email] = user.id

    def __len__(self) -> int:
        return len(self._users)
