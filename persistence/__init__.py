# persistence/__init__.py
"""
Persistence layer.

Provides storage for user accounts:
- SQLite-backed store (durable)
- In-memory store (tests, local runs)
"""

from persistence.db import Database, get_db_path
from persistence.users import (
    DuplicateEmailError,
    InMemoryUserStore,
    SqliteUserStore,
    StoreError,
    UserNotFoundError,
    UserStore,
)

__all__ = [
    "Database",
    "get_db_path",
    "DuplicateEmailError",
    "InMemoryUserStore",
    "SqliteUserStore",
    "StoreError",
    "UserNotFoundError",
    "UserStore",
]
