# auth/password.py
"""
Secure password hashing using bcrypt.

Bcrypt is designed for password hashing with:
- Automatic salt generation
- Configurable work factor (cost)
- Constant-time verification
"""

from __future__ import annotations

import bcrypt
import logging
import os

_logger = logging.getLogger(__name__)

# Work factor (cost) - higher = slower but more secure
BCRYPT_ROUNDS = int(os.environ.get("AUTH_BCRYPT_ROUNDS", "12"))

# bcrypt only looks at the first 72 bytes of the input
BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Bcrypt hash string (includes salt and cost)

    Raises:
        ValueError: If the password is empty or longer than bcrypt accepts
    """
    if not password:
        raise ValueError("Password cannot be empty")

    password_bytes = password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password cannot exceed {BCRYPT_MAX_BYTES} bytes")

    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password_bytes, salt)

    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        password: Plain text password to verify
        password_hash: Stored bcrypt hash

    Returns:
        True if password matches, False otherwise
    """
    if not password or not password_hash:
        return False

    try:
        password_bytes = password.encode("utf-8")
        hash_bytes = password_hash.encode("utf-8")
        return bcrypt.checkpw(password_bytes, hash_bytes)
    except ValueError as e:
        # Malformed stored hash or oversized input; never log the password
        _logger.warning(f"Password verification error: {e}")
        return False
