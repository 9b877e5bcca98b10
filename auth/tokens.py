# auth/tokens.py
"""
Signed session tokens (JWT, HS256).

Tokens carry the user ID in `sub` plus `iat`/`exp`. Verification needs
only the signing secret and the token; there is no session table, so a
token stays valid until it expires or the client drops it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from jose import JWTError, jwt

from auth.models import utcnow

_logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_TTL = timedelta(days=7)


class TokenError(Exception):
    """Base token verification error."""
    pass


class MalformedTokenError(TokenError):
    """Token cannot be parsed or its signature does not verify."""
    pass


class ExpiredTokenError(TokenError):
    """Token is past its embedded expiry."""
    pass


class MissingSubjectError(TokenError):
    """Token payload has no usable user ID."""
    pass


class TokenService:
    """
    Issues and verifies session tokens.

    The secret is handed in once at startup and never changes for the
    life of the process. `clock` decides "now" for both issue and
    verify, so expiry can be tested without waiting.
    """

    def __init__(
        self,
        secret_key: str,
        ttl: timedelta = TOKEN_TTL,
        algorithm: str = ALGORITHM,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret_key:
            raise ValueError("Token secret key cannot be empty")
        self._secret_key = secret_key
        self._ttl = ttl
        self._algorithm = algorithm
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, user_id: str) -> str:
        """Create a signed token for a user."""
        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": user_id,
            "iat": issued_at,
            "exp": issued_at + int(self._ttl.total_seconds()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> str:
        """
        Verify a token and return its user ID.

        Raises:
            MalformedTokenError: Bad encoding, bad signature, or no usable expiry
            ExpiredTokenError: Clock is past the token's expiry
            MissingSubjectError: No user ID in the payload
        """
        try:
            # Expiry and subject are checked below against our own clock
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_sub": False},
            )
        except JWTError as e:
            _logger.info(f"Rejected session token: {e}")
            raise MalformedTokenError("Token could not be verified") from e

        expires_at = payload.get("exp")
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise MalformedTokenError("Token has no expiry")

        if self._clock().timestamp() > expires_at:
            raise ExpiredTokenError("Token has expired")

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise MissingSubjectError("Token has no subject")

        return user_id
