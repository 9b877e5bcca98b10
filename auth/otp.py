# auth/otp.py
"""
One-time code engine.

Codes are 6-digit numeric strings ("000000"-"999999") drawn from the
OS CSPRNG. Each user holds at most one code per purpose; issuing a new
code overwrites the old one and restarts its expiry window.

The functions here only mutate the in-memory User record. Callers
persist the record (together with any confirming side effect) in a
single store write.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from auth.errors import InvalidOtpError, OtpExpiredError
from auth.models import OtpPurpose, User

_logger = logging.getLogger(__name__)

OTP_DIGITS = 6

VERIFY_OTP_TTL = timedelta(hours=24)
RESET_OTP_TTL = timedelta(minutes=15)

DEFAULT_TTLS = {
    OtpPurpose.VERIFY: VERIFY_OTP_TTL,
    OtpPurpose.RESET: RESET_OTP_TTL,
}


def generate_otp() -> str:
    """Generate a uniformly random 6-digit code (leading zeros kept)."""
    return str(secrets.randbelow(10 ** OTP_DIGITS)).zfill(OTP_DIGITS)


def is_otp_live(user: User, purpose: OtpPurpose, now: datetime) -> bool:
    """A code is live iff it is non-empty and expires strictly after `now`."""
    code, expires_at = user.otp_fields(purpose)
    return bool(code) and expires_at is not None and expires_at > now


def issue_otp(
    user: User,
    purpose: OtpPurpose,
    now: datetime,
    ttl: Optional[timedelta] = None,
) -> str:
    """
    Issue a fresh code for a purpose, replacing any previous one.

    Args:
        user: Record to mutate
        purpose: VERIFY or RESET
        now: Issue time
        ttl: Lifetime (defaults to the purpose's TTL)

    Returns:
        The new code, for delivery
    """
    ttl = ttl if ttl is not None else DEFAULT_TTLS[purpose]
    code = generate_otp()
    user.set_otp_fields(purpose, code, now + ttl)
    user.updated_at = now

    _logger.debug(f"Issued {purpose.value} OTP for user {user.id}")
    return code


def consume_otp(user: User, purpose: OtpPurpose, supplied: str, now: datetime) -> None:
    """
    Check a supplied code and clear it on success.

    Args:
        user: Record to check and mutate
        purpose: VERIFY or RESET
        supplied: Code from the client
        now: Verification time

    Raises:
        OtpExpiredError: No code stored, or its expiry has passed
        InvalidOtpError: Stored code differs from the supplied one
    """
    code, _ = user.otp_fields(purpose)

    if not is_otp_live(user, purpose, now):
        raise OtpExpiredError()

    if code != supplied:
        _logger.info(f"{purpose.value} OTP mismatch for user {user.id}")
        raise InvalidOtpError()

    user.set_otp_fields(purpose, "", None)
    user.updated_at = now
