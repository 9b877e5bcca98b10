# auth/errors.py
"""
Account error taxonomy.

Every error carries the HTTP status it maps to and a message that is
safe to show the client (never an OTP, password or token).
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base account error."""

    status_code = 400
    default_message = "Request failed"
    # Whether the error response should also drop the session cookie
    clears_session = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(AuthError):
    """Missing or malformed fields."""
    status_code = 400
    default_message = "Missing details"


class ConflictError(AuthError):
    """User with this email already exists."""
    status_code = 409
    default_message = "User already exists with this email address."


class InvalidCredentialsError(AuthError):
    """Invalid email or password (never says which)."""
    status_code = 401
    default_message = "Invalid email or password"


class NotAuthenticatedError(AuthError):
    """No session credential on the request."""
    status_code = 401
    default_message = "Not Authorized. Please log in again."


class SessionInvalidError(AuthError):
    """Session credential present but rejected."""
    status_code = 401
    default_message = "Session expired. Please log in again."
    clears_session = True


class OtpExpiredError(AuthError):
    """No live code for this purpose."""
    status_code = 400
    default_message = "OTP expired or invalid."


class InvalidOtpError(AuthError):
    """Supplied code does not match the stored one."""
    status_code = 401
    default_message = "Invalid OTP"


class NotFoundError(AuthError):
    """Unknown identity."""
    status_code = 404
    default_message = "User not found"


class AlreadyVerifiedError(AuthError):
    """Account email is already verified."""
    status_code = 400
    default_message = "Account already verified"


class ServerError(AuthError):
    """Store or hashing failure; details stay in the logs."""
    status_code = 500
    default_message = "Server error. Please try again later."
