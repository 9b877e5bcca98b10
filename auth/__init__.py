# auth/__init__.py
"""
Account authentication module.

Provides:
- User model with email/password auth
- Password hashing with bcrypt
- Signed session tokens carried in an HTTP-only cookie
- One-time codes for email verification and password reset

The account flows live in `auth.service` (imported directly, since the
persistence layer depends on `auth.models`).
"""

from auth.models import OtpPurpose, User
from auth.tokens import TokenService

__all__ = [
    "OtpPurpose",
    "TokenService",
    "User",
]
