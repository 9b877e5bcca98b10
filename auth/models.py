# auth/models.py
"""
User account model and OTP purposes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class OtpPurpose(str, Enum):
    """What a one-time code is allowed to confirm."""
    VERIFY = "verify"
    RESET = "reset"


@dataclass
class User:
    """
    User account model.

    Attributes:
        id: Store-assigned ID (None until inserted)
        email: User's email (unique, case-sensitive lookup key)
        name: Display name
        password_hash: Bcrypt-hashed password
        is_account_verified: Email ownership confirmed (never reverts)
        verify_otp: Pending email verification code ("" when none)
        verify_otp_expires_at: Expiry of verify_otp
        reset_otp: Pending password reset code ("" when none)
        reset_otp_expires_at: Expiry of reset_otp
        created_at: Account creation timestamp
        updated_at: Last update timestamp
    """
    email: str
    name: str
    password_hash: str
    id: Optional[str] = None
    is_account_verified: bool = False
    verify_otp: str = ""
    verify_otp_expires_at: Optional[datetime] = None
    reset_otp: str = ""
    reset_otp_expires_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls, name: str, email: str, password_hash: str, now: Optional[datetime] = None
    ) -> User:
        """Create an unsaved, unverified user."""
        now = now or utcnow()
        return cls(
            email=email.strip(),
            name=name.strip(),
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )

    def otp_fields(self, purpose: OtpPurpose) -> tuple[str, Optional[datetime]]:
        """Return the (code, expires_at) pair for a purpose."""
        if purpose is OtpPurpose.VERIFY:
            return self.verify_otp, self.verify_otp_expires_at
        return self.reset_otp, self.reset_otp_expires_at

    def set_otp_fields(
        self, purpose: OtpPurpose, code: str, expires_at: Optional[datetime]
    ) -> None:
        """Overwrite the (code, expires_at) pair for a purpose."""
        if purpose is OtpPurpose.VERIFY:
            self.verify_otp = code
            self.verify_otp_expires_at = expires_at
        else:
            self.reset_otp = code
            self.reset_otp_expires_at = expires_at

    def to_dict(self) -> dict:
        """Convert to dictionary (excludes password hash and OTPs)."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_account_verified": self.is_account_verified,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
