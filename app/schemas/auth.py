# app/schemas/auth.py
"""
Pydantic schemas for the account API.

Every response is an envelope `{success, message, data?}`. `data` has a
fixed shape per endpoint and is omitted when the endpoint returns none.
Field names are camelCase to match the web client.
"""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

from auth.models import User

DataT = TypeVar("DataT")


# =============================================================================
# Request Schemas
# =============================================================================
# Fields are optional so that missing values reach the service and get
# its "missing details" message instead of a generic validation error.


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class VerifyAccountRequest(BaseModel):
    # Clients sometimes post the code as a JSON number
    model_config = ConfigDict(coerce_numbers_to_str=True)

    otp: Optional[str] = None


class EmailRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None
    otp: Optional[str] = None
    newPassword: Optional[str] = None


# =============================================================================
# Response Schemas
# =============================================================================


class AccountData(BaseModel):
    """Returned by register and login."""
    id: str
    name: str
    email: str
    isAccountVerified: bool

    @classmethod
    def from_user(cls, user: User) -> AccountData:
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            isAccountVerified=user.is_account_verified,
        )


class UserData(BaseModel):
    """Returned by the user data endpoint."""
    name: str
    isAccountVerified: bool

    @classmethod
    def from_user(cls, user: User) -> UserData:
        return cls(name=user.name, isAccountVerified=user.is_account_verified)


class Envelope(BaseModel, Generic[DataT]):
    success: bool
    message: str
    data: Optional[DataT] = None


class MessageResponse(Envelope[None]):
    """Envelope without data."""
    pass


class AccountResponse(Envelope[AccountData]):
    pass


class UserDataResponse(Envelope[UserData]):
    pass
