# auth/service.py
"""
Account service.

Handles:
- Registration and password login (session token issue)
- Email verification with a 24-hour OTP
- Password reset with a 15-minute OTP

Store and notifier calls are awaited in order. Mail is best-effort:
a notifier failure is logged and reported back as `email_sent=False`,
never raised.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from auth.emails import EmailContent, reset_otp_email, verify_otp_email, welcome_email
from auth.errors import (
    AlreadyVerifiedError,
    BadRequestError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    ServerError,
)
from auth.models import OtpPurpose, User, utcnow
from auth.notifier import Notifier
from auth.otp import consume_otp, issue_otp
from auth.password import hash_password, verify_password
from auth.tokens import TokenService
from persistence.users import DuplicateEmailError, StoreError, UserNotFoundError, UserStore

_logger = logging.getLogger(__name__)

DEFAULT_APP_NAME = "Account Service"


@dataclass
class AuthResult:
    """A signed-in user and their fresh session token."""
    user: User
    token: str
    email_sent: bool = False


class KeyedLocks:
    """
    One asyncio lock per key, dropped once nobody holds or waits on it.

    Serialises read-modify-write cycles on a single user record.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _clean(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


class AccountService:
    """
    Orchestrates the store, password hasher, OTP engine, token service
    and notifier for every account flow.
    """

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        notifier: Notifier,
        app_name: str = DEFAULT_APP_NAME,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._tokens = tokens
        self._notifier = notifier
        self._app_name = app_name
        self._clock = clock
        self._locks = KeyedLocks()
        self._dummy_hash: Optional[str] = None

    # -------------------------------------------------------------------------
    # Registration and login
    # -------------------------------------------------------------------------

    async def register(self, name: str, email: str, password: str) -> AuthResult:
        """
        Create an unverified account and sign it in.

        Raises:
            BadRequestError: Missing field or unusable password
            ConflictError: Email already registered
        """
        name, email = _clean(name), _clean(email)
        if not name or not email or not password:
            raise BadRequestError("Missing Details: Name, email, and password are required.")

        if await self._store.find_by_email(email):
            raise ConflictError()

        password_hash = await self._hash(password)
        try:
            user = await self._store.insert(
                User.new(name=name, email=email, password_hash=password_hash, now=self._clock())
            )
        except DuplicateEmailError as e:
            # Lost a race with a concurrent registration
            raise ConflictError() from e
        except StoreError as e:
            _logger.error(f"Could not create user: {e}")
            raise ServerError() from e

        token = self._tokens.issue(user.id)
        _logger.info(f"Registered user {user.id}")

        email_sent = await self._notify(user.email, welcome_email(self._app_name, user.name, user.email))
        return AuthResult(user=user, token=token, email_sent=email_sent)

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Check credentials and issue a session token.

        Raises:
            BadRequestError: Missing field
            InvalidCredentialsError: Unknown email or wrong password (same message)
        """
        email = _clean(email)
        if not email or not password:
            raise BadRequestError("Email and Password are required")

        user = await self._store.find_by_email(email)
        if not user:
            # Burn the same bcrypt time as a real check
            await self._check_password(password, await self._get_dummy_hash())
            _logger.warning("Login attempt for unknown email")
            raise InvalidCredentialsError()

        if not await self._check_password(password, user.password_hash):
            _logger.warning(f"Invalid password for user {user.id}")
            raise InvalidCredentialsError()

        _logger.info(f"User {user.id} logged in")
        return AuthResult(user=user, token=self._tokens.issue(user.id))

    async def get_user_data(self, user_id: str) -> User:
        """Load the signed-in user's record."""
        user = await self._store.find_by_id(user_id)
        if not user:
            raise NotFoundError()
        return user

    # -------------------------------------------------------------------------
    # Email verification
    # -------------------------------------------------------------------------

    async def send_verify_otp(self, user_id: str) -> bool:
        """
        Issue a verification code and mail it.

        Returns:
            Whether the email was handed to the mail transport

        Raises:
            NotFoundError: User no longer exists
            AlreadyVerifiedError: Nothing left to verify
        """
        async with self._locks.hold(user_id):
            user = await self._store.find_by_id(user_id)
            if not user:
                raise NotFoundError()
            if user.is_account_verified:
                raise AlreadyVerifiedError()

            otp = issue_otp(user, OtpPurpose.VERIFY, self._clock())
            await self._save(user)

        _logger.info(f"Verification OTP issued for user {user.id}")
        return await self._notify(user.email, verify_otp_email(self._app_name, user.email, otp))

    async def verify_email(self, user_id: str, otp: str) -> User:
        """
        Consume a verification code and mark the account verified.

        Raises:
            BadRequestError: No code supplied
            NotFoundError: User no longer exists
            OtpExpiredError: No live code
            InvalidOtpError: Wrong code
            ServerError: Store write failed; the code stays usable
        """
        otp = _clean(otp)
        if not otp:
            raise BadRequestError("OTP is required")

        async with self._locks.hold(user_id):
            user = await self._store.find_by_id(user_id)
            if not user:
                raise NotFoundError()

            consume_otp(user, OtpPurpose.VERIFY, otp, self._clock())
            user.is_account_verified = True
            await self._save(user)

        _logger.info(f"User {user.id} verified their email")
        return user

    # -------------------------------------------------------------------------
    # Password reset
    # -------------------------------------------------------------------------

    async def send_reset_otp(self, email: str, resend: bool = False) -> bool:
        """
        Issue (or re-issue) a password reset code and mail it.

        Returns:
            Whether the email was handed to the mail transport

        Raises:
            BadRequestError: No email supplied
            NotFoundError: No account with this email
        """
        email = _clean(email)
        if not email:
            raise BadRequestError("Email is required")

        user = await self._store.find_by_email(email)
        if not user:
            raise NotFoundError()

        async with self._locks.hold(user.id):
            user = await self._store.find_by_id(user.id)
            if not user:
                raise NotFoundError()

            otp = issue_otp(user, OtpPurpose.RESET, self._clock())
            await self._save(user)

        _logger.info(f"Reset OTP {'re-issued' if resend else 'issued'} for user {user.id}")
        return await self._notify(
            user.email, reset_otp_email(self._app_name, user.email, otp, resend=resend)
        )

    async def reset_password(self, email: str, otp: str, new_password: str) -> None:
        """
        Consume a reset code and replace the password.

        Raises:
            BadRequestError: Missing field or unusable password
            NotFoundError: No account with this email
            OtpExpiredError: No live code
            InvalidOtpError: Wrong code
            ServerError: Store write failed; the code stays usable
        """
        email, otp = _clean(email), _clean(otp)
        if not email or not otp or not new_password:
            raise BadRequestError("Missing details: email, OTP, and new password are required.")

        user = await self._store.find_by_email(email)
        if not user:
            raise NotFoundError()

        # Hash before consuming so a rejected password leaves the code usable
        password_hash = await self._hash(new_password)

        async with self._locks.hold(user.id):
            user = await self._store.find_by_id(user.id)
            if not user:
                raise NotFoundError()

            now = self._clock()
            consume_otp(user, OtpPurpose.RESET, otp, now)
            user.password_hash = password_hash
            user.updated_at = now
            await self._save(user)

        _logger.info(f"Password reset for user {user.id}")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    # bcrypt is CPU-bound; it runs in a worker thread so the loop stays free
    async def _hash(self, password: str) -> str:
        try:
            return await asyncio.to_thread(hash_password, password)
        except ValueError as e:
            raise BadRequestError(str(e)) from e

    async def _check_password(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(verify_password, password, password_hash)

    async def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await asyncio.to_thread(hash_password, "not-a-real-password")
        return self._dummy_hash

    async def _save(self, user: User) -> None:
        """Persist a mutated record; on failure the stored copy is unchanged."""
        try:
            await self._store.save(user)
        except UserNotFoundError as e:
            raise NotFoundError() from e
        except StoreError as e:
            _logger.error(f"Could not save user {user.id}: {e}")
            raise ServerError() from e

    async def _notify(self, to: str, content: EmailContent) -> bool:
        """Send mail; report failure instead of raising."""
        try:
            await self._notifier.send(to, content.subject, content.html, content.text)
        except Exception as e:
            _logger.warning(f"Failed to send '{content.subject}' to {to}: {e}")
            return False
        return True
