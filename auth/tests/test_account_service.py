# auth/tests/test_account_service.py
"""
Tests for the account service flows.

Tests:
- Registration and login
- Email verification
- Password reset
- Mail failures
- Store failures
- Per-user locking
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import patch

import pytest

from auth.errors import (
    AlreadyVerifiedError,
    BadRequestError,
    ConflictError,
    InvalidCredentialsError,
    InvalidOtpError,
    NotFoundError,
    OtpExpiredError,
    ServerError,
)
from auth.models import OtpPurpose
from auth.otp import is_otp_live
from auth.service import AccountService, KeyedLocks
from conftest import FailingNotifier
from persistence.users import InMemoryUserStore, StoreError


async def _register(accounts, email="a@x.com", password="pw123", name="A"):
    return await accounts.register(name, email, password)


class YieldingUserStore(InMemoryUserStore):
    """Suspends at every call, the way a networked store would."""

    async def find_by_email(self, email):
        await asyncio.sleep(0)
        return await super().find_by_email(email)

    async def find_by_id(self, user_id):
        await asyncio.sleep(0)
        return await super().find_by_id(user_id)

    async def save(self, user):
        await asyncio.sleep(0)
        await super().save(user)


class BrokenWriteUserStore(InMemoryUserStore):
    """Writes fail while `broken` is set."""

    broken = False

    async def insert(self, user):
        if self.broken:
            raise StoreError("disk I/O error")
        return await super().insert(user)

    async def save(self, user):
        if self.broken:
            raise StoreError("disk I/O error")
        await super().save(user)


async def _ticks_during(coro, interval=0.01, count=10):
    """Run `coro` beside a ticker and return the gaps between ticks."""
    ticks = []

    async def ticker():
        for _ in range(count):
            ticks.append(time.monotonic())
            await asyncio.sleep(interval)

    await asyncio.gather(coro, ticker())
    return [later - earlier for earlier, later in zip(ticks, ticks[1:])]


# =============================================================================
# Registration and Login
# =============================================================================


class TestRegister:

    @pytest.mark.asyncio
    async def test_register_creates_unverified_user(self, accounts, store, tokens):
        result = await _register(accounts)

        assert result.user.id
        assert result.user.is_account_verified is False
        assert tokens.verify(result.token) == result.user.id
        assert (await store.find_by_email("a@x.com")).id == result.user.id

    @pytest.mark.asyncio
    async def test_register_hashes_password(self, accounts, store):
        await _register(accounts)
        stored = await store.find_by_email("a@x.com")

        assert stored.password_hash != "pw123"
        assert stored.password_hash.startswith("$2b$")

    @pytest.mark.asyncio
    async def test_register_sends_welcome_email(self, accounts, notifier):
        result = await _register(accounts)

        assert result.email_sent is True
        assert notifier.last.to == "a@x.com"
        assert notifier.last.subject == "Welcome to TestApp"

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, accounts, store):
        await _register(accounts)

        with pytest.raises(ConflictError):
            await _register(accounts, password="other")

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_email_is_case_sensitive(self, accounts, store):
        await _register(accounts, email="a@x.com")
        await _register(accounts, email="A@x.com")
        assert len(store) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name,email,password",
        [("", "a@x.com", "pw"), ("A", "", "pw"), ("A", "a@x.com", ""), ("  ", "a@x.com", "pw")],
    )
    async def test_register_missing_details(self, accounts, store, name, email, password):
        with pytest.raises(BadRequestError, match="Missing Details"):
            await accounts.register(name, email, password)
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_register_password_too_long(self, accounts, store):
        with pytest.raises(BadRequestError, match="72"):
            await _register(accounts, password="x" * 100)
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_register_survives_mail_outage(self, store, tokens, clock):
        failing = FailingNotifier()
        accounts = AccountService(store=store, tokens=tokens, notifier=failing, clock=clock)

        result = await _register(accounts)

        assert result.email_sent is False
        assert failing.attempts == 1
        assert await store.find_by_id(result.user.id) is not None


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_success(self, accounts, tokens):
        registered = await _register(accounts)
        result = await accounts.login("a@x.com", "pw123")

        assert result.user.id == registered.user.id
        assert tokens.verify(result.token) == registered.user.id

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, accounts):
        await _register(accounts)
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            await accounts.login("a@x.com", "nope")
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            await accounts.login("b@x.com", "pw123")

        # Same message for both so accounts cannot be probed
        assert wrong_password.value.message == unknown_email.value.message

    @pytest.mark.asyncio
    async def test_login_unknown_email_still_checks_a_hash(self, accounts):
        with patch("auth.service.verify_password", return_value=False) as verify:
            with pytest.raises(InvalidCredentialsError):
                await accounts.login("ghost@x.com", "pw123")
        verify.assert_called_once()

    @pytest.mark.asyncio
    async def test_login_missing_fields(self, accounts):
        with pytest.raises(BadRequestError):
            await accounts.login("", "pw")
        with pytest.raises(BadRequestError):
            await accounts.login("a@x.com", "")

    @pytest.mark.asyncio
    async def test_login_sends_no_mail(self, accounts, notifier):
        await _register(accounts)
        before = len(notifier.sent)
        await accounts.login("a@x.com", "pw123")
        assert len(notifier.sent) == before


# =============================================================================
# Email Verification
# =============================================================================


class TestVerifyEmail:

    @pytest.mark.asyncio
    async def test_verify_flow(self, accounts, notifier, store):
        user = (await _register(accounts)).user

        assert await accounts.send_verify_otp(user.id) is True
        stored = await store.find_by_id(user.id)
        assert notifier.last.subject == "Account Verification OTP"
        assert stored.verify_otp in notifier.last.html

        verified = await accounts.verify_email(user.id, stored.verify_otp)

        assert verified.is_account_verified is True
        stored = await store.find_by_id(user.id)
        assert stored.is_account_verified is True
        assert stored.verify_otp == ""
        assert stored.verify_otp_expires_at is None

    @pytest.mark.asyncio
    async def test_verify_code_lasts_24_hours(self, accounts, store, clock):
        user = (await _register(accounts)).user
        await accounts.send_verify_otp(user.id)
        code = (await store.find_by_id(user.id)).verify_otp

        clock.advance(hours=24)
        with pytest.raises(OtpExpiredError):
            await accounts.verify_email(user.id, code)

    @pytest.mark.asyncio
    async def test_verify_wrong_code(self, accounts, store):
        user = (await _register(accounts)).user
        await accounts.send_verify_otp(user.id)
        code = (await store.find_by_id(user.id)).verify_otp
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(InvalidOtpError):
            await accounts.verify_email(user.id, wrong)

        stored = await store.find_by_id(user.id)
        assert stored.is_account_verified is False
        assert stored.verify_otp == code

    @pytest.mark.asyncio
    async def test_verify_without_issued_code(self, accounts):
        user = (await _register(accounts)).user
        with pytest.raises(OtpExpiredError):
            await accounts.verify_email(user.id, "123456")

    @pytest.mark.asyncio
    async def test_verify_missing_code(self, accounts):
        user = (await _register(accounts)).user
        with pytest.raises(BadRequestError, match="OTP is required"):
            await accounts.verify_email(user.id, "")

    @pytest.mark.asyncio
    async def test_send_verify_when_already_verified(self, accounts, store, notifier):
        user = (await _register(accounts)).user
        await accounts.send_verify_otp(user.id)
        await accounts.verify_email(user.id, (await store.find_by_id(user.id)).verify_otp)
        sent = len(notifier.sent)

        with pytest.raises(AlreadyVerifiedError):
            await accounts.send_verify_otp(user.id)

        assert len(notifier.sent) == sent
        assert (await store.find_by_id(user.id)).verify_otp == ""

    @pytest.mark.asyncio
    async def test_send_verify_for_deleted_user(self, accounts):
        with pytest.raises(NotFoundError):
            await accounts.send_verify_otp("no-such-user")

    @pytest.mark.asyncio
    async def test_code_saved_when_mail_fails(self, store, tokens, clock):
        accounts = AccountService(store=store, tokens=tokens, notifier=FailingNotifier(), clock=clock)
        user = (await _register(accounts)).user

        assert await accounts.send_verify_otp(user.id) is False

        stored = await store.find_by_id(user.id)
        assert len(stored.verify_otp) == 6
        await accounts.verify_email(user.id, stored.verify_otp)


# =============================================================================
# Password Reset
# =============================================================================


class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_reset_flow(self, accounts, store, notifier):
        await _register(accounts)

        assert await accounts.send_reset_otp("a@x.com") is True
        code = (await store.find_by_email("a@x.com")).reset_otp
        assert notifier.last.subject == "Password Reset OTP"
        assert code in notifier.last.html

        await accounts.reset_password("a@x.com", code, "newpw456")

        stored = await store.find_by_email("a@x.com")
        assert stored.reset_otp == ""
        assert stored.reset_otp_expires_at is None
        await accounts.login("a@x.com", "newpw456")
        with pytest.raises(InvalidCredentialsError):
            await accounts.login("a@x.com", "pw123")

    @pytest.mark.asyncio
    async def test_reset_code_expires_after_15_minutes(self, accounts, store, clock):
        await _register(accounts)
        await accounts.send_reset_otp("a@x.com")
        code = (await store.find_by_email("a@x.com")).reset_otp

        clock.advance(minutes=16)
        with pytest.raises(OtpExpiredError):
            await accounts.reset_password("a@x.com", code, "newpw456")

        await accounts.login("a@x.com", "pw123")

    @pytest.mark.asyncio
    async def test_reset_code_is_single_use(self, accounts, store):
        await _register(accounts)
        await accounts.send_reset_otp("a@x.com")
        code = (await store.find_by_email("a@x.com")).reset_otp
        await accounts.reset_password("a@x.com", code, "newpw456")

        with pytest.raises(OtpExpiredError):
            await accounts.reset_password("a@x.com", code, "another789")

    @pytest.mark.asyncio
    async def test_resend_invalidates_previous_code(self, accounts, store, notifier):
        await _register(accounts)
        with patch("auth.otp.generate_otp", side_effect=["111111", "222222"]):
            await accounts.send_reset_otp("a@x.com")
            await accounts.send_reset_otp("a@x.com", resend=True)

        assert notifier.last.subject == "Password Reset OTP (Resent)"
        with pytest.raises(InvalidOtpError):
            await accounts.reset_password("a@x.com", "111111", "newpw456")
        await accounts.reset_password("a@x.com", "222222", "newpw456")

    @pytest.mark.asyncio
    async def test_reset_unknown_email(self, accounts, notifier):
        with pytest.raises(NotFoundError):
            await accounts.send_reset_otp("ghost@x.com")
        with pytest.raises(NotFoundError):
            await accounts.reset_password("ghost@x.com", "123456", "newpw456")
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_reset_missing_details(self, accounts):
        with pytest.raises(BadRequestError, match="Email is required"):
            await accounts.send_reset_otp("  ")
        with pytest.raises(BadRequestError, match="Missing details"):
            await accounts.reset_password("a@x.com", "", "newpw456")

    @pytest.mark.asyncio
    async def test_rejected_password_keeps_code(self, accounts, store):
        await _register(accounts)
        await accounts.send_reset_otp("a@x.com")
        code = (await store.find_by_email("a@x.com")).reset_otp

        with pytest.raises(BadRequestError):
            await accounts.reset_password("a@x.com", code, "x" * 100)

        assert (await store.find_by_email("a@x.com")).reset_otp == code
        await accounts.reset_password("a@x.com", code, "newpw456")

    @pytest.mark.asyncio
    async def test_reset_does_not_verify_account(self, accounts, store):
        await _register(accounts)
        await accounts.send_reset_otp("a@x.com")
        code = (await store.find_by_email("a@x.com")).reset_otp
        await accounts.reset_password("a@x.com", code, "newpw456")

        assert (await store.find_by_email("a@x.com")).is_account_verified is False

    @pytest.mark.asyncio
    async def test_reset_and_verify_codes_are_independent(self, accounts, store):
        user = (await _register(accounts)).user
        await accounts.send_verify_otp(user.id)
        await accounts.send_reset_otp("a@x.com")
        stored = await store.find_by_id(user.id)

        await accounts.reset_password("a@x.com", stored.reset_otp, "newpw456")
        await accounts.verify_email(user.id, stored.verify_otp)


# =============================================================================
# Store Failures
# =============================================================================


class TestStoreFailures:
    """A failed write leaves the stored record exactly as it was."""

    @pytest.fixture
    def broken_store(self):
        return BrokenWriteUserStore()

    @pytest.fixture
    def broken_accounts(self, broken_store, tokens, notifier, clock):
        return AccountService(store=broken_store, tokens=tokens, notifier=notifier, clock=clock)

    @pytest.mark.asyncio
    async def test_register_insert_failure(self, broken_accounts, broken_store):
        broken_store.broken = True

        with pytest.raises(ServerError):
            await _register(broken_accounts)

        assert len(broken_store) == 0

    @pytest.mark.asyncio
    async def test_failed_verify_keeps_code(self, broken_accounts, broken_store, clock):
        user = (await _register(broken_accounts)).user
        await broken_accounts.send_verify_otp(user.id)
        code = (await broken_store.find_by_id(user.id)).verify_otp

        broken_store.broken = True
        with pytest.raises(ServerError):
            await broken_accounts.verify_email(user.id, code)

        stored = await broken_store.find_by_id(user.id)
        assert stored.verify_otp == code
        assert is_otp_live(stored, OtpPurpose.VERIFY, clock())
        assert stored.is_account_verified is False

        broken_store.broken = False
        verified = await broken_accounts.verify_email(user.id, code)
        assert verified.is_account_verified is True

    @pytest.mark.asyncio
    async def test_failed_reset_keeps_code_and_password(self, broken_accounts, broken_store, clock):
        await _register(broken_accounts)
        await broken_accounts.send_reset_otp("a@x.com")
        before = await broken_store.find_by_email("a@x.com")

        broken_store.broken = True
        with pytest.raises(ServerError):
            await broken_accounts.reset_password("a@x.com", before.reset_otp, "newpw456")

        stored = await broken_store.find_by_email("a@x.com")
        assert stored.reset_otp == before.reset_otp
        assert is_otp_live(stored, OtpPurpose.RESET, clock())
        assert stored.password_hash == before.password_hash

        broken_store.broken = False
        await broken_accounts.login("a@x.com", "pw123")
        await broken_accounts.reset_password("a@x.com", before.reset_otp, "newpw456")
        await broken_accounts.login("a@x.com", "newpw456")


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:

    @pytest.fixture
    def yielding_store(self):
        return YieldingUserStore()

    @pytest.fixture
    def yielding_accounts(self, yielding_store, tokens, notifier, clock):
        return AccountService(store=yielding_store, tokens=tokens, notifier=notifier, clock=clock)

    @pytest.mark.asyncio
    async def test_concurrent_consumes_succeed_once(self, yielding_accounts, yielding_store):
        """Interleaved resets on one user: only one may use the code."""
        await _register(yielding_accounts)
        await yielding_accounts.send_reset_otp("a@x.com")
        code = (await yielding_store.find_by_email("a@x.com")).reset_otp

        results = await asyncio.gather(
            yielding_accounts.reset_password("a@x.com", code, "first111"),
            yielding_accounts.reset_password("a@x.com", code, "second22"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], OtpExpiredError)

    @pytest.mark.asyncio
    async def test_concurrent_verifies_succeed_once(self, yielding_accounts, yielding_store):
        user = (await _register(yielding_accounts)).user
        await yielding_accounts.send_verify_otp(user.id)
        code = (await yielding_store.find_by_id(user.id)).verify_otp

        results = await asyncio.gather(
            yielding_accounts.verify_email(user.id, code),
            yielding_accounts.verify_email(user.id, code),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], OtpExpiredError)

    @pytest.mark.asyncio
    async def test_login_does_not_block_event_loop(self, accounts):
        await _register(accounts)

        def slow_verify(password, password_hash):
            time.sleep(0.3)
            return True

        with patch("auth.service.verify_password", side_effect=slow_verify):
            gaps = await _ticks_during(accounts.login("a@x.com", "pw123"))

        assert max(gaps) < 0.2

    @pytest.mark.asyncio
    async def test_register_does_not_block_event_loop(self, accounts, store):
        def slow_hash(password):
            time.sleep(0.3)
            return "$2b$04$" + "x" * 53

        with patch("auth.service.hash_password", side_effect=slow_hash):
            gaps = await _ticks_during(_register(accounts))

        assert max(gaps) < 0.2
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_keyed_locks_are_released(self):
        locks = KeyedLocks()
        async with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_keyed_locks_serialise_same_key(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("user-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0
