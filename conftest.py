"""Configure pytest for the account auth project."""
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

# =============================================================================
# Test Environment Configuration
# =============================================================================
# Set environment for tests BEFORE any imports
# Low bcrypt cost keeps password hashing fast in tests
os.environ.setdefault("ENV", "test")
os.environ.setdefault("AUTH_BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUTH_DB_PATH", ":memory:")

# Add project root for package imports
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


TEST_SECRET = "test-secret-key-not-for-production"


# =============================================================================
# Fakes
# =============================================================================


class FrozenClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class SentMail:
    to: str
    subject: str
    html: str
    text: Optional[str] = None


@dataclass
class RecordingNotifier:
    """Keeps every message instead of sending it."""

    sent: List[SentMail] = field(default_factory=list)

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        self.sent.append(SentMail(to=to, subject=subject, html=html, text=text))

    @property
    def last(self) -> SentMail:
        return self.sent[-1]


class FailingNotifier:
    """Mail transport that is always down."""

    def __init__(self):
        self.attempts = 0

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        self.attempts += 1
        raise ConnectionError("SMTP server unavailable")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    from persistence.users import InMemoryUserStore

    return InMemoryUserStore()


@pytest.fixture
def tokens(clock):
    from auth.tokens import TokenService

    return TokenService(TEST_SECRET, clock=clock)


@pytest.fixture
def accounts(store, tokens, notifier, clock):
    from auth.service import AccountService

    return AccountService(store=store, tokens=tokens, notifier=notifier, app_name="TestApp", clock=clock)


@pytest.fixture
def app_config():
    from app.config import AppConfig

    return AppConfig(environment="test", app_name="TestApp", jwt_secret=TEST_SECRET)


@pytest.fixture
def app(app_config, store, notifier, clock):
    from app.main import create_app

    return create_app(config=app_config, store=store, notifier=notifier, clock=clock)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app, base_url="https://testserver") as test_client:
        yield test_client
