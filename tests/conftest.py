"""Pytest configuration and fixtures for backend tests.

Store backends:
- The file store writes to a per-test temporary directory
- The SQL store runs against SQLite through aiosqlite, one database per test
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from waitlist.core.config import Settings
from waitlist.main import create_app
from waitlist.services.auth import make_token
from waitlist.services.file_store import FileSubscriberStore
from waitlist.services.mailer import MailDeliveryError
from waitlist.services.rate_limiter import RateLimitConfig, RateLimiter
from waitlist.services.sql_store import SqlSubscriberStore

# Test admin credentials
TEST_ADMIN_PASSWORD = "correct-horse-battery"
TEST_TOKEN_SECRET = "0123456789abcdef0123456789abcdef"


# --- Test doubles ---


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str
    text: str | None


class RecordingMailer:
    """Mailer that records messages instead of talking to SMTP."""

    def __init__(self, configured: bool = True, fail_for: set[str] | None = None):
        self.configured = configured
        self.fail_for = fail_for or set()
        self.sent: list[SentEmail] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> None:
        if to in self.fail_for:
            raise MailDeliveryError("Recipient refused")
        self.sent.append(SentEmail(to=to, subject=subject, html=html, text=text))

    def recipients(self) -> list[str]:
        return [m.to for m in self.sent]


class FakeClock:
    """Manually advanced clock for rate limiter tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# --- Settings / collaborators ---


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings isolated from the environment and any .env file."""
    values = {
        "admin_password": TEST_ADMIN_PASSWORD,
        "admin_token_secret": TEST_TOKEN_SECRET,
        "waitlist_file": str(tmp_path / "waitlist.json"),
        "database_url": "",
        "email_user": "waitlist@example.com",
        "email_pass": "smtp-password",
        "admin_notify_email": "owner@example.com",
        "base_url": "https://example.com",
        "allowed_origins": "",
        "login_delay_min_ms": 0,
        "login_delay_jitter_ms": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings for this test with selected overrides."""

    def _factory(**overrides) -> Settings:
        return make_settings(tmp_path, **overrides)

    return _factory


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(test_settings, fake_clock) -> RateLimiter:
    return RateLimiter(RateLimitConfig.from_settings(test_settings), clock=fake_clock)


@pytest.fixture
def file_store(test_settings) -> FileSubscriberStore:
    return FileSubscriberStore(test_settings.waitlist_file)


@pytest_asyncio.fixture(params=["file", "sql"])
async def store(request, tmp_path) -> AsyncGenerator:
    """Each store test runs once per backend."""
    if request.param == "file":
        backend = FileSubscriberStore(tmp_path / "waitlist.json")
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'waitlist.db'}")
        backend = SqlSubscriberStore(engine)

    await backend.initialize()
    yield backend
    await backend.close()


# --- App / client ---


@pytest.fixture
def app(test_settings, file_store, mailer, rate_limiter):
    return create_app(
        test_settings,
        store=file_store,
        mailer=mailer,
        rate_limiter=rate_limiter,
    )


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, without lifespan."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_token(test_settings) -> str:
    return make_token(test_settings.token_secret, test_settings.session_ttl_seconds)


@pytest.fixture
def admin_headers(admin_token) -> dict[str, str]:
    """Authorization header carrying a valid admin session."""
    return {"Authorization": f"Bearer {admin_token}"}
