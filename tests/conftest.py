"""Pytest configuration and fixtures for backend tests.

Each test gets its own SQLite file database under tmp_path and a fresh
application built by ``create_app``. Time-dependent behavior (token expiry,
lockout windows) is driven by an injectable FakeClock.
"""

import os
import time
from collections.abc import AsyncGenerator, Callable

import bcrypt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

# Set test environment variables before importing app modules
TEST_JWT_SECRET = "tEst-JWT-secret_9f8e7d6c5b4a3210-ZYXWVUTSRQPONM"
TEST_CSRF_SECRET = "csrf-Secret_0123456789abcdefghijKLMN"
TEST_LOGIN_SALT = "login-salt-ABCDEFGHIJ-0123456789-xyz"

os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["CSRF_SECRET"] = TEST_CSRF_SECRET
os.environ["LOGIN_ATTEMPT_SALT"] = TEST_LOGIN_SALT
os.environ.pop("ADMIN_USERNAME", None)
os.environ.pop("ADMIN_PASSWORD", None)

# Test admin credentials
TEST_ADMIN_USERNAME = "admin"
TEST_ADMIN_PASSWORD = "Str0ng!Passw0rd123"
# Passes the complexity rules but never matches
WRONG_PASSWORD = "Wr0ng!Passw0rd999"


class FakeClock:
    """Callable returning unix seconds that only moves when told to."""

    def __init__(self, start: float | None = None):
        self.now = float(start if start is not None else int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings for tests; keyword arguments override fields."""
    from tutorial_cms.core.config import Settings

    def _make(**overrides) -> Settings:
        values = {
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            "login_jitter_min_ms": 0,
            "login_jitter_max_ms": 0,
            "blacklist_cleanup_probability": 0.0,
            "rate_limit_enabled": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(settings_factory):
    return settings_factory()


# --- Application Fixtures ---


@pytest_asyncio.fixture
async def app_factory(clock):
    """Create apps with their tables in place (ASGITransport skips lifespan)."""
    from tutorial_cms.main import create_app

    created: list[FastAPI] = []

    async def _make(settings) -> FastAPI:
        app = create_app(settings, clock=clock)
        await app.state.context.database.create_all()
        created.append(app)
        return app

    yield _make

    for app in created:
        await app.state.context.database.dispose()


@pytest_asyncio.fixture
async def app(app_factory, settings) -> FastAPI:
    return await app_factory(settings)


@pytest.fixture
def context(app):
    return app.state.context


@pytest_asyncio.fixture
async def db_session(context) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with context.database.session() as session:
        yield session
        await session.rollback()


def make_client(app: FastAPI, base_url: str = "https://test") -> AsyncClient:
    """HTTPS by default so Secure cookies round-trip."""
    return AsyncClient(transport=ASGITransport(app=app), base_url=base_url)


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client for the app."""
    async with make_client(app) as client:
        yield client


# --- Request Helpers ---


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Build a bare Starlette request from headers and cookies."""

    def _make(
        method: str = "GET",
        path: str = "/",
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
    ) -> Request:
        raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
        if cookies:
            cookie_header = "; ".join(f"{k}={v}" for k, v in cookies.items())
            raw_headers.append((b"cookie", cookie_header.encode()))
        return Request(
            {
                "type": "http",
                "method": method,
                "path": path,
                "headers": raw_headers,
                "query_string": b"",
                "scheme": "https",
                "server": ("test", 443),
                "client": ("127.0.0.1", 50000),
            }
        )

    return _make


# --- User Helpers ---


@pytest.fixture
def user_factory(context):
    """Factory for creating users; ``use_bcrypt`` mimics imported legacy hashes."""
    from tutorial_cms.models.user import User
    from tutorial_cms.security.passwords import hash_password

    async def _create_user(
        username: str = TEST_ADMIN_USERNAME,
        password: str = TEST_ADMIN_PASSWORD,
        role: str = "admin",
        use_bcrypt: bool = False,
    ) -> User:
        if use_bcrypt:
            password_hash = bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode()
        else:
            password_hash = hash_password(password)
        async with context.database.session() as session:
            user = User(username=username, password_hash=password_hash, role=role)
            session.add(user)
            await session.commit()
            return user

    return _create_user


@pytest_asyncio.fixture
async def admin_user(user_factory):
    """The e2e admin, stored with a bcrypt hash."""
    return await user_factory(use_bcrypt=True)


async def login(
    client: AsyncClient,
    username: str = TEST_ADMIN_USERNAME,
    password: str = TEST_ADMIN_PASSWORD,
):
    """POST the login form."""
    return await client.post("/api/auth/login", json={"username": username, "password": password})


@pytest_asyncio.fixture
async def logged_in_client(async_client, admin_user) -> AsyncClient:
    """Client holding session and csrf cookies for the admin."""
    response = await login(async_client)
    assert response.status_code == 200
    return async_client


# --- Markers ---


def pytest_collection_modifyitems(config, items):
    """Mark tests as 'integration' when they use the app or database, else 'unit'."""
    integration_fixtures = {"app", "async_client", "db_session", "context", "app_factory"}

    for item in items:
        if any(mark.name in ("unit", "integration") for mark in item.iter_markers()):
            continue

        if hasattr(item, "fixturenames") and integration_fixtures & set(item.fixturenames):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
