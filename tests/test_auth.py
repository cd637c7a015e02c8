"""End-to-end tests for the login, logout and /me endpoints."""

import asyncio
from datetime import UTC

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from tests.conftest import (
    TEST_ADMIN_PASSWORD,
    TEST_ADMIN_USERNAME,
    WRONG_PASSWORD,
    login,
    make_client,
)
from tutorial_cms.models.token_blacklist import TokenBlacklist
from tutorial_cms.models.user import User
from tutorial_cms.security.passwords import (
    dummy_password_hash,
    hash_password,
    verify_password_async,
)
from tutorial_cms.security.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from tutorial_cms.security.tokens import AUTH_COOKIE_NAME, TOKEN_LIFETIME_SECONDS
from tutorial_cms.services import auth as auth_service
from tutorial_cms.services.auth import AuthService
from tutorial_cms.services.login_attempts import LoginAttemptTracker
from tutorial_cms.services.token_blacklist import TokenBlacklistService


def _set_cookie_headers(response) -> dict[str, str]:
    """Map cookie name to its raw Set-Cookie header."""
    headers = {}
    for raw in response.headers.get_list("set-cookie"):
        name = raw.split("=", 1)[0]
        headers[name] = raw
    return headers


def _csrf_headers(client) -> dict[str, str]:
    return {CSRF_HEADER_NAME: client.cookies.get(CSRF_COOKIE_NAME)}


class TestLogin:
    """Tests for POST /api/auth/login."""

    @pytest.mark.asyncio
    async def test_login_success(self, async_client, admin_user, context):
        response = await login(async_client)

        assert response.status_code == 200
        data = response.json()
        assert data["user"] == {"username": TEST_ADMIN_USERNAME, "role": "admin"}
        claims = context.tokens.verify(data["token"])
        assert claims.sub == TEST_ADMIN_USERNAME
        assert claims.role == "admin"

    @pytest.mark.asyncio
    async def test_login_sets_cookies(self, async_client, admin_user, context):
        response = await login(async_client)
        cookies = _set_cookie_headers(response)

        session = cookies[AUTH_COOKIE_NAME].lower()
        assert f"max-age={TOKEN_LIFETIME_SECONDS}" in session
        assert "httponly" in session
        assert "samesite=lax" in session
        assert "secure" in session
        assert "path=/" in session

        csrf = cookies[CSRF_COOKIE_NAME].lower()
        assert "max-age=21600" in csrf
        assert "httponly" not in csrf
        assert "samesite=strict" in csrf
        assert "secure" in csrf

        assert async_client.cookies.get(AUTH_COOKIE_NAME) == response.json()["token"]
        context.csrf.validate(async_client.cookies.get(CSRF_COOKIE_NAME), TEST_ADMIN_USERNAME)

    @pytest.mark.asyncio
    async def test_insecure_cookies_when_disabled(self, app_factory, settings_factory):
        app = await app_factory(settings_factory(auth_cookie_secure=False))
        async with app.state.context.database.session() as session:
            session.add(User(username="editor", password_hash=hash_password(TEST_ADMIN_PASSWORD)))
            await session.commit()

        async with make_client(app, base_url="http://test") as client:
            response = await login(client, "editor")

        assert response.status_code == 200
        assert response.json()["user"]["role"] == "user"
        for raw in _set_cookie_headers(response).values():
            assert "secure" not in raw.lower()

    @pytest.mark.asyncio
    async def test_argon2_user_can_log_in(self, async_client, user_factory):
        await user_factory("writer", role="user")
        response = await login(async_client, "writer")
        assert response.status_code == 200
        assert response.json()["user"] == {"username": "writer", "role": "user"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"username": "", "password": TEST_ADMIN_PASSWORD},
            {"username": "   ", "password": TEST_ADMIN_PASSWORD},
            {"username": "a" * 51, "password": TEST_ADMIN_PASSWORD},
            {"username": "bad name!", "password": TEST_ADMIN_PASSWORD},
            {"username": "admin", "password": "Sh0rt!"},
            {"username": "admin", "password": "alllowercaseletters"},
            {"username": "admin", "password": "Aa1!" * 33},
            {"username": "admin"},
            {"password": TEST_ADMIN_PASSWORD},
            {"username": 42, "password": TEST_ADMIN_PASSWORD},
        ],
    )
    async def test_malformed_input_rejected(self, async_client, admin_user, payload):
        response = await async_client.post("/api/auth/login", json=payload)
        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_malformed_input_does_not_count_as_failure(self, async_client, admin_user):
        for _ in range(5):
            response = await login(async_client, password="short")
            assert response.status_code == 400

        response = await login(async_client)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_user_look_the_same(self, async_client, admin_user):
        wrong_password = await login(async_client, password=WRONG_PASSWORD)
        unknown_user = await login(async_client, username="nobody")

        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json() == {"error": "Invalid credentials"}
        assert "set-cookie" not in wrong_password.headers

    @pytest.mark.asyncio
    async def test_username_is_trimmed(self, async_client, admin_user):
        response = await login(async_client, username=f"  {TEST_ADMIN_USERNAME} ")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_login_survives_attempt_reset_failure(
        self, async_client, admin_user, monkeypatch
    ):
        async def broken_clear(self, key):
            raise OperationalError("DELETE", {}, Exception("database is locked"))

        monkeypatch.setattr(LoginAttemptTracker, "clear", broken_clear)

        response = await login(async_client)

        assert response.status_code == 200
        cookies = _set_cookie_headers(response)
        assert AUTH_COOKIE_NAME in cookies
        assert CSRF_COOKIE_NAME in cookies


class TestLoginLockout:
    """Progressive lockout: 3 failures block 10s, 5 failures block 60s."""

    async def _fail(self, client, headers=None):
        return await client.post(
            "/api/auth/login",
            json={"username": TEST_ADMIN_USERNAME, "password": WRONG_PASSWORD},
            headers=headers,
        )

    @pytest.mark.asyncio
    async def test_third_failure_locks_briefly(self, async_client, admin_user):
        for _ in range(3):
            assert (await self._fail(async_client)).status_code == 401

        response = await login(async_client)

        assert response.status_code == 429
        body = response.json()
        assert 1 <= body["remaining"] <= 10
        assert "error" in body
        assert response.headers["Retry-After"] == str(body["remaining"])

    @pytest.mark.asyncio
    async def test_escalates_to_one_minute(self, async_client, admin_user, clock):
        for _ in range(3):
            assert (await self._fail(async_client)).status_code == 401

        clock.advance(11)
        assert (await self._fail(async_client)).status_code == 401

        clock.advance(11)
        assert (await self._fail(async_client)).status_code == 401

        response = await self._fail(async_client)
        assert response.status_code == 429
        assert 10 < response.json()["remaining"] <= 60

    @pytest.mark.asyncio
    async def test_lockout_expires(self, async_client, admin_user, clock):
        for _ in range(3):
            await self._fail(async_client)
        assert (await login(async_client)).status_code == 429

        clock.advance(11)
        assert (await login(async_client)).status_code == 200

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, async_client, admin_user):
        statuses = []
        for _ in range(2):
            statuses.append((await self._fail(async_client)).status_code)
            statuses.append((await self._fail(async_client)).status_code)
            statuses.append((await login(async_client)).status_code)

        assert statuses == [401, 401, 200, 401, 401, 200]

    @pytest.mark.asyncio
    async def test_lockout_is_per_username(self, async_client, admin_user, user_factory):
        await user_factory("editor", role="user")
        for _ in range(3):
            await self._fail(async_client)

        assert (await login(async_client, "editor")).status_code == 200

    @pytest.mark.asyncio
    async def test_forged_forwarded_for_does_not_evade_lockout(self, async_client, admin_user):
        for i in range(3):
            response = await self._fail(async_client, headers={"X-Forwarded-For": f"203.0.113.{i}"})
            assert response.status_code == 401

        response = await login(async_client)
        assert response.status_code == 429

    @pytest.mark.asyncio
    async def test_trusted_proxy_keys_by_forwarded_ip(self, app_factory, settings_factory):
        app = await app_factory(settings_factory(trust_proxy_ip_headers=True))
        async with app.state.context.database.session() as session:
            session.add(
                User(
                    username=TEST_ADMIN_USERNAME,
                    password_hash=hash_password(TEST_ADMIN_PASSWORD),
                    role="admin",
                )
            )
            await session.commit()

        async with make_client(app) as client:
            for _ in range(3):
                await self._fail(client, headers={"X-Forwarded-For": "203.0.113.9"})

            blocked = await client.post(
                "/api/auth/login",
                json={"username": TEST_ADMIN_USERNAME, "password": TEST_ADMIN_PASSWORD},
                headers={"X-Forwarded-For": "203.0.113.9"},
            )
            other_ip = await client.post(
                "/api/auth/login",
                json={"username": TEST_ADMIN_USERNAME, "password": TEST_ADMIN_PASSWORD},
                headers={"X-Forwarded-For": "198.51.100.20"},
            )

        assert blocked.status_code == 429
        assert other_ip.status_code == 200


class TestLoginTiming:
    """Every credential check costs a hash verification plus a random delay."""

    @pytest.fixture
    def sleeps(self, monkeypatch):
        """Record non-zero asyncio.sleep delays without waiting for them."""
        delays = []
        real_sleep = asyncio.sleep

        async def recording_sleep(delay, *args, **kwargs):
            if delay > 0:
                delays.append(delay)
            return await real_sleep(0, *args, **kwargs)

        monkeypatch.setattr(asyncio, "sleep", recording_sleep)
        return delays

    @pytest_asyncio.fixture
    async def jitter_app(self, app_factory, settings_factory):
        app = await app_factory(settings_factory(login_jitter_min_ms=100, login_jitter_max_ms=300))
        async with app.state.context.database.session() as session:
            session.add(
                User(
                    username=TEST_ADMIN_USERNAME,
                    password_hash=hash_password(TEST_ADMIN_PASSWORD),
                    role="admin",
                )
            )
            await session.commit()
        return app

    @pytest.mark.asyncio
    async def test_jitter_after_every_comparison(self, jitter_app, sleeps):
        async with make_client(jitter_app) as client:
            assert (await login(client)).status_code == 200
            assert (await login(client, password=WRONG_PASSWORD)).status_code == 401
            assert (await login(client, username="nobody")).status_code == 401

        assert len(sleeps) == 3
        assert all(0.1 <= delay <= 0.3 for delay in sleeps)

    @pytest.mark.asyncio
    async def test_no_jitter_for_locked_or_malformed_attempts(self, jitter_app, sleeps):
        async with make_client(jitter_app) as client:
            for _ in range(3):
                await login(client, password=WRONG_PASSWORD)
            sleeps.clear()

            locked = await login(client)
            malformed = await login(client, password="short")

        assert locked.status_code == 429
        assert malformed.status_code == 400
        assert sleeps == []

    @pytest.fixture
    def verify_calls(self, monkeypatch):
        """Spy on password verification inside the login flow."""
        calls = []

        async def spy(password, password_hash):
            calls.append((password, password_hash))
            return await verify_password_async(password, password_hash)

        monkeypatch.setattr(auth_service, "verify_password_async", spy)
        return calls

    @pytest.mark.asyncio
    async def test_unknown_user_verifies_against_dummy_hash(
        self, async_client, admin_user, verify_calls
    ):
        response = await login(async_client, username="nobody")

        assert response.status_code == 401
        assert verify_calls == [(TEST_ADMIN_PASSWORD, dummy_password_hash())]

    @pytest.mark.asyncio
    async def test_known_user_verifies_against_stored_hash(
        self, async_client, admin_user, verify_calls
    ):
        response = await login(async_client, password=WRONG_PASSWORD)

        assert response.status_code == 401
        assert verify_calls == [(WRONG_PASSWORD, admin_user.password_hash)]

    @pytest.mark.asyncio
    async def test_locked_attempt_skips_verification(self, async_client, admin_user, verify_calls):
        for _ in range(3):
            await login(async_client, password=WRONG_PASSWORD)
        verify_calls.clear()

        assert (await login(async_client)).status_code == 429
        assert verify_calls == []


class TestMe:
    """Tests for GET /api/auth/me."""

    @pytest.mark.asyncio
    async def test_me_with_cookie(self, logged_in_client):
        response = await logged_in_client.get("/api/auth/me")

        assert response.status_code == 200
        assert response.json() == {"username": TEST_ADMIN_USERNAME, "role": "admin"}

    @pytest.mark.asyncio
    async def test_me_refreshes_csrf_cookie(self, logged_in_client, context):
        before = logged_in_client.cookies.get(CSRF_COOKIE_NAME)
        response = await logged_in_client.get("/api/auth/me")

        assert CSRF_COOKIE_NAME in _set_cookie_headers(response)
        after = logged_in_client.cookies.get(CSRF_COOKIE_NAME)
        assert after != before
        context.csrf.validate(after, TEST_ADMIN_USERNAME)

    @pytest.mark.asyncio
    async def test_me_with_bearer(self, app, admin_user):
        async with make_client(app) as client:
            token = (await login(client)).json()["token"]

        async with make_client(app) as fresh:
            response = await fresh.get(
                "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
            )

        assert response.status_code == 200
        assert response.json()["username"] == TEST_ADMIN_USERNAME

    @pytest.mark.asyncio
    async def test_me_requires_authentication(self, async_client):
        response = await async_client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_me_rejects_garbage_token(self, async_client):
        response = await async_client.get(
            "/api/auth/me", headers={"Authorization": "Bearer not.a.token"}
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}

    @pytest.mark.asyncio
    async def test_me_rejects_expired_token(self, logged_in_client, clock):
        clock.advance(TOKEN_LIFETIME_SECONDS + 61)
        response = await logged_in_client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}

    @pytest.mark.asyncio
    async def test_me_accepts_token_within_leeway(self, logged_in_client, clock):
        clock.advance(TOKEN_LIFETIME_SECONDS + 30)
        response = await logged_in_client.get("/api/auth/me")
        assert response.status_code == 200


class TestLogout:
    """Tests for POST /api/auth/logout."""

    @pytest.mark.asyncio
    async def test_logout_requires_csrf_header(self, logged_in_client):
        response = await logged_in_client.post("/api/auth/logout")

        assert response.status_code == 403
        assert response.json() == {"error": "Missing CSRF token header"}

    @pytest.mark.asyncio
    async def test_logout_rejects_mismatched_csrf(self, logged_in_client, context):
        response = await logged_in_client.post(
            "/api/auth/logout",
            headers={CSRF_HEADER_NAME: context.csrf.issue(TEST_ADMIN_USERNAME)},
        )

        assert response.status_code == 403
        assert response.json() == {"error": "CSRF token mismatch"}

    @pytest.mark.asyncio
    async def test_logout_clears_cookies(self, logged_in_client):
        response = await logged_in_client.post(
            "/api/auth/logout", headers=_csrf_headers(logged_in_client)
        )

        assert response.status_code == 204
        assert response.content == b""
        cookies = _set_cookie_headers(response)
        for name in (AUTH_COOKIE_NAME, CSRF_COOKIE_NAME):
            raw = cookies[name]
            assert raw.startswith(f'{name}="";') or raw.startswith(f"{name}=;")
            assert "Max-Age=0" in raw
            assert "01 Jan 1970 00:00:00 GMT" in raw
        assert logged_in_client.cookies.get(AUTH_COOKIE_NAME) is None

    @pytest.mark.asyncio
    async def test_token_is_revoked_after_logout(self, logged_in_client, context):
        token = logged_in_client.cookies.get(AUTH_COOKIE_NAME)
        response = await logged_in_client.post(
            "/api/auth/logout", headers=_csrf_headers(logged_in_client)
        )
        assert response.status_code == 204

        async with context.database.session() as session:
            assert await TokenBlacklistService(session).is_blacklisted(token)

        response = await logged_in_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}

    @pytest.mark.asyncio
    async def test_blacklist_entry_expires_with_token(self, logged_in_client, context, clock):
        token = logged_in_client.cookies.get(AUTH_COOKIE_NAME)
        exp = context.tokens.verify(token).exp
        await logged_in_client.post("/api/auth/logout", headers=_csrf_headers(logged_in_client))

        async with context.database.session() as session:
            entry = await session.get(TokenBlacklist, token)

        # SQLite hands back naive UTC datetimes
        expires_at = entry.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        assert int(expires_at.timestamp()) == exp

    @pytest.mark.asyncio
    async def test_logout_requires_authentication(self, async_client):
        response = await async_client.post("/api/auth/logout")

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}

    @pytest.mark.asyncio
    async def test_logout_survives_blacklist_failure(self, logged_in_client, monkeypatch):
        async def broken_blacklist(self, token, expires_at):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(AuthService, "_blacklist", broken_blacklist)

        response = await logged_in_client.post(
            "/api/auth/logout", headers=_csrf_headers(logged_in_client)
        )

        assert response.status_code == 204
        assert logged_in_client.cookies.get(AUTH_COOKIE_NAME) is None

    @pytest.mark.asyncio
    async def test_logout_twice_is_harmless(self, logged_in_client, context):
        token = logged_in_client.cookies.get(AUTH_COOKIE_NAME)
        csrf = logged_in_client.cookies.get(CSRF_COOKIE_NAME)
        await logged_in_client.post("/api/auth/logout", headers={CSRF_HEADER_NAME: csrf})

        # The revoked token is rejected before the handler runs
        response = await logged_in_client.post(
            "/api/auth/logout",
            headers={"Authorization": f"Bearer {token}", CSRF_HEADER_NAME: csrf},
        )
        assert response.status_code == 401


class TestBlacklistCleanupOnLogin:
    """Successful logins occasionally prune expired blacklist rows."""

    @pytest.mark.asyncio
    async def test_cleanup_runs_when_probability_is_one(
        self, app_factory, settings_factory, clock
    ):
        app = await app_factory(settings_factory(blacklist_cleanup_probability=1.0))
        context = app.state.context

        async with context.database.session() as session:
            session.add(
                User(
                    username=TEST_ADMIN_USERNAME,
                    password_hash=hash_password(TEST_ADMIN_PASSWORD),
                    role="admin",
                )
            )
            service = TokenBlacklistService(session, clock)
            await service.blacklist("stale-token", int(clock()) - 5)
            await service.blacklist("live-token", int(clock()) + 3600)
            await session.commit()

        async with make_client(app) as client:
            assert (await login(client)).status_code == 200

        await asyncio.gather(*list(context.background_tasks))

        async with context.database.session() as session:
            service = TokenBlacklistService(session, clock)
            assert not await service.is_blacklisted("stale-token")
            assert await service.is_blacklisted("live-token")
