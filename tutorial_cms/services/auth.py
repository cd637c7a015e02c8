"""Login and logout orchestration."""

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from tutorial_cms.core.errors import RateLimitedError, UnauthenticatedError, ValidationError
from tutorial_cms.core.secrets import LOGIN_ATTEMPT_SALT
from tutorial_cms.security.passwords import (
    dummy_password_hash,
    password_is_acceptable,
    verify_password_async,
)
from tutorial_cms.security.tokens import Claims, InvalidTokenError
from tutorial_cms.services.login_attempts import LoginAttemptTracker, attempt_key
from tutorial_cms.services.token_blacklist import TokenBlacklistService, purge_expired_tokens
from tutorial_cms.services.users import UserService

if TYPE_CHECKING:
    from tutorial_cms.core.context import AppContext

logger = logging.getLogger(__name__)

USERNAME_MAX_LENGTH = 50
_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

INVALID_CREDENTIALS = "Invalid credentials"


@dataclass(frozen=True)
class LoginResult:
    token: str
    csrf_token: str
    username: str
    role: str


def validate_login_input(username: str, password: str) -> str:
    """Check username and password shape, returning the trimmed username.

    Raises:
        ValidationError: Before any storage is touched.
    """
    username = username.strip()
    if not username or len(username) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"Username must be 1-{USERNAME_MAX_LENGTH} characters")
    if not _USERNAME_PATTERN.match(username):
        raise ValidationError("Username may only contain letters, digits, '_', '-' and '.'")
    if not password_is_acceptable(password):
        raise ValidationError(
            "Password must be 12-128 characters and mix at least 3 of: "
            "lowercase, uppercase, digits, symbols"
        )
    return username


class AuthService:
    """Authenticates users and issues or revokes sessions.

    Storage writes that must survive a client disconnect (failure counts,
    blacklist entries) run as shielded background tasks.
    """

    def __init__(self, context: "AppContext"):
        self.context = context
        self.settings = context.settings
        self._random = random.SystemRandom()

    async def login(self, username: str, password: str, client_ip: str) -> LoginResult:
        """Authenticate and return a fresh session token and CSRF token.

        Raises:
            ValidationError: Malformed username or password.
            RateLimitedError: A lockout window is active for this IP and username.
            UnauthenticatedError: Unknown user or wrong password.
        """
        username = validate_login_input(username, password)
        key = attempt_key(self.context.secrets.get(LOGIN_ATTEMPT_SALT), client_ip, username)
        now = self.context.clock()

        async with self.context.database.session() as session:
            record = await LoginAttemptTracker(session, self.context.clock).get(key)
            if record is not None and record.is_blocked(now):
                remaining = record.remaining_seconds(now)
                logger.warning(
                    f"Login locked for '{username}' from {client_ip}: {remaining}s remaining"
                )
                raise RateLimitedError(remaining)
            user = await UserService(session).get_by_username(username)

        # Same hash work whether or not the user exists
        password_hash = user.password_hash if user is not None else dummy_password_hash()
        password_ok = await verify_password_async(password, password_hash)
        await self._jitter()

        if user is None or not password_ok:
            await asyncio.shield(
                self.context.spawn(self._record_failure(key), name="login-record-failure")
            )
            logger.info(f"Failed login for '{username}' from {client_ip}")
            raise UnauthenticatedError(INVALID_CREDENTIALS)

        try:
            await asyncio.shield(self.context.spawn(self._clear_attempts(key), name="login-clear"))
        except SQLAlchemyError as e:
            # The session is issued even if the counter survives
            logger.warning(f"Failed to clear login attempts for '{username}': {e}")

        result = LoginResult(
            token=self.context.tokens.issue(user.username, user.role),
            csrf_token=self.context.csrf.issue(user.username),
            username=user.username,
            role=user.role,
        )
        logger.info(f"User logged in: {user.username}")

        if self._random.random() < self.settings.blacklist_cleanup_probability:
            self.context.spawn(
                purge_expired_tokens(self.context.database, self.context.clock),
                name="blacklist-cleanup",
            )
        return result

    async def logout(self, tokens: list[str], claims: Claims) -> None:
        """Blacklist every presented token. Failures are logged, never raised."""
        for token in dict.fromkeys(tokens):
            try:
                expires_at = self.context.tokens.verify(token).exp
            except InvalidTokenError:
                # Already unusable, nothing to revoke
                continue
            try:
                await asyncio.shield(
                    self.context.spawn(self._blacklist(token, expires_at), name="logout-blacklist")
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Failed to blacklist token for {claims.sub}")
        logger.info(f"User logged out: {claims.sub}")

    async def _jitter(self) -> None:
        low = self.settings.login_jitter_min_ms
        high = self.settings.login_jitter_max_ms
        if high <= 0:
            return
        await asyncio.sleep(self._random.uniform(low, high) / 1000)

    async def _record_failure(self, key: str) -> None:
        async with self.context.database.session() as session:
            await LoginAttemptTracker(session, self.context.clock).record_failure(key)
            await session.commit()

    async def _clear_attempts(self, key: str) -> None:
        async with self.context.database.session() as session:
            await LoginAttemptTracker(session, self.context.clock).clear(key)
            await session.commit()

    async def _blacklist(self, token: str, expires_at: int) -> None:
        async with self.context.database.session() as session:
            await TokenBlacklistService(session, self.context.clock).blacklist(token, expires_at)
            await session.commit()
