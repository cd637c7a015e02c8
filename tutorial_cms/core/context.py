"""Per-application state built once at startup."""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from tutorial_cms.core.config import Settings
from tutorial_cms.core.database import Database
from tutorial_cms.core.lifespan import task_done_callback
from tutorial_cms.core.secrets import CSRF_SECRET, JWT_SECRET, LOGIN_ATTEMPT_SALT, SecretStore
from tutorial_cms.middleware.auth import AuthGate
from tutorial_cms.middleware.csrf import CsrfGate
from tutorial_cms.middleware.rate_limit import RateLimiter
from tutorial_cms.security.csrf import CsrfCodec
from tutorial_cms.security.tokens import TokenCodec

logger = logging.getLogger(__name__)


def _reveal(secret: Any) -> str | None:
    return secret.get_secret_value() if secret is not None else None


@dataclass
class AppContext:
    """Everything request handlers share: settings, secrets, codecs, storage.

    Stored on ``app.state.context``; nothing here is a module-level global.
    """

    settings: Settings
    secrets: SecretStore
    database: Database
    tokens: TokenCodec
    csrf: CsrfCodec
    auth_gate: AuthGate
    csrf_gate: CsrfGate
    rate_limiter: RateLimiter
    clock: Callable[[], float] = time.time
    background_tasks: set[asyncio.Task] = field(default_factory=set)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> "AppContext":
        """Validate secrets and wire up the components.

        Raises:
            ConfigurationError: If any secret is missing or too weak.
        """
        secrets = SecretStore()
        secrets.init(JWT_SECRET, _reveal(settings.jwt_secret))
        secrets.init(CSRF_SECRET, _reveal(settings.csrf_secret))
        secrets.init(LOGIN_ATTEMPT_SALT, _reveal(settings.login_attempt_salt))

        if not settings.auth_cookie_secure:
            logger.warning(
                "AUTH_COOKIE_SECURE=false: session and CSRF cookies will be sent over "
                "plain HTTP. Never use this outside local development."
            )

        database = Database(
            settings.database_url,
            echo=settings.debug and settings.log_level == "DEBUG",
        )
        tokens = TokenCodec(secrets.get(JWT_SECRET), clock=clock)
        csrf = CsrfCodec(secrets.get(CSRF_SECRET), clock=clock)

        return cls(
            settings=settings,
            secrets=secrets,
            database=database,
            tokens=tokens,
            csrf=csrf,
            auth_gate=AuthGate(tokens, database),
            csrf_gate=CsrfGate(csrf),
            rate_limiter=RateLimiter(),
            clock=clock,
        )

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Start a background task and hold a reference until it finishes."""
        task = asyncio.create_task(coro, name=name)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        task.add_done_callback(task_done_callback)
        return task
