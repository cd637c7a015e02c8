"""Progressive login lockout keyed by a salted hash of IP and username."""

import hashlib
import hmac
import logging
import time
from collections.abc import Callable

from sqlalchemy import case, delete, null
from sqlalchemy.ext.asyncio import AsyncSession

from tutorial_cms.core.database import dialect_insert
from tutorial_cms.models.login_attempt import LoginAttempt

logger = logging.getLogger(__name__)

# Lockout tiers: (failures reached, seconds blocked), highest first
LOCKOUT_TIERS: tuple[tuple[int, int], ...] = ((5, 60), (3, 10))


def attempt_key(salt: str, client_ip: str, username: str) -> str:
    """HMAC-SHA256 hex digest of ``"<ip>:<normalized username>"``."""
    identity = f"{client_ip}:{username.strip().lower()}"
    return hmac.new(salt.encode("utf-8"), identity.encode("utf-8"), hashlib.sha256).hexdigest()


class LoginAttemptTracker:
    """Failed-login counters backed by the ``login_attempts`` table."""

    def __init__(self, session: AsyncSession, clock: Callable[[], float] = time.time):
        self.session = session
        self._clock = clock

    async def get(self, key: str) -> LoginAttempt | None:
        return await self.session.get(LoginAttempt, key, populate_existing=True)

    async def record_failure(self, key: str) -> None:
        """Count one failure and apply the lockout tier in a single upsert."""
        now = int(self._clock())
        new_count = LoginAttempt.fail_count + 1
        tiers = [(new_count >= threshold, now + seconds) for threshold, seconds in LOCKOUT_TIERS]

        stmt = dialect_insert(self.session, LoginAttempt).values(
            attempt_key=key, fail_count=1, blocked_until=None
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[LoginAttempt.attempt_key],
            set_={
                "fail_count": new_count,
                "blocked_until": case(*tiers, else_=null()),
            },
        )
        await self.session.execute(stmt)

    async def clear(self, key: str) -> None:
        await self.session.execute(delete(LoginAttempt).where(LoginAttempt.attempt_key == key))
