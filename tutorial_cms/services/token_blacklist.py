"""Database-backed revocation list for logged-out session tokens."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from tutorial_cms.core.database import Database, dialect_insert
from tutorial_cms.models.token_blacklist import TokenBlacklist

logger = logging.getLogger(__name__)


class TokenBlacklistService:
    def __init__(self, session: AsyncSession, clock: Callable[[], float] = time.time):
        self.session = session
        self._clock = clock

    async def blacklist(self, token: str, expires_at: int) -> None:
        """Revoke a token until ``expires_at`` (unix seconds). Repeat calls are no-ops."""
        stmt = (
            dialect_insert(self.session, TokenBlacklist)
            .values(token=token, expires_at=datetime.fromtimestamp(expires_at, tz=UTC))
            .on_conflict_do_nothing(index_elements=[TokenBlacklist.token])
        )
        await self.session.execute(stmt)

    async def is_blacklisted(self, token: str) -> bool:
        result = await self.session.execute(
            select(TokenBlacklist.token).where(TokenBlacklist.token == token)
        )
        return result.scalar_one_or_none() is not None

    async def cleanup_expired(self) -> int:
        """Remove expired entries. Returns count removed."""
        now = datetime.fromtimestamp(self._clock(), tz=UTC)
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(TokenBlacklist).where(TokenBlacklist.expires_at < now)
        )
        return result.rowcount


async def purge_expired_tokens(database: Database, clock: Callable[[], float] = time.time) -> int:
    """Delete expired blacklist rows in their own transaction."""
    async with database.session() as session:
        removed = await TokenBlacklistService(session, clock).cleanup_expired()
        await session.commit()
    if removed > 0:
        logger.info(f"Cleaned up {removed} expired token blacklist entries")
    return removed
