"""Async SQLAlchemy engine, sessions and dialect helpers."""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


class Database:
    """Owns the engine and session factory for one application instance."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with database.session() as s``."""
        return self.session_maker()

    async def create_all(self) -> None:
        """Create any missing tables."""
        # Models register themselves on Base.metadata when imported
        import tutorial_cms.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def check_connection(self) -> bool:
        """Check if the database is reachable."""
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
                return True
        except (OSError, ConnectionError) as e:
            logger.debug(f"Database connection check failed: {e}")
            return False
        except Exception as e:
            logger.warning(f"Unexpected error checking database connection: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


def dialect_insert(session: AsyncSession, model: Any) -> Any:
    """Return an INSERT supporting ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert(model)
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")
