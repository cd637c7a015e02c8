"""User lookup and admin bootstrap."""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorial_cms.core.errors import ConfigurationError
from tutorial_cms.models.user import User
from tutorial_cms.security.passwords import (
    PASSWORD_MIN_LENGTH,
    hash_password,
    verify_password_async,
)

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class UserService:
    """Service for user records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_username(self, username: str) -> User | None:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def create_user(self, username: str, password: str, role: str = "user") -> User:
        password_hash = await asyncio.to_thread(hash_password, password)
        user = User(username=username, password_hash=password_hash, role=role)
        self.session.add(user)
        await self.session.flush()
        logger.info(f"Created user: {username} (role={role})")
        return user

    async def ensure_admin(self, username: str, password: str) -> User:
        """Create the bootstrap admin unless the username already exists.

        An existing account keeps its stored hash; configuration never
        silently overwrites a password.

        Raises:
            ConfigurationError: If the bootstrap password is too short.
        """
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ConfigurationError(
                f"ADMIN_PASSWORD must be at least {PASSWORD_MIN_LENGTH} characters"
            )

        existing = await self.get_by_username(username)
        if existing is not None:
            if await verify_password_async(password, existing.password_hash):
                logger.info(f"Admin user '{username}' exists, configured password matches")
            else:
                logger.warning(
                    f"Admin user '{username}' exists with a different password; "
                    "keeping the stored hash"
                )
            return existing

        return await self.create_user(username, password, role=ADMIN_ROLE)
