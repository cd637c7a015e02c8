"""Request authentication gate: token extraction, verification, revocation."""

import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from tutorial_cms.core.database import Database
from tutorial_cms.core.errors import InternalError, UnauthenticatedError
from tutorial_cms.security.tokens import Claims, InvalidTokenError, TokenCodec, extract_token
from tutorial_cms.services.token_blacklist import TokenBlacklistService

logger = logging.getLogger(__name__)


class AuthGate:
    """Turns a request into verified Claims.

    On success the claims and raw token are stored on ``request.state`` so
    later dependencies in the same request reuse them.
    """

    def __init__(self, tokens: TokenCodec, database: Database) -> None:
        self.tokens = tokens
        self.database = database

    async def authenticate(self, request: Request) -> Claims:
        """Return the caller's claims or raise a 401-class error."""
        cached = getattr(request.state, "claims", None)
        if cached is not None:
            return cached

        token = extract_token(request)
        if token is None:
            raise UnauthenticatedError("Authentication required")

        claims = self.tokens.verify(token)

        try:
            async with self.database.session() as session:
                revoked = await TokenBlacklistService(session).is_blacklisted(token)
        except SQLAlchemyError as e:
            logger.error(f"Token blacklist lookup failed: {e}")
            raise InternalError() from e

        if revoked:
            logger.info(f"Rejected revoked token for {claims.sub}")
            raise InvalidTokenError()

        request.state.claims = claims
        request.state.token = token
        return claims

    async def authenticate_optional(self, request: Request) -> Claims | None:
        """None for anonymous callers; a presented but invalid token is still a 401."""
        if getattr(request.state, "claims", None) is None and extract_token(request) is None:
            return None
        return await self.authenticate(request)
