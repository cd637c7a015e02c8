"""JWT session tokens: issue, verify, and extract from requests."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import jwt
from fastapi import Request
from jwt.exceptions import PyJWTError

from tutorial_cms.core.errors import UnauthenticatedError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_LIFETIME_SECONDS = 24 * 60 * 60
# Allowed clock skew when checking exp
TOKEN_LEEWAY_SECONDS = 60

AUTH_COOKIE_NAME = "session"


class InvalidTokenError(UnauthenticatedError):
    """Token failed verification.

    The message is the same for every cause so clients cannot tell
    a bad signature from an expired token.
    """

    default_message = "Invalid token"


class TokenExpiredError(InvalidTokenError):
    """Token exp is further in the past than the allowed leeway."""

    pass


@dataclass(frozen=True)
class Claims:
    """Verified identity carried by a session token."""

    sub: str
    role: str
    exp: int

    @property
    def username(self) -> str:
        return self.sub


class TokenCodec:
    """Issues and verifies HS256 session tokens."""

    def __init__(
        self,
        secret: str,
        clock: Callable[[], float] = time.time,
        lifetime_seconds: int = TOKEN_LIFETIME_SECONDS,
        leeway_seconds: int = TOKEN_LEEWAY_SECONDS,
    ):
        self._secret = secret
        self._clock = clock
        self.lifetime_seconds = lifetime_seconds
        self.leeway_seconds = leeway_seconds

    def issue(self, username: str, role: str) -> str:
        """Create a signed token for ``username`` expiring after the token lifetime."""
        payload = {
            "sub": username,
            "role": role,
            "exp": int(self._clock()) + self.lifetime_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify(self, token: str) -> Claims:
        """Verify signature, structure and expiry.

        Raises:
            TokenExpiredError: If exp has passed beyond the leeway.
            InvalidTokenError: For any other verification failure.
        """
        try:
            # exp is checked below against the injected clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"verify_exp": False, "require": ["sub", "role", "exp"]},
            )
        except PyJWTError as e:
            logger.info(f"Rejected token: {e}")
            raise InvalidTokenError() from e

        sub = payload.get("sub")
        role = payload.get("role")
        exp = payload.get("exp")
        if not isinstance(sub, str) or not sub or not isinstance(role, str):
            logger.info("Rejected token: malformed sub or role claim")
            raise InvalidTokenError()
        if not isinstance(exp, int) or isinstance(exp, bool):
            logger.info("Rejected token: non-integer exp claim")
            raise InvalidTokenError()

        now = self._clock()
        if now > exp + self.leeway_seconds:
            logger.info(f"Rejected token for {sub}: expired {int(now - exp)}s ago")
            raise TokenExpiredError()

        return Claims(sub=sub, role=role, exp=exp)


def bearer_token(request: Request) -> str | None:
    """Token from ``Authorization: Bearer <token>`` (scheme is case-insensitive)."""
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    value = value.strip()
    return value or None


def cookie_token(request: Request) -> str | None:
    value = request.cookies.get(AUTH_COOKIE_NAME, "").strip()
    return value or None


def extract_token(request: Request) -> str | None:
    """Bearer header first, then the session cookie."""
    return bearer_token(request) or cookie_token(request)
