"""Token, CSRF, password and cookie primitives."""

from tutorial_cms.security.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, CsrfCodec, CsrfError
from tutorial_cms.security.tokens import (
    AUTH_COOKIE_NAME,
    Claims,
    InvalidTokenError,
    TokenCodec,
    TokenExpiredError,
)

__all__ = [
    "AUTH_COOKIE_NAME",
    "CSRF_COOKIE_NAME",
    "CSRF_HEADER_NAME",
    "Claims",
    "CsrfCodec",
    "CsrfError",
    "InvalidTokenError",
    "TokenCodec",
    "TokenExpiredError",
]
