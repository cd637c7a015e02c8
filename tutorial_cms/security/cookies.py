"""Session and CSRF cookie directives."""

from datetime import UTC, datetime

from fastapi import Response

from tutorial_cms.security.csrf import CSRF_COOKIE_NAME, CSRF_TOKEN_TTL_SECONDS
from tutorial_cms.security.tokens import AUTH_COOKIE_NAME, TOKEN_LIFETIME_SECONDS

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def set_auth_cookie(response: Response, token: str, secure: bool) -> None:
    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=TOKEN_LIFETIME_SECONDS,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
    )


def set_csrf_cookie(response: Response, token: str, secure: bool) -> None:
    # Readable by the frontend so it can echo the value in x-csrf-token
    response.set_cookie(
        CSRF_COOKIE_NAME,
        token,
        max_age=CSRF_TOKEN_TTL_SECONDS,
        path="/",
        secure=secure,
        httponly=False,
        samesite="strict",
    )


def clear_auth_cookies(response: Response, secure: bool) -> None:
    """Expire both cookies (empty value, Max-Age=0, Expires in 1970)."""
    response.set_cookie(
        AUTH_COOKIE_NAME,
        "",
        max_age=0,
        expires=_EPOCH,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
    )
    response.set_cookie(
        CSRF_COOKIE_NAME,
        "",
        max_age=0,
        expires=_EPOCH,
        path="/",
        secure=secure,
        httponly=False,
        samesite="strict",
    )
