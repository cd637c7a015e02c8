"""Double-submit CSRF gate for state-changing requests."""

import hmac
import logging

from fastapi import Request

from tutorial_cms.core.errors import ForbiddenError
from tutorial_cms.security.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, CsrfCodec, CsrfError
from tutorial_cms.security.tokens import Claims

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


class CsrfGate:
    def __init__(self, codec: CsrfCodec) -> None:
        self.codec = codec

    def authorize(self, request: Request, claims: Claims | None) -> None:
        """Require matching cookie and header tokens signed for the caller.

        Safe methods and anonymous callers pass; there is no session to ride.

        Raises:
            ForbiddenError: On any missing, mismatched or invalid token.
        """
        if request.method.upper() in SAFE_METHODS or claims is None:
            return

        header_token = request.headers.get(CSRF_HEADER_NAME)
        if not header_token:
            logger.warning(f"CSRF header missing for {claims.sub} on {request.url.path}")
            raise ForbiddenError("Missing CSRF token header")

        cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
        if not cookie_token:
            logger.warning(f"CSRF cookie missing for {claims.sub} on {request.url.path}")
            raise ForbiddenError("Missing CSRF cookie")

        if not hmac.compare_digest(header_token.encode("utf-8"), cookie_token.encode("utf-8")):
            logger.warning(f"CSRF cookie/header mismatch for {claims.sub}")
            raise ForbiddenError("CSRF token mismatch")

        try:
            self.codec.validate(header_token, claims.sub)
        except CsrfError as e:
            logger.warning(f"CSRF validation failed for {claims.sub}: {e.message}")
            raise
