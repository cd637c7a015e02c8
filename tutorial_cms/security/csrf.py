"""HMAC-signed CSRF tokens bound to a username.

Token layout (all fields ``|``-separated, base64url without padding)::

    v1|b64(username)|expiry|nonce|b64(hmac_sha256(secret, "v1|b64(username)|expiry|nonce"))

The token travels in a readable ``csrf`` cookie and is echoed back by the
client in the ``x-csrf-token`` header on state-changing requests.
"""

import base64
import hashlib
import hmac
import logging
import re
import time
import uuid
from collections.abc import Callable

from tutorial_cms.core.errors import ForbiddenError

logger = logging.getLogger(__name__)

CSRF_TOKEN_VERSION = "v1"
CSRF_TOKEN_TTL_SECONDS = 6 * 60 * 60
CSRF_MIN_NONCE_LENGTH = 16

CSRF_COOKIE_NAME = "csrf"
CSRF_HEADER_NAME = "x-csrf-token"

_B64URL_SEGMENT = re.compile(r"^[A-Za-z0-9_-]*$")


class CsrfError(ForbiddenError):
    default_message = "Invalid CSRF token"


class CsrfMalformedError(CsrfError):
    default_message = "Malformed CSRF token"


class CsrfVersionError(CsrfError):
    default_message = "Unsupported CSRF token version"


class CsrfAccountMismatchError(CsrfError):
    default_message = "CSRF token not issued for this account"


class CsrfNonceError(CsrfError):
    default_message = "Invalid CSRF token nonce"


class CsrfExpiredError(CsrfError):
    default_message = "CSRF token expired"


class CsrfSignatureError(CsrfError):
    default_message = "Invalid CSRF token signature"


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    if not _B64URL_SEGMENT.match(segment) or len(segment) % 4 == 1:
        raise ValueError("not unpadded base64url")
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


class CsrfCodec:
    """Issues and validates CSRF tokens under the CSRF secret."""

    def __init__(
        self,
        secret: str,
        clock: Callable[[], float] = time.time,
        ttl_seconds: int = CSRF_TOKEN_TTL_SECONDS,
    ):
        self._key = secret.encode("utf-8")
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256).digest()
        return b64url_encode(digest)

    def issue(self, username: str) -> str:
        if not username:
            raise CsrfError("Username required for CSRF token")
        expiry = int(self._clock()) + self.ttl_seconds
        nonce = str(uuid.uuid4())
        payload = "|".join(
            [CSRF_TOKEN_VERSION, b64url_encode(username.encode("utf-8")), str(expiry), nonce]
        )
        return f"{payload}|{self._sign(payload)}"

    def validate(self, token: str, expected_username: str) -> None:
        """Check a token against the session's username.

        Raises:
            CsrfError: A subclass naming the first check that failed.
        """
        parts = token.split("|")
        if len(parts) != 5:
            raise CsrfMalformedError()
        version, user_b64, expiry_raw, nonce, signature = parts

        if version != CSRF_TOKEN_VERSION:
            raise CsrfVersionError()

        try:
            username = b64url_decode(user_b64).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise CsrfMalformedError() from e
        if username != expected_username:
            raise CsrfAccountMismatchError()

        if len(nonce) < CSRF_MIN_NONCE_LENGTH:
            raise CsrfNonceError()

        if not (expiry_raw.isascii() and expiry_raw.isdigit()):
            raise CsrfMalformedError()
        if int(expiry_raw) < self._clock():
            raise CsrfExpiredError()

        # Compare the encoded form so non-canonical encodings never verify
        expected = self._sign("|".join(parts[:4]))
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            raise CsrfSignatureError()
