"""Token-bucket rate limiting keyed by client IP and endpoint class."""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from tutorial_cms.core.request_utils import get_client_ip

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})
LOGIN_PATHS = frozenset({"/api/auth/login", "/api/auth/logout"})


@dataclass(frozen=True)
class RateLimitRule:
    """Refill rate (tokens per second) and bucket capacity."""

    name: str
    per_second: float
    burst: int


LOGIN_RULE = RateLimitRule("login", per_second=1.0, burst=5)
ADMIN_RULE = RateLimitRule("admin", per_second=1.0, burst=3)
PUBLIC_RULE = RateLimitRule("public", per_second=5.0, burst=10)


@dataclass
class RateLimitBucket:
    """Rate limit tracking for a single client+rule combination."""

    tokens: float
    last_update: float = field(default_factory=time.monotonic)


class RateLimiter:
    """In-memory token buckets, one per (client IP, rule).

    Designed for single-instance deployments; the state lives in the
    application context.
    """

    def __init__(
        self,
        login: RateLimitRule = LOGIN_RULE,
        admin: RateLimitRule = ADMIN_RULE,
        public: RateLimitRule = PUBLIC_RULE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.login = login
        self.admin = admin
        self.public = public
        self._clock = clock
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = asyncio.Lock()

    def rule_for(self, method: str, path: str) -> RateLimitRule | None:
        """Pick the limiter for a request, or None when the path is not limited."""
        method = method.upper()
        if method == "POST" and path in LOGIN_PATHS:
            return self.login
        if not path.startswith("/api/"):
            return None
        if method not in SAFE_METHODS:
            return self.admin
        return self.public

    async def check_rate_limit(
        self,
        client_ip: str,
        rule: RateLimitRule,
    ) -> tuple[bool, dict[str, str]]:
        """Consume one token if available.

        Returns:
            Tuple of (is_allowed, headers_dict)
        """
        async with self._lock:
            now = self._clock()
            key = f"{client_ip}:{rule.name}"
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = RateLimitBucket(tokens=float(rule.burst), last_update=now)
                self._buckets[key] = bucket

            elapsed = max(0.0, now - bucket.last_update)
            bucket.tokens = min(float(rule.burst), bucket.tokens + elapsed * rule.per_second)
            bucket.last_update = now

            headers = {"X-RateLimit-Limit": str(rule.burst)}

            if bucket.tokens < 1.0:
                retry_after = max(1, math.ceil((1.0 - bucket.tokens) / rule.per_second))
                headers["X-RateLimit-Remaining"] = "0"
                headers["Retry-After"] = str(retry_after)
                return False, headers

            bucket.tokens -= 1.0
            headers["X-RateLimit-Remaining"] = str(int(bucket.tokens))
            return True, headers

    async def get_stats(self) -> dict[str, dict]:
        """Get current rate limit statistics."""
        async with self._lock:
            return {key: {"tokens": round(b.tokens, 2)} for key, b in self._buckets.items()}

    async def reset(self, client_ip: str | None = None) -> None:
        """Reset rate limit counters."""
        async with self._lock:
            if client_ip:
                for key in [k for k in self._buckets if k.startswith(f"{client_ip}:")]:
                    del self._buckets[key]
            else:
                self._buckets.clear()

    async def cleanup_inactive_buckets(self, inactive_seconds: int = 3600) -> int:
        """Remove buckets untouched for ``inactive_seconds``.

        An idle bucket has refilled to capacity, so dropping it changes nothing
        for the client. Returns the number of buckets removed.
        """
        async with self._lock:
            cutoff = self._clock() - inactive_seconds
            stale = [key for key, b in self._buckets.items() if b.last_update < cutoff]
            for key in stale:
                del self._buckets[key]

            if stale:
                logger.info(f"Cleaned up {len(stale)} inactive rate limit buckets")

            return len(stale)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests over their bucket with 429 and a Retry-After header."""

    def __init__(
        self,
        app: ASGIApp,
        rate_limiter: RateLimiter,
        exclude_paths: list[str] | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.exclude_paths = exclude_paths or ["/api/health"]
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled:
            return await call_next(request)

        path = request.url.path
        if any(path == p or path.startswith(f"{p}/") for p in self.exclude_paths):
            return await call_next(request)

        rule = self.rate_limiter.rule_for(request.method, path)
        if rule is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        is_allowed, headers = await self.rate_limiter.check_rate_limit(client_ip, rule)

        if not is_allowed:
            logger.warning(f"Rate limit '{rule.name}' exceeded for {client_ip} on {path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too many requests, please slow down",
                    "retry_after": int(headers["Retry-After"]),
                },
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
