"""Middleware and request gates for the Tutorial CMS backend."""

from tutorial_cms.middleware.auth import AuthGate
from tutorial_cms.middleware.csrf import CsrfGate
from tutorial_cms.middleware.proxy_headers import ProxyHeaderStripMiddleware
from tutorial_cms.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from tutorial_cms.middleware.rate_limit_cleanup import rate_limit_cleanup_loop
from tutorial_cms.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "AuthGate",
    "CsrfGate",
    "ProxyHeaderStripMiddleware",
    "RateLimitMiddleware",
    "RateLimiter",
    "SecurityHeadersMiddleware",
    "rate_limit_cleanup_loop",
]
