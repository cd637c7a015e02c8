"""Security response headers and cache policy."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

_CSP_BASE = (
    "default-src 'self'; "
    "script-src 'self'; "
    "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
    "font-src 'self' https://fonts.gstatic.com data:; "
    "img-src 'self' data: blob:; "
    "connect-src {connect_src}; "
    "object-src 'none'; "
    "base-uri 'self'; "
    "form-action 'self'; "
    "frame-ancestors 'none'; "
    "upgrade-insecure-requests;"
)
CSP_PRODUCTION = _CSP_BASE.format(connect_src="'self'")
# Dev servers need websockets for hot reload
CSP_DEVELOPMENT = _CSP_BASE.format(connect_src="'self' ws: wss:")

HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"
PUBLIC_CACHE_CONTROL = "public, max-age=300, stale-while-revalidate=60"
NO_STORE_CACHE_CONTROL = "no-store, no-cache, must-revalidate"

PUBLIC_CACHE_PREFIXES = ("/api/tutorials/", "/api/public/")


def is_publicly_cacheable(method: str, path: str) -> bool:
    """Read-only public content may be cached briefly; everything else is no-store."""
    if method != "GET":
        return False
    return path == "/api/tutorials" or path.startswith(PUBLIC_CACHE_PREFIXES)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    def __init__(self, app: ASGIApp, development: bool = False) -> None:
        super().__init__(app)
        self.csp = CSP_DEVELOPMENT if development else CSP_PRODUCTION

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["Content-Security-Policy"] = self.csp
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["X-XSS-Protection"] = "0"

        if is_publicly_cacheable(request.method, request.url.path):
            response.headers["Cache-Control"] = PUBLIC_CACHE_CONTROL
            for header in ("Pragma", "Expires"):
                if header in response.headers:
                    del response.headers[header]
        else:
            response.headers["Cache-Control"] = NO_STORE_CACHE_CONTROL
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"

        # x-forwarded-proto only survives when the proxy is trusted
        forwarded_proto = request.headers.get("x-forwarded-proto", "").lower()
        if forwarded_proto == "https" or request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response
