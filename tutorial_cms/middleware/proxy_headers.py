"""Strip client-supplied proxy headers before anything reads the client IP."""

from starlette.types import ASGIApp, Receive, Scope, Send

STRIPPED_HEADERS = frozenset(
    {
        b"forwarded",
        b"x-forwarded-for",
        b"x-forwarded-proto",
        b"x-forwarded-host",
        b"x-real-ip",
    }
)


class ProxyHeaderStripMiddleware:
    """Remove Forwarded/X-Forwarded-*/X-Real-IP from every inbound request.

    Installed outermost unless TRUST_PROXY_IP_HEADERS is set, so rate limits,
    login lockouts and HSTS detection only ever see the real connection.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] in ("http", "websocket"):
            headers = [(k, v) for k, v in scope["headers"] if k.lower() not in STRIPPED_HEADERS]
            if len(headers) != len(scope["headers"]):
                scope = dict(scope)
                scope["headers"] = headers
        await self.app(scope, receive, send)
