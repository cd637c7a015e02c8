"""Tutorial CMS Backend - FastAPI Application Factory."""

import logging
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutorial_cms.api import auth_router, health_router
from tutorial_cms.core.config import Settings, get_settings
from tutorial_cms.core.context import AppContext
from tutorial_cms.core.errors import register_exception_handlers
from tutorial_cms.core.lifespan import shutdown, startup
from tutorial_cms.middleware import (
    ProxyHeaderStripMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from tutorial_cms.security.csrf import CSRF_HEADER_NAME

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    context: AppContext = app.state.context
    settings = context.settings
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    tasks = await startup(context)

    yield

    logger.info("Shutting down...")
    await shutdown(context, tasks)


def create_app(
    settings: Settings | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Raises:
        ConfigurationError: If a secret is missing or too weak. No app is
            built without validated secrets.
    """
    settings = settings or get_settings()
    context = AppContext.from_settings(settings, clock=clock)

    app = FastAPI(
        title=settings.app_name,
        description="Tutorial CMS backend",
        version=settings.app_version,
        lifespan=lifespan,
        # API docs only in development
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.context = context

    register_exception_handlers(app)

    # Starlette runs middleware in reverse order of registration.
    # Request path: proxy strip -> CORS -> security headers -> rate limit -> routes
    app.add_middleware(
        RateLimitMiddleware,
        rate_limiter=context.rate_limiter,
        exclude_paths=["/api/health"],
        enabled=settings.rate_limit_enabled,
    )

    app.add_middleware(SecurityHeadersMiddleware, development=settings.debug)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            CSRF_HEADER_NAME,
        ],
    )

    # Outermost, so nothing downstream sees client-forged proxy headers
    if settings.trust_proxy_ip_headers:
        logger.info("TRUST_PROXY_IP_HEADERS=true: honoring X-Forwarded-* and X-Real-IP")
    else:
        app.add_middleware(ProxyHeaderStripMiddleware)

    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/api/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)
    app.include_router(auth_router)

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tutorial_cms.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
