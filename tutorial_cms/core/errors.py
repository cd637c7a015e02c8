"""Application error taxonomy and its mapping to HTTP responses.

Every per-request failure is answered with a uniform ``{"error": "..."}``
JSON body. Internal details are logged, never echoed to the client.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Fatal startup error (bad or missing configuration)."""

    pass


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def body(self) -> dict[str, object]:
        return {"error": self.message}

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(AppError):
    """Malformed input, rejected before any storage access."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class UnauthenticatedError(AppError):
    """Missing, invalid, expired or revoked credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class ForbiddenError(AppError):
    """CSRF failure or insufficient privileges."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class RateLimitedError(AppError):
    """A lockout window is active; carries the seconds left."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many attempts, try again later"

    def __init__(self, remaining: int, message: str | None = None):
        super().__init__(message)
        self.remaining = max(1, int(remaining))

    def body(self) -> dict[str, object]:
        return {"error": self.message, "remaining": self.remaining}

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.remaining)}


class InternalError(AppError):
    """Storage or crypto failure not attributable to the caller."""

    pass


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug(f"Request validation failed on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body"},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": InternalError.default_message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the ``{"error": ...}`` handlers to an application."""
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
