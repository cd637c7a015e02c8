"""Health check endpoint with database connectivity check."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from tutorial_cms.api.deps import get_context
from tutorial_cms.core.context import AppContext

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response,
    context: AppContext = Depends(get_context),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the database is unavailable. Not rate limited, so
    monitoring probes never compete with real clients.
    """
    db_healthy = await context.database.check_connection()

    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="ok" if db_healthy else "unhealthy",
        version=context.settings.app_version,
        database="connected" if db_healthy else "disconnected",
    )
