"""FastAPI dependencies shared by the routers."""

from fastapi import Depends, Request

from tutorial_cms.core.context import AppContext
from tutorial_cms.security.tokens import Claims


def get_context(request: Request) -> AppContext:
    return request.app.state.context


async def get_current_claims(
    request: Request,
    context: AppContext = Depends(get_context),
) -> Claims:
    """Claims of the authenticated caller; 401 otherwise."""
    return await context.auth_gate.authenticate(request)


async def get_optional_claims(
    request: Request,
    context: AppContext = Depends(get_context),
) -> Claims | None:
    """Claims when a token is presented, None for anonymous callers."""
    return await context.auth_gate.authenticate_optional(request)


async def require_csrf(
    request: Request,
    claims: Claims | None = Depends(get_optional_claims),
    context: AppContext = Depends(get_context),
) -> None:
    """Enforce the double-submit CSRF check on unsafe methods of authenticated sessions."""
    context.csrf_gate.authorize(request, claims)
