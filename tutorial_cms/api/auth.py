"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from tutorial_cms.api.deps import get_context, get_current_claims, require_csrf
from tutorial_cms.core.context import AppContext
from tutorial_cms.core.request_utils import get_client_ip
from tutorial_cms.schemas.auth import LoginRequest, LoginResponse, UserInfo
from tutorial_cms.security.cookies import clear_auth_cookies, set_auth_cookie, set_csrf_cookie
from tutorial_cms.security.tokens import Claims, bearer_token, cookie_token
from tutorial_cms.services.auth import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def get_auth_service(context: AppContext = Depends(get_context)) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(context)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    context: AppContext = Depends(get_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Authenticate with username and password.

    Sets the ``session`` and ``csrf`` cookies and returns the token and
    identity. Repeated failures from the same IP and username lock the
    pair out for 10 seconds (3 failures) and then 60 seconds (5 failures).
    """
    result = await auth_service.login(body.username, body.password, get_client_ip(request))

    secure = context.settings.auth_cookie_secure
    set_auth_cookie(response, result.token, secure)
    set_csrf_cookie(response, result.csrf_token, secure)

    return LoginResponse(
        token=result.token,
        user=UserInfo(username=result.username, role=result.role),
    )


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    dependencies=[Depends(require_csrf)],
)
async def logout(
    request: Request,
    claims: Claims = Depends(get_current_claims),
    context: AppContext = Depends(get_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke the presented session token(s) and clear both cookies."""
    tokens = [t for t in (bearer_token(request), cookie_token(request)) if t]
    await auth_service.logout(tokens, claims)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_auth_cookies(response, context.settings.auth_cookie_secure)
    return response


@router.get("/me", response_model=UserInfo)
async def me(
    response: Response,
    claims: Claims = Depends(get_current_claims),
    context: AppContext = Depends(get_context),
) -> UserInfo:
    """Get the current user's identity and refresh the CSRF cookie."""
    set_csrf_cookie(response, context.csrf.issue(claims.sub), context.settings.auth_cookie_secure)
    return UserInfo(username=claims.sub, role=claims.role)
