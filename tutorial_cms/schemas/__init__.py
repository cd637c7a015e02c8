# Tutorial CMS Pydantic Schemas
from tutorial_cms.schemas.auth import LoginRequest, LoginResponse, UserInfo

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "UserInfo",
]
