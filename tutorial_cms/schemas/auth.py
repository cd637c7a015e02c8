"""Pydantic schemas for authentication API."""

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Request for login.

    Shape rules (length, charset, password complexity) are checked by the
    handler so violations surface as 400 ``{"error": ...}``.
    """

    username: str = Field(..., max_length=256)
    password: str = Field(..., max_length=1024)


class UserInfo(BaseModel):
    """Identity of the signed-in user. Never carries the password hash."""

    username: str
    role: str


class LoginResponse(BaseModel):
    """Session token plus identity; the same token is also set as a cookie."""

    token: str
    user: UserInfo
