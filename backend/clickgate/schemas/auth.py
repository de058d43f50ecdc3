import uuid

from pydantic import BaseModel, ConfigDict, Field


class UserLogin(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255, description="Email or username")
    password: str = Field(..., min_length=1, max_length=255)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str | None = None
    all_sessions: bool = False


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class CurrentUserResponse(BaseModel):
    id: uuid.UUID
    email: str | None
    username: str | None
    display_name: str | None
    roles: list[str]
    permissions: list[str]
    session_id: uuid.UUID | None

    model_config = ConfigDict(from_attributes=True)
