"""
API request and response models for ForceMap auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check transport shape (types, lengths). Domain rules
such as the identifier range and the bcrypt byte limit are enforced by
auth.service.validate_credentials so they hold for every caller, not just HTTP.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    identifier: int = Field(description="Numeric login identifier.")
    password: str = Field(max_length=255)
    device_info: Optional[str] = Field(default=None, max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=4096)


class RoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{user_id}/role."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    military_id: str


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class TokenPairResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the verified access token claims."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str
    role: Role
    military_id: str
    expires_at: str


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    identifier: int
    military_id: str
    role: Role


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
