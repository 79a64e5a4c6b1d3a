"""
api/routes/v1/auth.py -- Authentication and role-gated user management endpoints.

Routes:
  POST   /api/v1/auth/login                 -- identifier/password login; returns a token pair
  POST   /api/v1/auth/refresh               -- rotate a refresh token into a new pair
  POST   /api/v1/auth/logout                -- deactivate the caller's session (or all of them)
  GET    /api/v1/auth/me                    -- verified access token claims
  PATCH  /api/v1/auth/users/{id}/role       -- change a user's role (CHEFE or ADMIN)
  DELETE /api/v1/auth/users/{id}            -- delete a user (CHEFE or ADMIN)

Security:
  POST /login sits behind a coarse slowapi per-address cap; the
      credential-aware limits run inside AuthenticationUseCase.login().
  Token responses carry Cache-Control: no-store.
  Role changes and deletions go through AuthorizationValidator: the actor
      must outrank both the target's current role and (for role changes) the
      new role, unless the actor is ADMIN.
  Nobody may change their own role or delete themselves.

Route handlers are plain `def` so FastAPI runs them in its threadpool: bcrypt
and store I/O never block the event loop.

AuthError subclasses raised here propagate to the handler in api/main.py,
which maps them to the ErrorResponse envelope.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    RefreshRequest,
    RoleUpdate,
    TokenPairResponse,
    UserInfo,
    UserResponse,
)
from auth.container import AuthContainer
from auth.dependencies import get_container, get_current_claims, require_manager
from auth.models import AccessTokenPayload, Credentials, RequestMetadata, User
from core.config import get_settings

# Auth policy:
# - POST   /auth/login:             public
# - POST   /auth/refresh:           public -- the refresh token is the credential
# - POST   /auth/logout:            requires auth (get_current_claims)
# - GET    /auth/me:                requires auth (get_current_claims)
# - PATCH  /auth/users/{id}/role:   requires CHEFE+ (require_manager) + hierarchy check
# - DELETE /auth/users/{id}:        requires CHEFE+ (require_manager) + hierarchy check
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with identifier and password; return an access/refresh pair.

    Wrong identifier and wrong password return the same 401 body.
    """
    container: AuthContainer = get_container(request)
    metadata = RequestMetadata(
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        device_info=body.device_info,
    )
    result = container.authenticator.login(Credentials(body.identifier, body.password), metadata)
    content = LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=result.expires_in,
        user=UserInfo(id=result.user.id, role=result.user.role, military_id=result.user.military_id),
    ).model_dump(mode="json")
    return _no_store(JSONResponse(status_code=200, content=content))


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    container: AuthContainer = get_container(request)
    pair = container.authenticator.refresh(body.refresh_token, ip_address=_client_ip(request))
    content = TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    ).model_dump(mode="json")
    return _no_store(JSONResponse(status_code=200, content=content))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(
    request: Request,
    all_sessions: bool = False,
    claims: AccessTokenPayload = Depends(get_current_claims),
) -> JSONResponse:
    """Deactivate the session bound to the access token, or every session with ?all_sessions=true."""
    get_container(request).authenticator.logout(claims, all_sessions=all_sessions)
    return JSONResponse(content={"message": "Logged out."})


@router.get("/auth/me", response_model=MeResponse)
def me(claims: AccessTokenPayload = Depends(get_current_claims)) -> MeResponse:
    return MeResponse(
        user_id=claims.user_id,
        session_id=claims.session_id,
        role=claims.role,
        military_id=claims.military_id,
        expires_at=claims.expires_at.isoformat(),
    )


# ---------------------------------------------------------------------------
# User management (role-gated)
# ---------------------------------------------------------------------------


@router.patch("/auth/users/{user_id}/role", response_model=UserResponse)
def update_user_role(
    request: Request,
    user_id: str,
    body: RoleUpdate,
    claims: AccessTokenPayload = Depends(require_manager),
) -> UserResponse:
    """Change a user's role. The actor must outrank the current and the new role (ADMIN excepted)."""
    container: AuthContainer = get_container(request)
    if user_id == claims.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_role_change", "message": "You cannot change your own role."},
        )
    target = _get_user_or_404(container, user_id)
    container.authorization.validate_role_assignment(target.role, claims.role)
    container.authorization.validate_role_assignment(body.role, claims.role)

    container.users.update_role(user_id, body.role)
    return _user_to_response(container.users.get_by_id(user_id))


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    claims: AccessTokenPayload = Depends(require_manager),
) -> Response:
    """Delete a user and close their sessions. The actor must outrank the target (ADMIN excepted)."""
    container: AuthContainer = get_container(request)
    if user_id == claims.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    target = _get_user_or_404(container, user_id)
    container.authorization.validate_deletion_permission(target.role, claims.role)

    container.sessions.deactivate_user_sessions(user_id)
    container.users.delete_user(user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_user_or_404(container: AuthContainer, user_id: str) -> User:
    user = container.users.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return user


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(id=user.id, identifier=user.identifier, military_id=user.military_id, role=user.role)
