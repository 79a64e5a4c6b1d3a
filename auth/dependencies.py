"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only the Authorization: Bearer <token> header is accepted. The token is
verified statelessly (signature + expiry); revoking a session stops its
refresh chain, while already-issued access tokens run out on their own.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises HTTP 401 if unauthenticated.
require_manager() additionally raises HTTP 403 for roles that can manage
nobody (BOMBEIRO); finer role checks go through AuthorizationValidator.

Layer rule: auth/dependencies.py may import from fastapi (for Request /
HTTPException) because this module is part of the FastAPI dependency
injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.container import AuthContainer
from auth.models import AccessTokenPayload, Role


def get_container(request: Request) -> AuthContainer:
    return request.app.state.auth


def try_get_current_claims(request: Request) -> AccessTokenPayload | None:
    """Authenticate the request via its Bearer header. Never raises."""
    container = get_container(request)
    return container.authenticator.authorize_header(request.headers.get("Authorization"))


def get_current_claims(request: Request) -> AccessTokenPayload:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: AccessTokenPayload = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "not_authorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


def require_manager(request: Request) -> AccessTokenPayload:
    """Require a role that may manage other users (CHEFE or ADMIN)."""
    claims = get_current_claims(request)
    if claims.role is Role.BOMBEIRO:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Insufficient role."},
        )
    return claims
