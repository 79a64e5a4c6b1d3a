"""
auth/errors.py -- Error taxonomy for authentication and session control.

Every error carries a stable machine-readable `kind` (used as the `code` in
the API error envelope) plus a human-readable message. The HTTP layer maps
`status_code` directly; nothing in auth/ imports fastapi.

NotAuthorizedError is deliberately generic: bad identifier, bad password,
invalid token, expired token and revoked session all present the same
external message. InvalidTokenError and ExpiredTokenError keep distinct kinds
so logs can tell them apart.

Only ServerError wraps an underlying cause. The cause is for logging; the
external message is always sanitized.

Layer rule: stdlib only.
"""

from __future__ import annotations

GENERIC_AUTH_MESSAGE = "Invalid credentials."


class AuthError(Exception):
    """Base class for every failure surfaced by the auth subsystem."""

    kind: str = "auth_error"
    status_code: int = 400
    public_kind: str | None = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        """Kind shown to API clients. Subclasses may collapse several kinds into one."""
        return self.public_kind or self.kind


class ValidationError(AuthError):
    """Malformed or missing input. Non-retryable; the caller must fix the request."""

    kind = "validation_error"
    status_code = 400


class NotAuthorizedError(AuthError):
    """Bad credentials or an invalid/expired/revoked token (401)."""

    kind = "not_authorized"
    status_code = 401

    def __init__(self, message: str = GENERIC_AUTH_MESSAGE) -> None:
        super().__init__(message)


class InvalidTokenError(NotAuthorizedError):
    kind = "invalid_token"
    public_kind = "not_authorized"

    def __init__(self, message: str = "Invalid or expired token.") -> None:
        super().__init__(message)


class ExpiredTokenError(NotAuthorizedError):
    kind = "expired_token"
    public_kind = "not_authorized"

    def __init__(self, message: str = "Invalid or expired token.") -> None:
        super().__init__(message)


class TooManyRequestsError(AuthError):
    """Rate limit exceeded. retry_after is the number of seconds until the window ends."""

    kind = "too_many_requests"
    status_code = 429

    def __init__(self, message: str = "Too many login attempts.", retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = max(0, int(retry_after))


class ForbiddenError(AuthError):
    """Role-permission denial. Distinct from authentication failure."""

    kind = "forbidden"
    status_code = 403


class ServerError(AuthError):
    """Unexpected internal fault (corrupted stored hash, signing misconfiguration)."""

    kind = "server_error"
    status_code = 500

    def __init__(self, message: str = "Internal authentication error.", cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
