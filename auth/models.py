"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Stores and
services do the work; these only own the shape of the domain.

Timestamps are timezone-aware UTC datetimes everywhere in auth/. The store
serializes them to ISO 8601 strings.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Login identifiers are positive integers up to this bound (inclusive).
IDENTIFIER_MIN = 1
IDENTIFIER_MAX = 10000

# Stored device descriptions are truncated to this many characters.
MAX_DEVICE_INFO_LENGTH = 100


class Role(str, Enum):
    """Closed, privilege-ordered role set: ADMIN > CHEFE > BOMBEIRO."""

    ADMIN = "ADMIN"
    CHEFE = "CHEFE"
    BOMBEIRO = "BOMBEIRO"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    def outranks(self, other: Role) -> bool:
        return self.level > other.level


_ROLE_LEVELS = {Role.ADMIN: 3, Role.CHEFE: 2, Role.BOMBEIRO: 1}


@dataclass(frozen=True)
class Credentials:
    """Login input. Ephemeral -- never persisted, never logged."""

    identifier: int
    password: str = field(repr=False)


@dataclass(frozen=True)
class RequestMetadata:
    ip_address: str
    user_agent: str = ""
    device_info: str | None = None

    @property
    def device(self) -> str:
        """Explicit device info, or the user agent truncated to MAX_DEVICE_INFO_LENGTH."""
        return (self.device_info or self.user_agent)[:MAX_DEVICE_INFO_LENGTH]


@dataclass
class User:
    """A login-capable identity bound to one military record.

    The auth subsystem only writes failed_login_count and last_login; every
    other field belongs to the user-management side of the application.
    """

    identifier: int
    military_id: str
    role: Role
    id: str | None = None
    hashed_password: str | None = field(default=None, repr=False)
    failed_login_count: int = 0
    last_login: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Session:
    """Server-side record binding a token generation to a user and device.

    token_hash / refresh_token_hash are HMAC digests of the issued tokens;
    raw tokens are never persisted. token_generation moves forward by one on
    every refresh rotation.
    """

    id: str
    user_id: str
    expires_at: datetime
    created_at: datetime
    last_access_at: datetime
    token_hash: str = ""
    refresh_token_hash: str = ""
    device_info: str = ""
    ip_address: str = ""
    user_agent: str = ""
    is_active: bool = True
    token_generation: int = 0

    def is_usable(self, now: datetime) -> bool:
        return self.is_active and now < self.expires_at


@dataclass(frozen=True)
class AccessTokenPayload:
    user_id: str
    session_id: str
    role: Role
    military_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshTokenPayload:
    user_id: str
    session_id: str
    generation: int
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_in: int


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    role: Role
    military_id: str


@dataclass(frozen=True)
class LoginResult:
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    user: AuthenticatedUser
    expires_in: int
    session_id: str
