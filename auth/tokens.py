"""
auth/tokens.py -- JWT access/refresh token issuing and verification.

Security design decisions:
  JWT: python-jose with HS256. Compact JWS encoding (header.payload.signature).
       Access and refresh tokens are signed with different keys when
       REFRESH_SECRET_KEY is set, and always carry a `typ` claim so one can
       never be accepted in place of the other.

  Claims:
       sub  user id              sid  session id
       role user role (access)   mid  military id (access)
       gen  session generation (refresh)
       typ  "access" | "refresh" jti  random token id
       iat / exp                 iss / aud

  Expiry: checked against the injected Clock rather than by python-jose, so
       tests can advance time without sleeping. Signature, issuer and
       audience are still verified by python-jose.

  Statefulness: access tokens are verified statelessly. Refresh tokens are
       additionally checked against the session store -- revoking a session
       stops its refresh tokens immediately, before their embedded expiry.

  Digests: sessions persist HMAC-SHA256(SECRET_KEY, token) instead of the raw
       token, so a database leak does not hand out live bearer credentials.

TTLs and keys are read from Settings once, when the service is constructed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

from jose import JWTError, jwt

from auth.clock import Clock, utc_now
from auth.errors import ExpiredTokenError, InvalidTokenError, ServerError
from auth.models import AccessTokenPayload, RefreshTokenPayload, Role, Session

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("forcemap.auth")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"
_BEARER_PREFIX = "Bearer "


class SessionLookup(Protocol):
    def find_by_id(self, session_id: str) -> Session | None: ...


class TokenService:
    """Issue and verify signed access/refresh token pairs.

    Usage:
        tokens = TokenService(settings, session_store)
        access = tokens.generate_access_token(user_id, session_id, Role.CHEFE, military_id)
        payload = tokens.verify_access_token(access)
    """

    def __init__(self, settings: Settings, sessions: SessionLookup, clock: Clock = utc_now) -> None:
        self._access_key = settings.secret_key
        self._refresh_key = settings.refresh_secret_key or settings.secret_key
        self._digest_key = settings.secret_key.encode()
        self._issuer = settings.token_issuer
        self._audience = settings.token_audience
        self.access_ttl = settings.access_token_expire_seconds
        self.refresh_ttl = settings.refresh_token_expire_seconds
        self._sessions = sessions
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def generate_access_token(self, user_id: str, session_id: str, role: Role, military_id: str) -> str:
        claims = {
            "sub": user_id,
            "sid": session_id,
            "role": Role(role).value,
            "mid": military_id,
        }
        return self._sign(claims, _ACCESS, self.access_ttl, self._access_key)

    def generate_refresh_token(self, user_id: str, session_id: str, generation: int = 0) -> str:
        claims = {"sub": user_id, "sid": session_id, "gen": generation}
        return self._sign(claims, _REFRESH, self.refresh_ttl, self._refresh_key)

    def _sign(self, claims: dict, token_type: str, ttl: int, key: str) -> str:
        now = self._clock()
        payload = {
            **claims,
            "typ": token_type,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
        }
        try:
            return jwt.encode(payload, key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Token signing failed -- check SECRET_KEY configuration")
            raise ServerError("Token signing failed.", cause=exc) from exc

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> AccessTokenPayload:
        """Verify signature, type and expiry of an access token.

        Raises InvalidTokenError or ExpiredTokenError (both NotAuthorizedError).
        """
        claims = self._decode(token, _ACCESS, self._access_key)
        try:
            return AccessTokenPayload(
                user_id=str(claims["sub"]),
                session_id=str(claims["sid"]),
                role=Role(claims["role"]),
                military_id=str(claims["mid"]),
                issued_at=_from_timestamp(claims["iat"]),
                expires_at=_from_timestamp(claims["exp"]),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise InvalidTokenError() from exc

    def verify_refresh_token(self, token: str) -> RefreshTokenPayload:
        """Verify a refresh token and that its session is still active and unexpired."""
        claims = self._decode(token, _REFRESH, self._refresh_key)
        try:
            payload = RefreshTokenPayload(
                user_id=str(claims["sub"]),
                session_id=str(claims["sid"]),
                generation=int(claims["gen"]),
                issued_at=_from_timestamp(claims["iat"]),
                expires_at=_from_timestamp(claims["exp"]),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise InvalidTokenError() from exc

        session = self._sessions.find_by_id(payload.session_id)
        if session is None or session.user_id != payload.user_id or not session.is_usable(self._clock()):
            logger.info("Refresh token rejected: session %s is not active", payload.session_id)
            raise InvalidTokenError()
        return payload

    def _decode(self, token: str, token_type: str, key: str) -> dict:
        if not token or not isinstance(token, str):
            raise InvalidTokenError()
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidTokenError() from exc
        if claims.get("typ") != token_type:
            raise InvalidTokenError()
        exp = claims.get("exp")
        if not isinstance(exp, int):
            raise InvalidTokenError()
        if self._clock().timestamp() >= exp:
            raise ExpiredTokenError()
        return claims

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def extract_token_from_header(header_value: str | None) -> str | None:
        """Return the token from a "Bearer <token>" header value, else None.

        Missing header, another scheme, or an empty token are all normal
        outcomes and never raise.
        """
        if not header_value or not isinstance(header_value, str):
            return None
        if not header_value.startswith(_BEARER_PREFIX):
            return None
        token = header_value[len(_BEARER_PREFIX) :].strip()
        if not token or " " in token:
            return None
        return token

    def token_digest(self, token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, token) as hex, for storage on the session."""
        return hmac.new(self._digest_key, token.encode(), hashlib.sha256).hexdigest()


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
