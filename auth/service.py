"""
auth/service.py -- Login, refresh rotation, logout and header authorization.

Login protocol (fixed order, first failure wins):
  1. credential shape          -> ValidationError
  2. address rate limit        -> TooManyRequestsError
  3. user lookup               -> NotAuthorizedError (after a dummy bcrypt run)
  4. identifier rate limit     -> TooManyRequestsError
  5. password comparison       -> NotAuthorizedError
  6. reset limits, open session, mint the token pair, persist

Each step is a helper that returns an error value (or None) instead of
raising; login() raises the first one it gets. Nothing here catches and
swallows an AuthError.

Unknown identifier and wrong password produce the same NotAuthorizedError
message, and both run bcrypt exactly once, so neither the response body nor
its timing reveals which identifiers exist.

Refresh is rotation, not replacement: the session id stays the same and its
token_generation moves forward by one. A refresh token minted for an older
generation is rejected. The check-and-advance runs under a per-session lock
and is a compare-and-swap in the store, so two concurrent refreshes of one
token produce exactly one new pair.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Protocol

from auth.clock import Clock, utc_now
from auth.errors import AuthError, NotAuthorizedError, TooManyRequestsError, ValidationError
from auth.locks import KeyedLock
from auth.models import (
    IDENTIFIER_MAX,
    IDENTIFIER_MIN,
    AccessTokenPayload,
    AuthenticatedUser,
    Credentials,
    LoginResult,
    RequestMetadata,
    Session,
    TokenPair,
    User,
)
from auth.passwords import BCRYPT_MAX_BYTES, PasswordHasher
from auth.ratelimit import RateLimiter, Scope
from auth.tokens import TokenService

logger = logging.getLogger("forcemap.auth")
security_log = logging.getLogger("forcemap.security")


class UserRepository(Protocol):
    def find_by_identifier_with_password_hash(self, identifier: int) -> User | None: ...

    def get_by_id(self, user_id: str) -> User | None: ...

    def record_failed_login(self, user_id: str) -> None: ...

    def record_successful_login(self, user_id: str) -> None: ...


class SessionRepository(Protocol):
    def create(self, session: Session) -> None: ...

    def find_by_id(self, session_id: str) -> Session | None: ...

    def mark_inactive(self, session_id: str) -> None: ...

    def deactivate_user_sessions(self, user_id: str) -> int: ...

    def update_token_generation(self, session_id: str, marker: int, expected: int | None = None) -> bool: ...

    def update_tokens(
        self, session_id: str, token_hash: str, refresh_token_hash: str, last_access_at: datetime
    ) -> None: ...


def validate_credentials(credentials: Credentials) -> ValidationError | None:
    """Shape check only. Never touches the limiter or the store."""
    identifier = credentials.identifier
    if isinstance(identifier, bool) or not isinstance(identifier, int):
        return ValidationError("Identifier must be an integer.")
    if not IDENTIFIER_MIN <= identifier <= IDENTIFIER_MAX:
        return ValidationError(f"Identifier must be between {IDENTIFIER_MIN} and {IDENTIFIER_MAX}.")
    password = credentials.password
    if not isinstance(password, str) or not password:
        return ValidationError("Password is required.")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return ValidationError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes.")
    return None


class AuthenticationUseCase:
    """Orchestrates the login and refresh protocols.

    Collaborators are injected; see auth.container.build_container() for the
    production wiring.
    """

    def __init__(
        self,
        users: UserRepository,
        sessions: SessionRepository,
        hasher: PasswordHasher,
        tokens: TokenService,
        limiter: RateLimiter,
        *,
        session_ttl_seconds: int,
        single_session: bool = True,
        bind_refresh_to_ip: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.hasher = hasher
        self.tokens = tokens
        self.limiter = limiter
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.single_session = single_session
        self.bind_refresh_to_ip = bind_refresh_to_ip
        self._clock = clock
        self._rotation_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, credentials: Credentials, metadata: RequestMetadata) -> LoginResult:
        """Authenticate credentials and open a new session.

        Raises ValidationError, TooManyRequestsError or NotAuthorizedError,
        in the step order described in the module docstring.
        """
        ip_key = metadata.ip_address or "unknown"
        id_key = str(credentials.identifier)

        error = validate_credentials(credentials)
        if error is None:
            error = self._check_limit(ip_key, Scope.IP)
        user: User | None = None
        if error is None:
            user, error = self._lookup_user(credentials)
        if error is None:
            error = self._check_limit(id_key, Scope.IDENTIFIER)
        if error is None:
            error = self._check_password(user, credentials.password)
        if error is not None:
            self._log_failure(error, credentials.identifier, ip_key)
            raise error

        self.limiter.reset(ip_key, Scope.IP)
        self.limiter.reset(id_key, Scope.IDENTIFIER)
        result = self._open_session(user, metadata)
        self.users.record_successful_login(user.id)
        security_log.info("login success user=%s session=%s ip=%s", user.id, result.session_id, ip_key)
        return result

    def _check_limit(self, key: str, scope: Scope) -> TooManyRequestsError | None:
        if self.limiter.check_and_increment(key, scope):
            return None
        return TooManyRequestsError(
            "Too many login attempts. Try again later.",
            retry_after=self.limiter.retry_after(key, scope),
        )

    def _lookup_user(self, credentials: Credentials) -> tuple[User | None, NotAuthorizedError | None]:
        user = self.users.find_by_identifier_with_password_hash(credentials.identifier)
        if user is None or not user.hashed_password:
            self.hasher.dummy_compare(credentials.password)
            return None, NotAuthorizedError()
        return user, None

    def _check_password(self, user: User, password: str) -> NotAuthorizedError | None:
        if self.hasher.compare(password, user.hashed_password):
            return None
        self.users.record_failed_login(user.id)
        return NotAuthorizedError()

    def _open_session(self, user: User, metadata: RequestMetadata) -> LoginResult:
        if self.single_session:
            closed = self.sessions.deactivate_user_sessions(user.id)
            if closed:
                logger.info("Closed %d previous session(s) for user %s", closed, user.id)

        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            device_info=metadata.device,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            is_active=True,
            token_generation=0,
            expires_at=now + self.session_ttl,
            created_at=now,
            last_access_at=now,
        )
        access = self.tokens.generate_access_token(user.id, session.id, user.role, user.military_id)
        refresh = self.tokens.generate_refresh_token(user.id, session.id, session.token_generation)
        session.token_hash = self.tokens.token_digest(access)
        session.refresh_token_hash = self.tokens.token_digest(refresh)
        self.sessions.create(session)

        return LoginResult(
            access_token=access,
            refresh_token=refresh,
            user=AuthenticatedUser(id=user.id, role=user.role, military_id=user.military_id),
            expires_in=self.tokens.access_ttl,
            session_id=session.id,
        )

    def _log_failure(self, error: AuthError, identifier: int, ip: str) -> None:
        if isinstance(error, TooManyRequestsError):
            security_log.warning("login blocked identifier=%s ip=%s retry_after=%ds", identifier, ip, error.retry_after)
        elif isinstance(error, NotAuthorizedError):
            security_log.warning("login failed identifier=%s ip=%s", identifier, ip)
        else:
            logger.debug("login rejected: %s", error.kind)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, ip_address: str | None = None) -> TokenPair:
        """Rotate a refresh token into a new pair bound to the same session.

        With ip_address given (and bind_refresh_to_ip on), a refresh from any
        address other than the session's login address is treated as a stolen
        token: the session is closed and the call fails.
        """
        payload = self.tokens.verify_refresh_token(refresh_token)

        with self._rotation_locks.hold(payload.session_id):
            session = self.sessions.find_by_id(payload.session_id)
            if session is None or not session.is_usable(self._clock()):
                raise NotAuthorizedError()
            if self.bind_refresh_to_ip and ip_address is not None and ip_address != session.ip_address:
                self.sessions.mark_inactive(session.id)
                security_log.warning(
                    "refresh from foreign address, session closed session=%s login_ip=%s ip=%s",
                    session.id,
                    session.ip_address,
                    ip_address,
                )
                raise NotAuthorizedError()
            if payload.generation != session.token_generation:
                security_log.warning(
                    "stale refresh token replayed session=%s token_gen=%d current_gen=%d",
                    session.id,
                    payload.generation,
                    session.token_generation,
                )
                raise NotAuthorizedError()

            next_generation = session.token_generation + 1
            if not self.sessions.update_token_generation(session.id, next_generation, expected=payload.generation):
                security_log.warning("concurrent refresh lost race session=%s", session.id)
                raise NotAuthorizedError()

            user = self.users.get_by_id(session.user_id)
            if user is None:
                self.sessions.mark_inactive(session.id)
                logger.info("Session %s closed: user %s no longer exists", session.id, session.user_id)
                raise NotAuthorizedError()

            access = self.tokens.generate_access_token(user.id, session.id, user.role, user.military_id)
            refresh = self.tokens.generate_refresh_token(user.id, session.id, next_generation)
            self.sessions.update_tokens(
                session.id,
                self.tokens.token_digest(access),
                self.tokens.token_digest(refresh),
                self._clock(),
            )

        security_log.info("token refresh user=%s session=%s gen=%d", user.id, session.id, next_generation)
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.tokens.access_ttl)

    # ------------------------------------------------------------------
    # Logout / header authorization
    # ------------------------------------------------------------------

    def logout(self, payload: AccessTokenPayload, all_sessions: bool = False) -> None:
        """Deactivate the session the access token belongs to. Idempotent.

        all_sessions=True closes every active session of the user instead.
        """
        if all_sessions:
            closed = self.sessions.deactivate_user_sessions(payload.user_id)
            security_log.info("logout user=%s all_sessions closed=%d", payload.user_id, closed)
            return
        self.sessions.mark_inactive(payload.session_id)
        security_log.info("logout user=%s session=%s", payload.user_id, payload.session_id)

    def authorize_header(self, header_value: str | None) -> AccessTokenPayload | None:
        """Return the verified access token claims from an Authorization header, or None."""
        token = self.tokens.extract_token_from_header(header_value)
        if token is None:
            return None
        try:
            return self.tokens.verify_access_token(token)
        except NotAuthorizedError as exc:
            logger.debug("Access token rejected (%s)", exc.kind)
            return None

