"""
auth/container.py -- Explicit dependency container for the auth subsystem.

build_container() is called once at process start (api/main.py lifespan,
main.py CLI) and the resulting AuthContainer is passed down by reference --
on app.state.auth for the HTTP layer. No component caches collaborators in
module globals.

Both stores share one SQLAlchemy engine so a single named in-memory SQLite
database can back them in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.authorization import AuthorizationValidator
from auth.clock import Clock, utc_now
from auth.passwords import PasswordHasher
from auth.ratelimit import RateLimiter
from auth.service import AuthenticationUseCase
from auth.store import SessionStore, UserStore, make_engine
from auth.tokens import TokenService
from core.config import Settings

logger = logging.getLogger("forcemap.auth")


@dataclass
class AuthContainer:
    settings: Settings
    users: UserStore
    sessions: SessionStore
    hasher: PasswordHasher
    limiter: RateLimiter
    tokens: TokenService
    authorization: AuthorizationValidator
    authenticator: AuthenticationUseCase
    clock: Clock

    def purge_expired(self) -> tuple[int, int]:
        """Housekeeping: drop elapsed rate-limit buckets and dead sessions."""
        buckets = self.limiter.purge_expired()
        sessions = self.sessions.purge_expired(self.clock())
        return buckets, sessions

    def close(self) -> None:
        # Both stores share one engine; disposing it once is enough.
        self.users.close()


def build_container(settings: Settings, clock: Clock = utc_now) -> AuthContainer:
    engine = make_engine(settings.database_url)
    users = UserStore(settings.database_url, clock=clock, engine=engine)
    sessions = SessionStore(settings.database_url, engine=engine)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    limiter = RateLimiter.from_settings(settings, clock=clock)
    tokens = TokenService(settings, sessions, clock=clock)
    authenticator = AuthenticationUseCase(
        users,
        sessions,
        hasher,
        tokens,
        limiter,
        session_ttl_seconds=settings.session_expire_seconds,
        single_session=settings.single_session,
        bind_refresh_to_ip=settings.bind_refresh_to_ip,
        clock=clock,
    )
    logger.info(
        "Auth container ready (access_ttl=%ds, refresh_ttl=%ds, single_session=%s)",
        tokens.access_ttl,
        tokens.refresh_ttl,
        settings.single_session,
    )
    return AuthContainer(
        settings=settings,
        users=users,
        sessions=sessions,
        hasher=hasher,
        limiter=limiter,
        tokens=tokens,
        authorization=AuthorizationValidator(),
        authenticator=authenticator,
        clock=clock,
    )
