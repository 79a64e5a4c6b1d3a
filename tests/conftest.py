"""
tests/conftest.py -- Shared test fixtures for ForceMap auth tests.

This module provides:
  - FakeClock / clock: a manually advanced time source
  - settings: Settings bound to a fresh per-test SQLite file
  - container: a fully wired AuthContainer on those settings
  - make_user(): insert a user with a hashed password
  - api: TestClient with a patched lifespan and seeded ADMIN/CHEFE/BOMBEIRO users

DEBUG, BCRYPT_ROUNDS and ALLOWED_HOSTS must be set before any auth/core import:
get_settings() runs at api.main import time and would refuse to start
without a SECRET_KEY, and the default bcrypt cost makes the suite slow.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
# TestClient sends Host: testserver; the middleware reads this at app import.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.container import AuthContainer, build_container
from auth.models import Role, User
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"

PASSWORDS = {
    Role.ADMIN: "Adm1n!pass",
    Role.CHEFE: "Ch3fe!pass",
    Role.BOMBEIRO: "B0mb3iro!pass",
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_settings(db_url: str, **overrides) -> Settings:
    values = dict(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=db_url,
        bcrypt_rounds=4,
        allowed_hosts=["localhost", "testserver"],
        rate_limit_ip_max_attempts=10,
        rate_limit_identifier_max_attempts=5,
        rate_limit_window_seconds=900,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(f"sqlite:///{tmp_path / 'auth.db'}")


@pytest.fixture
def container(settings: Settings, clock: FakeClock) -> Generator[AuthContainer, None, None]:
    c = build_container(settings, clock=clock)
    yield c
    c.close()


def make_user(
    container: AuthContainer,
    identifier: int,
    role: Role = Role.BOMBEIRO,
    password: str | None = None,
    military_id: str | None = None,
) -> User:
    """Insert a user and return it with its assigned id."""
    user = User(
        identifier=identifier,
        military_id=military_id or f"mil-{identifier}",
        role=role,
        hashed_password=container.hasher.hash(password or PASSWORDS[role]),
    )
    user.id = container.users.create_user(user)
    return user


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    container: AuthContainer
    admin: User
    chefe: User
    bombeiro: User

    def login(self, user: User, password: str | None = None):
        return self.client.post(
            "/api/v1/auth/login",
            json={"identifier": user.identifier, "password": password or PASSWORDS[user.role]},
        )

    def bearer(self, user: User) -> dict[str, str]:
        resp = self.login(user)
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _patch_lifespan(container: AuthContainer):
    """Return a lifespan that wires the test container into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = container
        yield

    return test_lifespan


@pytest.fixture
def api() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext backed by an isolated named shared-memory database.

    Named URIs let every TestClient worker thread see the same in-memory
    database; plain ':memory:' would give each thread a blank schema.
    """
    db_url = f"sqlite:///file:test_auth_{uuid4().hex}?mode=memory&cache=shared&uri=true"
    container = build_container(make_settings(db_url))
    admin = make_user(container, 1001, Role.ADMIN)
    chefe = make_user(container, 1002, Role.CHEFE)
    bombeiro = make_user(container, 1003, Role.BOMBEIRO)

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(container)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, container=container, admin=admin, chefe=chefe, bombeiro=bombeiro)

    container.close()
