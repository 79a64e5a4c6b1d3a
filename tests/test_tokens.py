"""Unit tests for auth/tokens.py -- JWT issuing, verification and header parsing.

Covers:
- access tokens round-trip their claims
- tampered, foreign-key and garbage tokens raise InvalidTokenError
- expiry is judged against the injected clock (ExpiredTokenError)
- access and refresh tokens are not interchangeable
- refresh verification consults the session store
- Bearer header extraction edge cases
"""

import uuid
from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import ExpiredTokenError, InvalidTokenError, NotAuthorizedError
from auth.models import Role, Session
from auth.tokens import TokenService
from conftest import make_settings, make_user


def _open_session(container, user_id: str, ttl_seconds: int = 3600) -> Session:
    now = container.clock()
    session = Session(
        id=str(uuid.uuid4()),
        user_id=user_id,
        expires_at=now + timedelta(seconds=ttl_seconds),
        created_at=now,
        last_access_at=now,
        token_hash="a" * 64,
        refresh_token_hash="b" * 64,
    )
    container.sessions.create(session)
    return session


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def test_access_token_round_trip(container):
    tokens = container.tokens
    token = tokens.generate_access_token("user-1", "sess-1", Role.CHEFE, "mil-7")

    payload = tokens.verify_access_token(token)

    assert payload.user_id == "user-1"
    assert payload.session_id == "sess-1"
    assert payload.role is Role.CHEFE
    assert payload.military_id == "mil-7"
    assert payload.expires_at - payload.issued_at == timedelta(seconds=tokens.access_ttl)


def test_access_token_carries_issuer_and_audience(container):
    token = container.tokens.generate_access_token("user-1", "sess-1", Role.ADMIN, "mil-1")
    claims = jwt.get_unverified_claims(token)
    assert claims["iss"] == "forcemap-api"
    assert claims["aud"] == "forcemap-client"
    assert claims["typ"] == "access"


def test_two_tokens_for_same_subject_differ(container):
    first = container.tokens.generate_access_token("user-1", "sess-1", Role.ADMIN, "mil-1")
    second = container.tokens.generate_access_token("user-1", "sess-1", Role.ADMIN, "mil-1")
    assert first != second


def test_token_signed_with_other_key_is_invalid(container, tmp_path, clock):
    other = TokenService(
        make_settings(f"sqlite:///{tmp_path / 'other.db'}", secret_key="another-secret-key-0123456789abcdef"),
        container.sessions,
        clock=clock,
    )
    forged = other.generate_access_token("user-1", "sess-1", Role.ADMIN, "mil-1")
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_access_token(forged)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "eyJhbGciOiJIUzI1NiJ9.e30."])
def test_garbage_token_is_invalid(container, garbage):
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_access_token(garbage)


def test_wrong_audience_is_invalid(container, tmp_path, clock):
    other = TokenService(
        make_settings(f"sqlite:///{tmp_path / 'other.db'}", token_audience="someone-else"),
        container.sessions,
        clock=clock,
    )
    token = other.generate_access_token("user-1", "sess-1", Role.ADMIN, "mil-1")
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_access_token(token)


def test_access_token_expires_on_clock(container, clock):
    token = container.tokens.generate_access_token("user-1", "sess-1", Role.BOMBEIRO, "mil-1")

    clock.advance(container.tokens.access_ttl - 1)
    container.tokens.verify_access_token(token)

    clock.advance(1)
    with pytest.raises(ExpiredTokenError) as excinfo:
        container.tokens.verify_access_token(token)
    assert isinstance(excinfo.value, NotAuthorizedError)
    assert excinfo.value.code == "not_authorized"


def test_refresh_token_rejected_as_access_token(container):
    refresh = container.tokens.generate_refresh_token("user-1", "sess-1", 0)
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_access_token(refresh)


def test_ttls_come_from_settings(tmp_path, clock, container):
    custom = TokenService(
        make_settings(
            f"sqlite:///{tmp_path / 'ttl.db'}",
            access_token_expire_seconds=60,
            refresh_token_expire_seconds=120,
        ),
        container.sessions,
        clock=clock,
    )
    assert custom.access_ttl == 60
    assert custom.refresh_ttl == 120
    payload = custom.verify_access_token(custom.generate_access_token("u", "s", Role.ADMIN, "m"))
    assert payload.expires_at - payload.issued_at == timedelta(seconds=60)


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def test_refresh_token_round_trip(container):
    user = make_user(container, 1001, Role.CHEFE)
    session = _open_session(container, user.id)
    token = container.tokens.generate_refresh_token(user.id, session.id, 3)

    payload = container.tokens.verify_refresh_token(token)

    assert payload.user_id == user.id
    assert payload.session_id == session.id
    assert payload.generation == 3


def test_access_token_rejected_as_refresh_token(container):
    user = make_user(container, 1001, Role.CHEFE)
    session = _open_session(container, user.id)
    access = container.tokens.generate_access_token(user.id, session.id, Role.CHEFE, user.military_id)
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_refresh_token(access)


def test_refresh_token_for_unknown_session_is_invalid(container):
    token = container.tokens.generate_refresh_token("user-1", "no-such-session", 0)
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_refresh_token(token)


def test_refresh_token_for_inactive_session_is_invalid(container):
    user = make_user(container, 1001)
    session = _open_session(container, user.id)
    token = container.tokens.generate_refresh_token(user.id, session.id, 0)
    container.sessions.mark_inactive(session.id)
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_refresh_token(token)


def test_refresh_token_for_someone_elses_session_is_invalid(container):
    owner = make_user(container, 1001)
    intruder = make_user(container, 1002)
    session = _open_session(container, owner.id)
    token = container.tokens.generate_refresh_token(intruder.id, session.id, 0)
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_refresh_token(token)


def test_refresh_token_expired_session_is_invalid(container, clock):
    user = make_user(container, 1001)
    session = _open_session(container, user.id, ttl_seconds=60)
    token = container.tokens.generate_refresh_token(user.id, session.id, 0)
    clock.advance(61)
    with pytest.raises(InvalidTokenError):
        container.tokens.verify_refresh_token(token)


# ---------------------------------------------------------------------------
# Header parsing and digests
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("Bearer   abc.def.ghi  ", "abc.def.ghi"),
        (None, None),
        ("", None),
        ("Bearer ", None),
        ("Bearer", None),
        ("Basic dXNlcjpwYXNz", None),
        ("bearer abc.def.ghi", None),
        ("Bearer abc def", None),
    ],
)
def test_extract_token_from_header(header, expected):
    assert TokenService.extract_token_from_header(header) == expected


def test_token_digest_is_stable_and_keyed(container, tmp_path, clock):
    digest = container.tokens.token_digest("some-token")
    assert digest == container.tokens.token_digest("some-token")
    assert len(digest) == 64
    assert "some-token" not in digest

    other = TokenService(
        make_settings(f"sqlite:///{tmp_path / 'other.db'}", secret_key="another-secret-key-0123456789abcdef"),
        container.sessions,
        clock=clock,
    )
    assert other.token_digest("some-token") != digest
