"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; _row_to_user /
_row_to_session are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Sessions store HMAC digests of issued tokens, never the raw tokens.

Concurrency:
  update_token_generation() is a compare-and-swap when `expected` is given:
  the UPDATE only matches the row while token_generation still equals the
  expected value, so two racing rotations of one session cannot both win,
  even across processes sharing the database.

Timestamps are stored as ISO 8601 strings of aware UTC datetimes, which sort
lexicographically in time order.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.clock import Clock, utc_now
from auth.models import Role, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("identifier", Integer, nullable=False, unique=True),  # numeric login id
    Column("military_id", String(36), nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.BOMBEIRO.value),
    Column("hashed_password", Text, nullable=False),
    Column("failed_login_count", Integer, nullable=False, server_default="0"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("refresh_token_hash", String(64), nullable=False),
    Column("device_info", String(100), nullable=False, server_default=""),
    Column("ip_address", String(64), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("token_generation", Integer, nullable=False, server_default="0"),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_access_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks both stores rely on, and ensure the schema."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///forcemap_auth.db")
        store.create_user(User(identifier=1001, military_id="m-1", role=Role.ADMIN,
                               hashed_password=hasher.hash("S3cret!pass")))
        user = store.find_by_identifier_with_password_hash(1001)
        store.close()
    """

    def __init__(self, db_url: str, clock: Clock = utc_now, engine: Engine | None = None) -> None:
        self.engine: Engine = engine if engine is not None else make_engine(db_url)
        self._clock = clock

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the identifier already exists.
        """
        user_id = user.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    identifier=user.identifier,
                    military_id=user.military_id,
                    role=Role(user.role).value,
                    hashed_password=user.hashed_password,
                    failed_login_count=user.failed_login_count,
                    created_at=_iso(self._clock()),
                )
            )
            conn.commit()
        return user_id

    def find_by_identifier_with_password_hash(self, identifier: int) -> User | None:
        """Look up a user by login identifier, including the stored password hash."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.identifier == identifier)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. The password hash is not loaded."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            return None
        user = _row_to_user(row)
        user.hashed_password = None
        return user

    def record_failed_login(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_count=_users.c.failed_login_count + 1)
            )
            conn.commit()

    def record_successful_login(self, user_id: str) -> None:
        """Stamp last_login and clear the failed-attempt counter."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_count=0, last_login=_iso(self._clock()))
            )
            conn.commit()

    def update_role(self, user_id: str, role: Role) -> bool:
        """Returns True if a row was updated, False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=Role(role).value))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Permission checks are the caller's responsibility (AuthorizationValidator).
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for Session records, keyed by session id."""

    def __init__(self, db_url: str, engine: Engine | None = None) -> None:
        self.engine: Engine = engine if engine is not None else make_engine(db_url)

    def create(self, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    refresh_token_hash=session.refresh_token_hash,
                    device_info=session.device_info,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    is_active=1 if session.is_active else 0,
                    token_generation=session.token_generation,
                    expires_at=_iso(session.expires_at),
                    created_at=_iso(session.created_at),
                    last_access_at=_iso(session.last_access_at),
                )
            )
            conn.commit()

    def find_by_id(self, session_id: str) -> Session | None:
        """Return the session whatever its state. Callers check is_active / expiry."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def mark_inactive(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(is_active=0))
            conn.commit()

    def deactivate_user_sessions(self, user_id: str) -> int:
        """Mark every active session of user_id inactive. Returns the number changed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.is_active == 1))
                .values(is_active=0)
            )
            conn.commit()
        return result.rowcount

    def update_token_generation(self, session_id: str, marker: int, expected: int | None = None) -> bool:
        """Advance the rotation marker. Returns False if nothing matched.

        With expected set, only an active session still at that generation is
        updated (compare-and-swap).
        """
        condition = _sessions.c.id == session_id
        if expected is not None:
            condition = condition & (_sessions.c.token_generation == expected) & (_sessions.c.is_active == 1)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(condition).values(token_generation=marker))
            conn.commit()
        return result.rowcount > 0

    def update_tokens(self, session_id: str, token_hash: str, refresh_token_hash: str, last_access_at: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .values(
                    token_hash=token_hash,
                    refresh_token_hash=refresh_token_hash,
                    last_access_at=_iso(last_access_at),
                )
            )
            conn.commit()

    def purge_expired(self, now: datetime) -> int:
        """Delete inactive and expired sessions. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.is_active == 0) | (_sessions.c.expires_at <= _iso(now)))
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        identifier=row.identifier,
        military_id=row.military_id,
        role=Role(row.role),
        hashed_password=row.hashed_password,
        failed_login_count=row.failed_login_count,
        last_login=_parse(row.last_login),
        created_at=_parse(row.created_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        refresh_token_hash=row.refresh_token_hash,
        device_info=row.device_info,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        is_active=bool(row.is_active),
        token_generation=row.token_generation,
        expires_at=_parse(row.expires_at),
        created_at=_parse(row.created_at),
        last_access_at=_parse(row.last_access_at),
    )
