"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. CredentialStore is the capability set the
auth code depends on (a typing.Protocol); UserStore is the SQLAlchemy
implementation that the app wires into app.state at startup. _row_to_user /
_row_to_refresh_token are the mappers. Route and dependency code never
touches SQL directly.

Semantics:
  Absence is never an exception. Lookups return None; deletes return a bool.

  Email and username uniqueness is case-insensitive and enforced by unique
  indexes on email_key / username_key, the casefold()ed values computed in
  Python on every write. SQL lower() only folds ASCII, so it is never used
  for matching. Two concurrent registrations for "Ölaf" and "ölaf" cannot
  both commit. Writes that violate it raise
  sqlalchemy.exc.IntegrityError; callers translate that to ConflictError.

  replace_refresh_tokens(), rotate_refresh_token() and delete_user() run
  their statements inside one transaction (engine.begin()), so "delete old
  tokens + insert new" is never observed half-done.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import RefreshToken, Role, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("username", String(255), nullable=False),
    Column("email_key", String(255), nullable=False),
    Column("username_key", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.MEMBER.value),
    Column("first_name", String(255), nullable=False),
    Column("last_name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

Index("ux_users_email_key", _users.c.email_key, unique=True)
Index("ux_users_username_key", _users.c.username_key, unique=True)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """WAL for concurrent readers. Set per-connection: PRAGMAs are not inherited."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    # Fixed width so ISO strings compare in chronological order in SQL.
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _key(value: str) -> str:
    """Lookup key for case-insensitive matching (full Unicode folding)."""
    return value.casefold()


# ---------------------------------------------------------------------------
# Capability set
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """What the auth layer needs from persistence. Swap the backend freely."""

    def get_by_id(self, user_id: str) -> User | None: ...

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_username(self, username: str) -> User | None: ...

    def create_user(self, user: User) -> User: ...

    def update_user(self, user_id: str, **fields) -> bool: ...

    def delete_user(self, user_id: str) -> bool: ...

    def list_users(self, page: int, limit: int) -> tuple[list[User], int]: ...

    def create_refresh_token(self, user_id: str, token: str, expires_at: datetime) -> RefreshToken: ...

    def get_refresh_token(self, token: str) -> RefreshToken | None: ...

    def delete_refresh_token(self, token: str) -> bool: ...

    def delete_refresh_tokens_for_user(self, user_id: str) -> bool: ...

    def replace_refresh_tokens(self, user_id: str, token: str, expires_at: datetime) -> RefreshToken: ...

    def rotate_refresh_token(self, old_token: str, user_id: str, new_token: str, expires_at: datetime) -> bool: ...


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy-backed CredentialStore.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(email="a@x.com", username="alice", ...))
        store.get_by_email("A@X.COM")  # same user
        store.close()
    """

    _UPDATABLE_FIELDS: set = {"email", "username", "hashed_password", "first_name", "last_name", "role"}

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and created_at filled in.

        Raises sqlalchemy.exc.IntegrityError if the email or username is
        already taken (case-insensitively).
        """
        user_id = str(uuid.uuid4())
        created_at = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    username=user.username,
                    email_key=_key(user.email),
                    username_key=_key(user.username),
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    created_at=created_at,
                )
            )
        user.id = user_id
        user.created_at = created_at
        return user

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive exact match."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email_key == _key(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Case-insensitive exact match."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(_users.c.username_key == _key(username))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, page: int = 1, limit: int = 10) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total count."""
        page = max(page, 1)
        offset = (page - 1) * limit
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
            rows = conn.execute(
                _users.select().order_by(_users.c.created_at.desc()).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: email, username, hashed_password, first_name,
        last_name, role. Unknown keys raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "email" in fields:
            fields["email_key"] = _key(fields["email"])
        if "username" in fields:
            fields["username_key"] = _key(fields["username"])
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Delete a user and every refresh token it owns, atomically.

        Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, user_id: str, token: str, expires_at: datetime) -> RefreshToken:
        with self.engine.begin() as conn:
            record = _insert_refresh_token(conn, user_id, token, expires_at)
        return record

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: str) -> bool:
        """Revoke every refresh token owned by user_id. Always succeeds."""
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return True

    def replace_refresh_tokens(self, user_id: str, token: str, expires_at: datetime) -> RefreshToken:
        """Delete all of user_id's tokens and insert token, in one transaction.

        Keeps the at-most-one-live-refresh-token-per-user invariant even when
        two logins for the same account race.
        """
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            record = _insert_refresh_token(conn, user_id, token, expires_at)
        return record

    def rotate_refresh_token(self, old_token: str, user_id: str, new_token: str, expires_at: datetime) -> bool:
        """Swap old_token for new_token atomically.

        Returns False (and inserts nothing) if old_token was already gone,
        which means another request consumed it first.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.token == old_token) & (_refresh_tokens.c.user_id == user_id)
                )
            )
            if result.rowcount == 0:
                return False
            _insert_refresh_token(conn, user_id, new_token, expires_at)
        return True

    def purge_expired_refresh_tokens(self) -> int:
        """Delete expired token rows. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _now_iso()))
        return result.rowcount

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _insert_refresh_token(conn, user_id: str, token: str, expires_at: datetime) -> RefreshToken:
    record = RefreshToken(
        id=str(uuid.uuid4()),
        user_id=user_id,
        token=token,
        expires_at=_iso(expires_at),
        created_at=_now_iso(),
    )
    conn.execute(
        _refresh_tokens.insert().values(
            id=record.id,
            user_id=record.user_id,
            token=record.token,
            expires_at=record.expires_at,
            created_at=record.created_at,
        )
    )
    return record


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
