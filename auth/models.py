"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores and routes do the work. The pydantic models in
api/models.py are the HTTP contract and are mapped from these.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Never compare against free-form strings."""

    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


@dataclass
class User:
    """A stored account.

    email and username are kept as entered; uniqueness and lookups are
    case-insensitive (see auth/store.py).
    """

    email: str
    username: str
    hashed_password: str
    first_name: str
    last_name: str
    role: Role = Role.MEMBER
    id: str | None = None
    created_at: str | None = None


@dataclass
class RefreshToken:
    """A server-side record of an issued refresh token.

    token is the raw signed JWT and doubles as the lookup key. expires_at
    mirrors the JWT's exp claim so revocation and expiry can be checked
    without decoding.
    """

    user_id: str
    token: str
    expires_at: str
    id: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """Request-scoped, password-free projection of a User.

    Attached to request.state.identity by the auth dependency and discarded
    with the request.
    """

    id: str
    email: str
    username: str
    role: Role
    first_name: str
    last_name: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> Identity:
        return cls(
            id=user.id or "",
            email=user.email,
            username=user.username,
            role=Role(user.role),
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at or "",
        )
