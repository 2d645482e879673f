"""Helpers shared by test modules (fixtures live in conftest.py)."""

from __future__ import annotations

from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password

DEFAULT_PASSWORD = "password123"


def make_user(
    store: UserStore,
    email: str = "member@x.com",
    username: str = "member",
    role: Role = Role.MEMBER,
    password: str = DEFAULT_PASSWORD,
) -> User:
    """Create an account straight in the store, bypassing the API."""
    return store.create_user(
        User(
            email=email,
            username=username,
            hashed_password=hash_password(password),
            first_name="Test",
            last_name=role.value.title(),
            role=role,
        )
    )


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
