"""
tests/conftest.py -- Shared test fixtures for TaskFlow tests.

This module provides:
  - store: a plain in-memory UserStore for unit tests
  - app_store / client: an isolated shared-memory UserStore wired into the real
    FastAPI app through a patched lifespan, plus a TestClient bound to it
  - admin / member: accounts with ready-made access tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the app fixtures because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. Every test gets its own DB name, so state never leaks.

DEBUG, SECRET_KEY and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() is read at module load by auth.tokens and api.main.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: configure before importing anything that calls get_settings().
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token
from tests.helpers import make_user


def _patch_lifespan(user_store: UserStore):
    """Return a lifespan that wires the test store into app.state.

    purge_task is a long-sleeping real task so shutdown's .cancel() works.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Every test starts with an empty rate-limit bucket."""
    limiter.reset()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def app_store() -> Generator[UserStore, None, None]:
    s = UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture
def client(app_store: UserStore) -> Generator[TestClient, None, None]:
    """TestClient running the real app against app_store."""
    app.router.lifespan_context = _patch_lifespan(app_store)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def admin(app_store: UserStore) -> tuple[User, str]:
    """(admin user, access token) in the app store."""
    user = make_user(app_store, email="admin@x.com", username="admin", role=Role.ADMIN)
    return user, create_access_token(user.id)


@pytest.fixture
def member(app_store: UserStore) -> tuple[User, str]:
    """(member user, access token) in the app store."""
    user = make_user(app_store)
    return user, create_access_token(user.id)
