"""Unit tests for auth/store.py -- UserStore against in-memory SQLite.

Covers:
- case-insensitive email/username lookup and uniqueness
- newest-first pagination
- update/delete return booleans instead of raising on absence
- delete_user() cascades to the user's refresh tokens
- refresh token create/get/delete, replace (single live token), rotate, purge
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.store import _refresh_tokens
from tests.helpers import make_user


def _later(days: int = 7) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def _token_count(store, user_id: str) -> int:
    with store.engine.connect() as conn:
        return conn.execute(
            select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.user_id == user_id)
        ).scalar()


class TestUsers:
    def test_create_fills_id_and_timestamp(self, store) -> None:
        user = make_user(store)
        assert user.id
        assert user.created_at
        assert store.has_users()

    def test_lookups_are_case_insensitive(self, store) -> None:
        user = make_user(store, email="A@B.com", username="Alice")
        assert store.get_by_email("a@b.com").id == user.id
        assert store.get_by_email("A@B.COM").id == user.id
        assert store.get_by_username("ALICE").id == user.id
        assert store.get_by_email("other@b.com") is None

    def test_email_unique_regardless_of_case(self, store) -> None:
        make_user(store, email="A@B.com", username="alice")
        with pytest.raises(IntegrityError):
            make_user(store, email="a@b.com", username="bob")

    def test_username_unique_regardless_of_case(self, store) -> None:
        make_user(store, email="alice@b.com", username="alice")
        with pytest.raises(IntegrityError):
            make_user(store, email="bob@b.com", username="ALICE")

    def test_non_ascii_capitals_fold(self, store) -> None:
        user = make_user(store, email="Ölaf@x.com", username="Ölaf")
        assert store.get_by_username("Ölaf").id == user.id
        assert store.get_by_username("ölaf").id == user.id
        assert store.get_by_email("ölaf@X.com").id == user.id
        with pytest.raises(IntegrityError):
            make_user(store, email="o@x.com", username="ölaf")
        with pytest.raises(IntegrityError):
            make_user(store, email="ÖLAF@x.com", username="olaf")

    def test_update_refolds_email_and_username(self, store) -> None:
        user = make_user(store)
        store.update_user(user.id, email="Émile@x.com", username="Émile")
        assert store.get_by_email("émile@x.com").id == user.id
        assert store.get_by_username("ÉMILE").id == user.id
        assert store.get_by_username("member") is None

    def test_list_users_newest_first_with_pagination(self, store) -> None:
        for i in range(5):
            make_user(store, email=f"u{i}@x.com", username=f"user{i}")
        first_page, total = store.list_users(page=1, limit=2)
        assert total == 5
        assert [u.username for u in first_page] == ["user4", "user3"]
        last_page, _ = store.list_users(page=3, limit=2)
        assert [u.username for u in last_page] == ["user0"]
        empty, _ = store.list_users(page=4, limit=2)
        assert empty == []

    def test_update_user(self, store) -> None:
        user = make_user(store)
        assert store.update_user(user.id, first_name="New", role=Role.ADMIN) is True
        updated = store.get_by_id(user.id)
        assert updated.first_name == "New"
        assert updated.role is Role.ADMIN

    def test_update_missing_user_returns_false(self, store) -> None:
        assert store.update_user("missing", first_name="x") is False

    def test_update_rejects_unknown_fields(self, store) -> None:
        user = make_user(store)
        with pytest.raises(ValueError):
            store.update_user(user.id, id="other")

    def test_delete_user_is_idempotent(self, store) -> None:
        user = make_user(store)
        assert store.delete_user(user.id) is True
        assert store.get_by_id(user.id) is None
        assert store.get_by_email(user.email) is None
        assert store.delete_user(user.id) is False

    def test_delete_user_revokes_refresh_tokens(self, store) -> None:
        user = make_user(store)
        store.create_refresh_token(user.id, "tok-1", _later())
        store.delete_user(user.id)
        assert store.get_refresh_token("tok-1") is None

    def test_role_round_trips_as_enum(self, store) -> None:
        user = store.create_user(
            User(
                email="admin@x.com",
                username="admin",
                hashed_password="hash",
                first_name="A",
                last_name="B",
                role=Role.ADMIN,
            )
        )
        assert store.get_by_id(user.id).role is Role.ADMIN


class TestRefreshTokens:
    def test_created_token_is_immediately_visible(self, store) -> None:
        user = make_user(store)
        record = store.create_refresh_token(user.id, "tok-1", _later())
        fetched = store.get_refresh_token("tok-1")
        assert fetched.id == record.id
        assert fetched.user_id == user.id
        assert datetime.fromisoformat(fetched.expires_at) > datetime.now(timezone.utc)

    def test_delete_token_is_idempotent(self, store) -> None:
        user = make_user(store)
        store.create_refresh_token(user.id, "tok-1", _later())
        assert store.delete_refresh_token("tok-1") is True
        assert store.delete_refresh_token("tok-1") is False
        assert store.get_refresh_token("tok-1") is None

    def test_delete_tokens_for_user_only_touches_that_user(self, store) -> None:
        alice = make_user(store, email="alice@x.com", username="alice")
        bob = make_user(store, email="bob@x.com", username="bob")
        store.create_refresh_token(alice.id, "a-1", _later())
        store.create_refresh_token(alice.id, "a-2", _later())
        store.create_refresh_token(bob.id, "b-1", _later())
        assert store.delete_refresh_tokens_for_user(alice.id) is True
        assert _token_count(store, alice.id) == 0
        assert store.get_refresh_token("b-1") is not None
        # Nothing left to delete still reports success.
        assert store.delete_refresh_tokens_for_user(alice.id) is True

    def test_replace_leaves_exactly_one_token(self, store) -> None:
        user = make_user(store)
        store.create_refresh_token(user.id, "old-1", _later())
        store.create_refresh_token(user.id, "old-2", _later())
        store.replace_refresh_tokens(user.id, "new", _later())
        assert _token_count(store, user.id) == 1
        assert store.get_refresh_token("new") is not None
        assert store.get_refresh_token("old-1") is None

    def test_rotate(self, store) -> None:
        user = make_user(store)
        store.create_refresh_token(user.id, "old", _later())
        assert store.rotate_refresh_token("old", user.id, "new", _later()) is True
        assert store.get_refresh_token("old") is None
        assert store.get_refresh_token("new") is not None
        # Replaying the consumed token swaps nothing in.
        assert store.rotate_refresh_token("old", user.id, "newer", _later()) is False
        assert store.get_refresh_token("newer") is None

    def test_purge_expired(self, store) -> None:
        user = make_user(store)
        store.create_refresh_token(user.id, "expired", datetime.now(timezone.utc) - timedelta(seconds=1))
        store.create_refresh_token(user.id, "live", _later())
        assert store.purge_expired_refresh_tokens() == 1
        assert store.get_refresh_token("expired") is None
        assert store.get_refresh_token("live") is not None

    def test_duplicate_raw_token_rejected(self, store) -> None:
        user = make_user(store)
        store.create_refresh_token(user.id, "tok", _later())
        with pytest.raises(IntegrityError):
            store.create_refresh_token(user.id, "tok", _later())


def test_ping(store) -> None:
    assert store.ping() is True
