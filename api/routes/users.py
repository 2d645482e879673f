"""
api/routes/users.py -- User management endpoints.

Routes:
  GET    /users            -- paginated user list, newest first (admin only)
  POST   /users            -- create user with an explicit role (admin only)
  PATCH  /users/profile    -- update own profile / password (any authenticated user)
  GET    /users/{id}       -- single user (admin only)
  PATCH  /users/{id}       -- update user fields and role (admin only)
  DELETE /users/{id}       -- delete user, revoking its refresh tokens (admin only)

Admin routes list get_current_identity BEFORE require_admin in their
dependencies: the guard only reads the identity the first one attached.
/users/profile is registered before /users/{id} so it is matched first.
"""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.models import MessageResponse, ProfileUpdate, UserCreate, UserPage, UserResponse, UserUpdate
from api.routes.auth import ensure_unique
from auth.dependencies import get_current_identity, get_user_store, require_admin
from auth.models import Identity, User
from auth.store import CredentialStore
from auth.tokens import hash_password, verify_password
from core.errors import ConflictError, InternalError, NotFoundError, ValidationError

logger = logging.getLogger("taskflow.api")

_ADMIN_ONLY = [Depends(get_current_identity), Depends(require_admin)]

router = APIRouter()


@router.get("/users", response_model=UserPage, dependencies=_ADMIN_ONLY)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> UserPage:
    """List user accounts, newest first. Admin only."""
    store: CredentialStore = get_user_store(request)
    users, total = store.list_users(page, limit)
    return UserPage(
        data=[UserResponse.from_user(u) for u in users],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


@router.post("/users", response_model=UserResponse, status_code=201, dependencies=_ADMIN_ONLY)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create an account with any role. Admin only. No session is started."""
    store: CredentialStore = get_user_store(request)
    ensure_unique(store, email=body.email, username=body.username)
    try:
        user = store.create_user(
            User(
                email=body.email,
                username=body.username,
                hashed_password=hash_password(body.password),
                first_name=body.first_name,
                last_name=body.last_name,
                role=body.role,
            )
        )
    except IntegrityError as exc:
        raise ConflictError("Email or username already taken") from exc
    logger.info("Created user %s with role %s", user.id, user.role.value)
    return UserResponse.from_user(user)


@router.patch("/users/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    """Update the caller's own profile. Changing the password needs the current one."""
    store: CredentialStore = get_user_store(request)
    existing = store.get_by_id(identity.id)
    if existing is None:
        raise NotFoundError("User not found")

    ensure_unique(store, email=body.email, username=body.username, exclude_id=identity.id)
    updates = body.model_dump(include={"email", "username", "first_name", "last_name"}, exclude_none=True)

    if body.new_password is not None:
        if not body.current_password:
            raise ValidationError(
                "Current password is required",
                fields=[{"field": "currentPassword", "message": "Current password is required"}],
            )
        if not verify_password(body.current_password, existing.hashed_password):
            raise ValidationError("Current password is incorrect")
        updates["hashed_password"] = hash_password(body.new_password)

    return _apply_update(store, identity.id, updates)


@router.get("/users/{user_id}", response_model=UserResponse, dependencies=_ADMIN_ONLY)
def get_user(request: Request, user_id: str) -> UserResponse:
    """Fetch one account. Admin only."""
    user = get_user_store(request).get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}", response_model=UserResponse, dependencies=_ADMIN_ONLY)
def update_user(request: Request, user_id: str, body: UserUpdate) -> UserResponse:
    """Update another account's fields or role. Admin only."""
    store: CredentialStore = get_user_store(request)
    if store.get_by_id(user_id) is None:
        raise NotFoundError("User not found")
    ensure_unique(store, email=body.email, username=body.username, exclude_id=user_id)
    updates = body.model_dump(exclude_none=True)
    return _apply_update(store, user_id, updates)


@router.delete("/users/{user_id}", response_model=MessageResponse, dependencies=_ADMIN_ONLY)
def delete_user(
    request: Request,
    user_id: str,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Delete an account and revoke its refresh tokens. Admin only.

    Outstanding access tokens for the deleted user stop working at once: the
    auth dependency reloads the user on every request.
    """
    if identity.id == user_id:
        raise ValidationError("Cannot delete your own account")
    if not get_user_store(request).delete_user(user_id):
        raise NotFoundError("User not found")
    logger.info("User %s deleted by %s", user_id, identity.id)
    return MessageResponse(message="User deleted successfully")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _apply_update(store: CredentialStore, user_id: str, updates: dict) -> UserResponse:
    try:
        found = store.update_user(user_id, **updates)
    except IntegrityError as exc:
        raise ConflictError("Email or username already taken") from exc
    if not found:
        raise NotFoundError("User not found")
    updated = store.get_by_id(user_id)
    if updated is None:
        raise InternalError("User not found after write")
    return UserResponse.from_user(updated)
