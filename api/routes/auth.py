"""
api/routes/auth.py -- Authentication flow endpoints.

Routes:
  POST /auth/register  -- create MEMBER account; returns user + access token; sets refresh cookie
  POST /auth/login     -- email/password login; replaces prior refresh tokens; sets refresh cookie
  POST /auth/refresh   -- exchange the refresh cookie for a new access token
  POST /auth/logout    -- revoke refresh tokens and clear the cookie (requires auth)
  GET  /auth/me        -- current identity (requires auth)

Security:
  All four POST routes share one rate-limit bucket per client (AUTH_RATE_LIMIT).
  Login uses authenticate_user() for timing equalization and returns the same
  message for unknown email and wrong password.
  Cache-Control: no-store on every response that carries a token.
  The refresh token travels only in the httpOnly cookie; the access token only
  in the response body and the Authorization header.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import AUTH_RATE_LIMIT, AUTH_SCOPE, limiter
from api.models import AccessTokenResponse, AuthResponse, LoginRequest, MessageResponse, RegisterRequest, UserResponse
from auth.dependencies import get_current_identity, get_user_store
from auth.models import Identity, Role, User
from auth.store import CredentialStore
from auth.tokens import (
    REFRESH,
    authenticate_user,
    clear_refresh_cookie,
    create_access_token,
    create_refresh_token,
    hash_password,
    set_refresh_cookie,
    verify_token,
)
from core.config import get_settings
from core.errors import AuthenticationError, ConflictError

logger = logging.getLogger("taskflow.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/register: public, rate-limited
# - POST /auth/login:    public, rate-limited
# - POST /auth/refresh:  public (refresh cookie), rate-limited
# - POST /auth/logout:   requires auth (get_current_identity), rate-limited
# - GET  /auth/me:       requires auth (get_current_identity)
router = APIRouter()


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.shared_limit(AUTH_RATE_LIMIT, scope=AUTH_SCOPE)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a MEMBER account and start a session for it."""
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
                role=Role.MEMBER,
            )
        )
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same email/username.
        raise ConflictError("Email or username already taken") from exc

    access_token = create_access_token(user.id)
    refresh_token, expires_at = create_refresh_token(user.id)
    store.create_refresh_token(user.id, refresh_token, expires_at)
    logger.info("Registered user %s", user.id)
    return _session_response(user, access_token, refresh_token, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.shared_limit(AUTH_RATE_LIMIT, scope=AUTH_SCOPE)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Any earlier refresh tokens for the account are replaced in the same
    transaction as the new one is stored: one live session per user.
    """
    store: CredentialStore = get_user_store(request)
    user = authenticate_user(store, body.email, body.password)
    if user is None:
        logger.info("Failed login attempt from %s", request.client.host if request.client else "unknown")
        raise AuthenticationError("Invalid email or password")

    access_token = create_access_token(user.id)
    refresh_token, expires_at = create_refresh_token(user.id)
    store.replace_refresh_tokens(user.id, refresh_token, expires_at)
    logger.info("User %s logged in", user.id)
    return _session_response(user, access_token, refresh_token, status_code=200)


@router.post("/auth/refresh", response_model=AccessTokenResponse)
@limiter.shared_limit(AUTH_RATE_LIMIT, scope=AUTH_SCOPE)
def refresh(request: Request) -> JSONResponse:
    """Issue a new access token for the refresh token in the cookie.

    Both the stored expiry and the token's own exp claim are checked. With
    ROTATE_REFRESH_TOKENS on, the refresh token is also swapped for a new one
    and the old one stops working.
    """
    store: CredentialStore = get_user_store(request)
    raw_token = request.cookies.get(_settings.refresh_cookie_name)
    if not raw_token:
        raise AuthenticationError("No refresh token provided")

    stored = store.get_refresh_token(raw_token)
    if stored is None:
        logger.info("Rejected unknown refresh token")
        raise AuthenticationError("Invalid refresh token")

    if datetime.fromisoformat(stored.expires_at) <= datetime.now(timezone.utc):
        store.delete_refresh_token(raw_token)
        logger.info("Rejected expired refresh token for user %s", stored.user_id)
        raise AuthenticationError("Refresh token expired")

    payload = verify_token(raw_token, kind=REFRESH)
    if payload is None or payload["userId"] != stored.user_id:
        store.delete_refresh_token(raw_token)
        logger.info("Rejected refresh token with bad signature or claims for user %s", stored.user_id)
        raise AuthenticationError("Invalid refresh token")

    user = store.get_by_id(payload["userId"])
    if user is None:
        store.delete_refresh_token(raw_token)
        logger.info("Rejected refresh token for missing user %s", stored.user_id)
        raise AuthenticationError("User not found")

    access_token = create_access_token(user.id)
    resp = JSONResponse(
        content=AccessTokenResponse(access_token=access_token).model_dump(by_alias=True, mode="json"),
    )

    if _settings.rotate_refresh_tokens:
        new_refresh, expires_at = create_refresh_token(user.id)
        if not store.rotate_refresh_token(raw_token, user.id, new_refresh, expires_at):
            raise AuthenticationError("Invalid refresh token")
        set_refresh_cookie(resp, new_refresh)

    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
@limiter.shared_limit(AUTH_RATE_LIMIT, scope=AUTH_SCOPE)
def logout(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Revoke the presented refresh token and every other one the user owns.

    Reports success whether or not anything was revoked.
    """
    store: CredentialStore = get_user_store(request)
    raw_token = request.cookies.get(_settings.refresh_cookie_name)
    if raw_token:
        store.delete_refresh_token(raw_token)
    store.delete_refresh_tokens_for_user(identity.id)

    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_refresh_cookie(resp)
    logger.info("User %s logged out", identity.id)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(identity: Identity = Depends(get_current_identity)) -> UserResponse:
    """Return the identity attached by the auth dependency."""
    return UserResponse.from_identity(identity)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ensure_unique(
    store: CredentialStore,
    email: str | None = None,
    username: str | None = None,
    exclude_id: str | None = None,
) -> None:
    """Raise ConflictError if email or username belongs to another account."""
    if email is not None:
        existing = store.get_by_email(email)
        if existing is not None and existing.id != exclude_id:
            raise ConflictError("Email already registered")
    if username is not None:
        existing = store.get_by_username(username)
        if existing is not None and existing.id != exclude_id:
            raise ConflictError("Username already taken")


def _session_response(user: User, access_token: str, refresh_token: str, status_code: int) -> JSONResponse:
    body = AuthResponse(user=UserResponse.from_user(user), access_token=access_token)
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, mode="json"))
    set_refresh_cookie(resp, refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp
