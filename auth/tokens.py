"""
auth/tokens.py -- Password hashing, JWT issue/verify, and refresh cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry {userId, iat, exp} and
       live 15 minutes. Refresh tokens carry {userId, type: "refresh", jti,
       iat, exp} and live 7 days. Verification returns None on any failure --
       the caller turns that into a 401.

       verify_token(kind=...) checks the "type" claim strictly: an access
       token is refused where a refresh token is expected and vice versa.
       Refresh tokens are signed with REFRESH_SECRET_KEY when configured,
       otherwise with SECRET_KEY.

       jti makes every refresh token string unique, so two logins in the
       same second never collide on the store's unique token column.

  Passwords: bcrypt used directly (no passlib wrapper). Cost factor comes
       from BCRYPT_ROUNDS (default 10). verify_password() never raises.
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether an
       email is registered.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import CredentialStore

logger = logging.getLogger("taskflow.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    72 characters via the request schema.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the hash. False for malformed hashes."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("taskflow_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """Sign an access token for user_id.

    expires_delta overrides ACCESS_TOKEN_EXPIRE_SECONDS (tests use a negative
    delta to mint an already-expired token).
    """
    if expires_delta is None:
        expires_delta = timedelta(seconds=_settings.access_token_expire_seconds)
    now = datetime.now(timezone.utc)
    payload = {"userId": user_id, "iat": now, "exp": now + expires_delta}
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_refresh_token(user_id: str, expires_delta: timedelta | None = None) -> tuple[str, datetime]:
    """Sign a refresh token for user_id. Returns (token, expires_at).

    expires_at is the same instant as the token's exp claim so the stored
    record and the cookie can use it directly.
    """
    if expires_delta is None:
        expires_delta = refresh_token_lifetime()
    now = datetime.now(timezone.utc)
    expires_at = now + expires_delta
    payload = {
        "userId": user_id,
        "type": REFRESH,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": expires_at,
    }
    return jwt.encode(payload, _settings.refresh_signing_key, algorithm=_ALGORITHM), expires_at


def verify_token(token: str, kind: str | None = None) -> dict | None:
    """Verify signature and expiry. Returns {"userId": ...} or None.

    kind=None accepts either token type (signature checked against
    SECRET_KEY, then the refresh key). kind="access" rejects refresh tokens;
    kind="refresh" requires the refresh type claim. An unknown kind verifies
    nothing. Never raises.
    """
    if not isinstance(token, str) or not token:
        return None
    keys = {
        ACCESS: [_settings.secret_key],
        REFRESH: [_settings.refresh_signing_key],
        None: list(dict.fromkeys([_settings.secret_key, _settings.refresh_signing_key])),
    }.get(kind)
    if keys is None:
        logger.warning("verify_token called with unknown kind %r", kind)
        return None

    for key in keys:
        try:
            payload = jwt.decode(token, key, algorithms=[_ALGORITHM])
        except JWTError:
            continue
        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            return None
        token_type = payload.get("type", ACCESS)
        if kind is not None and token_type != kind:
            return None
        return {"userId": user_id}
    return None


def refresh_token_lifetime() -> timedelta:
    return timedelta(seconds=_settings.refresh_token_expire_seconds)


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: CredentialStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    bcrypt runs whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH.
    - Wrong password: bcrypt runs against the real hash.

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POST.
    secure: SECURE_COOKIES (defaults to on outside DEBUG).
    max_age: matches the refresh token lifetime.
    """
    response.set_cookie(
        _settings.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=bool(_settings.secure_cookies),
        max_age=_settings.refresh_token_expire_seconds,
        path="/",
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        _settings.refresh_cookie_name,
        httponly=True,
        samesite="lax",
        secure=bool(_settings.secure_cookies),
        path="/",
    )
