"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

get_current_identity() is the per-request trust boundary. It walks this
state machine and stops at the first failure:

  no Authorization header / not "Bearer <token>"  -> 401 "No token provided"
  token fails signature, expiry or type check     -> 401 "Invalid or expired token"
  token names a user that no longer exists        -> 401 "User not found"
  anything unexpected                             -> 401 "Authentication failed"
  otherwise                                       -> Identity attached to
                                                     request.state.identity

Access tokens are read from the Authorization header only, never cookies.

RoleGuard runs after get_current_identity() and only reads
request.state.identity:
  no identity attached        -> 401 "Not authenticated"
  role not in the allowed set -> 403
Compose them in order, e.g.
    APIRouter(dependencies=[Depends(get_current_identity), Depends(require_admin)])

Layer rule: may import from fastapi (this module is part of the dependency
injection system) and from core/. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.models import Identity, Role
from auth.store import CredentialStore
from auth.tokens import ACCESS, verify_token
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("taskflow.auth")

_BEARER_PREFIX = "Bearer "


def get_user_store(request: Request) -> CredentialStore:
    """Return the store wired into app.state at startup."""
    return request.app.state.user_store


def get_current_identity(request: Request) -> Identity:
    """Authenticate the request from its bearer token. Raises 401 on any failure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    try:
        header = request.headers.get("Authorization", "")
        if not header.startswith(_BEARER_PREFIX):
            raise AuthenticationError("No token provided")

        payload = verify_token(header[len(_BEARER_PREFIX):], kind=ACCESS)
        if payload is None:
            raise AuthenticationError("Invalid or expired token")

        user = get_user_store(request).get_by_id(payload["userId"])
        if user is None:
            raise AuthenticationError("User not found")
    except AuthenticationError:
        raise
    except Exception:
        logger.exception("Unexpected failure while authenticating %s %s", request.method, request.url.path)
        raise AuthenticationError("Authentication failed") from None

    identity = Identity.from_user(user)
    request.state.identity = identity
    return identity


class RoleGuard:
    """Dependency that admits only identities whose role is in `allowed`."""

    def __init__(self, allowed: set[Role], message: str = "Insufficient permissions") -> None:
        self.allowed = frozenset(Role(r) for r in allowed)
        self.message = message

    def __call__(self, request: Request) -> Identity:
        identity = getattr(request.state, "identity", None)
        if identity is None:
            raise AuthenticationError("Not authenticated")
        if identity.role not in self.allowed:
            logger.info("Role %s denied on %s %s", identity.role.value, request.method, request.url.path)
            raise AuthorizationError(self.message)
        return identity


def require_roles(*roles: Role) -> RoleGuard:
    """Build a RoleGuard for the given roles."""
    return RoleGuard(set(roles))


require_admin = RoleGuard({Role.ADMIN}, message="Admin access required")
