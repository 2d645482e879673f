"""
core/errors.py -- Application error taxonomy.

Every error that crosses the HTTP boundary is one of these classes. Route
handlers and auth dependencies raise them; api/main.py renders them into the
shared {"error": {...}} envelope. The message is always client-safe: internal
detail goes to the log, never into an AppError.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base class. Subclasses fix status_code and code."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, headers: Optional[dict[str, str]] = None) -> None:
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed input. Carries optional field-level messages."""

    status_code = 400
    code = "validation_error"
    default_message = "Validation error"

    def __init__(self, message: Optional[str] = None, fields: Optional[list[dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.fields = fields


class ConflictError(AppError):
    """Duplicate email or username. 400 rather than 409 to match the client contract."""

    status_code = 400
    code = "conflict"
    default_message = "Resource already exists"


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class InternalError(AppError):
    pass
