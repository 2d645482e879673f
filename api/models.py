"""
API request and response models for TaskFlow REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

The client speaks camelCase (firstName, accessToken, totalPages), so every
model uses a camelCase alias generator. populate_by_name lets Python code
construct them with snake_case names; FastAPI serializes by alias.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from auth.models import Identity, Role, User

# bcrypt ignores input beyond 72 bytes; cap here so no two passwords collide.
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /auth/register."""

    email: EmailStr
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class LoginRequest(_ApiModel):
    """Request body for POST /auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=255)


class UserCreate(RegisterRequest):
    """Request body for POST /users (admin). Role is explicit here."""

    role: Role


class UserUpdate(_ApiModel):
    """Request body for PATCH /users/{id} (admin). All fields optional."""

    email: Optional[EmailStr] = None
    username: Optional[str] = Field(default=None, min_length=3, max_length=50)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role: Optional[Role] = None


class ProfileUpdate(_ApiModel):
    """Request body for PATCH /users/profile. Role cannot be self-assigned."""

    email: Optional[EmailStr] = None
    username: Optional[str] = Field(default=None, min_length=3, max_length=50)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    current_password: Optional[str] = Field(default=None, max_length=255)
    new_password: Optional[str] = Field(
        default=None, min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_ApiModel):
    """Public view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    role: Role
    first_name: str
    last_name: str
    created_at: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            username=identity.username,
            role=identity.role,
            first_name=identity.first_name,
            last_name=identity.last_name,
            created_at=identity.created_at,
        )

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls.from_identity(Identity.from_user(user))


class AuthResponse(_ApiModel):
    """Response for POST /auth/register and POST /auth/login."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str


class AccessTokenResponse(_ApiModel):
    """Response for POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str


class MessageResponse(_ApiModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserPage(_ApiModel):
    """Response for GET /users."""

    model_config = ConfigDict(frozen=True)

    data: list[UserResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class FieldError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldError]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
