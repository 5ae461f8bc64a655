"""
API request and response models for the credgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity

# bcrypt only looks at the first 72 bytes of a password.
PASSWORD_MAX_LENGTH = 72


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegistrableRole(str, Enum):
    """Roles a caller may pick for themselves at registration."""

    USER = "USER"
    MANAGER = "MANAGER"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Not whitespace-stripped: the username must match the stored one exactly.
    """

    username: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. username is the email address."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=6, max_length=PASSWORD_MAX_LENGTH)
    role: RegistrableRole = RegistrableRole.USER
    manager_id: Optional[int] = Field(default=None, gt=0)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=254)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=PASSWORD_MAX_LENGTH)


class CompleteInviteRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_LENGTH)


class InviteRequest(BaseModel):
    """Request body for POST /api/v1/users/invite (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    role: str = Field(min_length=1, max_length=20)
    manager_id: int = Field(gt=0)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: str


class ProfileResponse(BaseModel):
    """Response for GET /api/v1/auth/me and POST /api/v1/auth/register."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    verified: bool
    manager_id: Optional[int] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "ProfileResponse":
        return cls(
            id=identity.id,
            username=identity.username,
            role=identity.role,
            verified=identity.verified,
            manager_id=identity.manager_id,
        )


class InviteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    invite_link: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
