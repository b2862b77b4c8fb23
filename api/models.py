"""
API request and response models for Kavyakala REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models check shape only (types, presence, generous length caps).
Content rules -- email format, handle alphabet, password length -- live in
auth/accounts.py so the CLI and the API enforce the same ones.

hashed_password and the verification pair never appear in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


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


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup and /admin/create-subadmin."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=1, max_length=320)
    handle: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. Email and handle are interchangeable."""

    email_or_handle: str = Field(min_length=1, max_length=320, alias="emailOrHandle")
    password: str = Field(min_length=1, max_length=255)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ResendVerificationRequest(BaseModel):
    """Request body for POST /api/v1/auth/resend-verification."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)


class RoleChangeRequest(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}/role.

    Kept as a plain string: the user/subadmin restriction is enforced by
    auth.admin so an out-of-range role gets the domain error, not a 422.
    """

    role: str = Field(min_length=1, max_length=20)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public projection of an account: identity and role only."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    handle: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, name=user.name, handle=user.handle, role=user.role)


class UserResponse(BaseModel):
    """Admin projection of an account. Non-sensitive fields only."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    handle: str
    role: Role
    is_active: bool
    is_verified: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            handle=user.handle,
            role=user.role,
            is_active=user.is_active,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
        )


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserSummary


class SignupResponse(BaseModel):
    """Response for POST /api/v1/auth/signup.

    email_sent=False comes with dependency_failure describing the mail error;
    the account exists either way and resend-verification can be used.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    email_sent: bool
    needs_verification: bool = True
    dependency_failure: Optional[ErrorDetail] = None


class ResendVerificationResponse(BaseModel):
    """Response for POST /api/v1/auth/resend-verification."""

    model_config = ConfigDict(frozen=True)

    message: str
    email_sent: bool
    dependency_failure: Optional[ErrorDetail] = None


class ActiveStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    is_active: bool


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    role: Role


class DeleteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted: bool
    id: int


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
