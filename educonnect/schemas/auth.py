"""Pydantic schemas for authentication endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from educonnect.models.user import User


class LoginRequest(BaseModel):
    """Request schema for school user login (admin, teacher, parent)."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")
    school_id: str = Field(..., min_length=1, max_length=16, description="Public school id")


class TokenResponse(BaseModel):
    """Access token delivered in the body; the refresh token goes in a cookie."""

    access_token: str = Field(..., description="JWT access token for API authentication")
    token_type: str = Field(default="bearer", description="Token type (always 'bearer')")
    expires_in: int | None = Field(default=None, description="Seconds until access token expires")


class UserResponse(BaseModel):
    id: UUID
    email: str
    role: str
    school_id: str
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool
    is_verified: bool
    is_temporary_password: bool
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role.value if hasattr(user.role, "value") else user.role,
            school_id=user.school_id,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            is_verified=user.is_verified,
            is_temporary_password=user.is_temporary_password,
            last_login_at=user.last_login_at,
            created_at=user.created_at,
        )


class SchoolResponse(BaseModel):
    school_id: str
    school_name: str
    email: str
    is_active: bool
    is_verified: bool

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    """Either tokens, or a redirect for accounts still on a temporary password."""

    user: UserResponse
    school: SchoolResponse | None = None
    tokens: TokenResponse | None = None
    redirect_to: str | None = None
    message: str | None = None


class RefreshRequest(BaseModel):
    """Deprecated body form; the refresh cookie is preferred."""

    refresh_token: str | None = Field(default=None, description="Refresh token (deprecated)")


class LogoutResponse(BaseModel):
    message: str = Field(
        default="Logged out successfully", description="Logout confirmation message"
    )


class CompleteRegistrationRequest(BaseModel):
    """Exchange a temporary password for a real one.

    Profile fields are optional; the server rejects fields that do not
    belong to the account's role.
    """

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    school_id: str = Field(..., min_length=1, max_length=16)
    current_password: str = Field(..., min_length=1, description="Temporary password")
    new_password: str = Field(..., min_length=8)

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    subjects: list[str] | None = None
    qualifications: list[str] | None = None
    experience_years: int | None = Field(default=None, ge=0, le=80)
    address: str | None = None
    occupation: str | None = Field(default=None, max_length=100)
    emergency_contact: str | None = Field(default=None, max_length=100)
    emergency_phone: str | None = Field(default=None, max_length=30)

    def profile_fields(self) -> dict[str, Any]:
        return self.model_dump(
            exclude_unset=True,
            exclude={"email", "school_id", "current_password", "new_password"},
        )


class CompleteRegistrationResponse(BaseModel):
    user: UserResponse
    tokens: TokenResponse
    message: str = "Registration completed successfully"


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    school_id: str = Field(..., min_length=1, max_length=16)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)


class MessageResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    """Identity behind the bearer token; shape depends on ``kind``."""

    kind: str
    email: str
    role: str
    user: UserResponse | None = None
    school: SchoolResponse | None = None
    cross_school_access: bool = False


class SystemAdminLoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SystemAdminRefreshRequest(BaseModel):
    token: str = Field(..., min_length=1)


class SystemAdminTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str
    role: str = "system_admin"
