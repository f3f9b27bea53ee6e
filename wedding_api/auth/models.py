"""Pydantic models for authentication domain."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from wedding_api.security.validation import Email


class UserStatus(StrEnum):
    """Account lifecycle states."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    UNVERIFIED = "unverified"


class UserRecord(BaseModel):
    """Persisted user account."""

    user_id: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    role: str = "user"
    status: UserStatus = UserStatus.UNVERIFIED
    created_at: int = 0
    updated_at: int = 0

    def profile(self) -> dict[str, str]:
        """Return the fields safe to send to clients."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "status": str(self.status),
        }


class RegisterRequest(BaseModel):
    """Registration request payload."""

    model_config = ConfigDict(extra="forbid")

    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: Email
    password: str = Field(min_length=8, max_length=128)
    device_info: str = Field(default="", max_length=256)


class LoginRequest(BaseModel):
    """Login request payload."""

    email: Email
    password: str = Field(min_length=1, max_length=128)
    device_info: str = Field(default="", max_length=256)


class RefreshRequest(BaseModel):
    """Refresh request payload; the cookie is used when the body omits the token."""

    refresh_token: str | None = None


class LogoutRequest(BaseModel):
    """Logout request payload."""

    refresh_token: str | None = None


class ForgotPasswordRequest(BaseModel):
    """Password reset request payload."""

    email: Email


class ResetPasswordRequest(BaseModel):
    """Password reset confirmation payload."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class AuthSession(BaseModel):
    """Auth session response payload with tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int
    user: dict[str, str]
