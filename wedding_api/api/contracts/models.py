"""Pydantic API response models used in OpenAPI contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ApiErrorBody(BaseModel):
    """Inner error object of the envelope."""

    code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    details: Any = Field(default=None, description="Field errors or structured data")
    retry_after: int | None = Field(
        default=None, description="Seconds until a blocked caller may retry"
    )


class ApiErrorResponse(BaseModel):
    """Stable error envelope for API responses."""

    success: Literal[False] = False
    error: ApiErrorBody


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class UserProfileResponse(BaseModel):
    """Public view of a user account."""

    user_id: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str


class AuthSessionResponse(BaseModel):
    """Authentication session response payload."""

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    user: UserProfileResponse


class RegisterResponse(AuthSessionResponse):
    """Registration response; the account starts unverified."""

    message: str


class AuthMeResponse(BaseModel):
    """Current user endpoint response payload."""

    user: UserProfileResponse


class MessageResponse(BaseModel):
    """Plain acknowledgement payload."""

    success: Literal[True] = True
    message: str


class UsersListResponse(BaseModel):
    """Admin user listing payload."""

    items: list[UserProfileResponse]


class WeddingResponse(BaseModel):
    """Wedding page payload."""

    wedding_id: str
    owner_id: str
    slug: str
    title: str
    partner_one_name: str
    partner_two_name: str
    event_date: str | None = None
    venue: str | None = None
    website_url: str | None = None
    contact_phone: str | None = None
    welcome_message: str | None = None
    theme: str
    rsvp_enabled: bool
    published: bool
    created_at: int
    updated_at: int


class WeddingsListResponse(BaseModel):
    """Wedding listing payload."""

    items: list[WeddingResponse]
