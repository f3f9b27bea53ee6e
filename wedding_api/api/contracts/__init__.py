"""Public API response contracts."""

from wedding_api.api.contracts.models import (
    ApiErrorBody,
    ApiErrorResponse,
    AuthMeResponse,
    AuthSessionResponse,
    HealthResponse,
    MessageResponse,
    RegisterResponse,
    UserProfileResponse,
    UsersListResponse,
    WeddingResponse,
    WeddingsListResponse,
)

__all__ = [
    "ApiErrorBody",
    "ApiErrorResponse",
    "AuthMeResponse",
    "AuthSessionResponse",
    "HealthResponse",
    "MessageResponse",
    "RegisterResponse",
    "UserProfileResponse",
    "UsersListResponse",
    "WeddingResponse",
    "WeddingsListResponse",
]
