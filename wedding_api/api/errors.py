"""Shared API error types and the code-to-status table."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from wedding_api.api.contracts import ApiErrorBody, ApiErrorResponse


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    # Input
    INVALID_INPUT = "INVALID_INPUT"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_SLUG = "INVALID_SLUG"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    # Auth
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    # Access
    FORBIDDEN = "FORBIDDEN"
    # Resource
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    CONFLICT = "CONFLICT"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    # Throttling
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    BRUTE_FORCE_PROTECTION = "BRUTE_FORCE_PROTECTION"
    # Server
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UPLOAD_FAILED = "UPLOAD_FAILED"


STATUS_BY_CODE: dict[ApiErrorCode, int] = {
    ApiErrorCode.INVALID_INPUT: 400,
    ApiErrorCode.VALIDATION_FAILED: 400,
    ApiErrorCode.VALIDATION_ERROR: 400,
    ApiErrorCode.INVALID_EMAIL: 400,
    ApiErrorCode.INVALID_SLUG: 400,
    ApiErrorCode.WEAK_PASSWORD: 400,
    ApiErrorCode.INVALID_FILE_TYPE: 400,
    ApiErrorCode.FILE_TOO_LARGE: 400,
    ApiErrorCode.REQUEST_TOO_LARGE: 413,
    ApiErrorCode.UNAUTHORIZED: 401,
    ApiErrorCode.INVALID_TOKEN: 401,
    ApiErrorCode.TOKEN_REVOKED: 401,
    ApiErrorCode.INVALID_CREDENTIALS: 401,
    ApiErrorCode.ACCOUNT_LOCKED: 403,
    ApiErrorCode.EMAIL_NOT_VERIFIED: 403,
    ApiErrorCode.FORBIDDEN: 403,
    ApiErrorCode.NOT_FOUND: 404,
    ApiErrorCode.METHOD_NOT_ALLOWED: 405,
    ApiErrorCode.CONFLICT: 409,
    ApiErrorCode.EMAIL_ALREADY_EXISTS: 409,
    ApiErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ApiErrorCode.BRUTE_FORCE_PROTECTION: 429,
    ApiErrorCode.INTERNAL_ERROR: 500,
    ApiErrorCode.UPLOAD_FAILED: 500,
}

DEFAULT_MESSAGES: dict[ApiErrorCode, str] = {
    ApiErrorCode.INVALID_INPUT: "Invalid request body format",
    ApiErrorCode.VALIDATION_ERROR: "Request validation failed",
    ApiErrorCode.UNAUTHORIZED: "Authentication required",
    ApiErrorCode.INVALID_TOKEN: "Invalid or expired token",
    ApiErrorCode.TOKEN_REVOKED: "Token has been revoked",
    ApiErrorCode.FORBIDDEN: "Insufficient permissions",
    ApiErrorCode.NOT_FOUND: "Resource not found",
    ApiErrorCode.METHOD_NOT_ALLOWED: "Method not allowed",
    ApiErrorCode.RATE_LIMIT_EXCEEDED: "Rate limit exceeded. Please try again later.",
    ApiErrorCode.BRUTE_FORCE_PROTECTION: (
        "Too many failed attempts. Please try again later."
    ),
    ApiErrorCode.INTERNAL_ERROR: "An unexpected error occurred",
}

CODE_BY_HTTP_STATUS: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.INVALID_INPUT,
    401: ApiErrorCode.UNAUTHORIZED,
    403: ApiErrorCode.FORBIDDEN,
    404: ApiErrorCode.NOT_FOUND,
    405: ApiErrorCode.METHOD_NOT_ALLOWED,
    409: ApiErrorCode.CONFLICT,
    413: ApiErrorCode.REQUEST_TOO_LARGE,
    429: ApiErrorCode.RATE_LIMIT_EXCEEDED,
}


def status_for(code: ApiErrorCode) -> int:
    """Return the HTTP status bound to an error code."""
    return STATUS_BY_CODE[code]


def code_for_status(status_code: int) -> ApiErrorCode:
    """Pick the stable code for a framework error that only carries a status."""
    if status_code in CODE_BY_HTTP_STATUS:
        return CODE_BY_HTTP_STATUS[status_code]
    if 400 <= status_code < 500:
        return ApiErrorCode.INVALID_INPUT
    return ApiErrorCode.INTERNAL_ERROR


class ApiError(HTTPException):
    """HTTP exception carrying a stable code; the status comes from the code table."""

    def __init__(
        self,
        *,
        error_code: ApiErrorCode,
        message: str = "",
        details: Any = None,
        retry_after: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Build an HTTP exception with standard detail structure."""
        self.error_code = error_code
        self.message = message or DEFAULT_MESSAGES.get(error_code, str(error_code))
        self.details = details
        self.retry_after = retry_after
        super().__init__(
            status_code=status_for(error_code),
            detail={"code": str(error_code), "message": self.message},
            headers=headers,
        )

    def to_envelope(self) -> dict[str, Any]:
        """Return the response body for this error."""
        return error_envelope(
            self.error_code,
            self.message,
            details=self.details,
            retry_after=self.retry_after,
        )


def error_envelope(
    code: ApiErrorCode,
    message: str = "",
    *,
    details: Any = None,
    retry_after: int | None = None,
) -> dict[str, Any]:
    """Build ``{"success": false, "error": {...}}`` for a code."""
    return ApiErrorResponse(
        error=ApiErrorBody(
            code=str(code),
            message=message or DEFAULT_MESSAGES.get(code, str(code)),
            details=details,
            retry_after=retry_after,
        )
    ).model_dump(exclude_none=True)


def error_response(
    code: ApiErrorCode,
    message: str = "",
    *,
    details: Any = None,
    retry_after: int | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render an envelope with the status bound to its code."""
    return JSONResponse(
        status_code=status_for(code),
        content=error_envelope(
            code, message, details=details, retry_after=retry_after
        ),
        headers=headers,
    )
