"""Single exit point for failures: classify by code, log, render the envelope."""

from __future__ import annotations

import logging
import traceback
from typing import Any, Callable

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from wedding_api.api.errors import (
    ApiError,
    ApiErrorCode,
    code_for_status,
    error_response,
)
from wedding_api.api.request_info import client_ip, user_agent
from wedding_api.core.config import ErrorHandlingConfig
from wedding_api.security.validation import api_error_from_errors

LOGGER = logging.getLogger(__name__)


def _log_fields(request: Request, status_code: int, code: str) -> dict[str, Any]:
    return {
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "error_code": code,
    }


def render_api_error(exc: ApiError) -> JSONResponse:
    """Render an ``ApiError`` with its own status, details and headers."""
    return error_response(
        exc.error_code,
        exc.message,
        details=exc.details,
        retry_after=exc.retry_after,
        headers=dict(exc.headers or {}),
    )


def render_http_exception(exc: HTTPException) -> JSONResponse:
    """Render a framework ``HTTPException`` by the code bound to its status."""
    if isinstance(exc, ApiError):
        return render_api_error(exc)
    code = code_for_status(exc.status_code)
    message = exc.detail if isinstance(exc.detail, str) else ""
    return error_response(code, message, headers=dict(exc.headers or {}))


def render_validation_error(exc: RequestValidationError) -> JSONResponse:
    """Render request binding/constraint failures."""
    errors = list(exc.errors())
    source = "query" if errors and errors[0].get("loc", ("",))[0] == "query" else "body"
    return render_api_error(api_error_from_errors(errors, source=source))


class ErrorFunnel:
    """Recover unexpected exceptions and log rejected requests."""

    def __init__(
        self,
        config: ErrorHandlingConfig,
        *,
        trust_forwarded_headers: bool = False,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self.config = config
        self._trust_forwarded_headers = trust_forwarded_headers
        self._logger = logger

    def handle_api_error(self, request: Request, exc: ApiError) -> JSONResponse:
        """Log and render a coded domain error."""
        fields = _log_fields(request, exc.status_code, str(exc.error_code))
        if self.config.log_detailed_errors:
            fields["client_ip"] = client_ip(
                request, trust_forwarded_headers=self._trust_forwarded_headers
            )
            fields["user_agent"] = user_agent(request)
        self._logger.warning("api_error", extra=fields)
        return render_api_error(exc)

    def handle_http_exception(self, request: Request, exc: HTTPException) -> JSONResponse:
        """Log and render a framework HTTP error."""
        if isinstance(exc, ApiError):
            return self.handle_api_error(request, exc)
        self._logger.warning(
            "http_exception",
            extra=_log_fields(request, exc.status_code, str(code_for_status(exc.status_code))),
        )
        return render_http_exception(exc)

    def handle_validation_error(
        self, request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log and render a validation failure."""
        response = render_validation_error(exc)
        self._logger.warning(
            "validation_exception",
            extra=_log_fields(request, response.status_code, "VALIDATION"),
        )
        return response

    def handle_unexpected(self, request: Request, exc: Exception) -> JSONResponse:
        """Log an unexpected exception with its stack and answer ``INTERNAL_ERROR``."""
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._logger.error(
            "panic_recovered",
            extra={
                **_log_fields(request, 500, str(ApiErrorCode.INTERNAL_ERROR)),
                "client_ip": client_ip(
                    request, trust_forwarded_headers=self._trust_forwarded_headers
                ),
                "user_agent": user_agent(request),
                "stack": stack,
            },
        )
        if self.config.include_stack_trace:
            return error_response(
                ApiErrorCode.INTERNAL_ERROR,
                str(exc) or "",
                details={"stack_trace": stack},
            )
        return error_response(ApiErrorCode.INTERNAL_ERROR)

    def middleware(self) -> Callable:
        """Return the outermost recovering middleware."""

        async def error_funnel_middleware(request: Request, call_next: Callable):
            """Turn anything the inner chain raised into an envelope."""
            try:
                return await call_next(request)
            except ApiError as exc:
                return self.handle_api_error(request, exc)
            except Exception as exc:
                return self.handle_unexpected(request, exc)

        return error_funnel_middleware
