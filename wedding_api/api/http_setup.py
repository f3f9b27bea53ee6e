"""HTTP middleware chain and exception handler wiring for FastAPI apps.

Starlette runs the most recently added middleware first, so registration below
goes from the innermost layer outwards. The resulting order for a request is:

security headers -> error funnel -> request logging -> request size limit
-> CORS -> sanitizer -> rate limiter -> abuse guard -> route dependencies
(auth gate, role gate) -> handler.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from wedding_api.api.errors import ApiError, ApiErrorCode, error_response
from wedding_api.core.config import AppConfig
from wedding_api.core.logging import set_correlation_id
from wedding_api.security.abuse_guard import AbuseGuard, create_abuse_guard_middleware
from wedding_api.security.error_funnel import ErrorFunnel
from wedding_api.security.headers import (
    CORSPolicy,
    create_cors_middleware,
    create_security_headers_middleware,
)
from wedding_api.security.rate_limiter import RouteRateLimiter, create_rate_limit_middleware
from wedding_api.security.sanitizer import SanitizeInputMiddleware

LOGGER = logging.getLogger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def create_request_size_limit_middleware(max_bytes: int):
    """Reject bodies whose declared length exceeds ``max_bytes``."""

    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                parsed_length = int(content_length)
            except ValueError:
                parsed_length = 0
            if parsed_length > max_bytes:
                return error_response(
                    ApiErrorCode.REQUEST_TOO_LARGE,
                    f"Request size exceeds configured limit ({max_bytes} bytes).",
                )
        return await call_next(request)

    return request_size_limit_middleware


def inbound_request_id(request: Request) -> str:
    """Return the caller's request id when it is short and log-safe, else a fresh one."""
    for header in ("x-request-id", "x-correlation-id"):
        candidate = request.headers.get(header, "").strip()
        if candidate and _REQUEST_ID_RE.match(candidate):
            return candidate
    return uuid.uuid4().hex


def create_request_logging_middleware(logger: Any):
    """Tag each request with a correlation id and log its outcome."""

    async def request_logging_middleware(request: Request, call_next):
        request_id = inbound_request_id(request)
        set_correlation_id(request_id)
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed duration_ms=%.1f",
            (time.perf_counter() - started) * 1000,
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response

    return request_logging_middleware


def register_http_middleware(
    app: FastAPI,
    *,
    config: AppConfig,
    rate_limiter: RouteRateLimiter,
    abuse_guard: AbuseGuard,
    funnel: ErrorFunnel,
    logger: Any = LOGGER,
) -> None:
    """Attach the security chain to an app, innermost layer first."""
    trust_forwarded = config.security.trust_forwarded_headers

    app.middleware("http")(
        create_abuse_guard_middleware(
            abuse_guard, trust_forwarded_headers=trust_forwarded, logger=logger
        )
    )
    app.middleware("http")(
        create_rate_limit_middleware(
            rate_limiter, trust_forwarded_headers=trust_forwarded, logger=logger
        )
    )
    app.add_middleware(SanitizeInputMiddleware)
    app.middleware("http")(create_cors_middleware(CORSPolicy(config.cors), logger=logger))
    app.middleware("http")(
        create_request_size_limit_middleware(config.security.request_max_bytes)
    )
    app.middleware("http")(create_request_logging_middleware(logger))
    app.middleware("http")(funnel.middleware())
    app.middleware("http")(create_security_headers_middleware(config.headers))


def register_exception_handlers(app: FastAPI, *, funnel: ErrorFunnel) -> None:
    """Route handler and dependency failures through the error funnel."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return funnel.handle_api_error(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return funnel.handle_http_exception(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(request: Request, exc: RequestValidationError):
        return funnel.handle_validation_error(request, exc)
