from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import replace
from typing import Any, Awaitable, Coroutine, cast

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import Response

from tests.app_fixtures import FakeClock, build_config
from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.api.http_setup import register_exception_handlers, register_http_middleware
from wedding_api.core.config import AppConfig, ErrorHandlingConfig, SecurityConfig
from wedding_api.security.abuse_guard import AbuseGuard
from wedding_api.security.error_funnel import ErrorFunnel
from wedding_api.security.rate_limiter import RouteRateLimiter

LOGGER = logging.getLogger(__name__)


def _config(**sections: Any) -> AppConfig:
    return build_config(security=SecurityConfig(request_max_bytes=8), **sections)


def _build_app(config: AppConfig | None = None) -> FastAPI:
    config = config or _config()
    clock = FakeClock()
    funnel = ErrorFunnel(config.errors, logger=LOGGER)
    app = FastAPI()
    register_http_middleware(
        app,
        config=config,
        rate_limiter=RouteRateLimiter(config.rate_limit, clock=clock),
        abuse_guard=AbuseGuard(config.brute_force, clock=clock),
        funnel=funnel,
        logger=LOGGER,
    )
    register_exception_handlers(app, funnel=funnel)
    return app


def _request(
    path: str, method: str = "GET", headers: list[tuple[bytes, bytes]] | None = None
) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "root_path": "",
        "headers": headers or [],
        "client": ("127.0.0.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


def _dispatch_by_name(app: FastAPI, name: str):
    for middleware in app.user_middleware:
        dispatch = middleware.kwargs.get("dispatch")
        if callable(dispatch) and getattr(dispatch, "__name__", "") == name:
            return dispatch
    raise AssertionError(f"Dispatch {name!r} not found")


def _resolve_response(result: Response | Awaitable[Response]) -> Response:
    if inspect.iscoroutine(result):
        return asyncio.run(cast(Coroutine[Any, Any, Response], result))
    return cast(Response, result)


def _body(response: Response) -> dict[str, Any]:
    return json.loads(response.body)


async def _ok(_request: Request) -> Response:
    return Response(content="ok", status_code=200, headers={"server": "uvicorn"})


def test_request_logging_echoes_request_id() -> None:
    dispatch = _dispatch_by_name(_build_app(), "request_logging_middleware")
    request = _request("/ok", headers=[(b"x-request-id", b"req-123")])

    response = asyncio.run(dispatch(request, _ok))

    assert response.headers["X-Request-ID"] == "req-123"


def test_request_logging_generates_request_id() -> None:
    dispatch = _dispatch_by_name(_build_app(), "request_logging_middleware")

    response = asyncio.run(dispatch(_request("/ok"), _ok))

    assert len(response.headers["X-Request-ID"]) == 32


def test_request_logging_replaces_unsafe_request_id() -> None:
    dispatch = _dispatch_by_name(_build_app(), "request_logging_middleware")
    request = _request("/ok", headers=[(b"x-request-id", b"abc def\"}")])

    response = asyncio.run(dispatch(request, _ok))

    assert response.headers["X-Request-ID"] != 'abc def"}'
    assert len(response.headers["X-Request-ID"]) == 32


def test_security_headers_are_applied_and_server_dropped() -> None:
    dispatch = _dispatch_by_name(_build_app(), "security_headers_middleware")

    response = asyncio.run(dispatch(_request("/ok"), _ok))

    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cross-Origin-Opener-Policy"] == "same-origin"
    assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
    assert "server" not in response.headers
    assert "Strict-Transport-Security" not in response.headers


def test_production_headers_include_hsts() -> None:
    production = AppConfig.for_environment("production")
    dispatch = _dispatch_by_name(_build_app(production), "security_headers_middleware")

    response = asyncio.run(dispatch(_request("/ok"), _ok))

    assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")


def test_size_limit_rejects_large_request_before_handler() -> None:
    dispatch = _dispatch_by_name(_build_app(), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"20")])

    response = asyncio.run(dispatch(request, _ok))

    assert response.status_code == 413
    assert _body(response)["error"]["code"] == "REQUEST_TOO_LARGE"


def test_size_limit_passes_small_request() -> None:
    dispatch = _dispatch_by_name(_build_app(), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"8")])

    assert asyncio.run(dispatch(request, _ok)).status_code == 200


def test_cors_answers_allowed_preflight() -> None:
    dispatch = _dispatch_by_name(_build_app(), "cors_middleware")
    request = _request(
        "/auth/login", method="OPTIONS", headers=[(b"origin", b"http://localhost:3000")]
    )

    response = asyncio.run(dispatch(request, _ok))

    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert response.headers["Access-Control-Max-Age"] == "86400"
    assert "POST" in response.headers["Access-Control-Allow-Methods"]


def test_cors_rejects_unknown_preflight_and_leaves_actual_request_untagged() -> None:
    dispatch = _dispatch_by_name(_build_app(), "cors_middleware")
    evil = [(b"origin", b"https://evil.example")]

    preflight = asyncio.run(dispatch(_request("/x", method="OPTIONS", headers=evil), _ok))
    actual = asyncio.run(dispatch(_request("/x", headers=evil), _ok))

    assert preflight.status_code == 403
    assert _body(preflight)["error"]["code"] == "FORBIDDEN"
    assert actual.status_code == 200
    assert "Access-Control-Allow-Origin" not in actual.headers


def test_cors_wildcard_subdomains() -> None:
    config = _config(
        cors=replace(build_config().cors, allowed_origins=("https://*.example.com",))
    )
    dispatch = _dispatch_by_name(_build_app(config), "cors_middleware")

    allowed = asyncio.run(
        dispatch(_request("/x", headers=[(b"origin", b"https://app.example.com")]), _ok)
    )
    bare = asyncio.run(
        dispatch(_request("/x", headers=[(b"origin", b"https://example.com")]), _ok)
    )

    assert allowed.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
    assert "Access-Control-Allow-Origin" not in bare.headers


def test_error_funnel_recovers_unexpected_exception() -> None:
    dispatch = _dispatch_by_name(_build_app(), "error_funnel_middleware")

    async def boom(_request: Request) -> Response:
        raise RuntimeError("boom")

    response = asyncio.run(dispatch(_request("/boom"), boom))

    body = _body(response)
    assert response.status_code == 500
    assert body["error"]["code"] == "INTERNAL_ERROR"
    assert "RuntimeError" in body["error"]["details"]["stack_trace"]


def test_error_funnel_hides_stack_when_disabled() -> None:
    config = _config(errors=ErrorHandlingConfig(include_stack_trace=False, log_detailed_errors=False))
    dispatch = _dispatch_by_name(_build_app(config), "error_funnel_middleware")

    async def boom(_request: Request) -> Response:
        raise RuntimeError("secret detail")

    response = asyncio.run(dispatch(_request("/boom"), boom))

    assert _body(response) == {
        "success": False,
        "error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
    }


def test_error_funnel_renders_api_error_raised_in_middleware() -> None:
    dispatch = _dispatch_by_name(_build_app(), "error_funnel_middleware")

    async def deny(_request: Request) -> Response:
        raise ApiError(error_code=ApiErrorCode.FORBIDDEN)

    response = asyncio.run(dispatch(_request("/x"), deny))

    assert response.status_code == 403
    assert _body(response)["error"]["code"] == "FORBIDDEN"


def test_http_exception_handler_maps_status_to_code() -> None:
    app = _build_app()
    handler = app.exception_handlers[StarletteHTTPException]

    not_found = _resolve_response(
        handler(_request("/missing"), StarletteHTTPException(status_code=404))
    )
    not_allowed = _resolve_response(
        handler(_request("/auth/login"), StarletteHTTPException(status_code=405))
    )

    assert not_found.status_code == 404
    assert _body(not_found)["error"]["code"] == "NOT_FOUND"
    assert not_allowed.status_code == 405
    assert _body(not_allowed)["error"]["code"] == "METHOD_NOT_ALLOWED"


def test_api_error_handler_keeps_retry_after() -> None:
    app = _build_app()
    handler = app.exception_handlers[ApiError]
    error = ApiError(
        error_code=ApiErrorCode.RATE_LIMIT_EXCEEDED,
        retry_after=30,
        headers={"Retry-After": "30"},
    )

    response = _resolve_response(handler(_request("/x"), error))

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert _body(response)["error"]["retry_after"] == 30


def test_validation_handler_lists_field_errors() -> None:
    app = _build_app()
    handler = app.exception_handlers[RequestValidationError]
    error = RequestValidationError(
        [{"type": "missing", "loc": ("body", "email"), "msg": "Field required", "input": None}]
    )

    response = _resolve_response(handler(_request("/auth/login", method="POST"), error))

    body = _body(response)
    assert response.status_code == 400
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"] == [
        {"field": "email", "tag": "required", "message": "email is required"}
    ]


def test_validation_handler_maps_unparseable_body_to_invalid_input() -> None:
    app = _build_app()
    handler = app.exception_handlers[RequestValidationError]
    error = RequestValidationError(
        [{"type": "json_invalid", "loc": ("body", 1), "msg": "JSON decode error", "input": {}}]
    )

    response = _resolve_response(handler(_request("/auth/login", method="POST"), error))

    assert _body(response)["error"] == {
        "code": "INVALID_INPUT",
        "message": "Invalid request body format",
    }
