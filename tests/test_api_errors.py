from __future__ import annotations

import json

from wedding_api.api.errors import (
    STATUS_BY_CODE,
    ApiError,
    ApiErrorCode,
    code_for_status,
    error_envelope,
    error_response,
)


def test_every_code_has_exactly_one_status() -> None:
    assert set(STATUS_BY_CODE) == set(ApiErrorCode)
    assert STATUS_BY_CODE[ApiErrorCode.INVALID_INPUT] == 400
    assert STATUS_BY_CODE[ApiErrorCode.UNAUTHORIZED] == 401
    assert STATUS_BY_CODE[ApiErrorCode.FORBIDDEN] == 403
    assert STATUS_BY_CODE[ApiErrorCode.NOT_FOUND] == 404
    assert STATUS_BY_CODE[ApiErrorCode.CONFLICT] == 409
    assert STATUS_BY_CODE[ApiErrorCode.RATE_LIMIT_EXCEEDED] == 429
    assert STATUS_BY_CODE[ApiErrorCode.INTERNAL_ERROR] == 500


def test_api_error_takes_status_from_code() -> None:
    error = ApiError(error_code=ApiErrorCode.TOKEN_REVOKED)

    assert error.status_code == 401
    assert error.message == "Token has been revoked"
    assert error.to_envelope() == {
        "success": False,
        "error": {"code": "TOKEN_REVOKED", "message": "Token has been revoked"},
    }


def test_envelope_keeps_details_and_retry_after() -> None:
    envelope = error_envelope(
        ApiErrorCode.BRUTE_FORCE_PROTECTION,
        details=[{"field": "email"}],
        retry_after=3600,
    )

    assert envelope["error"]["retry_after"] == 3600
    assert envelope["error"]["details"] == [{"field": "email"}]


def test_error_response_renders_json_body() -> None:
    response = error_response(ApiErrorCode.CONFLICT, "Slug is already taken")

    assert response.status_code == 409
    assert json.loads(response.body) == {
        "success": False,
        "error": {"code": "CONFLICT", "message": "Slug is already taken"},
    }


def test_code_for_status_falls_back_by_class() -> None:
    assert code_for_status(404) == ApiErrorCode.NOT_FOUND
    assert code_for_status(418) == ApiErrorCode.INVALID_INPUT
    assert code_for_status(503) == ApiErrorCode.INTERNAL_ERROR
