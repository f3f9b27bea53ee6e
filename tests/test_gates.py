from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest
from starlette.requests import Request

from tests.app_fixtures import OTHER_KEYS, TEST_KEYS, FakeClock, build_config
from wedding_api.api.errors import ApiError, ApiErrorCode
from wedding_api.security.credentials import CredentialKind, CredentialService
from wedding_api.security.denylist import InMemoryTokenStore, StoreUnavailableError
from wedding_api.security.gates import (
    AuthGate,
    CallerIdentity,
    extract_token,
    get_caller,
    require_role,
)


@dataclass
class UnavailableDenylist:
    calls: list[str] = field(default_factory=list)

    async def is_denied(self, credential_id: str, kinds=()) -> bool:
        self.calls.append(credential_id)
        raise StoreUnavailableError("redis down")

    async def deny(self, credential_id: str, kind: str, ttl_seconds: int) -> None:
        return None

    async def revoke_all_for_subject(self, subject: str) -> int:
        return 0


def _request(*, authorization: str = "", cookie: str = "") -> Request:
    headers = []
    if authorization:
        headers.append((b"authorization", authorization.encode("latin-1")))
    if cookie:
        headers.append((b"cookie", cookie.encode("latin-1")))
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/weddings",
            "headers": headers,
            "query_string": b"",
        }
    )


def _build_gate(denylist=None, *, keys=TEST_KEYS) -> tuple[AuthGate, CredentialService]:
    clock = FakeClock()
    credentials = CredentialService(keys=keys, config=build_config().auth, clock=clock)
    gate = AuthGate(
        credentials=CredentialService(keys=TEST_KEYS, config=build_config().auth, clock=clock),
        denylist=denylist or InMemoryTokenStore(clock=clock),
    )
    return gate, credentials


def _error_code(coro) -> ApiErrorCode:
    with pytest.raises(ApiError) as exc:
        asyncio.run(coro)
    return exc.value.error_code


def test_extract_token_prefers_header_over_cookie() -> None:
    assert extract_token(_request(authorization="Bearer abc", cookie="access_token=xyz")) == "abc"
    assert extract_token(_request(authorization="bearer  abc ")) == "abc"
    assert extract_token(_request(cookie="access_token=xyz")) == "xyz"
    assert extract_token(_request(authorization="Basic abc")) == ""
    assert extract_token(_request(authorization="Bearer")) == ""


def test_require_attaches_caller_from_header_token() -> None:
    gate, credentials = _build_gate()
    pair = credentials.issue_pair(subject="user-1", device_id="dev-1", role="user")
    request = _request(authorization=f"Bearer {pair.access}")

    caller = asyncio.run(gate.require(request))

    assert caller == CallerIdentity(
        subject="user-1",
        role="user",
        device_id="dev-1",
        credential_id=pair.access_id,
        expires_at=pair.access_claims.exp,
    )
    assert get_caller(request) == caller


def test_require_accepts_access_token_cookie() -> None:
    gate, credentials = _build_gate()
    pair = credentials.issue_pair(subject="user-1", device_id="", role="user")

    caller = asyncio.run(gate.require(_request(cookie=f"access_token={pair.access}")))

    assert caller.subject == "user-1"


def test_require_rejects_missing_invalid_and_non_access_tokens() -> None:
    gate, credentials = _build_gate()
    pair = credentials.issue_pair(subject="user-1", device_id="", role="user")

    assert _error_code(gate.require(_request())) == ApiErrorCode.UNAUTHORIZED
    assert _error_code(gate.require(_request(authorization="Bearer x.y.z"))) == (
        ApiErrorCode.INVALID_TOKEN
    )
    assert _error_code(gate.require(_request(authorization=f"Bearer {pair.refresh}"))) == (
        ApiErrorCode.INVALID_TOKEN
    )


def test_require_rejects_token_signed_by_other_key() -> None:
    gate, foreign = _build_gate(keys=OTHER_KEYS)
    token = foreign.issue_pair(subject="user-1", device_id="", role="admin").access

    assert _error_code(gate.require(_request(authorization=f"Bearer {token}"))) == (
        ApiErrorCode.INVALID_TOKEN
    )


def test_require_rejects_revoked_token() -> None:
    store = InMemoryTokenStore(clock=FakeClock())
    gate, credentials = _build_gate(store)
    pair = credentials.issue_pair(subject="user-1", device_id="", role="user")
    asyncio.run(store.deny(pair.access_id, CredentialKind.ACCESS, 60))

    assert _error_code(gate.require(_request(authorization=f"Bearer {pair.access}"))) == (
        ApiErrorCode.TOKEN_REVOKED
    )


def test_unreachable_denylist_fails_closed() -> None:
    denylist = UnavailableDenylist()
    gate, credentials = _build_gate(denylist)
    pair = credentials.issue_pair(subject="user-1", device_id="", role="user")

    code = _error_code(gate.require(_request(authorization=f"Bearer {pair.access}")))

    assert code == ApiErrorCode.UNAUTHORIZED
    assert denylist.calls == [pair.access_id]


def test_optional_falls_back_to_anonymous() -> None:
    gate, credentials = _build_gate()
    pair = credentials.issue_pair(subject="user-1", device_id="", role="user")

    assert asyncio.run(gate.optional(_request())) is None
    assert asyncio.run(gate.optional(_request(authorization="Bearer junk"))) is None
    caller = asyncio.run(gate.optional(_request(authorization=f"Bearer {pair.access}")))
    assert caller is not None and caller.subject == "user-1"


def test_require_role_checks_attached_caller() -> None:
    gate_admin = require_role("admin")
    gate_editor = require_role("editor")
    request = _request()

    assert _error_code(gate_admin(request)) == ApiErrorCode.UNAUTHORIZED

    request.state.caller = CallerIdentity(
        subject="user-1", role="user", device_id="", credential_id="j", expires_at=0
    )
    assert _error_code(gate_admin(request)) == ApiErrorCode.FORBIDDEN

    request.state.caller = CallerIdentity(
        subject="admin-1", role="admin", device_id="", credential_id="j", expires_at=0
    )
    assert asyncio.run(gate_admin(request)).subject == "admin-1"
    assert asyncio.run(gate_editor(request)).subject == "admin-1"
    assert gate_admin.__name__ == "require_role_admin"
