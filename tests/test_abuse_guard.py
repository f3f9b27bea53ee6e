from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from starlette.requests import Request

from tests.app_fixtures import FakeClock
from wedding_api.core.config import BruteForceConfig
from wedding_api.security.abuse_guard import AbuseGuard, extract_email


def _build_guard(clock: FakeClock, **overrides) -> AbuseGuard:
    return AbuseGuard(replace(BruteForceConfig(), **overrides), clock=clock)


def _request(body: bytes, content_type: str) -> Request:
    sent = False

    async def receive() -> dict:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/auth/login",
        "headers": [(b"content-type", content_type.encode("latin-1"))],
        "query_string": b"",
    }
    return Request(scope, receive)


def test_block_starts_on_the_last_allowed_failure() -> None:
    guard = _build_guard(FakeClock())

    started = [guard.record_failure("ip:1.1.1.1") for _ in range(5)]

    assert started == [False, False, False, False, True]
    assert guard.is_blocked("ip:1.1.1.1") is True
    assert guard.attempts("ip:1.1.1.1") == 5


def test_failures_while_blocked_do_not_extend_the_block() -> None:
    clock = FakeClock()
    guard = _build_guard(clock, max_attempts=2, block_duration_seconds=100)
    guard.record_failure("ip:1")
    guard.record_failure("ip:1")

    clock.advance(50)
    assert guard.record_failure("ip:1") is False
    clock.advance(50)
    assert guard.is_blocked("ip:1") is True
    clock.advance(1)
    assert guard.is_blocked("ip:1") is False
    assert guard.attempts("ip:1") == 0


def test_window_expiry_resets_the_count() -> None:
    clock = FakeClock()
    guard = _build_guard(clock, attempt_window_seconds=60)
    for _ in range(4):
        guard.record_failure("email:a@b.co")

    clock.advance(61)
    guard.record_failure("email:a@b.co")

    assert guard.attempts("email:a@b.co") == 1
    assert guard.is_blocked("email:a@b.co") is False


def test_clear_is_idempotent() -> None:
    guard = _build_guard(FakeClock())
    guard.record_failure("ip:1")

    guard.clear("ip:1")
    guard.clear("ip:1")
    guard.unblock("ip:unknown")

    assert guard.attempts("ip:1") == 0


def test_sweep_removes_elapsed_blocks_and_stale_records() -> None:
    clock = FakeClock()
    guard = _build_guard(clock, max_attempts=2, block_duration_seconds=10)
    guard.record_failure("ip:blocked")
    guard.record_failure("ip:blocked")
    clock.advance(5)
    guard.record_failure("ip:fresh")

    clock.advance(6)
    assert guard.sweep() == 1
    assert guard.attempts("ip:fresh") == 1

    clock.advance(20)
    assert guard.sweep() == 1
    assert guard.attempts("ip:fresh") == 0


def test_identifiers_follow_tracking_switches() -> None:
    guard = _build_guard(FakeClock())
    ip_only = _build_guard(FakeClock(), track_by_email=False)

    assert guard.identifiers(ip="1.1.1.1", email=" A@B.co ") == [
        "ip:1.1.1.1",
        "email:a@b.co",
    ]
    assert guard.identifiers(ip="1.1.1.1", email="") == ["ip:1.1.1.1"]
    assert ip_only.identifiers(ip="1.1.1.1", email="a@b.co") == ["ip:1.1.1.1"]


def test_extract_email_reads_json_and_form_bodies() -> None:
    json_request = _request(b'{"email": "a@b.co", "password": "x"}', "application/json")
    form_request = _request(
        b"email=c%40d.co&password=x", "application/x-www-form-urlencoded; charset=utf-8"
    )

    assert asyncio.run(extract_email(json_request)) == "a@b.co"
    assert asyncio.run(extract_email(form_request)) == "c@d.co"


def test_extract_email_tolerates_unusable_bodies() -> None:
    assert asyncio.run(extract_email(_request(b"{not json", "application/json"))) == ""
    assert asyncio.run(extract_email(_request(b'["a@b.co"]', "application/json"))) == ""
    assert asyncio.run(extract_email(_request(b'{"email": 5}', "application/json"))) == ""
    assert asyncio.run(extract_email(_request(b"email=a@b.co", "text/plain"))) == ""


def test_concurrent_failures_start_exactly_one_block() -> None:
    guard = _build_guard(FakeClock(), max_attempts=5)

    with ThreadPoolExecutor(max_workers=8) as pool:
        started = list(pool.map(lambda _: guard.record_failure("ip:9.9.9.9"), range(400)))

    assert started.count(True) == 1
    assert guard.attempts("ip:9.9.9.9") == 5
    assert guard.is_blocked("ip:9.9.9.9") is True


def test_concurrent_failures_on_distinct_identifiers_are_counted_separately() -> None:
    guard = _build_guard(FakeClock(), max_attempts=50)
    identifiers = [f"ip:10.0.0.{n}" for n in range(4)] * 10

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(guard.record_failure, identifiers))

    assert [guard.attempts(f"ip:10.0.0.{n}") for n in range(4)] == [10, 10, 10, 10]
    assert not any(guard.is_blocked(f"ip:10.0.0.{n}") for n in range(4))
