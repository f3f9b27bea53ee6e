from __future__ import annotations

import asyncio

import pytest

from tests.app_fixtures import BrokenRedis, FakeClock, FakeRedis, HangingRedis
from wedding_api.security.credentials import CredentialKind
from wedding_api.security.denylist import (
    InMemoryTokenStore,
    RedisTokenStore,
    SessionRecord,
    StoreUnavailableError,
)


def _record() -> SessionRecord:
    return SessionRecord(device_id="dev-1", created_at=1)


def test_in_memory_deny_is_scoped_by_namespace() -> None:
    store = InMemoryTokenStore(clock=FakeClock())

    async def _run() -> tuple[bool, bool, bool]:
        await store.deny("jti-1", CredentialKind.VERIFICATION, 60)
        return (
            await store.is_denied("jti-1"),
            await store.is_denied("jti-1", kinds=(CredentialKind.VERIFICATION,)),
            await store.is_denied("jti-2", kinds=(CredentialKind.VERIFICATION,)),
        )

    assert asyncio.run(_run()) == (False, True, False)


def test_in_memory_claim_session_wins_once() -> None:
    store = InMemoryTokenStore(clock=FakeClock())

    async def _run() -> list[SessionRecord | None]:
        await store.save_session("user-1", "r-1", _record(), 60)
        return [
            await store.claim_session("user-1", "r-1"),
            await store.claim_session("user-1", "r-1"),
        ]

    first, second = asyncio.run(_run())

    assert first == _record()
    assert second is None


def test_in_memory_sessions_and_reset_slots_expire() -> None:
    clock = FakeClock()
    store = InMemoryTokenStore(clock=clock)

    async def _run() -> tuple[SessionRecord | None, str | None]:
        await store.save_session("user-1", "r-1", _record(), 60)
        await store.put_reset_token("digest", "user-1", 60)
        clock.advance(60)
        return (
            await store.claim_session("user-1", "r-1"),
            await store.consume_reset_token("digest"),
        )

    assert asyncio.run(_run()) == (None, None)


def test_in_memory_revoke_all_denies_only_that_subject() -> None:
    store = InMemoryTokenStore(clock=FakeClock())

    async def _run() -> tuple[int, bool, bool, bool]:
        await store.save_session("user-1", "r-1", _record(), 60)
        await store.save_session("user-1", "r-2", _record(), 60)
        await store.save_session("user-2", "r-3", _record(), 60)
        revoked = await store.revoke_all_for_subject("user-1")
        return (
            revoked,
            await store.is_denied("r-1"),
            await store.is_denied("r-2"),
            await store.is_denied("r-3"),
        )

    assert asyncio.run(_run()) == (2, True, True, False)


def test_in_memory_reset_slot_is_single_use() -> None:
    store = InMemoryTokenStore(clock=FakeClock())

    async def _run() -> list[str | None]:
        await store.put_reset_token("digest", "user-1", 60)
        return [
            await store.consume_reset_token("digest"),
            await store.consume_reset_token("digest"),
        ]

    assert asyncio.run(_run()) == ["user-1", None]


def test_in_memory_clear_forgets_everything() -> None:
    store = InMemoryTokenStore(clock=FakeClock())

    async def _run() -> bool:
        await store.deny("jti-1", CredentialKind.ACCESS, 60)
        store.clear()
        return await store.is_denied("jti-1")

    assert asyncio.run(_run()) is False


def test_redis_store_uses_shared_key_layout() -> None:
    client = FakeRedis()
    store = RedisTokenStore(client)

    async def _run() -> bool:
        await store.deny("jti-1", CredentialKind.ACCESS, 120)
        await store.deny("jti-2", CredentialKind.ACCESS, 0)
        await store.save_session("user-1", "r-1", _record(), 600)
        await store.put_reset_token("digest", "user-1", 300)
        return await store.is_denied("jti-1")

    assert asyncio.run(_run()) is True
    assert client.ttls["blacklist:access:jti-1"] == 120
    assert "blacklist:access:jti-2" not in client.values
    assert client.ttls["refresh:user-1:r-1"] == 600
    assert client.values["password_reset:digest"] == "user-1"


def test_redis_revoke_all_keeps_remaining_session_ttl() -> None:
    client = FakeRedis()
    store = RedisTokenStore(client, fallback_ttl_seconds=999)

    async def _run() -> int:
        await store.save_session("user-1", "r-1", _record(), 600)
        await store.save_session("user-2", "r-2", _record(), 600)
        client.values["refresh:user-1:r-legacy"] = _record().model_dump_json()
        return await store.revoke_all_for_subject("user-1")

    assert asyncio.run(_run()) == 2
    assert client.ttls["blacklist:refresh:r-1"] == 600
    assert client.ttls["blacklist:refresh:r-legacy"] == 999
    assert "refresh:user-1:r-1" not in client.values
    assert "refresh:user-2:r-2" in client.values


def test_redis_claim_session_and_reset_are_atomic_reads() -> None:
    client = FakeRedis()
    store = RedisTokenStore(client)

    async def _run() -> tuple:
        await store.save_session("user-1", "r-1", _record(), 600)
        await store.put_reset_token("digest", "user-1", 300)
        return (
            await store.claim_session("user-1", "r-1"),
            await store.claim_session("user-1", "r-1"),
            await store.consume_reset_token("digest"),
            await store.consume_reset_token("digest"),
        )

    assert asyncio.run(_run()) == (_record(), None, "user-1", None)


def test_redis_timeout_surfaces_as_store_unavailable() -> None:
    store = RedisTokenStore(HangingRedis(), timeout_seconds=0.01)

    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.is_denied("jti-1"))


def test_redis_errors_surface_as_store_unavailable() -> None:
    store = RedisTokenStore(BrokenRedis())

    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.claim_session("user-1", "r-1"))


def test_redis_close_releases_client() -> None:
    client = FakeRedis()

    asyncio.run(RedisTokenStore(client).close())

    assert client.closed is True


def test_in_memory_repeated_deny_is_idempotent() -> None:
    store = InMemoryTokenStore(clock=FakeClock())

    async def _run() -> tuple[bool, bool]:
        await store.deny("jti-1", CredentialKind.ACCESS, 60)
        first = await store.is_denied("jti-1")
        await store.deny("jti-1", CredentialKind.ACCESS, 60)
        return first, await store.is_denied("jti-1")

    assert asyncio.run(_run()) == (True, True)


def test_redis_repeated_deny_is_idempotent() -> None:
    client = FakeRedis()
    store = RedisTokenStore(client)

    async def _run() -> bool:
        await store.deny("jti-1", CredentialKind.REFRESH, 90)
        await store.deny("jti-1", CredentialKind.REFRESH, 90)
        return await store.is_denied("jti-1")

    assert asyncio.run(_run()) is True
    assert list(client.values) == ["blacklist:refresh:jti-1"]
    assert client.ttls["blacklist:refresh:jti-1"] == 90


@pytest.mark.parametrize("variant", ["memory", "redis"])
def test_concurrent_claims_hand_out_a_session_once(variant: str) -> None:
    if variant == "memory":
        store = InMemoryTokenStore(clock=FakeClock())
    else:
        store = RedisTokenStore(FakeRedis())

    async def _run() -> list:
        await store.save_session("user-1", "r-1", _record(), 600)
        return await asyncio.gather(
            *(store.claim_session("user-1", "r-1") for _ in range(10))
        )

    claims = asyncio.run(_run())

    assert sum(1 for claim in claims if claim is not None) == 1
