"""Revoked-credential denylist plus the refresh-session and reset-token slots.

Key layout (shared by both backends):

* ``blacklist:access:<jti>`` / ``blacklist:refresh:<jti>``: tombstones for
  revoked credentials, expiring with the credential.
* ``refresh:<subject>:<jti>``: one live refresh session; enumerated to revoke
  every session of a subject.
* ``password_reset:<sha256(token)>``: single-use reset slot holding the subject.
"""

from __future__ import annotations

import asyncio
import json
import time
from threading import Lock
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel
from redis.exceptions import RedisError

from wedding_api.security.credentials import CredentialKind

T = TypeVar("T")

DENY_NAMESPACES = (CredentialKind.ACCESS, CredentialKind.REFRESH)


class StoreUnavailableError(RuntimeError):
    """Raised when the backing store cannot answer within its deadline."""


class SessionRecord(BaseModel):
    """Metadata stored for each live refresh session."""

    device_id: str
    created_at: int


def deny_key(kind: str, credential_id: str) -> str:
    return f"blacklist:{kind}:{credential_id}"


def session_key(subject: str, session_id: str) -> str:
    return f"refresh:{subject}:{session_id}"


def reset_key(token_digest: str) -> str:
    return f"password_reset:{token_digest}"


class DenylistStore(Protocol):
    """Capability interface consulted by the auth gate."""

    async def is_denied(
        self, credential_id: str, kinds: tuple[str, ...] = DENY_NAMESPACES
    ) -> bool: ...

    async def deny(self, credential_id: str, kind: str, ttl_seconds: int) -> None: ...

    async def revoke_all_for_subject(self, subject: str) -> int: ...


class TokenStore(DenylistStore, Protocol):
    """Denylist plus the session and reset slots used by the auth service."""

    async def save_session(
        self, subject: str, session_id: str, record: SessionRecord, ttl_seconds: int
    ) -> None: ...

    async def claim_session(self, subject: str, session_id: str) -> SessionRecord | None: ...

    async def drop_session(self, subject: str, session_id: str) -> None: ...

    async def put_reset_token(
        self, token_digest: str, subject: str, ttl_seconds: int
    ) -> None: ...

    async def consume_reset_token(self, token_digest: str) -> str | None: ...

    async def close(self) -> None: ...


class RedisTokenStore:
    """Shared-cache backend; every call is bounded by ``timeout_seconds``."""

    def __init__(
        self,
        client: Any,
        *,
        timeout_seconds: float = 2.0,
        fallback_ttl_seconds: int = 7 * 24 * 60 * 60,
    ) -> None:
        """Wrap an async redis client (``decode_responses=True``)."""
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._fallback_ttl_seconds = fallback_ttl_seconds

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 2.0) -> "RedisTokenStore":
        """Create a store connected to ``url``."""
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, timeout_seconds=timeout_seconds)

    async def _bounded(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=self._timeout_seconds)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise StoreUnavailableError(f"Token store unavailable: {exc!r}") from exc

    async def is_denied(
        self, credential_id: str, kinds: tuple[str, ...] = DENY_NAMESPACES
    ) -> bool:
        """Return True when the id is revoked in any of ``kinds``."""
        keys = [deny_key(kind, credential_id) for kind in kinds]
        count = await self._bounded(lambda: self._client.exists(*keys))
        return int(count) > 0

    async def deny(self, credential_id: str, kind: str, ttl_seconds: int) -> None:
        """Tombstone a credential id until its natural expiry."""
        if ttl_seconds <= 0:
            return
        key = deny_key(kind, credential_id)
        await self._bounded(lambda: self._client.set(key, "1", ex=int(ttl_seconds)))

    async def revoke_all_for_subject(self, subject: str) -> int:
        """Deny every indexed refresh session of a subject and drop the index."""

        async def _revoke() -> int:
            session_keys: list[str] = []
            async for key in self._client.scan_iter(match=session_key(subject, "*")):
                session_id = key.rsplit(":", 1)[-1]
                ttl = await self._client.ttl(key)
                await self._client.set(
                    deny_key(CredentialKind.REFRESH, session_id),
                    "1",
                    ex=int(ttl) if ttl and ttl > 0 else self._fallback_ttl_seconds,
                )
                session_keys.append(key)
            if session_keys:
                await self._client.delete(*session_keys)
            return len(session_keys)

        return await self._bounded(_revoke)

    async def save_session(
        self, subject: str, session_id: str, record: SessionRecord, ttl_seconds: int
    ) -> None:
        """Index a refresh session for rotation and bulk revocation."""
        key = session_key(subject, session_id)
        value = record.model_dump_json()
        await self._bounded(lambda: self._client.set(key, value, ex=int(ttl_seconds)))

    async def claim_session(self, subject: str, session_id: str) -> SessionRecord | None:
        """Atomically read and remove a session; only one caller can win."""
        key = session_key(subject, session_id)
        raw = await self._bounded(lambda: self._client.getdel(key))
        if not raw:
            return None
        return SessionRecord.model_validate(json.loads(raw))

    async def drop_session(self, subject: str, session_id: str) -> None:
        """Remove a session index entry if present."""
        key = session_key(subject, session_id)
        await self._bounded(lambda: self._client.delete(key))

    async def put_reset_token(self, token_digest: str, subject: str, ttl_seconds: int) -> None:
        """Store a reset slot for the subject."""
        key = reset_key(token_digest)
        await self._bounded(lambda: self._client.set(key, subject, ex=int(ttl_seconds)))

    async def consume_reset_token(self, token_digest: str) -> str | None:
        """Atomically read and remove a reset slot."""
        key = reset_key(token_digest)
        subject = await self._bounded(lambda: self._client.getdel(key))
        return str(subject) if subject else None

    async def close(self) -> None:
        """Release the connection pool."""
        await self._client.aclose()


class InMemoryTokenStore:
    """Process-local backend for tests and single-node deployments.

    State lives in this process only and is lost on restart. Denylist
    tombstones carry no TTL and stay until ``clear`` is called; sessions and
    reset slots do honour their expiry.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize empty maps guarded by one mutex."""
        self._clock = clock
        self._lock = Lock()
        self._denied: set[str] = set()
        self._sessions: dict[str, tuple[SessionRecord, float]] = {}
        self._reset_tokens: dict[str, tuple[str, float]] = {}

    async def is_denied(
        self, credential_id: str, kinds: tuple[str, ...] = DENY_NAMESPACES
    ) -> bool:
        with self._lock:
            return any(deny_key(kind, credential_id) in self._denied for kind in kinds)

    async def deny(self, credential_id: str, kind: str, ttl_seconds: int) -> None:
        _ = ttl_seconds
        with self._lock:
            self._denied.add(deny_key(kind, credential_id))

    async def revoke_all_for_subject(self, subject: str) -> int:
        prefix = session_key(subject, "")
        with self._lock:
            matched = [key for key in self._sessions if key.startswith(prefix)]
            for key in matched:
                self._denied.add(deny_key(CredentialKind.REFRESH, key[len(prefix) :]))
                del self._sessions[key]
        return len(matched)

    async def save_session(
        self, subject: str, session_id: str, record: SessionRecord, ttl_seconds: int
    ) -> None:
        with self._lock:
            self._sessions[session_key(subject, session_id)] = (
                record,
                self._clock() + ttl_seconds,
            )

    async def claim_session(self, subject: str, session_id: str) -> SessionRecord | None:
        with self._lock:
            entry = self._sessions.pop(session_key(subject, session_id), None)
        if entry is None or entry[1] <= self._clock():
            return None
        return entry[0]

    async def drop_session(self, subject: str, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_key(subject, session_id), None)

    async def put_reset_token(self, token_digest: str, subject: str, ttl_seconds: int) -> None:
        with self._lock:
            self._reset_tokens[reset_key(token_digest)] = (
                subject,
                self._clock() + ttl_seconds,
            )

    async def consume_reset_token(self, token_digest: str) -> str | None:
        with self._lock:
            entry = self._reset_tokens.pop(reset_key(token_digest), None)
        if entry is None or entry[1] <= self._clock():
            return None
        return entry[0]

    def clear(self) -> None:
        """Forget every tombstone, session and reset slot."""
        with self._lock:
            self._denied.clear()
            self._sessions.clear()
            self._reset_tokens.clear()

    async def close(self) -> None:
        return None
