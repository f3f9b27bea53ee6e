"""Failure counting and lockout for the credential-handling auth routes.

Each request to a protected route is tracked under up to two identifiers,
``ip:<client-ip>`` and ``email:<normalized-email>``. Failures inside the
attempt window accumulate; reaching ``max_attempts`` blocks the identifier for
``block_duration_seconds``. A success clears the identifier.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable
from urllib.parse import parse_qs

from starlette.requests import Request

from wedding_api.api.errors import ApiErrorCode, error_response
from wedding_api.api.request_info import client_ip
from wedding_api.core.background import PeriodicSweeper
from wedding_api.core.config import BruteForceConfig

LOGGER = logging.getLogger(__name__)

FAILURE_STATUSES = frozenset({400, 401, 403})
SUCCESS_STATUSES = frozenset({200, 201})


@dataclass
class AbuseRecord:
    """Failure history of one identifier."""

    count: int
    first_seen: float
    last_seen: float
    blocked: bool = False
    blocked_until: float = 0.0


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AbuseGuard:
    """Per-identifier failure counter with sliding window and lockout."""

    def __init__(
        self,
        config: BruteForceConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize an empty record map."""
        self.config = config
        self._clock = clock
        self._lock = Lock()
        self._records: dict[str, AbuseRecord] = {}
        self.sweeper = PeriodicSweeper(
            name="abuse_guard",
            interval_seconds=config.cleanup_interval_seconds,
            sweep=self.sweep,
        )

    @property
    def retry_after_seconds(self) -> int:
        return int(self.config.block_duration_seconds)

    def identifiers(self, *, ip: str, email: str = "") -> list[str]:
        """Build the identifiers tracked for one request."""
        identifiers: list[str] = []
        if self.config.track_by_ip and ip:
            identifiers.append(f"ip:{ip}")
        normalized = normalize_email(email)
        if self.config.track_by_email and normalized:
            identifiers.append(f"email:{normalized}")
        return identifiers

    def is_blocked(self, identifier: str) -> bool:
        """Return whether a live block exists; an elapsed block is deleted."""
        now = self._clock()
        with self._lock:
            record = self._records.get(identifier)
            if record is None or not record.blocked:
                return False
            if now > record.blocked_until:
                del self._records[identifier]
                return False
            return True

    def record_failure(self, identifier: str) -> bool:
        """Count a failure; return True when this failure starts a block."""
        now = self._clock()
        with self._lock:
            record = self._records.get(identifier)
            if record is None or (
                not record.blocked
                and now - record.first_seen > self.config.attempt_window_seconds
            ):
                record = AbuseRecord(count=0, first_seen=now, last_seen=now)
                self._records[identifier] = record
            if record.blocked:
                record.last_seen = now
                return False

            record.count += 1
            record.last_seen = now
            if record.count >= self.config.max_attempts:
                record.blocked = True
                record.blocked_until = now + self.config.block_duration_seconds
                return True
            return False

    def clear(self, identifier: str) -> None:
        """Forget every failure recorded for the identifier."""
        with self._lock:
            self._records.pop(identifier, None)

    def unblock(self, identifier: str) -> None:
        """Administrative release of an identifier."""
        self.clear(identifier)

    def attempts(self, identifier: str) -> int:
        """Return the current failure count for the identifier."""
        with self._lock:
            record = self._records.get(identifier)
            return record.count if record else 0

    def sweep(self) -> int:
        """Remove elapsed blocks and stale unblocked records."""
        now = self._clock()
        stale_after = 2 * self.config.block_duration_seconds
        with self._lock:
            expired = [
                identifier
                for identifier, record in self._records.items()
                if (record.blocked and now > record.blocked_until)
                or (not record.blocked and now - record.last_seen > stale_after)
            ]
            for identifier in expired:
                del self._records[identifier]
        return len(expired)


async def extract_email(request: Request) -> str:
    """Read ``email`` from a JSON or urlencoded body without consuming it.

    ``Request.body()`` caches the bytes on the request and the framework
    replays them to the route, so the handler can still bind the body.
    """
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type not in {"application/json", "application/x-www-form-urlencoded"}:
        return ""
    body = await request.body()
    if not body:
        return ""
    try:
        if content_type == "application/json":
            payload = json.loads(body)
            value = payload.get("email") if isinstance(payload, dict) else None
        else:
            value = (parse_qs(body.decode("utf-8")).get("email") or [None])[0]
    except ValueError:
        return ""
    return value if isinstance(value, str) else ""


def _blocked_response(guard: AbuseGuard):
    return error_response(
        ApiErrorCode.BRUTE_FORCE_PROTECTION,
        retry_after=guard.retry_after_seconds,
        headers={"Retry-After": str(guard.retry_after_seconds)},
    )


def create_abuse_guard_middleware(
    guard: AbuseGuard,
    *,
    trust_forwarded_headers: bool,
    logger: logging.Logger = LOGGER,
) -> Callable:
    """Create middleware guarding the protected auth routes."""
    protected_paths = frozenset(guard.config.protected_paths)

    async def abuse_guard_middleware(request: Request, call_next: Callable):
        """Reject blocked callers, then count the route's outcome."""
        if (
            not guard.config.enabled
            or request.method != "POST"
            or request.url.path not in protected_paths
        ):
            return await call_next(request)

        ip = client_ip(request, trust_forwarded_headers=trust_forwarded_headers)
        email = await extract_email(request) if guard.config.track_by_email else ""
        identifiers = guard.identifiers(ip=ip, email=email)

        for identifier in identifiers:
            if guard.is_blocked(identifier):
                logger.warning(
                    "brute_force_blocked",
                    extra={
                        "path": request.url.path,
                        "client_ip": ip,
                        "identifier": identifier,
                    },
                )
                return _blocked_response(guard)

        response = await call_next(request)

        if response.status_code in FAILURE_STATUSES:
            newly_blocked = [
                identifier for identifier in identifiers if guard.record_failure(identifier)
            ]
            if newly_blocked:
                logger.warning(
                    "brute_force_block_started",
                    extra={
                        "path": request.url.path,
                        "client_ip": ip,
                        "identifier": newly_blocked[0],
                        "retry_after": guard.retry_after_seconds,
                    },
                )
                return _blocked_response(guard)
        elif response.status_code in SUCCESS_STATUSES:
            for identifier in identifiers:
                guard.clear(identifier)
        return response

    return abuse_guard_middleware
