"""Token-bucket rate limiting keyed by client fingerprint and route class."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from starlette.requests import Request

from wedding_api.api.errors import ApiErrorCode, error_response
from wedding_api.api.request_info import caller_subject, client_ip
from wedding_api.core.background import PeriodicSweeper
from wedding_api.core.config import BucketPolicy, RateLimitConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_CLASS_NAME = "default"


class TokenBucket:
    """Refill-on-read bucket; tokens stay within ``[0, burst]``."""

    def __init__(self, *, rate: float, burst: int, now: float) -> None:
        """Start full at ``burst`` tokens."""
        if rate <= 0 or burst <= 0:
            raise ValueError("rate and burst must be positive")
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._updated_at = now
        self.last_seen = now
        self._lock = Lock()

    def _refill(self, now: float) -> None:
        # Clock readings that go backwards add nothing.
        if now > self._updated_at:
            self._tokens = min(
                float(self.burst), self._tokens + (now - self._updated_at) * self.rate
            )
            self._updated_at = now

    def tokens(self, now: float) -> float:
        """Return the token count after refilling up to ``now``."""
        with self._lock:
            self._refill(now)
            return self._tokens

    def allow(self, now: float) -> bool:
        """Consume one token when available."""
        with self._lock:
            self._refill(now)
            self.last_seen = max(self.last_seen, now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def retry_after(self, now: float) -> float:
        """Seconds until one token is available."""
        with self._lock:
            self._refill(now)
            missing = max(0.0, 1.0 - self._tokens)
            return missing / self.rate


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a single limiter check."""

    allowed: bool
    retry_after_seconds: int = 0


class RateLimiter:
    """Bucket map for one policy, swept by idle time per entry."""

    def __init__(
        self,
        policy: BucketPolicy,
        *,
        name: str = DEFAULT_CLASS_NAME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Bind the policy; buckets are created lazily."""
        self.policy = policy
        self.name = name
        self._clock = clock
        self._lock = Lock()
        self._buckets: dict[str, TokenBucket] = {}
        self.sweeper = PeriodicSweeper(
            name=f"rate_limiter:{name}",
            interval_seconds=policy.cleanup_interval_seconds,
            sweep=self.sweep,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _bucket(self, key: str, now: float) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(
                    rate=self.policy.rate, burst=self.policy.burst, now=now
                )
                self._buckets[key] = bucket
            return bucket

    def check(self, key: str) -> RateDecision:
        """Consume a token for ``key`` or report how long to wait."""
        now = self._clock()
        bucket = self._bucket(key, now)
        if bucket.allow(now):
            return RateDecision(allowed=True)
        return RateDecision(
            allowed=False,
            retry_after_seconds=max(1, math.ceil(bucket.retry_after(now))),
        )

    def sweep(self) -> int:
        """Drop buckets idle longer than the policy's entry TTL."""
        cutoff = self._clock() - self.policy.entry_ttl_seconds
        with self._lock:
            idle = [key for key, bucket in self._buckets.items() if bucket.last_seen < cutoff]
            for key in idle:
                del self._buckets[key]
        return len(idle)


def _prefix_matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class RouteRateLimiter:
    """Dispatch requests to a limiter chosen by longest matching path prefix."""

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Build one limiter per route class plus the default."""
        self.enabled = config.enabled
        self._default = RateLimiter(config.default, name=DEFAULT_CLASS_NAME, clock=clock)
        self._classes = sorted(
            (
                (route.prefix, RateLimiter(route.policy, name=route.name, clock=clock))
                for route in config.classes
            ),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    @property
    def limiters(self) -> list[RateLimiter]:
        return [limiter for _, limiter in self._classes] + [self._default]

    def classify(self, path: str) -> RateLimiter:
        """Return the limiter for the longest prefix matching ``path``."""
        for prefix, limiter in self._classes:
            if _prefix_matches(path, prefix):
                return limiter
        return self._default

    def check(self, *, path: str, ip: str, subject: str = "") -> tuple[RateLimiter, RateDecision]:
        """Classify the path and consume from the caller's bucket."""
        limiter = self.classify(path)
        key = ip
        if subject:
            key = f"{key}-{subject}"
        if limiter.policy.per_path:
            key = f"{key}-{path}"
        return limiter, limiter.check(key)

    async def start(self) -> None:
        """Start every class sweeper."""
        for limiter in self.limiters:
            await limiter.sweeper.start()

    async def stop(self) -> None:
        """Stop every class sweeper."""
        for limiter in self.limiters:
            await limiter.sweeper.stop()


def create_rate_limit_middleware(
    limiter: RouteRateLimiter,
    *,
    trust_forwarded_headers: bool,
    logger: logging.Logger = LOGGER,
) -> Callable:
    """Create middleware that rejects callers whose bucket is empty."""

    async def rate_limit_middleware(request: Request, call_next: Callable):
        """Consume a token or answer 429 before the route runs."""
        if not limiter.enabled:
            return await call_next(request)

        ip = client_ip(request, trust_forwarded_headers=trust_forwarded_headers)
        route_limiter, decision = limiter.check(
            path=request.url.path, ip=ip, subject=caller_subject(request)
        )
        if decision.allowed:
            return await call_next(request)

        logger.warning(
            "rate_limit_exceeded",
            extra={
                "path": request.url.path,
                "method": request.method,
                "client_ip": ip,
                "route_class": route_limiter.name,
                "retry_after": decision.retry_after_seconds,
            },
        )
        return error_response(
            ApiErrorCode.RATE_LIMIT_EXCEEDED,
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )

    return rate_limit_middleware
