"""
Fixed-window rate limiting.

``RateLimiter`` counts hits per ``(scope, key)`` in a window-aligned bucket.
Counts live either in process memory (single instance, tests) or in Redis so
several API processes share one view.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

SPIN_IP = "spin_ip"
SPIN_STAKE = "spin_stake"
LOOKUP_IP = "lookup_ip"
ADMIN_LOGIN = "admin_login"
USER_LOGIN = "user_login"

HOUR_SECONDS = 3600


@dataclass
class RateLimitResult:
    limited: bool
    count: int
    retry_after: int = 0


class RateLimitStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """Bump the counter for ``key``; return (count, seconds until reset)."""
        ...

    def clear(self, key: str) -> None:
        ...


@dataclass
class InMemoryRateLimitStore:
    clock: Callable[[], float] = time.time
    buckets: dict[str, tuple[int, float]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self.buckets.items() if reset_at <= now]
        for key in expired:
            del self.buckets[key]

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        with self._lock:
            now = self.clock()
            self._cleanup(now)
            count, reset_at = self.buckets.get(key, (0, now + window_seconds))
            count += 1
            self.buckets[key] = (count, reset_at)
            return count, reset_at - now

    def clear(self, key: str) -> None:
        with self._lock:
            self.buckets.pop(key, None)


@dataclass
class RedisRateLimitStore:
    """Redis-backed counters using INCR + EXPIRE in one pipeline."""

    url: str
    key_prefix: str = "spins:ratelimit"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        full_key = f"{self.key_prefix}:{key}"
        try:
            pipe = self.client.pipeline()
            pipe.incr(full_key)
            pipe.expire(full_key, window_seconds, nx=True)
            pipe.ttl(full_key)
            count, _, ttl = pipe.execute()
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect for the next call.
            self.client = redis.Redis.from_url(self.url)
            raise
        if ttl is None or ttl < 0:
            ttl = window_seconds
        return int(count), float(ttl)

    def clear(self, key: str) -> None:
        self.client.delete(f"{self.key_prefix}:{key}")


class RateLimiter:
    def __init__(self, store: RateLimitStore):
        self.store = store

    def hit(self, scope: str, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        count, remaining = self.store.increment(f"{scope}:{key}", window_seconds)
        if count > limit:
            return RateLimitResult(
                limited=True, count=count, retry_after=max(1, math.ceil(remaining))
            )
        return RateLimitResult(limited=False, count=count)

    def reset(self, scope: str, key: str) -> None:
        self.store.clear(f"{scope}:{key}")


def build_rate_limiter(redis_url: Optional[str], key_prefix: str) -> RateLimiter:
    if redis_url:
        return RateLimiter(RedisRateLimitStore(url=redis_url, key_prefix=key_prefix))
    return RateLimiter(InMemoryRateLimitStore())
