"""
Rate Limiter
Fixed-window request counters. Redis holds the shared counter so every
process sees the same budget; when Redis is unreachable each process falls
back to its own in-memory buckets.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 30
DEFAULT_WINDOW_MS = 60_000


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    remaining: int
    limit: int
    reset_at: int  # ms since epoch


@dataclass
class RateLimitBucket:
    count: int
    reset_at: int


@dataclass(frozen=True)
class BucketOptions:
    name: str
    max_requests: int = DEFAULT_MAX_REQUESTS
    window_ms: int = DEFAULT_WINDOW_MS


def bucket_options(
    name: str,
    max_requests: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> BucketOptions:
    return BucketOptions(
        name=name,
        max_requests=max_requests or DEFAULT_MAX_REQUESTS,
        window_ms=window_ms or DEFAULT_WINDOW_MS,
    )


class RateLimiter:
    # Shared by every limiter in the process
    _fallback_logged = False

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        prefix: str = "clipforge:rl",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self.clock = clock
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

    def key_for(self, bucket: str, client: str) -> str:
        return f"{self.prefix}:{bucket}:{client or 'anonymous'}"

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def check(self, key: str, max_requests: int = DEFAULT_MAX_REQUESTS, window_ms: int = DEFAULT_WINDOW_MS) -> RateLimitResult:
        if self.redis is not None:
            try:
                return self._check_redis(key, max_requests, window_ms)
            except redis.RedisError as e:
                self._log_fallback(e)
        else:
            self._log_fallback(None)
        return self._check_memory(key, max_requests, window_ms)

    def check_bucket(self, options: BucketOptions, client: str) -> RateLimitResult:
        return self.check(self.key_for(options.name, client), options.max_requests, options.window_ms)

    def _check_redis(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        now = self._now_ms()
        pipe = self.redis.pipeline(transaction=True)
        # Only the first hit of a window creates the key with its expiry;
        # INCR keeps the TTL. PEXPIRE NX would need Redis 7.
        pipe.set(key, 0, px=window_ms, nx=True)
        pipe.incr(key)
        pipe.pttl(key)
        _, count, ttl = pipe.execute()

        count = int(count)
        ttl = int(ttl)
        if ttl < 0:
            ttl = window_ms
        reset_at = now + ttl

        if count > max_requests:
            return RateLimitResult(ok=False, remaining=0, limit=max_requests, reset_at=reset_at)
        return RateLimitResult(ok=True, remaining=max_requests - count, limit=max_requests, reset_at=reset_at)

    def _check_memory(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        now = self._now_ms()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.reset_at <= now:
                self._prune(now)
                bucket = RateLimitBucket(count=1, reset_at=now + window_ms)
                self._buckets[key] = bucket
                return RateLimitResult(ok=True, remaining=max_requests - 1, limit=max_requests, reset_at=bucket.reset_at)
            if bucket.count >= max_requests:
                return RateLimitResult(ok=False, remaining=0, limit=max_requests, reset_at=bucket.reset_at)
            bucket.count += 1
            return RateLimitResult(
                ok=True,
                remaining=max_requests - bucket.count,
                limit=max_requests,
                reset_at=bucket.reset_at,
            )

    def _prune(self, now: int) -> None:
        """Drop buckets whose window has ended. Caller holds the lock."""
        expired = [k for k, b in self._buckets.items() if b.reset_at <= now]
        for k in expired:
            del self._buckets[k]

    def _log_fallback(self, error: Optional[Exception]) -> None:
        if RateLimiter._fallback_logged:
            return
        RateLimiter._fallback_logged = True
        if error is None:
            logger.warning("[rate_limit] No Redis client configured, using in-memory buckets")
        else:
            logger.warning(f"[rate_limit] Redis unavailable, using in-memory buckets: {error}")
