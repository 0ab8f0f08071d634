"""
Token-bucket rate limiting for externally triggered batch jobs.

Two backends share one interface:

* ``TokenBucketLimiter`` keeps buckets in process memory. It does not survive
  restarts and is not shared between instances, so it only throttles
  correctly for a single worker.
* ``RedisTokenBucketLimiter`` keeps each bucket in a Redis hash updated by an
  atomic Lua script, with a TTL so idle callers expire.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketLimiter:
    """In-memory token bucket keyed by caller identity."""

    backend = "memory"

    def __init__(
        self,
        capacity: int = 30,
        refill_per_second: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._full_after = capacity / refill_per_second
        self._last_prune = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def _prune(self, now: float) -> None:
        # A bucket that has refilled to capacity is indistinguishable from a new one.
        idle = [
            key
            for key, bucket in self._buckets.items()
            if bucket.tokens + max(0.0, now - bucket.updated_at) * self.refill_per_second >= self.capacity
        ]
        for key in idle:
            del self._buckets[key]
        self._last_prune = now

    def _refill(self, key: str) -> _Bucket:
        now = self._clock()
        if now - self._last_prune >= self._full_after:
            self._prune(now)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=float(self.capacity), updated_at=now)
            self._buckets[key] = bucket
            return bucket
        elapsed = max(0.0, now - bucket.updated_at)
        bucket.tokens = min(float(self.capacity), bucket.tokens + elapsed * self.refill_per_second)
        bucket.updated_at = now
        return bucket

    def _retry_after(self, tokens: float) -> int:
        return max(1, math.ceil((1.0 - tokens) / self.refill_per_second))

    def take(self, key: str) -> tuple[bool, str | None]:
        bucket = self._refill(key)
        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return True, None
        return False, f"Rate limit exceeded. Try again in {self._retry_after(bucket.tokens)}s"

    def remaining(self, key: str) -> int:
        return int(self._refill(key).tokens)

    async def is_allowed(self, key: str) -> tuple[bool, str | None]:
        return self.take(key)

    async def get_remaining(self, key: str) -> int:
        return self.remaining(key)

    async def close(self) -> None:
        self._buckets.clear()


_TOKEN_BUCKET_SCRIPT = """
local capacity = tonumber(ARGV[1])
local refill = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])
local cost = tonumber(ARGV[5])

local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1])
local ts = tonumber(state[2])
if tokens == nil or ts == nil then
  tokens = capacity
  ts = now
end

tokens = math.min(capacity, tokens + math.max(0, now - ts) * refill)
local allowed = 0
if tokens >= cost then
  tokens = tokens - cost
  allowed = 1
end

redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(now))
redis.call('EXPIRE', KEYS[1], ttl)
return {allowed, tostring(tokens)}
"""


class RedisTokenBucketLimiter:
    """Token bucket shared across instances through Redis.

    If Redis errors at call time the request is checked against a local
    in-memory bucket instead, so an outage degrades throttling rather than
    failing every job request.
    """

    backend = "redis"

    def __init__(
        self,
        client: redis.Redis,
        capacity: int = 30,
        refill_per_second: float = 0.5,
        ttl_seconds: int = 3600,
        prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._clock = clock
        self._script = client.register_script(_TOKEN_BUCKET_SCRIPT)
        self._fallback = TokenBucketLimiter(capacity, refill_per_second)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def _call(self, key: str, cost: int) -> tuple[int, float]:
        allowed, tokens = await self._script(
            keys=[self._key(key)],
            args=[self.capacity, self.refill_per_second, self._clock(), self.ttl_seconds, cost],
        )
        return int(allowed), float(tokens)

    async def is_allowed(self, key: str) -> tuple[bool, str | None]:
        try:
            allowed, tokens = await self._call(key, 1)
        except redis.RedisError as exc:
            logger.error(f"Redis rate limit error: {exc}")
            return self._fallback.take(key)
        if allowed:
            return True, None
        wait = max(1, math.ceil((1.0 - tokens) / self.refill_per_second))
        return False, f"Rate limit exceeded. Try again in {wait}s"

    async def get_remaining(self, key: str) -> int:
        try:
            _, tokens = await self._call(key, 0)
        except redis.RedisError as exc:
            logger.error(f"Redis rate limit error: {exc}")
            return self._fallback.remaining(key)
        return int(tokens)

    async def close(self) -> None:
        await self.client.aclose()


RateLimiter = TokenBucketLimiter | RedisTokenBucketLimiter


async def build_rate_limiter(settings: Settings | None = None) -> RateLimiter:
    """Limiter for the configured backend; falls back to memory when Redis is unreachable."""
    settings = settings or get_settings()
    if settings.rate_limit_backend.lower() == "redis":
        client = redis.from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=5)
        try:
            await client.ping()
        except (redis.RedisError, OSError) as exc:
            logger.warning(f"Redis connection failed: {exc}. Using in-memory rate limiter")
            await client.aclose()
        else:
            logger.info("Redis rate limiter connected")
            return RedisTokenBucketLimiter(
                client,
                capacity=settings.rate_limit_capacity,
                refill_per_second=settings.rate_limit_refill_per_second,
                ttl_seconds=settings.redis_ttl_buckets,
            )
    elif settings.rate_limit_backend.lower() != "memory":
        logger.warning("Unknown rate limit backend %r, using memory", settings.rate_limit_backend)
    return TokenBucketLimiter(
        capacity=settings.rate_limit_capacity,
        refill_per_second=settings.rate_limit_refill_per_second,
    )
