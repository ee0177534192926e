"""Hourly sliding-window rate limiting.

Provides:
- A store abstraction holding recent request timestamps per key
- In-memory store with per-key locks and a periodic sweep of idle keys
- Redis store using an atomic Lua script over a sorted set per key
- HourlyRateLimiter, which turns store answers into RateLimitInfo or RateLimitError

Keys are ``user:<tenant_id>`` for identified callers and ``ip:<address>``
otherwise, so the two namespaces never collide.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from collections.abc import Callable
from typing import Any, NamedTuple

from redis.asyncio import Redis
from redis.exceptions import NoScriptError, RedisError

from conduit.exceptions import RateLimitError, StorageError
from conduit.logging import get_logger
from conduit.models import RateLimitInfo
from conduit.storage.retry import redis_retry

logger = get_logger(__name__)


def rate_limit_key(tenant_id: str | None, client_ip: str | None) -> str:
    """Key the hourly limiter tracks a caller under."""
    if tenant_id:
        return f"user:{tenant_id}"
    return f"ip:{client_ip or 'unknown'}"


class WindowHit(NamedTuple):
    """Store answer for one request.

    Attributes:
        allowed: Whether the request was recorded.
        count: Requests in the window before this one.
        oldest: Timestamp of the oldest request still in the window.
    """

    allowed: bool
    count: int
    oldest: float | None


class RateLimitStore(ABC):
    """Per-key record of request timestamps within a sliding window."""

    @abstractmethod
    async def hit(self, key: str, limit: int, now: float, window_seconds: int) -> WindowHit:
        """Prune expired entries, then record ``now`` if under ``limit``.

        Pruning, counting and recording happen atomically per key.
        """
        ...

    @abstractmethod
    async def sweep(self, now: float, window_seconds: int) -> int:
        """Drop keys with no requests left in the window.

        Returns:
            Number of keys removed.
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. No-op by default."""


class InMemoryRateLimitStore(RateLimitStore):
    """In-memory sliding window.

    Not suitable for multi-instance deployments - use RedisRateLimitStore instead.
    """

    def __init__(self) -> None:
        self._requests: dict[str, deque[float]] = defaultdict(deque)
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks[key]

    async def hit(self, key: str, limit: int, now: float, window_seconds: int) -> WindowHit:
        window_start = now - window_seconds
        with self._lock_for(key):
            with self._registry_lock:
                timestamps = self._requests[key]
            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()

            count = len(timestamps)
            if count >= limit:
                return WindowHit(False, count, timestamps[0] if timestamps else None)

            timestamps.append(now)
            return WindowHit(True, count, timestamps[0])

    async def sweep(self, now: float, window_seconds: int) -> int:
        window_start = now - window_seconds
        removed = 0
        with self._registry_lock:
            keys = list(self._requests)
        for key in keys:
            with self._lock_for(key), self._registry_lock:
                timestamps = self._requests.get(key)
                if timestamps is None:
                    continue
                while timestamps and timestamps[0] <= window_start:
                    timestamps.popleft()
                if not timestamps:
                    del self._requests[key]
                    self._locks.pop(key, None)
                    removed += 1
        return removed

    def tracked_keys(self) -> list[str]:
        with self._registry_lock:
            return list(self._requests)


class RedisRateLimitStore(RateLimitStore):
    """Redis sliding window using an atomic Lua script.

    Uses a sorted set per key with timestamps as scores. Keys expire shortly
    after the window closes, so no sweep is needed.
    """

    # Lua script for atomic rate limit check-and-increment
    _RATE_LIMIT_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_start = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local member = ARGV[4]
    local ttl = tonumber(ARGV[5])

    -- Remove entries outside the window
    redis.call('ZREMRANGEBYSCORE', key, 0, window_start)

    -- Count current entries
    local count = redis.call('ZCARD', key)

    -- Check if limit exceeded BEFORE adding
    if count >= limit then
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        return {0, count, oldest[2] or ''}
    end

    -- Add the new request atomically
    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    return {1, count, oldest[2]}
    """

    def __init__(self, client: Redis, key_prefix: str = "conduit:") -> None:
        self._redis = client
        self._key_prefix = f"{key_prefix}ratelimit:"
        self._sha: str | None = None

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "conduit:") -> RedisRateLimitStore:
        client = Redis.from_url(redis_url, decode_responses=True)
        logger.info("Redis rate limiter initialized", key_prefix=key_prefix)
        return cls(client, key_prefix=key_prefix)

    @redis_retry
    async def _run_script(self, redis_key: str, args: tuple[Any, ...]) -> list[Any]:
        if self._sha is None:
            self._sha = str(await self._redis.script_load(self._RATE_LIMIT_SCRIPT))
        try:
            result = await self._redis.evalsha(self._sha, 1, redis_key, *args)
        except NoScriptError:
            # Script was flushed from cache, reload it
            self._sha = str(await self._redis.script_load(self._RATE_LIMIT_SCRIPT))
            result = await self._redis.evalsha(self._sha, 1, redis_key, *args)
        return list(result)

    async def hit(self, key: str, limit: int, now: float, window_seconds: int) -> WindowHit:
        # Unique member so simultaneous requests are all counted
        member = f"{now}:{uuid.uuid4().hex}"
        args = (limit, now - window_seconds, now, member, window_seconds + 10)
        try:
            result = await self._run_script(f"{self._key_prefix}{key}", args)
        except RedisError as e:
            logger.error("Rate limit check failed", key=key, error=str(e))
            raise StorageError(f"Rate limit store unavailable: {e}") from e

        allowed, count, oldest = result
        return WindowHit(bool(int(allowed)), int(count), float(oldest) if oldest else None)

    async def sweep(self, now: float, window_seconds: int) -> int:
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


class HourlyRateLimiter:
    """Sliding-window limiter of ``limit`` requests per ``window_seconds``.

    Example:
        ```python
        limiter = HourlyRateLimiter(InMemoryRateLimitStore(), limit=100)
        info = await limiter.check(rate_limit_key("ten_123", None))
        ```
    """

    def __init__(
        self,
        store: RateLimitStore,
        limit: int = 100,
        window_seconds: int = 3600,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._sweeper: asyncio.Task[None] | None = None

    async def check(self, key: str) -> RateLimitInfo:
        """Record a request for ``key`` if it is under the limit.

        Returns:
            RateLimitInfo with the remaining budget.

        Raises:
            RateLimitError: If the key already made ``limit`` requests in the window.
        """
        now = self._clock()
        hit = await self.store.hit(key, self.limit, now, self.window_seconds)
        oldest = hit.oldest if hit.oldest is not None else now
        reset_at = math.ceil(oldest + self.window_seconds)

        if not hit.allowed:
            retry_after = max(1, math.ceil(oldest + self.window_seconds - now))
            info = RateLimitInfo(key=key, limit=self.limit, remaining=0, reset_at=reset_at)
            logger.warning(
                "Rate limit exceeded",
                key=key,
                limit=self.limit,
                retry_after=retry_after,
            )
            raise RateLimitError(retry_after, info=info)

        return RateLimitInfo(
            key=key,
            limit=self.limit,
            remaining=max(0, self.limit - hit.count - 1),
            reset_at=reset_at,
        )

    async def sweep(self) -> int:
        """Remove idle keys from the store."""
        removed = await self.store.sweep(self._clock(), self.window_seconds)
        if removed:
            logger.debug("Rate limit sweep", removed=removed)
        return removed

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Rate limit sweep failed", error=str(e))

    def start(self) -> None:
        """Start the background sweeper on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        """Stop the background sweeper."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def close(self) -> None:
        await self.stop()
        await self.store.close()


__all__ = [
    "HourlyRateLimiter",
    "InMemoryRateLimitStore",
    "RateLimitStore",
    "RedisRateLimitStore",
    "WindowHit",
    "rate_limit_key",
]
