"""Tests for hourly sliding-window rate limiting."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError, ResponseError

from conduit.exceptions import RateLimitError, StorageError
from conduit.rate_limit import (
    HourlyRateLimiter,
    InMemoryRateLimitStore,
    RedisRateLimitStore,
    rate_limit_key,
)


class FakeClock:
    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def limiter(store, fake_clock) -> HourlyRateLimiter:
    return HourlyRateLimiter(store, limit=3, window_seconds=3600, clock=fake_clock)


class TestRateLimitKey:
    def test_tenant_key(self) -> None:
        assert rate_limit_key("ten_1", "203.0.113.9") == "user:ten_1"

    def test_ip_key(self) -> None:
        assert rate_limit_key(None, "203.0.113.9") == "ip:203.0.113.9"
        assert rate_limit_key("", None) == "ip:unknown"

    def test_namespaces_do_not_collide(self) -> None:
        """A tenant id that looks like an IP never shares a bucket with that IP."""
        assert rate_limit_key("1.2.3.4", None) != rate_limit_key(None, "1.2.3.4")


class TestHourlyRateLimiter:
    """Tests for the in-memory sliding window."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, limiter) -> None:
        remaining = [(await limiter.check("user:a")).remaining for _ in range(3)]
        assert remaining == [2, 1, 0]

        with pytest.raises(RateLimitError) as exc_info:
            await limiter.check("user:a")
        assert exc_info.value.info.remaining == 0
        assert exc_info.value.info.limit == 3

    @pytest.mark.asyncio
    async def test_retry_after_counts_down_from_oldest(self, limiter, fake_clock) -> None:
        for _ in range(3):
            await limiter.check("user:a")
            fake_clock.now += 60

        with pytest.raises(RateLimitError) as exc_info:
            await limiter.check("user:a")

        # Oldest request at 10_000, now 10_180
        assert exc_info.value.retry_after == 3600 - 180
        assert exc_info.value.info.reset_at == 10_000 + 3600

    @pytest.mark.asyncio
    async def test_window_slides(self, limiter, fake_clock) -> None:
        for _ in range(3):
            await limiter.check("user:a")

        fake_clock.now += 3600
        info = await limiter.check("user:a")

        assert info.remaining == 2

    @pytest.mark.asyncio
    async def test_denied_requests_are_not_recorded(self, limiter, fake_clock) -> None:
        for _ in range(3):
            await limiter.check("user:a")
        for _ in range(5):
            with pytest.raises(RateLimitError):
                await limiter.check("user:a")

        fake_clock.now += 3600
        assert (await limiter.check("user:a")).remaining == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter) -> None:
        for _ in range(3):
            await limiter.check("user:a")
        info = await limiter.check("ip:198.51.100.1")
        assert info.remaining == 2

    @pytest.mark.asyncio
    async def test_concurrent_checks_respect_limit(self, store, fake_clock) -> None:
        limiter = HourlyRateLimiter(store, limit=100, clock=fake_clock)

        results = await asyncio.gather(
            *(limiter.check("user:burst") for _ in range(150)), return_exceptions=True
        )

        assert sum(1 for r in results if not isinstance(r, BaseException)) == 100
        assert sum(1 for r in results if isinstance(r, RateLimitError)) == 50


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_removes_idle_keys(self, limiter, store, fake_clock) -> None:
        await limiter.check("user:old")
        fake_clock.now += 3000
        await limiter.check("user:recent")
        fake_clock.now += 700

        removed = await limiter.sweep()

        assert removed == 1
        assert store.tracked_keys() == ["user:recent"]

    @pytest.mark.asyncio
    async def test_background_sweeper_start_stop(self, store, fake_clock) -> None:
        limiter = HourlyRateLimiter(
            store, limit=3, window_seconds=60, sweep_interval_seconds=0.01, clock=fake_clock
        )
        await limiter.check("user:a")
        fake_clock.now += 120

        limiter.start()
        for _ in range(100):
            if not store.tracked_keys():
                break
            await asyncio.sleep(0.01)
        await limiter.stop()

        assert store.tracked_keys() == []
        assert limiter._sweeper is None


class TestRedisRateLimitStore:
    """Tests for the Redis sliding window with a mocked client."""

    @pytest.fixture
    def client(self) -> AsyncMock:
        client = AsyncMock()
        client.script_load.return_value = "sha_rl"
        return client

    @pytest.mark.asyncio
    async def test_allowed_hit(self, client) -> None:
        client.evalsha.return_value = [1, 4, "9000.5"]
        store = RedisRateLimitStore(client, key_prefix="test:")

        hit = await store.hit("user:a", 100, 10_000.0, 3600)

        assert hit.allowed
        assert hit.count == 4
        assert hit.oldest == 9000.5
        args = client.evalsha.call_args.args
        assert args[0] == "sha_rl"
        assert args[1] == 1
        assert args[2] == "test:ratelimit:user:a"
        assert args[3:6] == (100, 10_000.0 - 3600, 10_000.0)
        assert args[7] == 3610

    @pytest.mark.asyncio
    async def test_denied_hit(self, client) -> None:
        client.evalsha.return_value = [0, 100, "7000"]
        store = RedisRateLimitStore(client)

        limiter = HourlyRateLimiter(store, limit=100, clock=lambda: 10_000.0)
        with pytest.raises(RateLimitError) as exc_info:
            await limiter.check("user:a")

        assert exc_info.value.retry_after == 600

    @pytest.mark.asyncio
    async def test_reloads_flushed_script(self, client) -> None:
        client.evalsha.side_effect = [NoScriptError("NOSCRIPT"), [1, 0, "1.0"]]
        store = RedisRateLimitStore(client)

        hit = await store.hit("user:a", 10, 1.0, 3600)

        assert hit.allowed
        assert client.script_load.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_errors_retried_then_storage_error(self, client) -> None:
        client.evalsha.side_effect = RedisConnectionError("Connection refused")
        store = RedisRateLimitStore(client)

        with pytest.raises(StorageError):
            await store.hit("user:a", 10, 1.0, 3600)

        assert client.evalsha.await_count == 3

    @pytest.mark.asyncio
    async def test_script_error_not_retried(self, client) -> None:
        client.evalsha.side_effect = ResponseError("WRONGTYPE")
        limiter = HourlyRateLimiter(RedisRateLimitStore(client), clock=lambda: 1.0)

        with pytest.raises(StorageError):
            await limiter.check("user:a")

        assert client.evalsha.await_count == 1

    @pytest.mark.asyncio
    async def test_close(self, client) -> None:
        await RedisRateLimitStore(client).close()
        client.aclose.assert_awaited_once()
