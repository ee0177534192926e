"""Tests for the Redis usage store with a mocked client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError, ResponseError

from conduit.exceptions import UsageStoreUnavailableError
from conduit.models import CounterScope, PlanLimits, QuotaGuard, UsageCounter
from conduit.storage import RedisUsageStore
from conduit.storage.base import PERIOD_TTL_SECONDS
from helpers import FIXED_NOW


@pytest.fixture
def client() -> AsyncMock:
    client = AsyncMock()
    client.script_load.return_value = "sha_usage"
    return client


@pytest.fixture
def store(client) -> RedisUsageStore:
    return RedisUsageStore(client, key_prefix="test:")


GUARDS = [
    QuotaGuard(
        limit_type="requests", counter=UsageCounter.REQUESTS_THIS_MONTH, amount=1, limit=10
    ),
    QuotaGuard(limit_type="payload_size", amount=64, limit=1024),
]

INCREMENTS = {
    UsageCounter.REQUESTS_THIS_MONTH: 1,
    UsageCounter.REQUESTS_TODAY: 1,
    UsageCounter.TOTAL_STORAGE_BYTES: 64,
}


class TestCheckAndIncrement:
    """Tests for the scripted atomic update."""

    @pytest.mark.asyncio
    async def test_script_arguments(self, store, client) -> None:
        client.evalsha.return_value = [1, 4, 2, 640]

        await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        args = client.evalsha.call_args.args
        assert args[0] == "sha_usage"
        assert args[1] == 3
        assert args[2:5] == (
            "test:usage:ten_1:requests_this_month:2026-10",
            "test:usage:ten_1:requests_today:2026-10-19",
            "test:usage:ten_1:total_storage_bytes:lifetime",
        )
        update = json.loads(args[5])
        assert update["guards"] == [
            {"key": 1, "amount": 1, "limit": 10},
            {"key": 0, "amount": 64, "limit": 1024},
        ]
        month_ttl = PERIOD_TTL_SECONDS[CounterScope.MONTH]
        day_ttl = PERIOD_TTL_SECONDS[CounterScope.DAY]
        assert update["increments"] == [
            {"key": 1, "amount": 1, "ttl": month_ttl},
            {"key": 2, "amount": 1, "ttl": day_ttl},
            {"key": 3, "amount": 64, "ttl": 0},
        ]

    @pytest.mark.asyncio
    async def test_allowed_returns_updated_values(self, store, client) -> None:
        client.evalsha.return_value = [1, 4, 2, 640]

        check = await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        assert check.allowed
        assert check.updated == {
            UsageCounter.REQUESTS_THIS_MONTH: 4,
            UsageCounter.REQUESTS_TODAY: 2,
            UsageCounter.TOTAL_STORAGE_BYTES: 640,
        }

    @pytest.mark.asyncio
    async def test_counter_guard_denial(self, store, client) -> None:
        client.evalsha.return_value = [0, 1, 10]

        check = await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        assert not check.allowed
        assert check.violated == GUARDS[0]
        assert check.current == 10

    @pytest.mark.asyncio
    async def test_static_guard_denial_reports_amount(self, store, client) -> None:
        client.evalsha.return_value = [0, 2, 0]

        check = await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        assert check.violated == GUARDS[1]
        assert check.current == 64

    @pytest.mark.asyncio
    async def test_reloads_flushed_script(self, store, client) -> None:
        client.evalsha.side_effect = [NoScriptError("NOSCRIPT"), [1, 1, 1, 64]]

        check = await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        assert check.allowed
        assert client.script_load.await_count == 2

    @pytest.mark.asyncio
    async def test_script_sha_cached(self, store, client) -> None:
        client.evalsha.return_value = [1, 1, 1, 64]
        await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)
        await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)
        assert client.script_load.await_count == 1

    @pytest.mark.asyncio
    async def test_redis_error_means_unavailable(self, store, client) -> None:
        client.evalsha.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(UsageStoreUnavailableError):
            await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        assert client.evalsha.await_count == 1

    @pytest.mark.asyncio
    async def test_connection_errors_retried_then_unavailable(self, store, client) -> None:
        client.evalsha.side_effect = RedisConnectionError("Connection refused")

        with pytest.raises(UsageStoreUnavailableError):
            await store.check_and_increment("ten_1", GUARDS, INCREMENTS, FIXED_NOW)

        assert client.evalsha.await_count == 3


class TestReads:
    @pytest.mark.asyncio
    async def test_get_usage(self, store, client) -> None:
        client.mget.return_value = ["3", None, None, "7", "512", None, None, "2048", None, None]

        usage = await store.get_usage("ten_1", FIXED_NOW)

        keys = client.mget.call_args.args[0]
        assert len(keys) == len(UsageCounter)
        assert keys[0] == "test:usage:ten_1:requests_today:2026-10-19"
        assert usage.requests_today == 3
        assert usage.requests_this_month == 7
        assert usage.data_bytes_this_month == 512
        assert usage.total_storage_bytes == 2048
        assert usage.webhook_calls_this_month == 0

    @pytest.mark.asyncio
    async def test_get_daily_usage(self, store, client) -> None:
        client.mget.return_value = ["4", "400", "1"]

        daily = await store.get_daily_usage("ten_1", FIXED_NOW.date())

        assert daily == {
            UsageCounter.REQUESTS_TODAY: 4,
            UsageCounter.DATA_BYTES_TODAY: 400,
            UsageCounter.WEBHOOK_CALLS_TODAY: 1,
        }

    @pytest.mark.asyncio
    async def test_plan_limits_round_trip(self, store, client) -> None:
        client.get.return_value = None
        assert (await store.get_plan_limits("ten_1")).plan_name == "citizen"

        limits = PlanLimits.for_plan("developer")
        await store.set_plan_limits("ten_1", limits)
        key, raw = client.set.call_args.args
        assert key == "test:plan:ten_1"

        client.get.return_value = raw
        assert await store.get_plan_limits("ten_1") == limits

    @pytest.mark.asyncio
    async def test_plan_read_failure(self, store, client) -> None:
        client.get.side_effect = RedisConnectionError("down")
        with pytest.raises(UsageStoreUnavailableError):
            await store.get_plan_limits("ten_1")
        assert client.get.await_count == 3

    @pytest.mark.asyncio
    async def test_plan_read_recovers_from_transient_error(self, store, client) -> None:
        client.get.side_effect = [RedisConnectionError("reset"), None]
        assert (await store.get_plan_limits("ten_1")).plan_name == "citizen"

    @pytest.mark.asyncio
    async def test_plan_write_retried_then_unavailable(self, store, client) -> None:
        client.set.side_effect = RedisConnectionError("down")
        with pytest.raises(UsageStoreUnavailableError):
            await store.set_plan_limits("ten_1", PlanLimits())
        assert client.set.await_count == 3


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_runs_script(self, store, client) -> None:
        client.evalsha.return_value = 1

        await store.release("ten_1", {UsageCounter.REQUESTS_THIS_MONTH: 1}, FIXED_NOW)

        args = client.evalsha.call_args.args
        assert args[1:] == (1, "test:usage:ten_1:requests_this_month:2026-10", 1)

    @pytest.mark.asyncio
    async def test_release_nothing(self, store, client) -> None:
        await store.release("ten_1", {}, FIXED_NOW)
        client.evalsha.assert_not_called()

    @pytest.mark.asyncio
    async def test_close(self, store, client) -> None:
        await store.close()
        client.aclose.assert_awaited_once()
