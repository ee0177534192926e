"""Redis usage store.

Each counter lives in its own key, suffixed with its period:

    conduit:usage:<tenant>:requests_this_month:2026-10
    conduit:usage:<tenant>:requests_today:2026-10-19
    conduit:usage:<tenant>:total_storage_bytes:lifetime

Check-and-increment runs as a single Lua script, so guards and increments
are atomic across every application instance sharing the Redis server.
Rollover needs no write: a new period simply reads a key that does not
exist yet, and old period keys expire on their own.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import NoScriptError, RedisError

from conduit.exceptions import UsageStoreUnavailableError
from conduit.logging import get_logger
from conduit.models import (
    PlanLimits,
    QuotaCheck,
    QuotaGuard,
    UsageCounter,
    UsageRecord,
)

from .base import DAILY_COUNTERS, PERIOD_TTL_SECONDS, UsageStore, build_record, counter_period
from .retry import redis_retry

logger = get_logger(__name__)


class RedisUsageStore(UsageStore):
    """Usage counters in Redis with Lua-scripted atomic updates."""

    # ARGV[1] is a JSON document:
    #   {"guards": [{"key": <KEYS index or 0>, "amount": n, "limit": n}, ...],
    #    "increments": [{"key": <KEYS index>, "amount": n, "ttl": seconds}, ...]}
    # Returns {0, guard_index, current} on denial, {1, value, ...} on success.
    _CHECK_AND_INCREMENT_SCRIPT = """
    local update = cjson.decode(ARGV[1])

    for i, guard in ipairs(update.guards) do
        local current = 0
        if guard.key > 0 then
            current = tonumber(redis.call('GET', KEYS[guard.key]) or '0')
        end
        if current + guard.amount > guard.limit then
            return {0, i, current}
        end
    end

    local result = {1}
    for _, inc in ipairs(update.increments) do
        local value = redis.call('INCRBY', KEYS[inc.key], inc.amount)
        if inc.ttl > 0 then
            redis.call('EXPIRE', KEYS[inc.key], inc.ttl)
        end
        table.insert(result, value)
    end
    return result
    """

    _RELEASE_SCRIPT = """
    for i, key in ipairs(KEYS) do
        local value = redis.call('DECRBY', key, tonumber(ARGV[i]))
        if value < 0 then
            redis.call('SET', key, 0, 'KEEPTTL')
        end
    end
    return 1
    """

    def __init__(
        self,
        client: Redis,
        key_prefix: str = "conduit:",
        default_plan: str = "citizen",
    ) -> None:
        self._redis = client
        self._key_prefix = key_prefix
        self.default_plan = default_plan
        self._shas: dict[str, str] = {}

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        key_prefix: str = "conduit:",
        default_plan: str = "citizen",
    ) -> RedisUsageStore:
        client = Redis.from_url(redis_url, decode_responses=True)
        logger.info("Redis usage store initialized", key_prefix=key_prefix)
        return cls(client, key_prefix=key_prefix, default_plan=default_plan)

    def _counter_key(self, tenant_id: str, counter: UsageCounter, at: datetime | date) -> str:
        return f"{self._key_prefix}usage:{tenant_id}:{counter.value}:{counter_period(counter, at)}"

    def _plan_key(self, tenant_id: str) -> str:
        return f"{self._key_prefix}plan:{tenant_id}"

    @redis_retry
    async def _run_script(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        sha = self._shas.get(script)
        if sha is None:
            sha = str(await self._redis.script_load(script))
            self._shas[script] = sha
        try:
            return await self._redis.evalsha(sha, len(keys), *keys, *args)
        except NoScriptError:
            # Script was flushed from cache, reload it
            sha = str(await self._redis.script_load(script))
            self._shas[script] = sha
            return await self._redis.evalsha(sha, len(keys), *keys, *args)

    @redis_retry
    async def _mget(self, keys: Sequence[str]) -> list[Any]:
        return list(await self._redis.mget(keys))

    @redis_retry
    async def _get(self, key: str) -> Any:
        return await self._redis.get(key)

    @redis_retry
    async def _set(self, key: str, value: str) -> None:
        await self._redis.set(key, value)

    async def check_and_increment(
        self,
        tenant_id: str,
        guards: Sequence[QuotaGuard],
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> QuotaCheck:
        keys: list[str] = []
        slots: dict[str, int] = {}

        def slot(counter: UsageCounter) -> int:
            key = self._counter_key(tenant_id, counter, at)
            if key not in slots:
                keys.append(key)
                slots[key] = len(keys)
            return slots[key]

        update = {
            "guards": [
                {
                    "key": slot(guard.counter) if guard.counter is not None else 0,
                    "amount": guard.amount,
                    "limit": guard.limit,
                }
                for guard in guards
            ],
            "increments": [
                {"key": slot(counter), "amount": amount, "ttl": PERIOD_TTL_SECONDS[counter.scope]}
                for counter, amount in increments.items()
            ],
        }
        try:
            result = await self._run_script(
                self._CHECK_AND_INCREMENT_SCRIPT, keys, [json.dumps(update)]
            )
        except RedisError as e:
            logger.error("Usage check failed", tenant_id=tenant_id, error=str(e))
            raise UsageStoreUnavailableError(f"Usage store unavailable: {e}") from e

        values = [int(item) for item in result]
        if values[0] == 0:
            guard = guards[values[1] - 1]
            current = guard.amount if guard.counter is None else values[2]
            return QuotaCheck(allowed=False, violated=guard, current=current)

        updated = dict(zip(increments.keys(), values[1:], strict=True))
        return QuotaCheck(allowed=True, updated=updated)

    async def release(
        self,
        tenant_id: str,
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> None:
        if not increments:
            return
        keys = [self._counter_key(tenant_id, counter, at) for counter in increments]
        try:
            await self._run_script(self._RELEASE_SCRIPT, keys, list(increments.values()))
        except RedisError as e:
            raise UsageStoreUnavailableError(f"Usage store unavailable: {e}") from e

    async def _read(
        self, tenant_id: str, counters: Sequence[UsageCounter], at: datetime | date
    ) -> dict[UsageCounter, int]:
        keys = [self._counter_key(tenant_id, counter, at) for counter in counters]
        try:
            raw = await self._mget(keys)
        except RedisError as e:
            raise UsageStoreUnavailableError(f"Usage store unavailable: {e}") from e
        return {counter: int(value or 0) for counter, value in zip(counters, raw, strict=True)}

    async def get_usage(self, tenant_id: str, at: datetime) -> UsageRecord:
        values = await self._read(tenant_id, list(UsageCounter), at)
        return build_record(tenant_id, values, at)

    async def get_daily_usage(self, tenant_id: str, day: date) -> dict[UsageCounter, int]:
        return await self._read(tenant_id, DAILY_COUNTERS, day)

    async def get_plan_limits(self, tenant_id: str) -> PlanLimits:
        try:
            raw = await self._get(self._plan_key(tenant_id))
        except RedisError as e:
            raise UsageStoreUnavailableError(f"Usage store unavailable: {e}") from e
        if raw is None:
            return PlanLimits.for_plan(self.default_plan)
        return PlanLimits.model_validate_json(raw)

    async def set_plan_limits(self, tenant_id: str, limits: PlanLimits) -> None:
        try:
            await self._set(self._plan_key(tenant_id), limits.model_dump_json())
        except RedisError as e:
            raise UsageStoreUnavailableError(f"Usage store unavailable: {e}") from e

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = ["PERIOD_TTL_SECONDS", "RedisUsageStore"]
