"""Optimistic usage store for backends with versioned rows.

Backends that offer compare-and-set on a row version (but no server-side
scripting) implement ``_load`` and ``_store_if_version``. Each update reads
the tenant row, evaluates guards locally and writes back only if the version
is unchanged. Lost races are retried a bounded number of times; a tenant
that keeps losing surfaces as UsageConflictError, never as a lost update.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping, Sequence
from datetime import date, datetime

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from conduit.exceptions import UsageConflictError
from conduit.logging import get_logger
from conduit.models import PlanLimits, QuotaCheck, QuotaGuard, UsageCounter, UsageRecord

from .base import DAILY_COUNTERS, UsageStore, build_record, counter_period, evaluate_guards

logger = get_logger(__name__)

CounterKey = tuple[UsageCounter, str]


class VersionConflict(Exception):
    """Row changed between read and write."""


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.debug("Usage row version conflict, retrying", attempt=retry_state.attempt_number)


class OptimisticUsageStore(UsageStore):
    """Compare-and-set usage store with a bounded retry loop."""

    def __init__(self, max_attempts: int = 5, default_plan: str = "citizen") -> None:
        self.max_attempts = max_attempts
        self.default_plan = default_plan

    @abstractmethod
    async def _load(self, tenant_id: str) -> tuple[dict[CounterKey, int], int]:
        """Read a tenant's counters and their row version."""
        ...

    @abstractmethod
    async def _store_if_version(
        self,
        tenant_id: str,
        values: dict[CounterKey, int],
        expected_version: int,
    ) -> bool:
        """Write counters if the row version still equals ``expected_version``."""
        ...

    async def _update(
        self,
        tenant_id: str,
        guards: Sequence[QuotaGuard],
        deltas: Mapping[UsageCounter, int],
        at: datetime,
    ) -> QuotaCheck:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random(0, 0.005),
            retry=retry_if_exception_type(VersionConflict),
            before_sleep=_log_conflict,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._update_once(tenant_id, guards, deltas, at)
        except VersionConflict as e:
            logger.warning(
                "Usage update abandoned after repeated conflicts",
                tenant_id=tenant_id,
                attempts=self.max_attempts,
            )
            raise UsageConflictError(
                f"Usage update for tenant {tenant_id} conflicted {self.max_attempts} times"
            ) from e
        raise AssertionError("unreachable")  # pragma: no cover

    async def _update_once(
        self,
        tenant_id: str,
        guards: Sequence[QuotaGuard],
        deltas: Mapping[UsageCounter, int],
        at: datetime,
    ) -> QuotaCheck:
        snapshot, version = await self._load(tenant_id)
        current = {
            guard.counter: snapshot.get((guard.counter, counter_period(guard.counter, at)), 0)
            for guard in guards
            if guard.counter is not None
        }
        violation = evaluate_guards(current, guards)
        if violation is not None:
            guard, value = violation
            return QuotaCheck(allowed=False, violated=guard, current=value)

        values = dict(snapshot)
        updated: dict[UsageCounter, int] = {}
        for counter, delta in deltas.items():
            key = (counter, counter_period(counter, at))
            values[key] = max(0, values.get(key, 0) + delta)
            updated[counter] = values[key]

        if not await self._store_if_version(tenant_id, values, version):
            raise VersionConflict(tenant_id)
        return QuotaCheck(allowed=True, updated=updated)

    async def check_and_increment(
        self,
        tenant_id: str,
        guards: Sequence[QuotaGuard],
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> QuotaCheck:
        return await self._update(tenant_id, guards, increments, at)

    async def release(
        self,
        tenant_id: str,
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> None:
        await self._update(
            tenant_id, (), {counter: -amount for counter, amount in increments.items()}, at
        )

    async def get_usage(self, tenant_id: str, at: datetime) -> UsageRecord:
        snapshot, _ = await self._load(tenant_id)
        values = {
            counter: snapshot.get((counter, counter_period(counter, at)), 0)
            for counter in UsageCounter
        }
        return build_record(tenant_id, values, at)

    async def get_daily_usage(self, tenant_id: str, day: date) -> dict[UsageCounter, int]:
        snapshot, _ = await self._load(tenant_id)
        return {
            counter: snapshot.get((counter, counter_period(counter, day)), 0)
            for counter in DAILY_COUNTERS
        }


class VersionedMemoryUsageStore(OptimisticUsageStore):
    """Optimistic store over in-process versioned rows.

    Mirrors what a document database with row versions offers. The awaits
    between read and write leave room for interleaving, which is exactly
    what the compare-and-set loop resolves.
    """

    def __init__(self, max_attempts: int = 5, default_plan: str = "citizen") -> None:
        super().__init__(max_attempts=max_attempts, default_plan=default_plan)
        self._rows: dict[str, tuple[dict[CounterKey, int], int]] = {}
        self._limits: dict[str, PlanLimits] = {}

    async def _load(self, tenant_id: str) -> tuple[dict[CounterKey, int], int]:
        values, version = self._rows.get(tenant_id, ({}, 0))
        return dict(values), version

    async def _store_if_version(
        self,
        tenant_id: str,
        values: dict[CounterKey, int],
        expected_version: int,
    ) -> bool:
        _, version = self._rows.get(tenant_id, ({}, 0))
        if version != expected_version:
            return False
        self._rows[tenant_id] = (dict(values), version + 1)
        return True

    async def get_plan_limits(self, tenant_id: str) -> PlanLimits:
        limits = self._limits.get(tenant_id)
        if limits is None:
            return PlanLimits.for_plan(self.default_plan)
        return limits

    async def set_plan_limits(self, tenant_id: str, limits: PlanLimits) -> None:
        self._limits[tenant_id] = limits


__all__ = [
    "OptimisticUsageStore",
    "VersionConflict",
    "VersionedMemoryUsageStore",
]
