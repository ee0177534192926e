"""In-memory storage backends.

Suitable for a single process and for tests. Counter updates are serialized
per tenant with an asyncio.Lock, so concurrent admissions for one tenant never
observe each other's intermediate state.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime

from conduit.logging import get_logger
from conduit.models import (
    ExecutionLogEntry,
    PlanLimits,
    QuotaCheck,
    QuotaGuard,
    UsageCounter,
    UsageRecord,
    Webhook,
    WebhookStats,
)
from conduit.models.webhook import EndpointSummary

from .base import (
    DAILY_COUNTERS,
    ExecutionLogStore,
    UsageStore,
    WebhookStore,
    build_record,
    counter_period,
    evaluate_guards,
    oldest_retained_period,
)

logger = get_logger(__name__)


class InMemoryUsageStore(UsageStore):
    """Usage counters kept in a dict keyed by (counter, period).

    Periods past their retention are dropped on each write, matching the
    key expiry of the Redis store.
    """

    def __init__(self, default_plan: str = "citizen") -> None:
        self.default_plan = default_plan
        self._counters: dict[str, dict[tuple[UsageCounter, str], int]] = defaultdict(dict)
        self._limits: dict[str, PlanLimits] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _read(self, tenant_id: str, counter: UsageCounter, at: datetime | date) -> int:
        return self._counters[tenant_id].get((counter, counter_period(counter, at)), 0)

    def _prune(self, tenant_id: str, at: datetime) -> None:
        counters = self._counters[tenant_id]
        cutoffs = {counter: oldest_retained_period(counter.scope, at) for counter in UsageCounter}
        for counter, period in list(counters):
            cutoff = cutoffs[counter]
            if cutoff is not None and period < cutoff:
                del counters[(counter, period)]

    async def check_and_increment(
        self,
        tenant_id: str,
        guards: Sequence[QuotaGuard],
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> QuotaCheck:
        async with self._locks[tenant_id]:
            values = {
                guard.counter: self._read(tenant_id, guard.counter, at)
                for guard in guards
                if guard.counter is not None
            }
            violation = evaluate_guards(values, guards)
            if violation is not None:
                guard, current = violation
                return QuotaCheck(allowed=False, violated=guard, current=current)

            self._prune(tenant_id, at)
            counters = self._counters[tenant_id]
            updated: dict[UsageCounter, int] = {}
            for counter, amount in increments.items():
                key = (counter, counter_period(counter, at))
                counters[key] = counters.get(key, 0) + amount
                updated[counter] = counters[key]
            return QuotaCheck(allowed=True, updated=updated)

    async def release(
        self,
        tenant_id: str,
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> None:
        async with self._locks[tenant_id]:
            counters = self._counters[tenant_id]
            for counter, amount in increments.items():
                key = (counter, counter_period(counter, at))
                counters[key] = max(0, counters.get(key, 0) - amount)

    async def get_usage(self, tenant_id: str, at: datetime) -> UsageRecord:
        values = {counter: self._read(tenant_id, counter, at) for counter in UsageCounter}
        return build_record(tenant_id, values, at)

    async def get_daily_usage(self, tenant_id: str, day: date) -> dict[UsageCounter, int]:
        return {counter: self._read(tenant_id, counter, day) for counter in DAILY_COUNTERS}

    async def get_plan_limits(self, tenant_id: str) -> PlanLimits:
        limits = self._limits.get(tenant_id)
        if limits is None:
            return PlanLimits.for_plan(self.default_plan)
        return limits

    async def set_plan_limits(self, tenant_id: str, limits: PlanLimits) -> None:
        self._limits[tenant_id] = limits


class InMemoryWebhookStore(WebhookStore):
    """Webhooks and endpoints kept in dicts."""

    def __init__(self) -> None:
        self._webhooks: dict[str, Webhook] = {}
        self._endpoints: dict[str, EndpointSummary] = {}
        self._stats_lock = asyncio.Lock()

    async def get_webhook(self, webhook_id: str) -> Webhook | None:
        return self._webhooks.get(webhook_id)

    async def save_webhook(self, webhook: Webhook) -> Webhook:
        self._webhooks[webhook.id] = webhook
        logger.debug("Webhook saved", webhook_id=webhook.id, endpoint_id=webhook.endpoint_id)
        return webhook

    async def list_active_for_event(self, endpoint_id: str, event_name: str) -> list[Webhook]:
        return [
            webhook
            for webhook in self._webhooks.values()
            if webhook.endpoint_id == endpoint_id
            and webhook.is_active
            and webhook.listens_to(event_name)
        ]

    async def update_stats(
        self,
        webhook_id: str,
        updater: Callable[[WebhookStats], WebhookStats],
    ) -> WebhookStats | None:
        async with self._stats_lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return None
            stats = updater(webhook.stats)
            self._webhooks[webhook_id] = webhook.model_copy(update={"stats": stats})
            return stats

    async def get_endpoint(self, endpoint_id: str) -> EndpointSummary | None:
        return self._endpoints.get(endpoint_id)

    async def save_endpoint(self, endpoint: EndpointSummary) -> EndpointSummary:
        self._endpoints[endpoint.id] = endpoint
        return endpoint


class InMemoryExecutionLogStore(ExecutionLogStore):
    """Execution log kept as per-webhook lists in append order."""

    def __init__(self) -> None:
        self._entries: dict[str, list[ExecutionLogEntry]] = defaultdict(list)

    async def append(self, entry: ExecutionLogEntry) -> None:
        self._entries[entry.webhook_id].append(entry)

    async def list_for_webhook(
        self,
        webhook_id: str,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        entries = self._entries.get(webhook_id, [])
        return list(entries[-limit:]) if limit > 0 else []


__all__ = [
    "InMemoryExecutionLogStore",
    "InMemoryUsageStore",
    "InMemoryWebhookStore",
]
