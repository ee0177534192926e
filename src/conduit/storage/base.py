"""Storage interfaces for usage counters, webhooks and execution logs.

Usage counters are only ever changed through ``check_and_increment`` and
``release``. Each backend implements them with a true atomic primitive:
a per-tenant lock (memory), a Lua script (Redis), or a bounded
compare-and-set loop (versioned backends).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime, timedelta

from conduit.models import (
    CounterScope,
    ExecutionLogEntry,
    PlanLimits,
    QuotaCheck,
    QuotaGuard,
    UsageCounter,
    UsageRecord,
    Webhook,
    WebhookStats,
    period_key,
)
from conduit.models.webhook import EndpointSummary

DAILY_COUNTERS: tuple[UsageCounter, ...] = tuple(
    counter for counter in UsageCounter if counter.scope is CounterScope.DAY
)


# Keep daily periods long enough for a 30-day trend, monthly periods for a year
PERIOD_TTL_SECONDS: dict[CounterScope, int] = {
    CounterScope.DAY: 40 * 86400,
    CounterScope.MONTH: 400 * 86400,
    CounterScope.LIFETIME: 0,
}


def counter_period(counter: UsageCounter, at: datetime | date) -> str:
    """Period key a counter is stored under at the given time."""
    return period_key(counter.scope, at)


def oldest_retained_period(scope: CounterScope, at: datetime | date) -> str | None:
    """Earliest period key still retained at ``at``, or None if kept forever.

    Period keys sort chronologically as strings, so anything below the
    returned key has expired.
    """
    ttl = PERIOD_TTL_SECONDS[scope]
    if ttl <= 0:
        return None
    return period_key(scope, at - timedelta(seconds=ttl))


def evaluate_guards(
    values: Mapping[UsageCounter, int],
    guards: Sequence[QuotaGuard],
) -> tuple[QuotaGuard, int] | None:
    """Find the first guard that would be violated.

    Args:
        values: Current values of the guarded counters.
        guards: Guards in evaluation order.

    Returns:
        The violated guard and the value it was compared with, or None.
    """
    for guard in guards:
        if guard.counter is None:
            if guard.amount > guard.limit:
                return guard, guard.amount
            continue
        current = values.get(guard.counter, 0)
        if current + guard.amount > guard.limit:
            return guard, current
    return None


def build_record(tenant_id: str, values: Mapping[UsageCounter, int], at: datetime) -> UsageRecord:
    """Assemble a UsageRecord for the periods containing ``at``."""
    return UsageRecord(
        tenant_id=tenant_id,
        day=period_key(CounterScope.DAY, at),
        month=period_key(CounterScope.MONTH, at),
        **{counter.value: values.get(counter, 0) for counter in UsageCounter},
    )


class UsageStore(ABC):
    """Per-tenant, per-period usage counters and plan limits."""

    @abstractmethod
    async def check_and_increment(
        self,
        tenant_id: str,
        guards: Sequence[QuotaGuard],
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> QuotaCheck:
        """Evaluate guards and apply increments as one atomic step.

        Guards are evaluated in order and evaluation stops at the first
        violation. Increments are applied only if every guard holds.

        Raises:
            UsageStoreUnavailableError: If the backend cannot be reached.
        """
        ...

    @abstractmethod
    async def release(
        self,
        tenant_id: str,
        increments: Mapping[UsageCounter, int],
        at: datetime,
    ) -> None:
        """Undo increments applied by an earlier check_and_increment.

        Counters never go below zero.
        """
        ...

    @abstractmethod
    async def get_usage(self, tenant_id: str, at: datetime) -> UsageRecord:
        """Current-period counters for a tenant."""
        ...

    @abstractmethod
    async def get_daily_usage(self, tenant_id: str, day: date) -> dict[UsageCounter, int]:
        """Daily counters for a specific day."""
        ...

    @abstractmethod
    async def get_plan_limits(self, tenant_id: str) -> PlanLimits:
        """Plan limits for a tenant, falling back to the default plan."""
        ...

    @abstractmethod
    async def set_plan_limits(self, tenant_id: str, limits: PlanLimits) -> None:
        """Assign plan limits to a tenant."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. No-op by default."""


class WebhookStore(ABC):
    """Webhook configurations and the endpoints they watch."""

    @abstractmethod
    async def get_webhook(self, webhook_id: str) -> Webhook | None: ...

    @abstractmethod
    async def save_webhook(self, webhook: Webhook) -> Webhook: ...

    @abstractmethod
    async def list_active_for_event(self, endpoint_id: str, event_name: str) -> list[Webhook]:
        """Active webhooks on an endpoint that declare the event name."""
        ...

    @abstractmethod
    async def update_stats(
        self,
        webhook_id: str,
        updater: Callable[[WebhookStats], WebhookStats],
    ) -> WebhookStats | None:
        """Apply ``updater`` to a webhook's stats atomically.

        Returns:
            The new stats, or None if the webhook no longer exists.
        """
        ...

    @abstractmethod
    async def get_endpoint(self, endpoint_id: str) -> EndpointSummary | None: ...

    @abstractmethod
    async def save_endpoint(self, endpoint: EndpointSummary) -> EndpointSummary: ...


class ExecutionLogStore(ABC):
    """Append-only delivery attempt log."""

    @abstractmethod
    async def append(self, entry: ExecutionLogEntry) -> None: ...

    @abstractmethod
    async def list_for_webhook(
        self,
        webhook_id: str,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        """Entries for one webhook, oldest first, at most ``limit`` most recent."""
        ...


__all__ = [
    "DAILY_COUNTERS",
    "PERIOD_TTL_SECONDS",
    "ExecutionLogStore",
    "UsageStore",
    "WebhookStore",
    "build_record",
    "counter_period",
    "evaluate_guards",
    "oldest_retained_period",
]
