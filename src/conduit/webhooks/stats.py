"""Per-webhook delivery statistics."""

from __future__ import annotations

from datetime import datetime

from conduit.logging import get_logger
from conduit.models import CounterScope, WebhookStats, period_key, utc_now
from conduit.storage import WebhookStore

logger = get_logger(__name__)


def apply_delivery_result(
    stats: WebhookStats,
    *,
    success: bool,
    duration_ms: int,
    at: datetime,
) -> WebhookStats:
    """Fold one completed delivery into a webhook's running stats.

    The average, fastest and slowest response times cover successful
    deliveries only. ``calls_this_period`` restarts when the month changes.
    """
    period = period_key(CounterScope.MONTH, at)
    calls_this_period = stats.calls_this_period if stats.period == period else 0

    update: dict[str, object] = {
        "period": period,
        "calls_this_period": calls_this_period + 1,
        "total_calls": stats.total_calls + 1,
        "last_triggered_at": at,
    }

    if success:
        previous = stats.successful_calls
        update["successful_calls"] = previous + 1
        update["last_successful_at"] = at
        update["avg_response_time_ms"] = (
            stats.avg_response_time_ms * previous + duration_ms
        ) / (previous + 1)
        update["fastest_response_ms"] = (
            duration_ms
            if stats.fastest_response_ms is None
            else min(stats.fastest_response_ms, duration_ms)
        )
        update["slowest_response_ms"] = (
            duration_ms
            if stats.slowest_response_ms is None
            else max(stats.slowest_response_ms, duration_ms)
        )
    else:
        update["failed_calls"] = stats.failed_calls + 1

    return stats.model_copy(update=update)


class StatsAggregator:
    """Writes completed deliveries into the webhook store."""

    def __init__(self, store: WebhookStore) -> None:
        self._store = store

    async def record(
        self,
        webhook_id: str,
        *,
        success: bool,
        duration_ms: int,
        at: datetime | None = None,
    ) -> WebhookStats | None:
        at = at or utc_now()
        stats = await self._store.update_stats(
            webhook_id,
            lambda current: apply_delivery_result(
                current, success=success, duration_ms=duration_ms, at=at
            ),
        )
        if stats is None:
            logger.warning("Stats not recorded, webhook missing", webhook_id=webhook_id)
        return stats


__all__ = ["StatsAggregator", "apply_delivery_result"]
