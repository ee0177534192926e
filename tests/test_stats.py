"""Tests for per-webhook delivery statistics."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from conduit.models import WebhookStats
from conduit.webhooks import StatsAggregator, apply_delivery_result

OCT = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
NOV = datetime(2026, 11, 1, 0, 5, tzinfo=UTC)


class TestApplyDeliveryResult:
    def test_first_success(self) -> None:
        stats = apply_delivery_result(WebhookStats(), success=True, duration_ms=120, at=OCT)

        assert stats.period == "2026-10"
        assert stats.calls_this_period == 1
        assert stats.successful_calls == 1
        assert stats.failed_calls == 0
        assert stats.total_calls == 1
        assert stats.avg_response_time_ms == 120
        assert stats.fastest_response_ms == 120
        assert stats.slowest_response_ms == 120
        assert stats.last_triggered_at == OCT
        assert stats.last_successful_at == OCT

    def test_running_average_over_successes_only(self) -> None:
        """Failures count toward totals but never move the response-time figures."""
        stats = WebhookStats()
        for success, duration in [(True, 100), (False, 30_000), (True, 300), (True, 200)]:
            stats = apply_delivery_result(stats, success=success, duration_ms=duration, at=OCT)

        assert stats.successful_calls == 3
        assert stats.failed_calls == 1
        assert stats.total_calls == 4
        assert stats.total_calls == stats.successful_calls + stats.failed_calls
        assert stats.avg_response_time_ms == pytest.approx(200.0)
        assert stats.fastest_response_ms == 100
        assert stats.slowest_response_ms == 300

    def test_failure_keeps_last_success(self) -> None:
        stats = apply_delivery_result(WebhookStats(), success=True, duration_ms=50, at=OCT)
        later = datetime(2026, 10, 20, tzinfo=UTC)
        stats = apply_delivery_result(stats, success=False, duration_ms=10, at=later)

        assert stats.last_triggered_at == later
        assert stats.last_successful_at == OCT

    def test_period_rolls_over_with_month(self) -> None:
        stats = WebhookStats()
        for _ in range(3):
            stats = apply_delivery_result(stats, success=True, duration_ms=10, at=OCT)
        stats = apply_delivery_result(stats, success=True, duration_ms=10, at=NOV)

        assert stats.period == "2026-11"
        assert stats.calls_this_period == 1
        assert stats.total_calls == 4

    def test_input_not_mutated(self) -> None:
        original = WebhookStats()
        apply_delivery_result(original, success=True, duration_ms=10, at=OCT)
        assert original.total_calls == 0


class TestStatsAggregator:
    @pytest.mark.asyncio
    async def test_record_updates_store(self, webhook_store, make_webhook) -> None:
        webhook = await webhook_store.save_webhook(make_webhook())
        aggregator = StatsAggregator(webhook_store)

        await aggregator.record(webhook.id, success=True, duration_ms=80, at=OCT)
        stats = await aggregator.record(webhook.id, success=False, duration_ms=5, at=OCT)

        stored = await webhook_store.get_webhook(webhook.id)
        assert stored.stats == stats
        assert stored.stats.total_calls == 2

    @pytest.mark.asyncio
    async def test_missing_webhook_returns_none(self, webhook_store) -> None:
        aggregator = StatsAggregator(webhook_store)
        assert await aggregator.record("whk_gone", success=True, duration_ms=1) is None
