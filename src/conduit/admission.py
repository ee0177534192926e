"""Usage-gated admission control.

Every chargeable action passes through the AdmissionController before it
does any work:

- Ingestion requests: monthly requests, single payload size and storage
  are checked and reserved in one atomic store operation, then the hourly
  sliding-window limiter is consulted.
- Webhook deliveries and AI executions: one unit of the matching monthly
  counter is reserved atomically.

Example:
    ```python
    controller = AdmissionController(InMemoryUsageStore(), limiter)
    result = await controller.check_and_reserve("ten_123", payload_size_bytes=512)
    ```
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from conduit.exceptions import (
    RateLimitError,
    StorageError,
    UsageLimitExceededError,
    UsageStoreUnavailableError,
)
from conduit.logging import get_logger
from conduit.models import (
    AdmissionResult,
    LimitType,
    PlanLimits,
    QuotaCheck,
    QuotaGuard,
    RateLimitInfo,
    UsageCheckResult,
    UsageCounter,
    UsageStats,
    UsageTrendPoint,
    UsageWarning,
    utc_now,
)
from conduit.rate_limit import HourlyRateLimiter, rate_limit_key
from conduit.storage import UsageStore

logger = get_logger(__name__)

UPGRADE_MESSAGES: dict[str, str] = {
    "requests": (
        "Upgrade to Developer plan for 50,000 requests/month, "
        "or Business plan for 500,000 requests/month"
    ),
    "storage": "Upgrade to Developer plan for 1GB storage, or Business plan for 10GB storage",
    "payload_size": (
        "Upgrade to Developer plan for 10MB payloads, or Business plan for 100MB payloads"
    ),
    "webhooks": (
        "Upgrade to Developer plan for 10,000 webhook calls/month, "
        "or Business plan for unlimited webhooks"
    ),
    "ai": (
        "Upgrade to Developer plan for 1,000 AI executions/month, "
        "or Business plan for unlimited AI executions"
    ),
}

DEFAULT_UPGRADE_MESSAGE = (
    "Upgrade to Developer plan ($29/month) or Business plan ($99/month) for higher limits"
)

DENIAL_REASONS: dict[str, str] = {
    "requests": "Monthly request limit exceeded",
    "payload_size": "Payload size exceeds plan limit",
    "storage": "Storage limit exceeded",
    "webhooks": "Monthly webhook limit exceeded",
    "ai": "Monthly AI execution limit exceeded",
}

WARNING_TEMPLATES: dict[str, str] = {
    "requests": "You've used {pct}% of your monthly API requests",
    "storage": "You've used {pct}% of your storage space",
    "webhooks": "You've used {pct}% of your monthly webhook calls",
    "ai": "You've used {pct}% of your monthly AI executions",
}


def upgrade_message(limit_type: str | None) -> str:
    """Plan upgrade suggestion for a denied limit type."""
    if limit_type is None:
        return DEFAULT_UPGRADE_MESSAGE
    return UPGRADE_MESSAGES.get(limit_type, DEFAULT_UPGRADE_MESSAGE)


def next_month_start(now: datetime) -> datetime:
    """Start of the calendar month after ``now`` in UTC."""
    now = now.astimezone(UTC)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


def seconds_until_reset(now: datetime) -> int:
    """Seconds until monthly counters roll over."""
    return max(1, math.ceil((next_month_start(now) - now).total_seconds()))


def days_until_reset(now: datetime) -> int:
    """Whole days until monthly counters roll over, rounded up."""
    return max(1, math.ceil(seconds_until_reset(now) / 86400))


def percentage_used(current: int, limit: int | None) -> float:
    """Share of a limit consumed, in percent. Unlimited counts as 0."""
    if limit is None:
        return 0.0
    if limit <= 0:
        return 100.0
    return round(current / limit * 100, 2)


class AdmissionController:
    """Atomic check-and-reserve of plan quotas plus hourly rate limiting.

    Args:
        usage_store: Backend holding per-tenant counters and plan limits.
        rate_limiter: Hourly limiter, or None to disable hourly limiting.
        fallback_limiter: In-process limiter used when ``rate_limiter``'s backend
            fails. Only consulted in degraded mode.
        degraded_mode: Admit on the hourly limiter alone when the store is down.
        warning_threshold: Percentage at which usage warnings are reported.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        usage_store: UsageStore,
        rate_limiter: HourlyRateLimiter | None = None,
        *,
        fallback_limiter: HourlyRateLimiter | None = None,
        degraded_mode: bool = False,
        warning_threshold: float = 80.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.usage_store = usage_store
        self.rate_limiter = rate_limiter
        self.fallback_limiter = fallback_limiter
        self.degraded_mode = degraded_mode
        self.warning_threshold = warning_threshold
        self._clock = clock

    def _denied(
        self,
        check: QuotaCheck,
        now: datetime,
    ) -> UsageCheckResult:
        guard = check.violated
        if guard is None:
            raise StorageError("Usage store denied a reservation without naming a limit")
        current = check.current if check.current is not None else 0
        return UsageCheckResult(
            allowed=False,
            reason=DENIAL_REASONS[guard.limit_type],
            limit_type=guard.limit_type,
            current_usage=current,
            limit=guard.limit,
            percentage_used=percentage_used(current, guard.limit),
            days_until_reset=days_until_reset(now),
            seconds_until_reset=seconds_until_reset(now),
        )

    async def check_and_reserve(
        self,
        tenant_id: str,
        payload_size_bytes: int,
        client_ip: str | None = None,
    ) -> AdmissionResult:
        """Admit one ingestion request and reserve its quota.

        Checks, in order, the monthly request limit, the single-payload size
        limit and the storage limit; the first violation is reported and no
        counter changes. On success the monthly and daily request and data
        counters and lifetime storage are incremented in the same atomic
        step. The hourly limiter is consulted afterwards; if it denies or
        fails, the reservation is released.

        Args:
            tenant_id: Tenant being charged.
            payload_size_bytes: Size of the request body.
            client_ip: Caller address, used as the hourly key when no tenant is known.

        Returns:
            AdmissionResult describing the reservation.

        Raises:
            UsageLimitExceededError: A plan limit would be exceeded.
            RateLimitError: The hourly limit is exhausted.
            UsageStoreUnavailableError: The store is down and degraded mode is off.
            StorageError: The hourly limiter backend failed and no fallback applies.
        """
        now = self._clock()
        increments = {
            UsageCounter.REQUESTS_THIS_MONTH: 1,
            UsageCounter.REQUESTS_TODAY: 1,
            UsageCounter.DATA_BYTES_THIS_MONTH: payload_size_bytes,
            UsageCounter.DATA_BYTES_TODAY: payload_size_bytes,
            UsageCounter.TOTAL_STORAGE_BYTES: payload_size_bytes,
        }

        try:
            limits = await self.usage_store.get_plan_limits(tenant_id)
            guards = self._request_guards(limits, payload_size_bytes)
            check = await self.usage_store.check_and_increment(tenant_id, guards, increments, now)
        except UsageStoreUnavailableError as e:
            if not self.degraded_mode:
                logger.error(
                    "Usage store unavailable, denying request",
                    tenant_id=tenant_id,
                    error=str(e),
                )
                raise
            logger.warning(
                "Usage store unavailable, admitting on hourly limit only",
                tenant_id=tenant_id,
                error=str(e),
            )
            rate_info = await self._check_hourly(tenant_id, client_ip)
            return AdmissionResult(tenant_id=tenant_id, rate_limit=rate_info, degraded=True)

        if not check.allowed:
            result = self._denied(check, now)
            logger.info(
                "Usage limit exceeded",
                tenant_id=tenant_id,
                limit_type=result.limit_type,
                current_usage=result.current_usage,
                limit=result.limit,
            )
            raise UsageLimitExceededError(result)

        try:
            rate_info = await self._check_hourly(tenant_id, client_ip)
        except BaseException:
            await self._release(tenant_id, increments, now)
            raise

        monthly = check.updated.get(UsageCounter.REQUESTS_THIS_MONTH, 0)
        usage = UsageCheckResult(
            allowed=True,
            limit_type="requests",
            current_usage=monthly,
            limit=limits.monthly_requests,
            percentage_used=percentage_used(monthly, limits.monthly_requests),
            days_until_reset=days_until_reset(now),
            seconds_until_reset=seconds_until_reset(now),
        )
        return AdmissionResult(tenant_id=tenant_id, usage=usage, rate_limit=rate_info)

    @staticmethod
    def _request_guards(limits: PlanLimits, payload_size_bytes: int) -> list[QuotaGuard]:
        guards: list[QuotaGuard] = []
        if limits.monthly_requests is not None:
            guards.append(
                QuotaGuard(
                    limit_type="requests",
                    counter=UsageCounter.REQUESTS_THIS_MONTH,
                    amount=1,
                    limit=limits.monthly_requests,
                )
            )
        if limits.max_payload_size is not None:
            guards.append(
                QuotaGuard(
                    limit_type="payload_size",
                    amount=payload_size_bytes,
                    limit=limits.max_payload_size,
                )
            )
        if limits.max_storage_bytes is not None:
            guards.append(
                QuotaGuard(
                    limit_type="storage",
                    counter=UsageCounter.TOTAL_STORAGE_BYTES,
                    amount=payload_size_bytes,
                    limit=limits.max_storage_bytes,
                )
            )
        return guards

    async def _check_hourly(
        self, tenant_id: str | None, client_ip: str | None
    ) -> RateLimitInfo | None:
        if self.rate_limiter is None:
            return None
        key = rate_limit_key(tenant_id, client_ip)
        try:
            return await self.rate_limiter.check(key)
        except StorageError as e:
            if not self.degraded_mode or self.fallback_limiter is None:
                raise
            logger.warning(
                "Rate limit store unavailable, using in-process hourly limit",
                key=key,
                error=str(e),
            )
            return await self.fallback_limiter.check(key)

    async def _release(
        self,
        tenant_id: str,
        increments: dict[UsageCounter, int],
        now: datetime,
    ) -> None:
        try:
            await self.usage_store.release(tenant_id, increments, now)
        except StorageError as e:
            logger.error("Failed to release usage reservation", tenant_id=tenant_id, error=str(e))

    async def _reserve_unit(
        self,
        tenant_id: str,
        limit_type: LimitType,
        counter: UsageCounter,
        extra: dict[UsageCounter, int],
        limit_of: Callable[[PlanLimits], int | None],
    ) -> UsageCheckResult:
        now = self._clock()
        try:
            limits = await self.usage_store.get_plan_limits(tenant_id)
            limit = limit_of(limits)
            guards = (
                [QuotaGuard(limit_type=limit_type, counter=counter, amount=1, limit=limit)]
                if limit is not None
                else []
            )
            check = await self.usage_store.check_and_increment(
                tenant_id, guards, {counter: 1, **extra}, now
            )
        except StorageError as e:
            logger.error(
                "Usage check failed",
                tenant_id=tenant_id,
                limit_type=limit_type,
                error=str(e),
            )
            return UsageCheckResult(
                allowed=False,
                reason="Unable to check usage",
                limit_type=limit_type,
            )

        if not check.allowed:
            result = self._denied(check, now)
            logger.info(
                "Usage limit exceeded",
                tenant_id=tenant_id,
                limit_type=limit_type,
                current_usage=result.current_usage,
                limit=result.limit,
            )
            return result

        current = check.updated.get(counter, 0)
        return UsageCheckResult(
            allowed=True,
            limit_type=limit_type,
            current_usage=current,
            limit=limit,
            percentage_used=percentage_used(current, limit),
            days_until_reset=days_until_reset(now),
            seconds_until_reset=seconds_until_reset(now),
        )

    async def can_trigger_webhook(self, tenant_id: str) -> UsageCheckResult:
        """Reserve one webhook call against the monthly webhook limit.

        Fails closed: a store failure yields a denied result.
        """
        return await self._reserve_unit(
            tenant_id,
            "webhooks",
            UsageCounter.WEBHOOK_CALLS_THIS_MONTH,
            {UsageCounter.WEBHOOK_CALLS_TODAY: 1},
            lambda limits: limits.monthly_webhooks,
        )

    async def can_execute_ai(self, tenant_id: str) -> UsageCheckResult:
        """Reserve one AI execution against the monthly AI limit."""
        return await self._reserve_unit(
            tenant_id,
            "ai",
            UsageCounter.AI_EXECUTIONS_THIS_MONTH,
            {},
            lambda limits: limits.monthly_ai_executions,
        )

    async def get_usage_stats(self, tenant_id: str) -> UsageStats:
        """Current usage, plan limits and percentage of each limit consumed."""
        now = self._clock()
        usage = await self.usage_store.get_usage(tenant_id, now)
        limits = await self.usage_store.get_plan_limits(tenant_id)
        percentages = {
            "requests": percentage_used(usage.requests_this_month, limits.monthly_requests),
            "webhooks": percentage_used(usage.webhook_calls_this_month, limits.monthly_webhooks),
            "ai": percentage_used(usage.ai_executions_this_month, limits.monthly_ai_executions),
            "storage": percentage_used(usage.total_storage_bytes, limits.max_storage_bytes),
        }
        return UsageStats(usage=usage, limits=limits, percentages=percentages)

    async def check_usage_warnings(self, tenant_id: str) -> list[UsageWarning]:
        """Limits the tenant has used at least ``warning_threshold`` percent of."""
        stats = await self.get_usage_stats(tenant_id)
        pairs: dict[str, tuple[int, int | None]] = {
            "requests": (stats.usage.requests_this_month, stats.limits.monthly_requests),
            "storage": (stats.usage.total_storage_bytes, stats.limits.max_storage_bytes),
            "webhooks": (stats.usage.webhook_calls_this_month, stats.limits.monthly_webhooks),
            "ai": (stats.usage.ai_executions_this_month, stats.limits.monthly_ai_executions),
        }
        warnings: list[UsageWarning] = []
        for kind, (current, limit) in pairs.items():
            if limit is None:
                continue
            percentage = stats.percentages[kind]
            if percentage < self.warning_threshold:
                continue
            warnings.append(
                UsageWarning(
                    type=kind,  # type: ignore[arg-type]
                    percentage=percentage,
                    current=current,
                    limit=limit,
                    message=WARNING_TEMPLATES[kind].format(pct=round(percentage)),
                )
            )
        return warnings

    async def get_usage_trend(self, tenant_id: str, days: int = 30) -> list[UsageTrendPoint]:
        """Daily totals over the last ``days`` days, oldest first.

        Days without any activity are omitted.
        """
        today = self._clock().astimezone(UTC).date()
        points: list[UsageTrendPoint] = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            daily = await self.usage_store.get_daily_usage(tenant_id, day)
            point = UsageTrendPoint(
                date=day.isoformat(),
                requests=daily.get(UsageCounter.REQUESTS_TODAY, 0),
                data_bytes=daily.get(UsageCounter.DATA_BYTES_TODAY, 0),
                webhook_calls=daily.get(UsageCounter.WEBHOOK_CALLS_TODAY, 0),
            )
            if point.requests or point.data_bytes or point.webhook_calls:
                points.append(point)
        return points


__all__ = [
    "AdmissionController",
    "DEFAULT_UPGRADE_MESSAGE",
    "UPGRADE_MESSAGES",
    "days_until_reset",
    "next_month_start",
    "percentage_used",
    "seconds_until_reset",
    "upgrade_message",
]
