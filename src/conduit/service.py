"""Core Conduit service layer.

This module wires the usage store, hourly limiter, admission controller and
webhook dispatcher into one object with a simple ingest interface.

Example:
    ```python
    from conduit.service import ConduitService

    async with ConduitService.create() as conduit:
        result = await conduit.ingest(
            tenant_id="ten_123",
            endpoint_id="ep_orders",
            data={"amount": 150},
            payload_size_bytes=14,
        )
        print(f"Requests this month: {result.admission.usage.current_usage}")
        for report in result.deliveries:
            print(f"{report.webhook_id}: {report.status}")
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from conduit.admission import AdmissionController
from conduit.config import Settings
from conduit.logging import get_logger
from conduit.models import AdmissionResult, RequestMetadata
from conduit.rate_limit import (
    HourlyRateLimiter,
    InMemoryRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
)
from conduit.storage import (
    ExecutionLogStore,
    InMemoryExecutionLogStore,
    InMemoryUsageStore,
    InMemoryWebhookStore,
    RedisUsageStore,
    UsageStore,
    VersionedMemoryUsageStore,
    WebhookStore,
)
from conduit.webhooks import DeliveryExecutor, DeliveryReport, WebhookDispatcher

logger = get_logger(__name__)


def _hourly_limiter(store: RateLimitStore, settings: Settings) -> HourlyRateLimiter:
    return HourlyRateLimiter(
        store,
        limit=settings.rate_limit_hourly_max,
        window_seconds=settings.rate_limit_window_seconds,
        sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
    )


@dataclass(frozen=True)
class IngestResult:
    """Admission outcome and webhook reports for one ingested payload."""

    admission: AdmissionResult
    deliveries: list[DeliveryReport] = field(default_factory=list)


@dataclass
class ConduitService:
    """High-level Conduit service.

    Attributes:
        settings: Configuration settings.
        usage_store: Per-tenant usage counters and plan limits.
        webhook_store: Webhooks, endpoints and their stats.
        log_store: Execution log.
        rate_limiter: Hourly limiter, None when disabled.
        fallback_limiter: In-process hourly limiter for degraded mode when the
            primary limiter lives in Redis.
    """

    settings: Settings
    usage_store: UsageStore
    webhook_store: WebhookStore
    log_store: ExecutionLogStore
    rate_limiter: HourlyRateLimiter | None = None
    fallback_limiter: HourlyRateLimiter | None = None
    executor: DeliveryExecutor | None = None

    admission: AdmissionController = field(init=False)
    dispatcher: WebhookDispatcher = field(init=False)

    def __post_init__(self) -> None:
        self.admission = AdmissionController(
            self.usage_store,
            self.rate_limiter,
            fallback_limiter=self.fallback_limiter,
            degraded_mode=self.settings.degraded_mode_enabled,
            warning_threshold=self.settings.usage_warning_threshold,
        )
        if self.executor is None:
            self.executor = DeliveryExecutor(
                user_agent=self.settings.webhook_user_agent,
                header_prefix=self.settings.webhook_header_prefix,
                response_body_max_chars=self.settings.response_body_max_chars,
                allow_private_targets=self.settings.webhook_allow_private_targets,
                resolve_dns=self.settings.webhook_resolve_dns,
            )
        self.dispatcher = WebhookDispatcher(
            self.webhook_store,
            self.log_store,
            self.admission,
            self.executor,
            max_concurrent=self.settings.max_concurrent_deliveries,
        )

    @classmethod
    def create(cls, settings: Settings | None = None) -> ConduitService:
        """Create a ConduitService with default dependencies.

        Usage counters and the hourly limiter use Redis when ``redis_url``
        is set, process memory otherwise.
        """
        if settings is None:
            settings = Settings()

        usage_store: UsageStore
        limiter_store: RateLimitStore
        if settings.redis_url:
            usage_store = RedisUsageStore.from_url(
                settings.redis_url,
                key_prefix=settings.redis_key_prefix,
                default_plan=settings.default_plan,
            )
            limiter_store = RedisRateLimitStore.from_url(
                settings.redis_url, key_prefix=settings.redis_key_prefix
            )
        else:
            logger.info(
                "Using in-memory usage store and rate limiter (not distributed)",
                backend=settings.usage_store_backend,
            )
            if settings.usage_store_backend == "optimistic":
                usage_store = VersionedMemoryUsageStore(
                    max_attempts=settings.optimistic_max_attempts,
                    default_plan=settings.default_plan,
                )
            else:
                usage_store = InMemoryUsageStore(default_plan=settings.default_plan)
            limiter_store = InMemoryRateLimitStore()

        rate_limiter = None
        fallback_limiter = None
        if settings.rate_limit_enabled:
            rate_limiter = _hourly_limiter(limiter_store, settings)
            if settings.degraded_mode_enabled and settings.redis_url:
                fallback_limiter = _hourly_limiter(InMemoryRateLimitStore(), settings)

        return cls(
            settings=settings,
            usage_store=usage_store,
            webhook_store=InMemoryWebhookStore(),
            log_store=InMemoryExecutionLogStore(),
            rate_limiter=rate_limiter,
            fallback_limiter=fallback_limiter,
        )

    async def initialize(self) -> None:
        """Start background work (rate-limit sweepers)."""
        for limiter in (self.rate_limiter, self.fallback_limiter):
            if limiter is not None:
                limiter.start()

    async def close(self) -> None:
        """Cancel pending retries and release backend connections."""
        self.dispatcher.cancel_pending()
        for limiter in (self.rate_limiter, self.fallback_limiter):
            if limiter is not None:
                await limiter.close()
        await self.usage_store.close()

    async def __aenter__(self) -> ConduitService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def admit(
        self,
        tenant_id: str,
        payload_size_bytes: int,
        client_ip: str | None = None,
    ) -> AdmissionResult:
        """Run admission for one ingestion request.

        Raises:
            UsageLimitExceededError: A plan limit would be exceeded.
            RateLimitError: The hourly limit is exhausted.
            UsageStoreUnavailableError: Store down and degraded mode off.
        """
        return await self.admission.check_and_reserve(tenant_id, payload_size_bytes, client_ip)

    async def ingest(
        self,
        tenant_id: str,
        endpoint_id: str,
        data: Any,
        payload_size_bytes: int,
        metadata: RequestMetadata | None = None,
        category: str | None = None,
    ) -> IngestResult:
        """Admit a payload, then deliver it to every matching webhook."""
        client_ip = metadata.source_ip if metadata is not None else None
        admission = await self.admit(tenant_id, payload_size_bytes, client_ip)
        deliveries = await self.dispatcher.process_data_received(
            tenant_id, endpoint_id, data, metadata, category=category
        )
        return IngestResult(admission=admission, deliveries=deliveries)


__all__ = ["ConduitService", "IngestResult"]
