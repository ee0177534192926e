"""Webhook dispatch for ingestion events.

For each event, every active webhook on the endpoint that declares the
event's name gets its own delivery pipeline:

1. Trigger conditions are evaluated (pure, no side effects)
2. One webhook call is reserved against the tenant's monthly quota
3. The envelope is built and signed
4. The retry scheduler attempts delivery, logging every attempt

Pipelines run concurrently and independently; one webhook's failure never
affects another's.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal

from conduit.admission import AdmissionController
from conduit.logging import get_logger
from conduit.models import (
    DATA_RECEIVED,
    DataEvent,
    DeliveryOutcome,
    EndpointSummary,
    RequestMetadata,
    Webhook,
)
from conduit.storage import ExecutionLogStore, WebhookStore

from .executor import DeliveryExecutor
from .payload import TEST_WEBHOOK_ID, PayloadBuilder
from .retry import DeliveryPhase, RetryScheduler
from .stats import StatsAggregator
from .triggers import TriggerEvaluator

logger = get_logger(__name__)

TEST_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class DeliveryReport:
    """What happened to one webhook for one event.

    Attributes:
        status: Terminal phase, or "skipped" when nothing was sent.
        attempts: HTTP attempts made.
        reason: Why the webhook was skipped or failed.
    """

    webhook_id: str
    status: Literal["succeeded", "exhausted", "cancelled", "skipped"]
    attempts: int = 0
    reason: str | None = None


class WebhookDispatcher:
    """Dispatches ingestion events to matching webhooks.

    Example:
        ```python
        dispatcher = WebhookDispatcher(webhook_store, log_store, admission)

        # Deliver an event to every matching webhook
        reports = await dispatcher.dispatch_event(event, metadata)
        ```
    """

    def __init__(
        self,
        webhook_store: WebhookStore,
        log_store: ExecutionLogStore,
        admission: AdmissionController,
        executor: DeliveryExecutor | None = None,
        *,
        max_concurrent: int = 10,
        payload_builder: PayloadBuilder | None = None,
        evaluator: TriggerEvaluator | None = None,
        scheduler: RetryScheduler | None = None,
    ) -> None:
        """Initialize the webhook dispatcher.

        Args:
            webhook_store: Source of webhooks and endpoints, sink for stats.
            log_store: Execution log sink.
            admission: Reserves webhook calls against tenant quotas.
            executor: Performs HTTP attempts.
            max_concurrent: Maximum attempts in flight across all pipelines.
        """
        self._webhooks = webhook_store
        self._admission = admission
        self._executor = executor or DeliveryExecutor()
        self._builder = payload_builder or PayloadBuilder()
        self._evaluator = evaluator or TriggerEvaluator()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._scheduler = scheduler or RetryScheduler(
            self._executor,
            log_store,
            StatsAggregator(webhook_store),
            slots=self._semaphore,
        )
        self._cancel_event = asyncio.Event()

    def cancel_pending(self) -> None:
        """Abandon deliveries that are waiting to retry."""
        self._cancel_event.set()

    async def dispatch_event(
        self,
        event: DataEvent,
        metadata: RequestMetadata | None = None,
    ) -> list[DeliveryReport]:
        """Dispatch an event to all matching webhooks concurrently.

        Args:
            event: Event to dispatch.
            metadata: Inbound request details for the envelope.

        Returns:
            One report per candidate webhook.
        """
        webhooks = await self._webhooks.list_active_for_event(event.endpoint_id, event.name)
        if not webhooks:
            logger.debug(
                "No webhooks subscribed to event",
                event=event.name,
                endpoint_id=event.endpoint_id,
            )
            return []

        endpoint = await self._webhooks.get_endpoint(event.endpoint_id)
        if endpoint is None:
            endpoint = EndpointSummary(id=event.endpoint_id, name="", url_path="")

        results = await asyncio.gather(
            *(self._deliver_to_webhook(webhook, event, endpoint, metadata) for webhook in webhooks),
            return_exceptions=True,
        )

        reports: list[DeliveryReport] = []
        for webhook, result in zip(webhooks, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook pipeline failed",
                    webhook_id=webhook.id,
                    error=str(result),
                    exc_info=result,
                )
                reports.append(
                    DeliveryReport(webhook_id=webhook.id, status="exhausted", reason=str(result))
                )
            else:
                reports.append(result)
        return reports

    async def _deliver_to_webhook(
        self,
        webhook: Webhook,
        event: DataEvent,
        endpoint: EndpointSummary,
        metadata: RequestMetadata | None,
    ) -> DeliveryReport:
        decision = self._evaluator.evaluate(webhook, event)
        if not decision.should_fire:
            return DeliveryReport(webhook_id=webhook.id, status="skipped", reason="conditions")

        quota = await self._admission.can_trigger_webhook(webhook.tenant_id)
        if not quota.allowed:
            logger.info(
                "Webhook skipped, quota denied",
                webhook_id=webhook.id,
                tenant_id=webhook.tenant_id,
                reason=quota.reason,
            )
            return DeliveryReport(webhook_id=webhook.id, status="skipped", reason=quota.reason)

        envelope = self._builder.build(
            webhook,
            event,
            endpoint,
            metadata,
            conditions_met=decision.conditions_met,
        )
        state = await self._scheduler.run(
            webhook,
            envelope,
            event_id=event.id,
            cancel_event=self._cancel_event,
        )
        outcome = state.last_outcome
        reason = None
        if state.phase is not DeliveryPhase.SUCCEEDED and outcome is not None:
            reason = outcome.error
        return DeliveryReport(
            webhook_id=webhook.id,
            status=state.phase.value,  # type: ignore[arg-type]
            attempts=state.attempt,
            reason=reason,
        )

    async def process_data_received(
        self,
        tenant_id: str,
        endpoint_id: str,
        data: Any,
        metadata: RequestMetadata | None = None,
        category: str | None = None,
    ) -> list[DeliveryReport]:
        """Dispatch a ``data_received`` event for freshly ingested data."""
        event = DataEvent(
            name=DATA_RECEIVED,
            tenant_id=tenant_id,
            endpoint_id=endpoint_id,
            data=data,
            category=category,
        )
        return await self.dispatch_event(event, metadata)

    async def test_webhook(
        self,
        url: str,
        secret: str | None = None,
        sample_data: Any = None,
    ) -> DeliveryOutcome:
        """Send one ``webhook_test`` envelope to an ad-hoc URL.

        Test deliveries are not retried, logged or counted against quotas.
        """
        envelope = self._builder.build_test(sample_data=sample_data, secret=secret)
        outcome = await self._executor.deliver(
            url=url,
            envelope=envelope,
            timeout_seconds=TEST_TIMEOUT_SECONDS,
        )
        logger.info(
            "Webhook test delivered",
            webhook_id=TEST_WEBHOOK_ID,
            success=outcome.success,
            status_code=outcome.status_code,
            error_kind=outcome.error_kind,
        )
        return outcome


__all__ = ["DeliveryReport", "WebhookDispatcher"]
