#!/usr/bin/env python3
"""Conduit quickstart.

Demonstrates the full ingest path in one process:
1. Admission against a tenant's plan limits
2. Trigger conditions selecting which webhooks fire
3. Signed delivery with a retry after a failed attempt
4. Execution logs, webhook stats and usage warnings

Webhook targets are served by an in-process httpx transport, so no
network access or Redis is required.
"""

import asyncio
import json

import httpx

from conduit.config import Settings
from conduit.exceptions import UsageLimitExceededError
from conduit.logging import configure_logging
from conduit.models import EndpointSummary, PlanLimits, RequestMetadata, Webhook
from conduit.rate_limit import HourlyRateLimiter, InMemoryRateLimitStore
from conduit.service import ConduitService
from conduit.storage import InMemoryExecutionLogStore, InMemoryUsageStore, InMemoryWebhookStore
from conduit.webhooks import DeliveryExecutor, verify_envelope

SECRET = "whsec_quickstart"
_calls: dict[str, int] = {}


def receiver(request: httpx.Request) -> httpx.Response:
    """Fake webhook targets. The flaky one fails its first call."""
    path = request.url.path
    _calls[path] = _calls.get(path, 0) + 1
    if path == "/flaky" and _calls[path] == 1:
        return httpx.Response(503, text="try again")

    verified = verify_envelope(request.content, SECRET)
    envelope = json.loads(request.content)
    print(f"  <- {path}: event={envelope['event']} signature_ok={verified}")
    return httpx.Response(200, json={"received": True})


async def main() -> None:
    configure_logging(level="WARNING", format="text")

    service = ConduitService(
        settings=Settings(env="development"),
        usage_store=InMemoryUsageStore(),
        webhook_store=InMemoryWebhookStore(),
        log_store=InMemoryExecutionLogStore(),
        rate_limiter=HourlyRateLimiter(InMemoryRateLimitStore(), limit=100),
        executor=DeliveryExecutor(transport=httpx.MockTransport(receiver), resolve_dns=False),
    )

    print("=" * 70)
    print("Conduit Quickstart")
    print("=" * 70)

    async with service:
        await service.usage_store.set_plan_limits("ten_demo", PlanLimits(monthly_requests=5))
        await service.webhook_store.save_endpoint(
            EndpointSummary(id="ep_orders", name="Orders", url_path="orders")
        )
        big_orders = await service.webhook_store.save_webhook(
            Webhook(
                tenant_id="ten_demo",
                endpoint_id="ep_orders",
                name="Big orders",
                url="https://hooks.example.com/big",
                secret=SECRET,
                trigger_conditions=[{"field": "amount", "op": ">", "value": 100}],
            )
        )
        flaky = await service.webhook_store.save_webhook(
            Webhook(
                tenant_id="ten_demo",
                endpoint_id="ep_orders",
                name="Flaky audit sink",
                url="https://hooks.example.com/flaky",
                secret=SECRET,
                max_retries=2,
            )
        )

        print("\n1. Ingesting payloads")
        for amount in (50, 250):
            print(f"\n  -> amount={amount}")
            result = await service.ingest(
                "ten_demo",
                "ep_orders",
                {"amount": amount},
                payload_size_bytes=len(json.dumps({"amount": amount})),
                metadata=RequestMetadata(request_id=f"req_{amount}"),
            )
            for report in result.deliveries:
                reason = f" ({report.reason})" if report.reason else ""
                print(f"  {report.webhook_id}: {report.status}, attempts={report.attempts}{reason}")

        print("\n2. Execution log for the flaky webhook")
        for entry in await service.log_store.list_for_webhook(flaky.id):
            print(
                f"  attempt {entry.attempt_number}/{entry.max_attempts}: "
                f"status={entry.response_status} success={entry.is_successful}"
            )

        print("\n3. Webhook stats")
        for webhook_id in (big_orders.id, flaky.id):
            stored = await service.webhook_store.get_webhook(webhook_id)
            assert stored is not None
            print(f"  {stored.name}: {stored.stats.model_dump(exclude_none=True)}")

        print("\n4. Usage and warnings")
        for _ in range(2):
            await service.admit("ten_demo", 16)
        stats = await service.admission.get_usage_stats("ten_demo")
        print(f"  requests this month: {stats.usage.requests_this_month}/5")
        for warning in await service.admission.check_usage_warnings("ten_demo"):
            print(f"  warning: {warning.message}")

        print("\n5. Hitting the monthly limit")
        try:
            await service.admit("ten_demo", 16)
            await service.admit("ten_demo", 16)
        except UsageLimitExceededError as e:
            print(f"  denied: {e.result.reason} ({e.result.current_usage}/{e.result.limit})")

    print("\n" + "=" * 70)


if __name__ == "__main__":
    asyncio.run(main())
