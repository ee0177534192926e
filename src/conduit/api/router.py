"""FastAPI router for Conduit API endpoints."""

from __future__ import annotations

import json
from typing import Annotated

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
    status,
)

from conduit.admission import days_until_reset
from conduit.exceptions import NotFoundError, ValidationError
from conduit.logging import get_logger
from conduit.models import (
    DATA_RECEIVED,
    DataEvent,
    EndpointSummary,
    RequestMetadata,
    Webhook,
    generate_id,
    utc_now,
)
from conduit.service import ConduitService
from conduit.webhooks import generate_webhook_secret, validate_webhook_url

from .helpers import extract_client_ip, rate_limit_headers, usage_headers
from .schemas import (
    EndpointRequest,
    ExecutionLogResponse,
    HealthResponse,
    IngestResponse,
    UsageResponse,
    WebhookCreateRequest,
    WebhookResponse,
    WebhookTestRequest,
    WebhookTestResponse,
)

logger = get_logger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: ConduitService | None = None


def set_service(service: ConduitService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> ConduitService:
    """Dependency to get the ConduitService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[ConduitService, Depends(get_service)]


def _webhook_response(webhook: Webhook, include_secret: bool = False) -> WebhookResponse:
    return WebhookResponse(
        id=webhook.id,
        tenant_id=webhook.tenant_id,
        endpoint_id=webhook.endpoint_id,
        name=webhook.name,
        url=webhook.target_url,
        secret=webhook.secret if include_secret else None,
        trigger_events=webhook.trigger_events,
        is_active=webhook.is_active,
        max_retries=webhook.max_retries,
        retry_backoff=webhook.retry_backoff,
        stats=webhook.stats,
    )


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is None:
        return HealthResponse(status="unhealthy", version="0.1.0")
    return HealthResponse(
        status="healthy",
        version="0.1.0",
        distributed=_service.settings.is_distributed,
    )


@router.post(
    "/ingest/{endpoint_id}",
    response_model=IngestResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["ingest"],
)
async def ingest(
    endpoint_id: str,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    service: ServiceDep,
    x_tenant_id: Annotated[str, Header(min_length=1)],
) -> IngestResponse:
    """Accept a JSON payload for an endpoint.

    The request is admitted against the tenant's plan and hourly limits
    first. Webhook delivery happens after the response is sent.

    Raises:
        NotFoundError: Unknown endpoint.
        ValidationError: Body is not valid JSON.
        UsageLimitExceededError / RateLimitError: Mapped to 429 by the app.
    """
    endpoint = await service.webhook_store.get_endpoint(endpoint_id)
    if endpoint is None:
        raise NotFoundError("endpoint", endpoint_id)

    body = await request.body()
    try:
        data = json.loads(body) if body else None
    except ValueError as e:
        raise ValidationError("body", "Request body must be valid JSON") from e

    client_ip = extract_client_ip(
        request,
        trust_proxy_headers=service.settings.rate_limit_trust_proxy_headers,
    )
    result = await service.admit(x_tenant_id, len(body), client_ip)

    request_id = generate_id("req")
    metadata = RequestMetadata(
        request_id=request_id,
        api_key_id=request.headers.get("x-api-key-id"),
        source_ip=client_ip,
        user_agent=request.headers.get("user-agent"),
    )
    event = DataEvent(
        id=request_id,
        name=DATA_RECEIVED,
        tenant_id=x_tenant_id,
        endpoint_id=endpoint_id,
        data=data,
        category=request.headers.get("x-data-category"),
    )
    background_tasks.add_task(service.dispatcher.dispatch_event, event, metadata)

    if result.usage is not None:
        response.headers.update(usage_headers(result.usage))
    response.headers.update(rate_limit_headers(result.rate_limit))

    logger.info(
        "Payload accepted",
        tenant_id=x_tenant_id,
        endpoint_id=endpoint_id,
        request_id=request_id,
        size=len(body),
        degraded=result.degraded,
    )
    return IngestResponse(
        request_id=request_id,
        endpoint_id=endpoint_id,
        usage=result.usage,
        degraded=result.degraded,
    )


@router.get("/usage/{tenant_id}", response_model=UsageResponse, tags=["usage"])
async def get_usage(tenant_id: str, service: ServiceDep) -> UsageResponse:
    """Usage statistics, limits and near-limit warnings for a tenant."""
    stats = await service.admission.get_usage_stats(tenant_id)
    warnings = await service.admission.check_usage_warnings(tenant_id)
    now = utc_now()
    return UsageResponse(
        tenant_id=tenant_id,
        stats=stats,
        warnings=warnings,
        days_until_reset=days_until_reset(now),
        generated_at=now,
    )


@router.put("/endpoints/{endpoint_id}", response_model=EndpointSummary, tags=["endpoints"])
async def put_endpoint(
    endpoint_id: str,
    request: EndpointRequest,
    service: ServiceDep,
) -> EndpointSummary:
    """Register or replace an ingestion endpoint."""
    endpoint = EndpointSummary(id=endpoint_id, name=request.name, url_path=request.url_path)
    return await service.webhook_store.save_endpoint(endpoint)


@router.post(
    "/webhooks",
    response_model=WebhookResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(request: WebhookCreateRequest, service: ServiceDep) -> WebhookResponse:
    """Register a webhook on an endpoint.

    Raises:
        UnsafeURLError: The target URL fails the outbound URL policy.
        NotFoundError: Unknown endpoint.
    """
    url = validate_webhook_url(
        str(request.url),
        allow_private=service.settings.webhook_allow_private_targets,
    )
    if await service.webhook_store.get_endpoint(request.endpoint_id) is None:
        raise NotFoundError("endpoint", request.endpoint_id)

    secret = request.secret
    if secret is None and request.generate_secret:
        secret = generate_webhook_secret()

    fields = request.model_dump(exclude={"generate_secret", "secret", "url"}, exclude_none=True)
    webhook = Webhook(url=url, secret=secret, **fields)
    await service.webhook_store.save_webhook(webhook)
    logger.info("Webhook created", webhook_id=webhook.id, tenant_id=webhook.tenant_id)
    return _webhook_response(webhook, include_secret=True)


@router.get("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def get_webhook(webhook_id: str, service: ServiceDep) -> WebhookResponse:
    """Get a webhook with its running stats."""
    webhook = await service.webhook_store.get_webhook(webhook_id)
    if webhook is None:
        raise NotFoundError("webhook", webhook_id)
    return _webhook_response(webhook)


@router.get(
    "/webhooks/{webhook_id}/logs",
    response_model=ExecutionLogResponse,
    tags=["webhooks"],
)
async def get_webhook_logs(
    webhook_id: str,
    service: ServiceDep,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> ExecutionLogResponse:
    """Execution log for a webhook, oldest first."""
    if await service.webhook_store.get_webhook(webhook_id) is None:
        raise NotFoundError("webhook", webhook_id)
    entries = await service.log_store.list_for_webhook(webhook_id, limit=limit)
    return ExecutionLogResponse(webhook_id=webhook_id, entries=entries, count=len(entries))


@router.post("/webhooks/test", response_model=WebhookTestResponse, tags=["webhooks"])
async def test_webhook(request: WebhookTestRequest, service: ServiceDep) -> WebhookTestResponse:
    """Send a single test envelope to an ad-hoc URL."""
    url = validate_webhook_url(
        str(request.url),
        allow_private=service.settings.webhook_allow_private_targets,
    )
    outcome = await service.dispatcher.test_webhook(
        url,
        secret=request.secret,
        sample_data=request.sample_data,
    )
    return WebhookTestResponse(
        success=outcome.success,
        status_code=outcome.status_code,
        response_body=outcome.response_body,
        response_time_ms=outcome.duration_ms,
        error=outcome.error,
        error_kind=outcome.error_kind,
    )
