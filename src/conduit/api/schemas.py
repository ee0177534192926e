"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from conduit.models import (
    BackoffStrategy,
    Condition,
    ErrorKind,
    ExecutionLogEntry,
    UsageCheckResult,
    UsageStats,
    UsageWarning,
    WebhookStats,
)


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, degraded, unhealthy).
        version: API version.
        distributed: Whether counters live in Redis.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    distributed: bool = False


class IngestResponse(BaseModel):
    """Response for an accepted ingestion request.

    Attributes:
        request_id: Identifier of the ingested payload (the event id).
        usage: Monthly request usage after this request, absent in degraded mode.
    """

    model_config = ConfigDict(extra="forbid")

    accepted: bool = True
    request_id: str
    endpoint_id: str
    usage: UsageCheckResult | None = None
    degraded: bool = False


class EndpointRequest(BaseModel):
    """Request body for registering an ingestion endpoint."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    url_path: str = Field(min_length=1)


class WebhookCreateRequest(BaseModel):
    """Request body for registering a webhook.

    Attributes:
        generate_secret: Create a random signing secret when none is given.
    """

    model_config = ConfigDict(extra="forbid")

    tenant_id: str = Field(min_length=1)
    endpoint_id: str = Field(min_length=1)
    name: str = ""
    url: HttpUrl
    secret: str | None = None
    generate_secret: bool = False
    trigger_events: list[str] | None = None
    trigger_conditions: list[Condition] = Field(default_factory=list)
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL


class WebhookResponse(BaseModel):
    """A registered webhook. The secret is only returned on creation."""

    model_config = ConfigDict(extra="forbid")

    id: str
    tenant_id: str
    endpoint_id: str
    name: str
    url: str
    secret: str | None = None
    trigger_events: list[str]
    is_active: bool
    max_retries: int
    retry_backoff: BackoffStrategy
    stats: WebhookStats


class WebhookTestRequest(BaseModel):
    """Request body for a test delivery."""

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl
    secret: str | None = None
    sample_data: Any = None


class WebhookTestResponse(BaseModel):
    """Result of a test delivery."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    response_time_ms: int
    error: str | None = None
    error_kind: ErrorKind | None = None


class ExecutionLogResponse(BaseModel):
    """Execution log entries for one webhook, oldest first."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    entries: list[ExecutionLogEntry]
    count: int


class UsageResponse(BaseModel):
    """Usage statistics with near-limit warnings."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: str
    stats: UsageStats
    warnings: list[UsageWarning]
    days_until_reset: int
    generated_at: datetime
