"""Webhook configuration, running statistics and triggering events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .base import generate_id, utc_now
from .conditions import Condition, parse_conditions

# Event emitted by the ingestion path for every accepted payload
DATA_RECEIVED = "data_received"

# Event used for ad-hoc test deliveries
WEBHOOK_TEST = "webhook_test"


class BackoffStrategy(str, Enum):
    """Delay policy between retry attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class WebhookStats(BaseModel):
    """Running delivery counters for one webhook.

    Attributes:
        period: Month key ("YYYY-MM") that calls_this_period belongs to.
        calls_this_period: Deliveries completed in the current month.
        successful_calls: Deliveries that ended in a 2xx response.
        failed_calls: Deliveries that exhausted their attempts.
        total_calls: successful_calls + failed_calls.
        avg_response_time_ms: Running mean over successful deliveries only.
        fastest_response_ms: Fastest successful delivery seen.
        slowest_response_ms: Slowest successful delivery seen.
    """

    model_config = ConfigDict(extra="forbid")

    period: str | None = None
    calls_this_period: int = Field(default=0, ge=0)
    successful_calls: int = Field(default=0, ge=0)
    failed_calls: int = Field(default=0, ge=0)
    total_calls: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = None
    last_successful_at: datetime | None = None
    avg_response_time_ms: float = Field(default=0.0, ge=0.0)
    fastest_response_ms: int | None = None
    slowest_response_ms: int | None = None


class Webhook(BaseModel):
    """A webhook watching one ingestion endpoint.

    Attributes:
        id: Unique identifier for this webhook.
        tenant_id: Tenant that owns the webhook and is billed for its calls.
        endpoint_id: Ingestion endpoint whose events trigger it.
        url: Target URL receiving POSTed envelopes.
        secret: Optional shared secret for HMAC-SHA256 signatures.
        trigger_events: Event names this webhook listens to.
        trigger_conditions: Conditions that must all hold for the webhook to fire.
        is_active: Inactive webhooks are never delivered to.
        timeout_seconds: Hard limit for a single delivery attempt.
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        retry_backoff: Delay policy between attempts.
        stats: Running counters, updated only by the delivery pipeline.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    tenant_id: str = Field(min_length=1, description="Owning tenant")
    endpoint_id: str = Field(min_length=1, description="Watched ingestion endpoint")
    name: str = Field(default="", description="Human-readable name")
    description: str | None = Field(default=None, description="Optional description")
    url: HttpUrl = Field(description="Target URL for deliveries")
    secret: str | None = Field(default=None, description="Shared secret for HMAC signatures")
    trigger_events: list[str] = Field(
        default_factory=lambda: [DATA_RECEIVED],
        description="Event names this webhook listens to",
    )
    trigger_conditions: list[Condition] = Field(
        default_factory=list,
        description="Conditions that must all hold (logical AND)",
    )
    is_active: bool = Field(default=True, description="Whether deliveries are enabled")
    timeout_seconds: float = Field(
        default=30.0, gt=0, le=300, description="Per-attempt timeout in seconds"
    )
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries after first attempt")
    retry_backoff: BackoffStrategy = Field(
        default=BackoffStrategy.EXPONENTIAL, description="Backoff between attempts"
    )
    stats: WebhookStats = Field(default_factory=WebhookStats)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("trigger_conditions", mode="before")
    @classmethod
    def _normalize_conditions(cls, value: Any) -> Any:
        return parse_conditions(value)

    @property
    def max_attempts(self) -> int:
        """Total attempts allowed for one delivery."""
        return self.max_retries + 1

    @property
    def target_url(self) -> str:
        return str(self.url)

    def listens_to(self, event_name: str) -> bool:
        """Check if this webhook declares the given trigger event."""
        return bool(self.trigger_events) and event_name in self.trigger_events


class EndpointSummary(BaseModel):
    """The ingestion endpoint included in every envelope."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    url_path: str


class DataEvent(BaseModel):
    """An event produced by the ingestion path.

    Attributes:
        id: Unique identifier for this event.
        name: Event name matched against webhook trigger_events.
        tenant_id: Tenant that owns the endpoint.
        endpoint_id: Endpoint that received the data.
        data: Raw payload as received.
        category: Classification tag of the payload, if one was assigned.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    name: str = Field(default=DATA_RECEIVED)
    tenant_id: str
    endpoint_id: str
    data: Any = None
    category: str | None = None
    received_at: datetime = Field(default_factory=utc_now)


class RequestMetadata(BaseModel):
    """Details of the inbound request that produced an event."""

    model_config = ConfigDict(extra="forbid")

    request_id: str | None = None
    api_key_id: str | None = None
    source_ip: str | None = None
    user_agent: str | None = None


__all__ = [
    "BackoffStrategy",
    "DATA_RECEIVED",
    "DataEvent",
    "EndpointSummary",
    "RequestMetadata",
    "WEBHOOK_TEST",
    "Webhook",
    "WebhookStats",
]
