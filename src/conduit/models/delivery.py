"""Envelope, delivery outcome and execution log models."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now
from .webhook import EndpointSummary


class ErrorKind(str, Enum):
    """Classification of a failed delivery attempt."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP_ERROR = "http_error"
    EXECUTION_ERROR = "execution_error"
    BLOCKED_URL = "blocked_url"


class EnvelopeMetadata(BaseModel):
    """Request metadata carried in the envelope."""

    model_config = ConfigDict(extra="forbid")

    timestamp: str = Field(description="ISO-8601 time the envelope was built")
    request_id: str | None = None
    api_key_id: str | None = None
    source_ip: str | None = None
    user_agent: str | None = None


class Envelope(BaseModel):
    """JSON body POSTed to a webhook target.

    Field order is part of the wire format: the signature is computed over
    the compact serialization produced by ``canonical_json()``.
    """

    model_config = ConfigDict(extra="forbid")

    event: str
    webhook_id: str
    endpoint: EndpointSummary
    data: Any = None
    metadata: EnvelopeMetadata
    conditions_met: list[dict[str, Any]] | None = None
    signature: str | None = None

    def signing_payload(self) -> dict[str, Any]:
        """Envelope as a JSON-ready dict, without the signature field."""
        payload = self.model_dump(mode="json", exclude={"signature"})
        if self.conditions_met is None:
            payload.pop("conditions_met")
        return payload

    def canonical_json(self) -> str:
        """Exact text that is signed."""
        return dumps_compact(self.signing_payload())

    def to_json(self) -> str:
        """Exact text that is sent as the request body."""
        payload = self.signing_payload()
        if self.signature is not None:
            payload["signature"] = self.signature
        return dumps_compact(payload)


def dumps_compact(payload: Any) -> str:
    """Serialize JSON without insignificant whitespace, preserving key order."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class DeliveryOutcome(BaseModel):
    """Result of one HTTP attempt. Immutable once created.

    Attributes:
        success: True for a 2xx response.
        status_code: HTTP status, when a response was received.
        response_body: Response text truncated to the configured size.
        error: Human-readable failure description.
        error_kind: Failure classification.
        duration_ms: Wall time of the attempt in milliseconds.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    webhook_id: str
    attempt: int = Field(ge=1)
    max_attempts: int = Field(ge=1)
    success: bool
    status_code: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = Field(ge=0)


class ExecutionLogEntry(BaseModel):
    """Append-only record of one delivery attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("wlog"))
    webhook_id: str
    tenant_id: str
    triggered_by_data_id: str | None = None
    trigger_event: str
    trigger_conditions_met: list[dict[str, Any]] | None = None
    request_url: str
    request_method: Literal["POST"] = "POST"
    request_headers: dict[str, str] = Field(default_factory=dict)
    request_payload: dict[str, Any] = Field(default_factory=dict)
    response_status: int | None = None
    response_headers: dict[str, str] | None = None
    response_body: str | None = None
    response_time_ms: int = 0
    attempt_number: int = Field(ge=1)
    max_attempts: int = Field(ge=1)
    is_successful: bool
    error_message: str | None = None
    error_type: ErrorKind | None = None
    webhook_secret_used: bool = False
    signature_sent: str | None = None
    user_agent: str
    executed_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_outcome(
        cls,
        *,
        tenant_id: str,
        request_url: str,
        envelope: Envelope,
        outcome: DeliveryOutcome,
        request_headers: dict[str, str],
        user_agent: str,
        secret_used: bool,
        event_id: str | None = None,
    ) -> ExecutionLogEntry:
        """Build the log entry for an attempt."""
        # Signature header is logged as a presence flag only
        logged_headers = {
            key: value for key, value in request_headers.items() if "signature" not in key.lower()
        }
        return cls(
            webhook_id=outcome.webhook_id,
            tenant_id=tenant_id,
            triggered_by_data_id=event_id or envelope.metadata.request_id,
            trigger_event=envelope.event,
            trigger_conditions_met=envelope.conditions_met,
            request_url=request_url,
            request_headers=logged_headers,
            request_payload=envelope.model_dump(mode="json", exclude_none=False),
            response_status=outcome.status_code,
            response_headers=outcome.response_headers,
            response_body=outcome.response_body,
            response_time_ms=outcome.duration_ms,
            attempt_number=outcome.attempt,
            max_attempts=outcome.max_attempts,
            is_successful=outcome.success,
            error_message=outcome.error,
            error_type=outcome.error_kind,
            webhook_secret_used=secret_used,
            signature_sent=envelope.signature,
            user_agent=user_agent,
        )


__all__ = [
    "DeliveryOutcome",
    "Envelope",
    "EnvelopeMetadata",
    "ErrorKind",
    "ExecutionLogEntry",
    "dumps_compact",
]
