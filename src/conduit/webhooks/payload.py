"""Envelope construction for webhook deliveries."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from conduit.models import (
    WEBHOOK_TEST,
    DataEvent,
    EndpointSummary,
    Envelope,
    EnvelopeMetadata,
    RequestMetadata,
    Webhook,
    utc_now,
)

from .signing import sign_envelope

TEST_ENDPOINT = EndpointSummary(id="test-endpoint", name="Test Endpoint", url_path="test")
TEST_WEBHOOK_ID = "test"


class PayloadBuilder:
    """Builds (and signs, when a secret is set) delivery envelopes.

    Example:
        ```python
        builder = PayloadBuilder()
        envelope = builder.build(webhook, event, endpoint, metadata)
        body = envelope.to_json()
        ```
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def _metadata(self, metadata: RequestMetadata | None) -> EnvelopeMetadata:
        fields = metadata.model_dump() if metadata is not None else {}
        return EnvelopeMetadata(timestamp=self._clock().isoformat(), **fields)

    def build(
        self,
        webhook: Webhook,
        event: DataEvent,
        endpoint: EndpointSummary,
        metadata: RequestMetadata | None = None,
        conditions_met: list[dict[str, Any]] | None = None,
    ) -> Envelope:
        """Build the envelope for one webhook and event.

        Args:
            webhook: Target webhook. Its secret, if any, signs the envelope.
            event: Triggering event; its data becomes the envelope's data.
            endpoint: Endpoint that received the data.
            metadata: Inbound request details.
            conditions_met: Conditions that matched, for webhooks that have any.

        Returns:
            The envelope, signed if the webhook has a secret.
        """
        envelope = Envelope(
            event=event.name,
            webhook_id=webhook.id,
            endpoint=endpoint,
            data=event.data,
            metadata=self._metadata(metadata),
            conditions_met=conditions_met or None,
        )
        if webhook.secret:
            envelope = sign_envelope(envelope, webhook.secret)
        return envelope

    def build_test(
        self,
        sample_data: Any = None,
        secret: str | None = None,
    ) -> Envelope:
        """Build a ``webhook_test`` envelope for an ad-hoc test delivery."""
        timestamp = self._clock().isoformat()
        data = sample_data
        if data is None:
            data = {"test": True, "message": f"Webhook test from Conduit at {timestamp}"}
        envelope = Envelope(
            event=WEBHOOK_TEST,
            webhook_id=TEST_WEBHOOK_ID,
            endpoint=TEST_ENDPOINT,
            data=data,
            metadata=EnvelopeMetadata(timestamp=timestamp),
        )
        if secret:
            envelope = sign_envelope(envelope, secret)
        return envelope


__all__ = ["PayloadBuilder", "TEST_ENDPOINT", "TEST_WEBHOOK_ID"]
