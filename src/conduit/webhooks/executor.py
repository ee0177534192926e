"""Single webhook delivery attempts.

One call to ``attempt`` is one HTTP POST with a hard total timeout. The
result is always a classified DeliveryOutcome; nothing is raised for
remote or network failures.
"""

from __future__ import annotations

import asyncio
import time

import httpx

from conduit.exceptions import UnsafeURLError
from conduit.logging import get_logger
from conduit.models import DeliveryOutcome, Envelope, ErrorKind, Webhook

from .signing import signature_header
from .url_policy import ensure_safe_target

logger = get_logger(__name__)


class DeliveryExecutor:
    """Performs one HTTP attempt per call.

    Args:
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        user_agent: User-Agent header value.
        header_prefix: Prefix for product headers, e.g. "X-Conduit".
        response_body_max_chars: Response bodies are truncated to this size.
        allow_private_targets: Skip the private-address policy.
        resolve_dns: Check resolved addresses against the policy.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = "Conduit-Webhook/1.0",
        header_prefix: str = "X-Conduit",
        response_body_max_chars: int = 2000,
        allow_private_targets: bool = False,
        resolve_dns: bool = True,
    ) -> None:
        self._transport = transport
        self.user_agent = user_agent
        self.header_prefix = header_prefix
        self.response_body_max_chars = response_body_max_chars
        self.allow_private_targets = allow_private_targets
        self.resolve_dns = resolve_dns

    def build_headers(self, envelope: Envelope, attempt_number: int) -> dict[str, str]:
        """Request headers for an attempt."""
        prefix = self.header_prefix
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            f"{prefix}-Event": envelope.event,
            f"{prefix}-Webhook-Id": envelope.webhook_id,
            f"{prefix}-Endpoint-Id": envelope.endpoint.id,
            f"{prefix}-Attempt": str(attempt_number),
            f"{prefix}-Timestamp": envelope.metadata.timestamp,
        }
        if envelope.signature:
            headers[f"{prefix}-Signature-256"] = signature_header(envelope.signature)
        return headers

    def _truncate(self, text: str | None) -> str | None:
        if text is None:
            return None
        return text[: self.response_body_max_chars]

    async def attempt(
        self,
        webhook: Webhook,
        envelope: Envelope,
        attempt_number: int,
        max_attempts: int | None = None,
    ) -> DeliveryOutcome:
        """Deliver an envelope to a webhook's target URL once."""
        return await self.deliver(
            url=webhook.target_url,
            envelope=envelope,
            timeout_seconds=webhook.timeout_seconds,
            attempt_number=attempt_number,
            max_attempts=max_attempts or webhook.max_attempts,
        )

    async def deliver(
        self,
        *,
        url: str,
        envelope: Envelope,
        timeout_seconds: float,
        attempt_number: int = 1,
        max_attempts: int = 1,
    ) -> DeliveryOutcome:
        """POST an envelope to ``url`` once and classify the result.

        Returns:
            DeliveryOutcome. 2xx is success; any other status is ``http_error``;
            timeouts, network failures, policy rejections and local faults get
            their own error kinds.
        """
        headers = self.build_headers(envelope, attempt_number)
        body = envelope.to_json().encode("utf-8")
        started = time.perf_counter()

        def outcome(**fields: object) -> DeliveryOutcome:
            duration_ms = int((time.perf_counter() - started) * 1000)
            return DeliveryOutcome(
                webhook_id=envelope.webhook_id,
                attempt=attempt_number,
                max_attempts=max_attempts,
                duration_ms=duration_ms,
                **fields,  # type: ignore[arg-type]
            )

        try:
            async with asyncio.timeout(timeout_seconds):
                await ensure_safe_target(
                    url,
                    allow_private=self.allow_private_targets,
                    resolve_dns=self.resolve_dns,
                )
                async with httpx.AsyncClient(
                    transport=self._transport,
                    timeout=timeout_seconds,
                    follow_redirects=False,
                ) as client:
                    response = await client.post(url, content=body, headers=headers)
                    response_body = self._truncate(response.text)
        except UnsafeURLError as e:
            logger.warning(
                "Webhook target blocked", webhook_id=envelope.webhook_id, error=e.message
            )
            return outcome(success=False, error=e.message, error_kind=ErrorKind.BLOCKED_URL)
        except (TimeoutError, httpx.TimeoutException):
            return outcome(
                success=False,
                error=f"Request timeout after {timeout_seconds}s",
                error_kind=ErrorKind.TIMEOUT,
            )
        except httpx.TransportError as e:
            return outcome(
                success=False,
                error=str(e) or type(e).__name__,
                error_kind=ErrorKind.CONNECTION,
            )
        except Exception as e:
            logger.exception("Webhook execution error", webhook_id=envelope.webhook_id)
            return outcome(
                success=False,
                error=f"Unexpected error: {e}",
                error_kind=ErrorKind.EXECUTION_ERROR,
            )

        success = 200 <= response.status_code < 300
        return outcome(
            success=success,
            status_code=response.status_code,
            response_body=response_body,
            response_headers=dict(response.headers),
            error=None if success else f"HTTP {response.status_code}",
            error_kind=None if success else ErrorKind.HTTP_ERROR,
        )


__all__ = ["DeliveryExecutor"]
