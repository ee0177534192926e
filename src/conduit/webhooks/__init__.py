"""Webhook delivery engine.

Provides:
- Trigger evaluation against event data
- Envelope building and HMAC-SHA256 signing
- Single HTTP attempts with classified outcomes
- Sequential retry with exponential, linear or fixed backoff
- Execution logging and per-webhook statistics
"""

from .delivery import DeliveryReport, WebhookDispatcher
from .executor import DeliveryExecutor
from .payload import PayloadBuilder
from .retry import DeliveryPhase, DeliveryState, RetryScheduler, next_state
from .signing import compute_signature, sign_envelope, verify_envelope, verify_signature
from .stats import StatsAggregator, apply_delivery_result
from .triggers import TriggerDecision, TriggerEvaluator
from .url_policy import generate_webhook_secret, validate_webhook_url

__all__ = [
    "DeliveryExecutor",
    "DeliveryPhase",
    "DeliveryReport",
    "DeliveryState",
    "PayloadBuilder",
    "RetryScheduler",
    "StatsAggregator",
    "TriggerDecision",
    "TriggerEvaluator",
    "WebhookDispatcher",
    "apply_delivery_result",
    "compute_signature",
    "generate_webhook_secret",
    "next_state",
    "sign_envelope",
    "validate_webhook_url",
    "verify_envelope",
    "verify_signature",
]
