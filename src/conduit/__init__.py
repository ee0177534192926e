"""Conduit: webhook delivery and usage-gated admission for multi-tenant ingestion."""

from .admission import AdmissionController
from .config import Settings
from .exceptions import (
    ConduitError,
    RateLimitError,
    UsageLimitExceededError,
    UsageStoreUnavailableError,
)
from .service import ConduitService, IngestResult
from .webhooks import WebhookDispatcher

__version__ = "0.1.0"

__all__ = [
    "AdmissionController",
    "ConduitError",
    "ConduitService",
    "IngestResult",
    "RateLimitError",
    "Settings",
    "UsageLimitExceededError",
    "UsageStoreUnavailableError",
    "WebhookDispatcher",
    "__version__",
]
