"""Data models for Conduit.

Webhook Types:
    - Webhook: Target URL, trigger events/conditions, retry policy and stats
    - DataEvent: An event emitted by the ingestion path
    - Envelope: JSON body delivered to webhook targets
    - DeliveryOutcome / ExecutionLogEntry: Attempt results and their audit log

Usage Types:
    - UsageRecord: Per-tenant counters for the current day/month
    - PlanLimits: Quota ceilings per subscription tier
    - QuotaGuard / QuotaCheck: Inputs and result of atomic check-and-increment
    - UsageCheckResult / AdmissionResult / RateLimitInfo: Admission answers
"""

from .base import generate_id, utc_now
from .conditions import (
    CATEGORY_FIELD,
    MISSING,
    CompareCondition,
    Condition,
    ContainsCondition,
    EqualsCondition,
    ExistsCondition,
    NotEqualsCondition,
    parse_conditions,
    resolve_field,
)
from .delivery import (
    DeliveryOutcome,
    Envelope,
    EnvelopeMetadata,
    ErrorKind,
    ExecutionLogEntry,
    dumps_compact,
)
from .usage import (
    PLAN_TIERS,
    AdmissionResult,
    CounterScope,
    LimitType,
    PlanLimits,
    QuotaCheck,
    QuotaGuard,
    RateLimitInfo,
    UsageCheckResult,
    UsageCounter,
    UsageRecord,
    UsageStats,
    UsageTrendPoint,
    UsageWarning,
    period_key,
)
from .webhook import (
    DATA_RECEIVED,
    WEBHOOK_TEST,
    BackoffStrategy,
    DataEvent,
    EndpointSummary,
    RequestMetadata,
    Webhook,
    WebhookStats,
)

__all__ = [
    # Base
    "generate_id",
    "utc_now",
    # Conditions
    "CATEGORY_FIELD",
    "MISSING",
    "CompareCondition",
    "Condition",
    "ContainsCondition",
    "EqualsCondition",
    "ExistsCondition",
    "NotEqualsCondition",
    "parse_conditions",
    "resolve_field",
    # Webhooks
    "BackoffStrategy",
    "DATA_RECEIVED",
    "DataEvent",
    "EndpointSummary",
    "RequestMetadata",
    "WEBHOOK_TEST",
    "Webhook",
    "WebhookStats",
    # Delivery
    "DeliveryOutcome",
    "Envelope",
    "EnvelopeMetadata",
    "ErrorKind",
    "ExecutionLogEntry",
    "dumps_compact",
    # Usage
    "AdmissionResult",
    "CounterScope",
    "LimitType",
    "PLAN_TIERS",
    "PlanLimits",
    "QuotaCheck",
    "QuotaGuard",
    "RateLimitInfo",
    "UsageCheckResult",
    "UsageCounter",
    "UsageRecord",
    "UsageStats",
    "UsageTrendPoint",
    "UsageWarning",
    "period_key",
]
