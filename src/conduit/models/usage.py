"""Usage counters, plan limits and admission results."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

LimitType = Literal["requests", "payload_size", "storage", "webhooks", "ai"]

MIB = 1024 * 1024
GIB = 1024 * MIB


class CounterScope(str, Enum):
    """Period a usage counter rolls over with."""

    DAY = "day"
    MONTH = "month"
    LIFETIME = "lifetime"


class UsageCounter(str, Enum):
    """Every counter kept in the usage store."""

    REQUESTS_TODAY = "requests_today"
    DATA_BYTES_TODAY = "data_bytes_today"
    WEBHOOK_CALLS_TODAY = "webhook_calls_today"
    REQUESTS_THIS_MONTH = "requests_this_month"
    DATA_BYTES_THIS_MONTH = "data_bytes_this_month"
    WEBHOOK_CALLS_THIS_MONTH = "webhook_calls_this_month"
    AI_EXECUTIONS_THIS_MONTH = "ai_executions_this_month"
    TOTAL_STORAGE_BYTES = "total_storage_bytes"
    ENDPOINTS_COUNT = "endpoints_count"
    API_KEYS_COUNT = "api_keys_count"

    @property
    def scope(self) -> CounterScope:
        if self.value.endswith("_today"):
            return CounterScope.DAY
        if self.value.endswith("_this_month"):
            return CounterScope.MONTH
        return CounterScope.LIFETIME


def period_key(scope: CounterScope, at: datetime | date) -> str:
    """Key of the period containing ``at``.

    A new period gets a new key, so counters reset without a destructive write.
    """
    if scope is CounterScope.DAY:
        return at.strftime("%Y-%m-%d")
    if scope is CounterScope.MONTH:
        return at.strftime("%Y-%m")
    return "lifetime"


class PlanLimits(BaseModel):
    """Quota ceilings for a tenant's subscription tier. ``None`` means unlimited."""

    model_config = ConfigDict(extra="forbid")

    plan_name: str = "citizen"
    monthly_requests: int | None = Field(default=10_000, ge=0)
    monthly_webhooks: int | None = Field(default=1_000, ge=0)
    monthly_ai_executions: int | None = Field(default=100, ge=0)
    max_payload_size: int | None = Field(default=1 * MIB, ge=0)
    max_storage_bytes: int | None = Field(default=100 * MIB, ge=0)

    @classmethod
    def for_plan(cls, plan_name: str) -> PlanLimits:
        """Default limits for a named tier."""
        try:
            return PLAN_TIERS[plan_name].model_copy()
        except KeyError:
            raise ValueError(f"Unknown plan: {plan_name}") from None


PLAN_TIERS: dict[str, PlanLimits] = {
    "citizen": PlanLimits(),
    "developer": PlanLimits(
        plan_name="developer",
        monthly_requests=50_000,
        monthly_webhooks=10_000,
        monthly_ai_executions=1_000,
        max_payload_size=10 * MIB,
        max_storage_bytes=1 * GIB,
    ),
    "business": PlanLimits(
        plan_name="business",
        monthly_requests=500_000,
        monthly_webhooks=None,
        monthly_ai_executions=None,
        max_payload_size=100 * MIB,
        max_storage_bytes=10 * GIB,
    ),
}


class UsageRecord(BaseModel):
    """Current-period view of a tenant's counters.

    Field names match UsageCounter values.
    """

    model_config = ConfigDict(extra="forbid")

    tenant_id: str
    day: str
    month: str
    requests_today: int = 0
    data_bytes_today: int = 0
    webhook_calls_today: int = 0
    requests_this_month: int = 0
    data_bytes_this_month: int = 0
    webhook_calls_this_month: int = 0
    ai_executions_this_month: int = 0
    total_storage_bytes: int = 0
    endpoints_count: int = 0
    api_keys_count: int = 0

    def get(self, counter: UsageCounter) -> int:
        value: int = getattr(self, counter.value)
        return value


class QuotaGuard(BaseModel):
    """One limit to enforce inside an atomic check-and-increment.

    With a counter, the guard holds when ``counter + amount <= limit``.
    Without one it is a static check of ``amount <= limit`` (payload size).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    limit_type: LimitType
    counter: UsageCounter | None = None
    amount: int = Field(ge=0)
    limit: int = Field(ge=0)


class QuotaCheck(BaseModel):
    """Outcome of an atomic check-and-increment.

    Attributes:
        allowed: True if every guard held and increments were applied.
        violated: First guard that failed (evaluation stops there).
        current: Value the violated guard compared against its limit.
        updated: Counter values after the increments were applied.
    """

    model_config = ConfigDict(extra="forbid")

    allowed: bool
    violated: QuotaGuard | None = None
    current: int | None = None
    updated: dict[UsageCounter, int] = Field(default_factory=dict)


class UsageCheckResult(BaseModel):
    """Structured admission answer for one limit."""

    model_config = ConfigDict(extra="forbid")

    allowed: bool
    reason: str | None = None
    limit_type: LimitType | None = None
    current_usage: int | None = None
    limit: int | None = None
    percentage_used: float | None = None
    days_until_reset: int | None = None
    seconds_until_reset: int | None = None

    @property
    def remaining(self) -> int | None:
        if self.limit is None or self.current_usage is None:
            return None
        return max(0, self.limit - self.current_usage)


class RateLimitInfo(BaseModel):
    """Hourly limiter state for a key.

    Attributes:
        limit: Maximum requests allowed per window.
        remaining: Requests remaining in current window.
        reset_at: Unix timestamp when the oldest tracked request leaves the window.
    """

    model_config = ConfigDict(extra="forbid")

    key: str
    limit: int = Field(ge=0)
    remaining: int = Field(ge=0)
    reset_at: int


class AdmissionResult(BaseModel):
    """A request that passed admission.

    Attributes:
        usage: Monthly request usage after this request was counted.
        rate_limit: Hourly limiter state, None when the limiter is disabled.
        degraded: True when admitted by the hourly limiter alone.
    """

    model_config = ConfigDict(extra="forbid")

    tenant_id: str
    usage: UsageCheckResult | None = None
    rate_limit: RateLimitInfo | None = None
    degraded: bool = False


class UsageStats(BaseModel):
    """Usage, limits and percentage consumed for display."""

    model_config = ConfigDict(extra="forbid")

    usage: UsageRecord
    limits: PlanLimits
    percentages: dict[str, float]


class UsageWarning(BaseModel):
    """A limit the tenant is close to."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["requests", "storage", "webhooks", "ai"]
    percentage: float
    current: int
    limit: int
    message: str


class UsageTrendPoint(BaseModel):
    """Daily totals for usage charts."""

    model_config = ConfigDict(extra="forbid")

    date: str
    requests: int = 0
    data_bytes: int = 0
    webhook_calls: int = 0


__all__ = [
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
