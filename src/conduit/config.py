"""Configuration management for Conduit."""

import logging
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Conduit configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the CONDUIT_ prefix. For example:
        CONDUIT_REDIS_URL=redis://localhost:6379/0
        CONDUIT_RATE_LIMIT_HOURLY_MAX=500

    Notes:
        - Without a Redis URL, usage counters and the hourly limiter live in
          process memory (single instance only).
        - Degraded mode lets the hourly limiter alone admit requests when the
          usage store is down. It is off by default (fail closed).
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Storage
    redis_url: str | None = Field(
        default=None,
        description=(
            "Redis URL for usage counters and distributed rate limiting "
            "(e.g., redis://localhost:6379/0). If not set, in-memory stores are used."
        ),
    )
    redis_key_prefix: str = Field(
        default="conduit:",
        description="Prefix for all Redis keys",
    )
    usage_store_backend: Literal["memory", "optimistic"] = Field(
        default="memory",
        description=(
            "In-process usage store when no Redis URL is set: lock-based (memory) or "
            "versioned compare-and-set (optimistic)"
        ),
    )
    optimistic_max_attempts: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum read/compare-and-set rounds for optimistic usage updates",
    )

    # Admission
    default_plan: Literal["citizen", "developer", "business"] = Field(
        default="citizen",
        description="Plan tier used for tenants without an explicit subscription",
    )
    degraded_mode_enabled: bool = Field(
        default=False,
        description=(
            "When the usage store is unreachable, admit requests based on the hourly "
            "limiter alone instead of denying them"
        ),
    )
    usage_warning_threshold: float = Field(
        default=80.0,
        ge=0.0,
        le=100.0,
        description="Percentage of a plan limit at which usage warnings are raised",
    )

    # Hourly rate limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable the hourly sliding-window rate limiter",
    )
    rate_limit_hourly_max: int = Field(
        default=100,
        ge=1,
        description="Max requests per window per tenant or client IP",
    )
    rate_limit_window_seconds: int = Field(
        default=3600,
        ge=1,
        description="Sliding window size in seconds",
    )
    rate_limit_sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Interval for the background sweep of idle rate-limit keys",
    )
    rate_limit_trust_proxy_headers: bool = Field(
        default=False,
        description="Use X-Forwarded-For / X-Real-IP for the client IP (behind a trusted proxy)",
    )

    # Webhook delivery
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Maximum webhook pipelines attempting delivery at the same time",
    )
    response_body_max_chars: int = Field(
        default=2000,
        ge=0,
        description="Response bodies are truncated to this many characters before logging",
    )
    webhook_user_agent: str = Field(
        default="Conduit-Webhook/1.0",
        description="User-Agent header for outbound webhook calls",
    )
    webhook_header_prefix: str = Field(
        default="X-Conduit",
        description="Prefix for outbound webhook headers (X-Conduit-Event, ...)",
    )
    webhook_allow_private_targets: bool = Field(
        default=False,
        description="Allow webhook targets on private, loopback or link-local addresses",
    )
    webhook_resolve_dns: bool = Field(
        default=True,
        description="Resolve webhook hostnames and reject those pointing at private addresses",
    )

    model_config = {
        "env_prefix": "CONDUIT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Warn about settings that are unsafe outside development."""
        if self.env != "production":
            return self

        if self.redis_url is None:
            warnings.warn(
                "CONDUIT_REDIS_URL is not set in production. Usage counters are kept in "
                "process memory and are lost on restart.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("In-memory usage store in production")

        if self.webhook_allow_private_targets:
            logger.warning("Private webhook targets are allowed in production")

        return self

    @property
    def is_distributed(self) -> bool:
        """Whether shared state lives in Redis."""
        return self.redis_url is not None


settings = Settings()
