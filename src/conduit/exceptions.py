"""Conduit exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from ConduitError for easy catching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from conduit.models import RateLimitInfo, UsageCheckResult


class ConduitError(Exception):
    """Base exception for all Conduit errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "conduit_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(ConduitError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(ConduitError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "endpoint").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(ConduitError):
    """Storage operation failed."""

    code: str = "storage_error"


class UsageStoreUnavailableError(StorageError):
    """The usage store could not be reached.

    Monthly and payload-size admission checks fail closed when this is raised.
    """

    code: str = "usage_store_unavailable"


class UsageConflictError(StorageError):
    """Optimistic usage update kept losing to concurrent writers."""

    code: str = "usage_conflict"


class UsageLimitExceededError(ConduitError):
    """A monthly plan limit would be exceeded.

    Attributes:
        result: The denied usage check with limit type, usage and reset countdown.
    """

    code: str = "usage_limit_exceeded"

    def __init__(self, result: UsageCheckResult) -> None:
        self.result = result
        super().__init__(result.reason or "Usage limit exceeded")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "limit_type": self.result.limit_type,
                "current_usage": self.result.current_usage,
                "limit": self.result.limit,
                "message": self.message,
            }
        }


class RateLimitError(ConduitError):
    """Hourly rate limit exceeded.

    Attributes:
        retry_after: Seconds until the oldest tracked request leaves the window.
        info: Limiter state at the time of the denial, if known.
    """

    code: str = "rate_limit_exceeded"

    def __init__(self, retry_after: int, info: RateLimitInfo | None = None) -> None:
        self.retry_after = retry_after
        self.info = info
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "retry_after": self.retry_after,
                "message": self.message,
            }
        }


class UnsafeURLError(ConduitError):
    """Webhook target URL failed the outbound URL policy."""

    code: str = "unsafe_url"


class ConfigurationError(ConduitError):
    """Required configuration is missing or invalid."""

    code: str = "configuration_error"
