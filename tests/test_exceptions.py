"""Tests for Conduit exception hierarchy."""

import pytest

from conduit.exceptions import (
    ConduitError,
    ConfigurationError,
    NotFoundError,
    RateLimitError,
    StorageError,
    UnsafeURLError,
    UsageConflictError,
    UsageLimitExceededError,
    UsageStoreUnavailableError,
    ValidationError,
)
from conduit.models import RateLimitInfo, UsageCheckResult


class TestConduitError:
    """Tests for the base ConduitError class."""

    def test_error_message(self):
        """Should store and return message."""
        error = ConduitError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_to_dict(self):
        """Should convert to API-friendly dict."""
        result = ConduitError("Something went wrong").to_dict()
        assert result == {
            "error": {
                "code": "conduit_error",
                "message": "Something went wrong",
            }
        }

    def test_inheritance(self):
        """All custom exceptions should inherit from ConduitError."""
        exceptions = [
            ValidationError("field", "invalid"),
            NotFoundError("webhook", "whk_1"),
            StorageError("failed"),
            UsageStoreUnavailableError("down"),
            UsageConflictError("busy"),
            UsageLimitExceededError(UsageCheckResult(allowed=False)),
            RateLimitError(60),
            UnsafeURLError("blocked"),
            ConfigurationError("missing"),
        ]
        for exc in exceptions:
            assert isinstance(exc, ConduitError)

    def test_store_errors_are_storage_errors(self):
        """Store failures should be catchable as StorageError."""
        assert isinstance(UsageStoreUnavailableError("down"), StorageError)
        assert isinstance(UsageConflictError("busy"), StorageError)


class TestValidationError:
    def test_field_in_message_and_dict(self):
        error = ValidationError("body", "must be JSON")
        assert error.message == "body: must be JSON"
        assert error.to_dict()["error"]["field"] == "body"


class TestNotFoundError:
    def test_to_dict(self):
        error = NotFoundError("endpoint", "ep_1")
        assert error.to_dict() == {
            "error": {
                "code": "not_found",
                "resource_type": "endpoint",
                "resource_id": "ep_1",
                "message": "endpoint not found: ep_1",
            }
        }


class TestUsageLimitExceededError:
    def test_carries_result(self):
        result = UsageCheckResult(
            allowed=False,
            reason="Monthly request limit exceeded",
            limit_type="requests",
            current_usage=100,
            limit=100,
        )
        error = UsageLimitExceededError(result)

        assert error.result is result
        assert error.message == "Monthly request limit exceeded"
        body = error.to_dict()["error"]
        assert body["code"] == "usage_limit_exceeded"
        assert body["limit_type"] == "requests"
        assert body["current_usage"] == 100

    def test_default_message(self):
        assert UsageLimitExceededError(UsageCheckResult(allowed=False)).message == (
            "Usage limit exceeded"
        )


class TestRateLimitError:
    def test_retry_after(self):
        info = RateLimitInfo(key="user:ten_1", limit=100, remaining=0, reset_at=1_700_000_000)
        error = RateLimitError(42, info=info)

        assert error.retry_after == 42
        assert error.info is info
        assert "42" in error.message
        assert error.to_dict()["error"]["retry_after"] == 42

    @pytest.mark.parametrize("retry_after", [1, 3600])
    def test_code(self, retry_after):
        assert RateLimitError(retry_after).code == "rate_limit_exceeded"
