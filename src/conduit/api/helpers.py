"""API helper functions shared by routes and exception handlers.

Provides:
- Client IP extraction for hourly rate-limit keys
- Usage and rate-limit response headers
- The 429 denial body for plan limits
"""

from __future__ import annotations

from typing import Any

from fastapi import Request

from conduit.admission import upgrade_message
from conduit.models import RateLimitInfo, UsageCheckResult

USAGE_LIMIT_CODE = "USAGE_LIMIT_EXCEEDED"
RATE_LIMIT_CODE = "RATE_LIMIT_EXCEEDED"


def extract_client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str | None:
    """Extract the best available client IP for rate limiting.

    When behind a reverse proxy, ``request.client.host`` is the proxy's IP,
    not the real client. Enable *trust_proxy_headers* only when you control
    the proxy that sets ``X-Forwarded-For`` / ``X-Real-IP``.

    Priority (when trust_proxy_headers is True):
        1. X-Forwarded-For, leftmost entry (original client)
        2. X-Real-IP, typically set by nginx
        3. request.client.host, the direct connection IP
    """
    if trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip

        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return None


def usage_headers(result: UsageCheckResult) -> dict[str, str]:
    """``X-Usage-*`` headers describing a usage check."""
    headers: dict[str, str] = {}
    if result.limit_type is not None:
        headers["X-Usage-Limit-Type"] = result.limit_type
    if result.limit is not None:
        headers["X-Usage-Limit"] = str(result.limit)
    if result.current_usage is not None:
        headers["X-Usage-Current"] = str(result.current_usage)
    if result.remaining is not None:
        headers["X-Usage-Remaining"] = str(result.remaining)
    if result.days_until_reset is not None:
        headers["X-Usage-Reset-Days"] = str(result.days_until_reset)
    return headers


def rate_limit_headers(info: RateLimitInfo | None) -> dict[str, str]:
    """``X-RateLimit-*`` headers, empty when the limiter is disabled."""
    if info is None:
        return {}
    return {
        "X-RateLimit-Limit": str(info.limit),
        "X-RateLimit-Remaining": str(info.remaining),
        "X-RateLimit-Reset": str(info.reset_at),
    }


def usage_denial_body(result: UsageCheckResult) -> dict[str, Any]:
    """JSON body of a 429 plan-limit denial."""
    return {
        "error": "Usage limit exceeded",
        "message": result.reason,
        "code": USAGE_LIMIT_CODE,
        "limit_type": result.limit_type,
        "current_usage": result.current_usage,
        "limit": result.limit,
        "percentage_used": result.percentage_used,
        "days_until_reset": result.days_until_reset,
        "upgrade_message": upgrade_message(result.limit_type),
    }


def rate_limit_denial_body(retry_after: int, message: str) -> dict[str, Any]:
    """JSON body of a 429 hourly-limit denial."""
    return {
        "error": "Rate limit exceeded",
        "message": message,
        "code": RATE_LIMIT_CODE,
        "retry_after": retry_after,
    }


__all__ = [
    "RATE_LIMIT_CODE",
    "USAGE_LIMIT_CODE",
    "extract_client_ip",
    "rate_limit_denial_body",
    "rate_limit_headers",
    "usage_denial_body",
    "usage_headers",
]
