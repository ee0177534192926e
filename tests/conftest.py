"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from conduit.models import DataEvent, EndpointSummary, Webhook
from conduit.storage import InMemoryExecutionLogStore, InMemoryUsageStore, InMemoryWebhookStore
from conduit.webhooks import DeliveryExecutor

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FIXED_NOW  # noqa: E402


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def webhook_store() -> InMemoryWebhookStore:
    return InMemoryWebhookStore()


@pytest.fixture
def log_store() -> InMemoryExecutionLogStore:
    return InMemoryExecutionLogStore()


@pytest.fixture
def endpoint() -> EndpointSummary:
    return EndpointSummary(id="ep_orders", name="Orders", url_path="orders")


@pytest.fixture
def make_webhook() -> Callable[..., Webhook]:
    """Factory for webhooks on the ep_orders endpoint."""

    def _make(**overrides: Any) -> Webhook:
        fields: dict[str, Any] = {
            "tenant_id": "ten_1",
            "endpoint_id": "ep_orders",
            "name": "Order hook",
            "url": "https://hooks.example.com/orders",
        }
        fields.update(overrides)
        return Webhook(**fields)

    return _make


@pytest.fixture
def make_event() -> Callable[..., DataEvent]:
    def _make(data: Any = None, **overrides: Any) -> DataEvent:
        fields: dict[str, Any] = {
            "tenant_id": "ten_1",
            "endpoint_id": "ep_orders",
            "data": data if data is not None else {"amount": 150},
        }
        fields.update(overrides)
        return DataEvent(**fields)

    return _make


@pytest.fixture
def make_executor() -> Callable[..., DeliveryExecutor]:
    """Executor wired to a transport, with DNS checks off (no network in tests)."""

    def _make(transport: httpx.AsyncBaseTransport, **overrides: Any) -> DeliveryExecutor:
        fields: dict[str, Any] = {"transport": transport, "resolve_dns": False}
        fields.update(overrides)
        return DeliveryExecutor(**fields)

    return _make
