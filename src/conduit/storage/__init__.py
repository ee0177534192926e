"""Storage backends for usage counters, webhooks and execution logs."""

from .base import ExecutionLogStore, UsageStore, WebhookStore, evaluate_guards
from .memory import InMemoryExecutionLogStore, InMemoryUsageStore, InMemoryWebhookStore
from .optimistic import OptimisticUsageStore, VersionedMemoryUsageStore
from .redis import RedisUsageStore

__all__ = [
    "ExecutionLogStore",
    "InMemoryExecutionLogStore",
    "InMemoryUsageStore",
    "InMemoryWebhookStore",
    "OptimisticUsageStore",
    "RedisUsageStore",
    "UsageStore",
    "VersionedMemoryUsageStore",
    "WebhookStore",
    "evaluate_guards",
]
