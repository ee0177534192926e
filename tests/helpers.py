"""Shared test helpers."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import httpx

# Frozen "now" used by clock fixtures
FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that answers from a list of status codes and records requests.

    The last status repeats once the list is exhausted.
    """

    def __init__(self, statuses: list[int] | None = None, body: str = "ok") -> None:
        self.statuses = list(statuses or [200])
        self.body = body
        self.requests: list[httpx.Request] = []
        super().__init__(self._respond)

    def _respond(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.statuses) - 1)
        return httpx.Response(self.statuses[index], text=self.body)

    def sent_json(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)
