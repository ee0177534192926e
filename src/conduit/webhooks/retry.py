"""Retry state machine for a single webhook delivery.

    pending -> attempting -> succeeded
                          -> waiting_retry -> attempting ...
                          -> exhausted
    waiting_retry -> cancelled (cancellation requested during the wait)

Transitions are computed by pure functions over an immutable DeliveryState;
RetryScheduler drives them, performing the attempt, the log write and the
wait in between.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum

from conduit.exceptions import StorageError
from conduit.logging import get_logger, log_context
from conduit.models import (
    BackoffStrategy,
    DeliveryOutcome,
    Envelope,
    ErrorKind,
    ExecutionLogEntry,
    Webhook,
)
from conduit.storage import ExecutionLogStore

from .executor import DeliveryExecutor
from .stats import StatsAggregator

logger = get_logger(__name__)

MAX_BACKOFF_MS = 30_000
LINEAR_STEP_MS = 2_000
FIXED_DELAY_MS = 5_000
JITTER_MS = 1_000

# Failures that no retry can fix
NON_RETRYABLE = frozenset({ErrorKind.BLOCKED_URL})


class DeliveryPhase(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    WAITING_RETRY = "waiting_retry"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset(
    {DeliveryPhase.SUCCEEDED, DeliveryPhase.EXHAUSTED, DeliveryPhase.CANCELLED}
)


@dataclass(frozen=True)
class DeliveryState:
    """Immutable snapshot of one delivery's progress.

    Attributes:
        attempt: Attempts started so far.
        delay_ms: Wait before the next attempt, set in waiting_retry.
        last_outcome: Result of the most recent attempt.
    """

    phase: DeliveryPhase
    attempt: int
    max_attempts: int
    backoff: BackoffStrategy
    delay_ms: int = 0
    last_outcome: DeliveryOutcome | None = None

    @classmethod
    def initial(cls, webhook: Webhook) -> DeliveryState:
        return cls(
            phase=DeliveryPhase.PENDING,
            attempt=0,
            max_attempts=webhook.max_attempts,
            backoff=webhook.retry_backoff,
        )

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


def base_delay_ms(strategy: BackoffStrategy, attempt: int) -> int:
    """Delay after failed attempt number ``attempt``, before jitter."""
    if strategy is BackoffStrategy.LINEAR:
        return attempt * LINEAR_STEP_MS
    if strategy is BackoffStrategy.FIXED:
        return FIXED_DELAY_MS
    return min(1000 * 2 ** (attempt - 1), MAX_BACKOFF_MS)


def backoff_delay_ms(strategy: BackoffStrategy, attempt: int, rng: random.Random) -> int:
    """Delay after a failed attempt, with jitter in [0, 1000) ms."""
    return base_delay_ms(strategy, attempt) + int(rng.random() * JITTER_MS)


def start_attempt(state: DeliveryState) -> DeliveryState:
    """Move from pending or waiting_retry into the next attempt."""
    if state.phase not in (DeliveryPhase.PENDING, DeliveryPhase.WAITING_RETRY):
        raise ValueError(f"Cannot start an attempt from {state.phase.value}")
    return replace(state, phase=DeliveryPhase.ATTEMPTING, attempt=state.attempt + 1, delay_ms=0)


def next_state(
    state: DeliveryState,
    outcome: DeliveryOutcome,
    rng: random.Random,
) -> DeliveryState:
    """Advance after an attempt completes.

    Success ends the delivery. A failure waits and retries while attempts
    remain; otherwise, or for a non-retryable failure, the delivery is
    exhausted.
    """
    if state.phase is not DeliveryPhase.ATTEMPTING:
        raise ValueError(f"No attempt in progress (phase {state.phase.value})")

    if outcome.success:
        return replace(state, phase=DeliveryPhase.SUCCEEDED, last_outcome=outcome)

    if outcome.error_kind in NON_RETRYABLE or state.attempt >= state.max_attempts:
        return replace(state, phase=DeliveryPhase.EXHAUSTED, last_outcome=outcome)

    return replace(
        state,
        phase=DeliveryPhase.WAITING_RETRY,
        delay_ms=backoff_delay_ms(state.backoff, state.attempt, rng),
        last_outcome=outcome,
    )


def cancel(state: DeliveryState) -> DeliveryState:
    """Abandon a delivery that is waiting for its next attempt."""
    if state.terminal:
        return state
    return replace(state, phase=DeliveryPhase.CANCELLED, delay_ms=0)


class RetryScheduler:
    """Runs the attempt, log, wait, retry loop for one webhook delivery.

    Args:
        executor: Performs individual attempts.
        log_store: Receives one entry per attempt, written before advancing.
        stats: Updated once when the delivery reaches a terminal state.
        slots: Bounds how many attempts run at once across all deliveries.
        sleep: Awaitable sleep, replaced in tests.
        rng: Source of backoff jitter.
    """

    def __init__(
        self,
        executor: DeliveryExecutor,
        log_store: ExecutionLogStore,
        stats: StatsAggregator,
        *,
        slots: asyncio.Semaphore | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.executor = executor
        self.log_store = log_store
        self.stats = stats
        self._slots = slots or asyncio.Semaphore(10)
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def run(
        self,
        webhook: Webhook,
        envelope: Envelope,
        *,
        event_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> DeliveryState:
        """Deliver until success, exhaustion or cancellation.

        Returns:
            The terminal DeliveryState.
        """
        state = DeliveryState.initial(webhook)

        with log_context(webhook_id=webhook.id, tenant_id=webhook.tenant_id):
            while not state.terminal:
                state = start_attempt(state)
                async with self._slots:
                    outcome = await self.executor.attempt(
                        webhook, envelope, state.attempt, state.max_attempts
                    )
                await self._log_attempt(webhook, envelope, outcome, event_id)
                state = next_state(state, outcome, self._rng)

                if state.phase is DeliveryPhase.WAITING_RETRY:
                    logger.info(
                        "Webhook attempt failed, retrying",
                        attempt=state.attempt,
                        max_attempts=state.max_attempts,
                        error_kind=outcome.error_kind,
                        delay_ms=state.delay_ms,
                    )
                    if await self._wait(state.delay_ms, cancel_event):
                        state = cancel(state)

            await self._record_stats(webhook, state)
        return state

    async def _wait(self, delay_ms: int, cancel_event: asyncio.Event | None) -> bool:
        """Wait out a backoff delay. Returns True if cancelled meanwhile."""
        seconds = delay_ms / 1000
        if cancel_event is None:
            await self._sleep(seconds)
            return False
        if cancel_event.is_set():
            return True

        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel_event.wait())
        done, pending = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        return waiter in done

    async def _log_attempt(
        self,
        webhook: Webhook,
        envelope: Envelope,
        outcome: DeliveryOutcome,
        event_id: str | None,
    ) -> None:
        entry = ExecutionLogEntry.from_outcome(
            tenant_id=webhook.tenant_id,
            request_url=webhook.target_url,
            envelope=envelope,
            outcome=outcome,
            request_headers=self.executor.build_headers(envelope, outcome.attempt),
            user_agent=self.executor.user_agent,
            secret_used=bool(webhook.secret),
            event_id=event_id,
        )
        try:
            await self.log_store.append(entry)
        except StorageError as e:
            logger.error(
                "Failed to write execution log",
                attempt=outcome.attempt,
                error=str(e),
            )

    async def _record_stats(self, webhook: Webhook, state: DeliveryState) -> None:
        outcome = state.last_outcome
        if outcome is None:
            return
        success = state.phase is DeliveryPhase.SUCCEEDED
        if success:
            logger.info(
                "Webhook delivered",
                attempt=state.attempt,
                status_code=outcome.status_code,
                duration_ms=outcome.duration_ms,
            )
        else:
            logger.warning(
                "Webhook delivery failed",
                phase=state.phase.value,
                attempts=state.attempt,
                error_kind=outcome.error_kind,
                error=outcome.error,
            )
        try:
            await self.stats.record(webhook.id, success=success, duration_ms=outcome.duration_ms)
        except StorageError as e:
            logger.error("Failed to update webhook stats", error=str(e))


__all__ = [
    "DeliveryPhase",
    "DeliveryState",
    "RetryScheduler",
    "TERMINAL_PHASES",
    "backoff_delay_ms",
    "base_delay_ms",
    "cancel",
    "next_state",
    "start_attempt",
]
