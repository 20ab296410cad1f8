# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Dispatch gate bounding concurrency and a rolling request quota.

DispatchGate wraps async operations so that:

- at most ``max_concurrent`` of them run at once; extra submissions wait
  in a FIFO queue and are admitted in submission order as slots free up;
- at most ``requests_per_minute`` admissions happen within the trailing
  ``window_seconds``; a submission that would exceed the quota fails
  immediately with QuotaExceededError instead of waiting.

A slot is released when the operation finishes, whether it succeeded or
raised. All state changes happen under one lock with no await in between,
so a released slot is handed to exactly one waiter.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from .config import DEFAULT_DISPATCH_CONFIG, DispatchConfig
from .exceptions import QuotaExceededError
from .observability.constants import (
    DISPATCH_ADMITTED_TOTAL,
    DISPATCH_COMPLETED_TOTAL,
    DISPATCH_IN_FLIGHT,
    DISPATCH_QUEUE_DEPTH,
    DISPATCH_QUEUED_TOTAL,
    DISPATCH_QUOTA_REJECTIONS_TOTAL,
)

if TYPE_CHECKING:
    from .observability.collector import UnifiedMetricsCollector

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class GateStats:
    """Lifetime counters of a DispatchGate."""

    admitted: int = 0
    queued: int = 0
    rejected: int = 0
    succeeded: int = 0
    failed: int = 0


class DispatchGate:
    """
    Admission gate for async operations.

    Example:
        >>> gate = DispatchGate(DispatchConfig(max_concurrent=2, requests_per_minute=30))
        >>> results = await asyncio.gather(*(gate.submit(fetch) for fetch in calls))

    Thread Safety:
        Internal state is guarded by a threading.Lock that is never held
        across an await. The gate must be used from a single event loop.
    """

    def __init__(
        self,
        config: DispatchConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics_collector: UnifiedMetricsCollector | None = None,
        name: str = "default",
    ) -> None:
        """
        Initialize the gate.

        Args:
            config: Concurrency and quota limits (defaults to DEFAULT_DISPATCH_CONFIG)
            clock: Monotonic time source in seconds; tests inject a fake clock
            metrics_collector: Optional collector for dispatch metrics
            name: Gate name used as the ``gate`` metric label
        """
        self._config = config or DEFAULT_DISPATCH_CONFIG
        self._clock = clock
        self._metrics = metrics_collector
        self.name = name

        self._lock = threading.Lock()
        self._in_flight = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._admissions: deque[float] = deque()
        self._stats = GateStats()

    @property
    def config(self) -> DispatchConfig:
        return self._config

    @property
    def in_flight(self) -> int:
        """Operations currently admitted and running."""
        return self._in_flight

    @property
    def queue_depth(self) -> int:
        """Submissions waiting for a slot."""
        return len(self._waiters)

    @property
    def stats(self) -> GateStats:
        with self._lock:
            return GateStats(**asdict(self._stats))

    def admissions_in_window(self) -> int:
        """Admissions recorded within the trailing window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._admissions)

    async def submit(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` once a slot is free, returning its result.

        The operation's own exception propagates unchanged after the slot
        is released.

        Args:
            operation: Zero-argument callable returning an awaitable

        Raises:
            QuotaExceededError: If the rolling quota is already claimed
        """
        waiter: asyncio.Future[None] | None = None

        with self._lock:
            now = self._clock()
            self._prune(now)
            claimed = len(self._admissions) + len(self._waiters)
            if claimed >= self._config.requests_per_minute:
                self._stats.rejected += 1
                error = self._quota_error(now)
            elif self._in_flight < self._config.max_concurrent and not self._waiters:
                error = None
                self._admit(now)
            else:
                error = None
                waiter = asyncio.get_running_loop().create_future()
                self._waiters.append(waiter)
                self._stats.queued += 1

        if error is not None:
            logger.warning(f"Gate '{self.name}': {error}")
            self._inc(DISPATCH_QUOTA_REJECTIONS_TOTAL)
            raise error

        if waiter is None:
            self._inc(DISPATCH_ADMITTED_TOTAL)
        else:
            logger.debug(
                f"Gate '{self.name}' full ({self._in_flight} in flight), "
                f"queued at depth {len(self._waiters)}"
            )
            self._inc(DISPATCH_QUEUED_TOTAL)
            self._publish_gauges()
            await self._wait_for_slot(waiter)
        self._publish_gauges()

        outcome = "failure"
        try:
            result = await operation()
            outcome = "success"
            return result
        finally:
            self._release(outcome)

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of gate state.

        Returns:
            Dictionary with the gate name, configured limits, live counts
            and lifetime GateStats counters.
        """
        with self._lock:
            self._prune(self._clock())
            return {
                "name": self.name,
                "max_concurrent": self._config.max_concurrent,
                "requests_per_minute": self._config.requests_per_minute,
                "in_flight": self._in_flight,
                "queue_depth": len(self._waiters),
                "admissions_in_window": len(self._admissions),
                **asdict(self._stats),
            }

    async def _wait_for_slot(self, waiter: asyncio.Future[None]) -> None:
        try:
            await waiter
        except asyncio.CancelledError:
            handed_off = False
            with self._lock:
                if waiter.done() and not waiter.cancelled():
                    handed_off = True
                else:
                    try:
                        self._waiters.remove(waiter)
                    except ValueError:
                        pass
            if handed_off:
                # Slot was already assigned to us; pass it on.
                self._release("cancelled")
            else:
                self._publish_gauges()
            raise

    def _admit(self, now: float) -> None:
        """Take a slot. Caller holds the lock."""
        self._in_flight += 1
        self._admissions.append(now)
        self._stats.admitted += 1

    def _release(self, outcome: str) -> None:
        handed_off = 0
        with self._lock:
            self._in_flight -= 1
            if outcome == "success":
                self._stats.succeeded += 1
            elif outcome == "failure":
                self._stats.failed += 1

            while self._waiters and self._in_flight < self._config.max_concurrent:
                waiter = self._waiters.popleft()
                if waiter.done():
                    continue
                self._admit(self._clock())
                waiter.set_result(None)
                handed_off += 1

        if outcome != "cancelled":
            self._inc(DISPATCH_COMPLETED_TOTAL, outcome=outcome)
        if handed_off:
            self._inc(DISPATCH_ADMITTED_TOTAL, value=handed_off)
        self._publish_gauges()

    def _prune(self, now: float) -> None:
        """Drop admissions older than the window. Caller holds the lock."""
        cutoff = now - self._config.window_seconds
        while self._admissions and self._admissions[0] <= cutoff:
            self._admissions.popleft()

    def _quota_error(self, now: float) -> QuotaExceededError:
        retry_after = None
        if self._admissions:
            retry_after = max(
                0.0, self._admissions[0] + self._config.window_seconds - now
            )
        return QuotaExceededError(
            f"Rate limit exceeded: {self._config.requests_per_minute} requests "
            f"per {self._config.window_seconds:g}s",
            limit=self._config.requests_per_minute,
            window_seconds=self._config.window_seconds,
            retry_after=retry_after,
        )

    def _inc(self, metric: str, value: float = 1, **extra_labels: str) -> None:
        if self._metrics:
            self._metrics.inc_counter(
                metric, value, labels={"gate": self.name, **extra_labels}
            )

    def _publish_gauges(self) -> None:
        if self._metrics:
            labels = {"gate": self.name}
            self._metrics.set_gauge(DISPATCH_IN_FLIGHT, self._in_flight, labels)
            self._metrics.set_gauge(DISPATCH_QUEUE_DEPTH, len(self._waiters), labels)


__all__ = ["DispatchGate", "GateStats"]
