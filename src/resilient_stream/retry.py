# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Retry engine with exponential backoff and jitter.

RetryExecutor runs a zero-argument async operation and, when it fails with
a retryable error, waits and tries again. Retryability is read from the
error's tags (status code, ErrorKind, explicit ``retryable`` flag) against
the immutable RetryPolicy. When attempts run out, or the error is not
retryable, the last error is re-raised unchanged.

Attempts are 1-indexed. The delay before retrying after attempt ``n`` is::

    min(max_delay, initial_delay * backoff_multiplier ** (n - 1))

perturbed by a uniform factor in [-25%, +25%] when jitter is enabled.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from .config import DEFAULT_RETRY_POLICY, RetryPolicy
from .exceptions import StreamAbortedError, classify_error
from .observability.constants import (
    RETRY_ATTEMPTS_TOTAL,
    RETRY_BACKOFF_SECONDS,
    RETRY_EXHAUSTED_TOTAL,
)

if TYPE_CHECKING:
    from .observability.collector import UnifiedMetricsCollector
    from .protocols.signal import AbortSignal

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_FACTOR = 0.25

RetryObserver = Callable[[int, float, BaseException], Any]
"""Callback invoked before each backoff: (attempt, delay_seconds, error)."""


@dataclass
class RetryContext:
    """Mutable state of one execute_with_retry call; never shared."""

    attempt: int = 0
    last_error: BaseException | None = None
    total_delay: float = 0.0


class RetryExecutor:
    """
    Executes async operations under a RetryPolicy.

    The policy is shared read-only across concurrent calls; each call gets
    its own RetryContext.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_retries=2))
        >>> result = await executor.execute_with_retry(
        ...     lambda: client.request_json("GET", "/models"),
        ...     on_retry=lambda n, delay, err: print(f"retry {n} in {delay:.2f}s"),
        ... )
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics_collector: UnifiedMetricsCollector | None = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
            rng: Random source for jitter; inject a seeded Random for
                deterministic timing
            sleep: Coroutine used to wait between attempts
            metrics_collector: Optional collector for retry metrics
        """
        self._policy = policy or DEFAULT_RETRY_POLICY
        self._rng = rng or random.Random()  # noqa: S311  # nosec B311
        self._sleep = sleep
        self._metrics = metrics_collector
        self.last_context: RetryContext | None = None

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def update_policy(self, **changes: Any) -> RetryPolicy:
        """Replace the policy with a copy carrying ``changes``; returns it."""
        self._policy = self._policy.with_overrides(**changes)
        return self._policy

    def compute_delay(self, attempt: int) -> float:
        """
        Calculate the backoff delay after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-based)

        Returns:
            Delay in seconds (never negative)
        """
        policy = self._policy
        delay = policy.initial_delay * (policy.backoff_multiplier ** (attempt - 1))
        delay = min(delay, policy.max_delay)

        if policy.jitter:
            delay += delay * JITTER_FACTOR * self._rng.uniform(-1.0, 1.0)

        return max(0.0, delay)

    def is_retryable(self, error: BaseException) -> bool:
        """Check the error's tags against the policy."""
        status_code = getattr(error, "status_code", None)
        if status_code is not None and status_code in self._policy.retryable_status_codes:
            return True

        kind = classify_error(error)
        if kind is not None and kind in self._policy.retryable_error_kinds:
            return True

        return getattr(error, "retryable", False) is True

    def _delay_for(self, error: BaseException, attempt: int) -> float:
        delay = self.compute_delay(attempt)
        retry_after = getattr(error, "retry_after", None)
        if isinstance(retry_after, (int, float)):
            delay = max(delay, min(float(retry_after), self._policy.max_delay))
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: RetryObserver | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or retrying is no longer allowed.

        Args:
            operation: Zero-argument callable returning an awaitable
            on_retry: Called with (attempt, delay, error) before each backoff;
                may be sync or async
            abort_signal: Optional signal that interrupts a backoff wait

        Returns:
            The operation's result

        Raises:
            Exception: The last error, unchanged, after exhaustion or on a
                non-retryable failure
            StreamAbortedError: If the abort signal fires during a backoff
        """
        context = RetryContext()
        self.last_context = context
        max_attempts = self._policy.max_retries + 1

        while True:
            context.attempt += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                context.last_error = e

                if not self.is_retryable(e):
                    logger.debug(
                        f"Attempt {context.attempt} failed with non-retryable "
                        f"{type(e).__name__}: {e}"
                    )
                    raise

                if context.attempt >= max_attempts:
                    logger.warning(
                        f"Giving up after {context.attempt} attempts: "
                        f"{type(e).__name__}: {e}"
                    )
                    self._record(RETRY_EXHAUSTED_TOTAL, e)
                    raise

                delay = self._delay_for(e, context.attempt)
                context.total_delay += delay
                self._record(RETRY_ATTEMPTS_TOTAL, e)
                if self._metrics:
                    self._metrics.observe_histogram(RETRY_BACKOFF_SECONDS, delay)

                logger.warning(
                    f"Attempt {context.attempt}/{max_attempts} failed with "
                    f"{type(e).__name__}: {e}; retrying in {delay:.3f}s"
                )

                if on_retry is not None:
                    outcome = on_retry(context.attempt, delay, e)
                    if inspect.isawaitable(outcome):
                        await outcome

                await self._backoff(delay, abort_signal, e)

    async def _backoff(
        self,
        delay: float,
        abort_signal: AbortSignal | None,
        error: BaseException,
    ) -> None:
        """Wait ``delay`` seconds, or fail early if the abort signal fires."""
        if abort_signal is None:
            await self._sleep(delay)
            return

        if abort_signal.is_set():
            raise StreamAbortedError("Retry aborted during backoff") from error

        sleep_task = asyncio.ensure_future(self._sleep(delay))
        abort_task = asyncio.ensure_future(abort_signal.wait())
        try:
            await asyncio.wait(
                {sleep_task, abort_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (sleep_task, abort_task):
                if not task.done():
                    task.cancel()

        if abort_signal.is_set():
            raise StreamAbortedError("Retry aborted during backoff") from error

    def _record(self, metric: str, error: BaseException) -> None:
        if not self._metrics:
            return
        kind = classify_error(error)
        self._metrics.inc_counter(
            metric, labels={"error_kind": kind.value if kind else "unclassified"}
        )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    on_retry: RetryObserver | None = None,
) -> T:
    """
    Convenience wrapper: run ``operation`` under a one-off RetryExecutor.

    Example:
        >>> data = await retry_with_backoff(
        ...     fetch_models,
        ...     RetryPolicy(max_retries=5, initial_delay=1.0),
        ... )
    """
    return await RetryExecutor(policy).execute_with_retry(operation, on_retry)


__all__ = [
    "JITTER_FACTOR",
    "RetryContext",
    "RetryExecutor",
    "RetryObserver",
    "retry_with_backoff",
]
