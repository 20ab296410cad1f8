"""
Unit tests for RetryExecutor and retry_with_backoff.

Tests cover:
- Delay computation with and without jitter
- Retryability from status codes, error kinds and explicit flags
- Attempt counting and exhaustion
- on_retry observers (sync and async)
- Abort during backoff
- Retry-After hints
- Metrics
"""

from __future__ import annotations

import asyncio
import random
from unittest.mock import AsyncMock, Mock

import pytest

from resilient_stream.config import RetryPolicy
from resilient_stream.exceptions import (
    APIError,
    AuthError,
    CapacityError,
    NetworkError,
    QuotaExceededError,
    RateLimitError,
    RequestTimeoutError,
    StreamAbortedError,
    ValidationError,
)
from resilient_stream.observability.collector import UnifiedMetricsCollector
from resilient_stream.observability.constants import (
    RETRY_ATTEMPTS_TOTAL,
    RETRY_BACKOFF_SECONDS,
    RETRY_EXHAUSTED_TOTAL,
)
from resilient_stream.retry import RetryExecutor, retry_with_backoff

NO_JITTER = RetryPolicy(jitter=False)


def make_executor(
    policy: RetryPolicy = NO_JITTER, **kwargs
) -> tuple[RetryExecutor, AsyncMock]:
    sleep = AsyncMock()
    return RetryExecutor(policy, sleep=sleep, **kwargs), sleep


class TestComputeDelay:
    """Tests for the backoff schedule."""

    def test_exponential_without_jitter(self) -> None:
        executor = RetryExecutor(NO_JITTER)
        delays = [executor.compute_delay(n) for n in range(1, 6)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.6])

    def test_capped_at_max_delay(self) -> None:
        executor = RetryExecutor(RetryPolicy(jitter=False, max_delay=0.5))
        assert executor.compute_delay(10) == 0.5

    def test_jitter_stays_within_bounds(self) -> None:
        executor = RetryExecutor(RetryPolicy(), rng=random.Random(1234))
        for attempt in range(1, 8):
            base = min(10.0, 0.1 * 2 ** (attempt - 1))
            delay = executor.compute_delay(attempt)
            assert 0.75 * base <= delay <= 1.25 * base

    def test_jitter_is_deterministic_with_seeded_rng(self) -> None:
        first = RetryExecutor(RetryPolicy(), rng=random.Random(42))
        second = RetryExecutor(RetryPolicy(), rng=random.Random(42))
        assert [first.compute_delay(n) for n in range(1, 5)] == [
            second.compute_delay(n) for n in range(1, 5)
        ]

    def test_zero_initial_delay(self) -> None:
        executor = RetryExecutor(RetryPolicy(initial_delay=0.0))
        assert executor.compute_delay(3) == 0.0


class TestIsRetryable:
    """Tests for retryability classification."""

    @pytest.fixture
    def executor(self) -> RetryExecutor:
        return RetryExecutor()

    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("reset"),
            RequestTimeoutError(),
            CapacityError(),
            RateLimitError(),
            APIError("bad gateway", status_code=502),
            TimeoutError(),
            ConnectionRefusedError(),
        ],
    )
    def test_retryable(self, executor: RetryExecutor, error: Exception) -> None:
        assert executor.is_retryable(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("bad payload", status_code=400),
            AuthError("nope", status_code=401),
            QuotaExceededError("full"),
            ValueError("plain"),
        ],
    )
    def test_not_retryable(self, executor: RetryExecutor, error: Exception) -> None:
        assert executor.is_retryable(error) is False

    def test_policy_controls_status_codes(self) -> None:
        executor = RetryExecutor(RetryPolicy(retryable_status_codes=frozenset({418})))
        error = APIError("teapot", status_code=418)
        assert executor.is_retryable(error) is True

    def test_policy_can_disable_transport_retries(self) -> None:
        executor = RetryExecutor(
            RetryPolicy(
                retryable_status_codes=frozenset(), retryable_error_kinds=frozenset()
            )
        )
        assert executor.is_retryable(NetworkError("down")) is False
        assert executor.is_retryable(CapacityError()) is False
        assert executor.is_retryable(NetworkError("down", retryable=True)) is True

    def test_explicit_flag_on_foreign_error(self, executor: RetryExecutor) -> None:
        error = RuntimeError("custom")
        error.retryable = True  # type: ignore[attr-defined]
        assert executor.is_retryable(error) is True


class TestExecuteWithRetry:
    """Tests for execute_with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        executor, sleep = make_executor()
        operation = AsyncMock(return_value="ok")

        assert await executor.execute_with_retry(operation) == "ok"
        operation.assert_awaited_once()
        sleep.assert_not_awaited()
        assert executor.last_context is not None
        assert executor.last_context.attempt == 1

    @pytest.mark.asyncio
    async def test_always_failing_is_attempted_max_retries_plus_one(self) -> None:
        executor, sleep = make_executor()
        error = NetworkError("down")
        operation = AsyncMock(side_effect=error)

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute_with_retry(operation)

        assert exc_info.value is error
        assert operation.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == pytest.approx(
            [0.1, 0.2, 0.4]
        )
        assert executor.last_context.total_delay == pytest.approx(0.7)
        assert executor.last_context.last_error is error

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self) -> None:
        executor, sleep = make_executor()
        operation = AsyncMock(side_effect=AuthError("invalid key", status_code=401))

        with pytest.raises(AuthError):
            await executor.execute_with_retry(operation)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_policy_attempts_once(self) -> None:
        policy = RetryPolicy(
            max_retries=3,
            jitter=False,
            retryable_status_codes=frozenset(),
            retryable_error_kinds=frozenset(),
        )
        executor, sleep = make_executor(policy)
        operation = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await executor.execute_with_retry(operation)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self) -> None:
        executor, _ = make_executor()
        operation = AsyncMock(
            side_effect=[CapacityError(), RequestTimeoutError(), "done"]
        )

        assert await executor.execute_with_retry(operation) == "done"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self) -> None:
        executor, _ = make_executor(RetryPolicy(max_retries=0))
        operation = AsyncMock(side_effect=NetworkError())

        with pytest.raises(NetworkError):
            await executor.execute_with_retry(operation)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_on_retry_called_before_each_backoff(self) -> None:
        executor, _ = make_executor()
        observer = Mock()
        error = NetworkError()

        with pytest.raises(NetworkError):
            await executor.execute_with_retry(AsyncMock(side_effect=error), observer)

        assert [c.args for c in observer.call_args_list] == [
            (1, pytest.approx(0.1), error),
            (2, pytest.approx(0.2), error),
            (3, pytest.approx(0.4), error),
        ]

    @pytest.mark.asyncio
    async def test_async_on_retry_is_awaited(self) -> None:
        executor, _ = make_executor()
        observer = AsyncMock()

        with pytest.raises(NetworkError):
            await executor.execute_with_retry(
                AsyncMock(side_effect=NetworkError()), observer
            )

        assert observer.await_count == 3

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self) -> None:
        executor, sleep = make_executor()
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await executor.execute_with_retry(operation)
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_after_hint_extends_delay(self) -> None:
        executor, sleep = make_executor(RetryPolicy(jitter=False, max_retries=1))
        operation = AsyncMock(side_effect=[RateLimitError(retry_after=2.0), "ok"])

        assert await executor.execute_with_retry(operation) == "ok"
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_retry_after_hint_capped_at_max_delay(self) -> None:
        executor, sleep = make_executor(
            RetryPolicy(jitter=False, max_retries=1, max_delay=1.0)
        )
        operation = AsyncMock(side_effect=[RateLimitError(retry_after=30.0), "ok"])

        await executor.execute_with_retry(operation)
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_retry_after_hint_never_shortens_jittered_delay(self) -> None:
        rng = Mock(spec=random.Random)
        rng.uniform.return_value = 1.0
        executor, sleep = make_executor(
            RetryPolicy(max_retries=1, initial_delay=1.0, max_delay=1.0),
            rng=rng,
        )
        operation = AsyncMock(side_effect=[RateLimitError(retry_after=30.0), "ok"])

        await executor.execute_with_retry(operation)
        sleep.assert_awaited_once_with(pytest.approx(1.25))

    @pytest.mark.asyncio
    async def test_update_policy(self) -> None:
        executor, _ = make_executor()
        executor.update_policy(max_retries=1)
        operation = AsyncMock(side_effect=NetworkError())

        with pytest.raises(NetworkError):
            await executor.execute_with_retry(operation)
        assert operation.await_count == 2
        assert executor.policy.max_retries == 1


class TestAbort:
    """Abort signal interrupting a backoff."""

    @pytest.mark.asyncio
    async def test_already_set_signal_aborts_before_backoff(self) -> None:
        executor, sleep = make_executor()
        signal = asyncio.Event()
        signal.set()
        error = NetworkError()

        with pytest.raises(StreamAbortedError) as exc_info:
            await executor.execute_with_retry(
                AsyncMock(side_effect=error), abort_signal=signal
            )

        assert exc_info.value.__cause__ is error
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signal_set_during_backoff(self) -> None:
        signal = asyncio.Event()
        executor = RetryExecutor(RetryPolicy(jitter=False, initial_delay=5.0))
        operation = AsyncMock(side_effect=NetworkError())

        async def abort_soon() -> None:
            await asyncio.sleep(0.01)
            signal.set()

        aborter = asyncio.create_task(abort_soon())
        with pytest.raises(StreamAbortedError):
            await asyncio.wait_for(
                executor.execute_with_retry(operation, abort_signal=signal), 1.0
            )
        await aborter
        assert operation.await_count == 1


class TestMetrics:
    """Retry metrics."""

    @pytest.mark.asyncio
    async def test_attempts_and_exhaustion_recorded(self) -> None:
        metrics = UnifiedMetricsCollector(enable_prometheus=False)
        executor, _ = make_executor(metrics_collector=metrics)

        with pytest.raises(NetworkError):
            await executor.execute_with_retry(AsyncMock(side_effect=NetworkError()))

        labels = {"error_kind": "network"}
        assert metrics.get_counter(RETRY_ATTEMPTS_TOTAL, labels) == 3
        assert metrics.get_counter(RETRY_EXHAUSTED_TOTAL, labels) == 1
        histogram = metrics.get_metrics()["histograms"][RETRY_BACKOFF_SECONDS][""]
        assert histogram["count"] == 3


class TestRetryWithBackoff:
    """Tests for the convenience wrapper."""

    @pytest.mark.asyncio
    async def test_uses_given_policy(self) -> None:
        operation = AsyncMock(side_effect=[NetworkError(), "ok"])
        policy = RetryPolicy(initial_delay=0.0, max_delay=0.0)

        assert await retry_with_backoff(operation, policy) == "ok"
        assert operation.await_count == 2
