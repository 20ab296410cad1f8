"""
Unit tests for StreamingClient.

The HTTP layer is replaced with httpx.MockTransport so the gate, retry
engine and decoder run for real against canned responses.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from resilient_stream.client import (
    StreamingClient,
    error_from_response,
    parse_retry_after,
)
from resilient_stream.config import DispatchConfig, RetryPolicy
from resilient_stream.exceptions import (
    AuthError,
    CapacityError,
    NetworkError,
    PaymentRequiredError,
    QuotaExceededError,
    RateLimitError,
    RequestTimeoutError,
)
from resilient_stream.streaming.collect import collect_text

FAST_RETRY = RetryPolicy(initial_delay=0.0, max_delay=0.0, jitter=False)

SSE_BODY = (
    b'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
    b'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n'
    b"data: [DONE]\n\n"
)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    **kwargs,
) -> StreamingClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("retry_policy", FAST_RETRY)
    return StreamingClient("https://api.test/v1/", http_client=http, **kwargs)


class TestHelpers:
    """parse_retry_after and error_from_response."""

    @pytest.mark.parametrize(
        "value,expected",
        [("2", 2.0), ("0.5", 0.5), (None, None), ("", None), ("-1", None)],
    )
    def test_parse_retry_after(self, value, expected) -> None:
        assert parse_retry_after(value) == expected

    def test_http_date_ignored(self) -> None:
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None

    def test_error_message_from_object(self) -> None:
        response = httpx.Response(401, json={"error": {"message": "Invalid key"}})
        error = error_from_response(response)
        assert isinstance(error, AuthError)
        assert str(error) == "Invalid key"
        assert error.details == {"error": {"message": "Invalid key"}}

    def test_error_message_from_string(self) -> None:
        response = httpx.Response(402, json={"error": "Insufficient balance"})
        error = error_from_response(response)
        assert isinstance(error, PaymentRequiredError)
        assert str(error) == "Insufficient balance"

    def test_rate_limit_reads_retry_after(self) -> None:
        response = httpx.Response(429, headers={"Retry-After": "3"}, text="slow down")
        error = error_from_response(response)
        assert isinstance(error, RateLimitError)
        assert error.retry_after == 3.0
        assert str(error) == "slow down"


class TestRequestJson:
    """Tests for request_json."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"id": "model-a"}]})

        async with make_client(handler, headers={"Authorization": "Bearer k"}) as client:
            body = await client.request_json("GET", "/models", params={"type": "text"})

        assert body == {"data": [{"id": "model-a"}]}
        assert str(seen[0].url) == "https://api.test/v1/models?type=text"
        assert seen[0].headers["Authorization"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self) -> None:
        async with make_client(lambda request: httpx.Response(204)) as client:
            assert await client.request_json("DELETE", "/keys/1") is None

    @pytest.mark.asyncio
    async def test_retries_capacity_then_succeeds(self) -> None:
        statuses = iter([503, 503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 200:
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(status, json={"error": "busy"})

        retries: list[int] = []
        async with make_client(
            handler, on_retry=lambda attempt, delay, error: retries.append(attempt)
        ) as client:
            assert await client.request_json("POST", "/chat", json={}) == {"ok": True}

        assert retries == [1, 2]
        assert client.gate.stats.admitted == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, json={"error": "busy"})

        async with make_client(handler) as client:
            with pytest.raises(CapacityError, match="busy"):
                await client.request_json("GET", "/models")

        assert calls == 4

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, json={"error": "bad key"})

        async with make_client(handler) as client:
            with pytest.raises(AuthError):
                await client.request_json("GET", "/models")

        assert calls == 1

    @pytest.mark.asyncio
    async def test_transport_errors_translated(self) -> None:
        def connect_fails(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        def times_out(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        no_retry = RetryPolicy(max_retries=0)
        async with make_client(connect_fails, retry_policy=no_retry) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.request_json("GET", "/models")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

        async with make_client(times_out, retry_policy=no_retry) as client:
            with pytest.raises(RequestTimeoutError):
                await client.request_json("GET", "/models")

    @pytest.mark.asyncio
    async def test_quota_rejection_not_sent(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={})

        config = DispatchConfig(max_concurrent=1, requests_per_minute=1)
        async with make_client(handler, dispatch_config=config) as client:
            await client.request_json("GET", "/models")
            with pytest.raises(QuotaExceededError):
                await client.request_json("GET", "/models")

        assert calls == 1


class TestStream:
    """Tests for stream()."""

    @pytest.mark.asyncio
    async def test_stream_decodes_payloads(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=SSE_BODY)

        async with make_client(handler) as client:
            text = await collect_text(
                client.stream("POST", "/chat/completions", json={"stream": True})
            )

        assert text == "Hello"
        assert seen[0].headers["Accept"] == "text/event-stream"
        assert client.gate.in_flight == 0

    @pytest.mark.asyncio
    async def test_stream_chunked_body(self) -> None:
        async def body() -> AsyncIterator[bytes]:
            for i in range(0, len(SSE_BODY), 7):
                yield SSE_BODY[i : i + 7]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        async with make_client(handler) as client:
            payloads = [p async for p in client.stream("POST", "/chat/completions")]

        assert [p["choices"][0]["delta"]["content"] for p in payloads] == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_stream_open_is_retried(self) -> None:
        statuses = iter([429, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 429:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, content=SSE_BODY)

        async with make_client(handler) as client:
            text = await collect_text(client.stream("POST", "/chat/completions"))

        assert text == "Hello"

    @pytest.mark.asyncio
    async def test_stream_error_status_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(402, json={"error": "Insufficient balance"})

        async with make_client(handler) as client:
            with pytest.raises(PaymentRequiredError, match="Insufficient balance"):
                async for _ in client.stream("POST", "/chat/completions"):
                    pass


class TestLifecycle:
    """Ownership of the underlying httpx client."""

    @pytest.mark.asyncio
    async def test_owned_client_closed(self) -> None:
        client = StreamingClient("https://api.test")
        await client.aclose()
        assert client._http.is_closed

    @pytest.mark.asyncio
    async def test_borrowed_client_left_open(self) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with StreamingClient("https://api.test", http_client=http):
            pass
        assert not http.is_closed
        await http.aclose()
