# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
HTTP facade tying the runtime together over httpx.

StreamingClient routes every request through a DispatchGate (concurrency
and rolling quota) inside a RetryExecutor (backoff on transient failures).
Each retry attempt is a fresh gate admission, so a backoff never holds a
slot. Non-success responses and transport failures are turned into the
tagged runtime errors the retry engine classifies.

For streaming endpoints only opening the response (connect, headers,
status check) is gated and retried; once the body is flowing the bytes are
handed to the frame decoder and the slot is already free.

Example:
    >>> async with StreamingClient(
    ...     "https://api.example.com/v1",
    ...     headers={"Authorization": f"Bearer {key}"},
    ... ) as client:
    ...     text = await collect_text(
    ...         client.stream("POST", "/chat/completions", json=body), timeout=60
    ...     )
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import TYPE_CHECKING, Any

import httpx
from typing_extensions import Self

from .config import DispatchConfig, RetryPolicy
from .dispatch import DispatchGate
from .exceptions import (
    NetworkError,
    RequestTimeoutError,
    StreamRuntimeError,
    error_from_status,
)
from .retry import RetryExecutor, RetryObserver
from .streaming.decoder import decode_stream

if TYPE_CHECKING:
    from .observability.collector import UnifiedMetricsCollector
    from .protocols.diagnostics import DiagnosticSink

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds; HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_from_response(response: httpx.Response) -> StreamRuntimeError:
    """
    Build the runtime error for a non-success response.

    The message comes from the body's ``error`` field (a string, or an
    object with ``message``) when present, otherwise from the raw text.
    The body must already have been read.
    """
    message: str | None = None
    details: dict[str, Any] | None = None

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        details = body
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
        elif isinstance(error, str):
            message = error
        message = message or body.get("message")
    elif response.text:
        message = response.text[:200]

    return error_from_status(
        response.status_code,
        message,
        details=details,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )


class StreamingClient:
    """
    Async client combining the dispatch gate, retry engine and frame decoder.

    Attributes:
        base_url: URL prefix joined with each request path
        gate: The DispatchGate every request is admitted through
        retry_executor: The RetryExecutor wrapping every request
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: RetryPolicy | None = None,
        dispatch_config: DispatchConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        metrics_collector: UnifiedMetricsCollector | None = None,
        diagnostic_sink: DiagnosticSink | None = None,
        on_retry: RetryObserver | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Service base URL, e.g. "https://api.example.com/v1"
            headers: Headers sent with every request (auth is the caller's concern)
            timeout: Per-request transport timeout in seconds
            retry_policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
            dispatch_config: Gate limits (defaults to DEFAULT_DISPATCH_CONFIG)
            http_client: Existing httpx.AsyncClient to use; it is not closed
                by this client
            metrics_collector: Optional collector shared by gate, retry and decoder
            diagnostic_sink: Receiver for malformed stream frames
            on_retry: Observer called before each retry backoff
        """
        self.base_url = base_url.rstrip("/")
        self._headers = dict(headers or {})
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._metrics = metrics_collector
        self._diagnostic_sink = diagnostic_sink
        self._on_retry = on_retry

        self.gate = DispatchGate(dispatch_config, metrics_collector=metrics_collector)
        self.retry_executor = RetryExecutor(
            retry_policy, metrics_collector=metrics_collector
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this client created it."""
        if self._owns_http:
            await self._http.aclose()

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Returns:
            The parsed body, or None for an empty response

        Raises:
            StreamRuntimeError: The tagged error of the final failed attempt
            QuotaExceededError: If the gate's rolling quota is full
        """
        request = self._build_request(method, path, json=json, params=params)

        async def attempt() -> httpx.Response:
            return await self.gate.submit(lambda: self._send(request, stream=False))

        response = await self.retry_executor.execute_with_retry(
            attempt, on_retry=self._on_retry
        )
        if not response.content:
            return None
        return response.json()

    async def stream(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[Any]:
        """
        Send a streaming request and yield decoded event payloads.

        Ends at the ``[DONE]`` sentinel or when the server closes the body.
        Failures after the first payload are not retried.
        """
        request = self._build_request(
            method,
            path,
            json=json,
            params=params,
            headers={"Accept": "text/event-stream"},
        )

        async def attempt() -> httpx.Response:
            return await self.gate.submit(lambda: self._send(request, stream=True))

        response = await self.retry_executor.execute_with_retry(
            attempt, on_retry=self._on_retry
        )
        try:
            async for payload in decode_stream(
                self._body_chunks(response),
                diagnostic_sink=self._diagnostic_sink,
                metrics_collector=self._metrics,
            ):
                yield payload
        finally:
            await response.aclose()

    def _build_request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Request:
        return self._http.build_request(
            method,
            f"{self.base_url}/{path.lstrip('/')}",
            json=json,
            params=params,
            headers={**self._headers, **(headers or {})},
        )

    async def _send(self, request: httpx.Request, stream: bool) -> httpx.Response:
        """One attempt: send, translate transport failures, check the status."""
        try:
            response = await self._http.send(request, stream=stream)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection failed: {e}") from e

        if response.is_success:
            return response

        try:
            await response.aread()
        finally:
            await response.aclose()

        error = error_from_response(response)
        logger.debug(
            f"{request.method} {request.url.path} failed with "
            f"{response.status_code}: {error}"
        )
        raise error

    async def _body_chunks(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Stream read timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Stream interrupted: {e}") from e


__all__ = [
    "DEFAULT_TIMEOUT",
    "StreamingClient",
    "error_from_response",
    "parse_retry_after",
]
