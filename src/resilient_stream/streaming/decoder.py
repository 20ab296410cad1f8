# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Incremental decoder for server-sent-event byte streams.

The transport hands over raw byte chunks as they arrive; chunk boundaries
fall anywhere, including inside a line or inside a multi-byte character.
FrameDecoder buffers the incomplete tail, emits one Frame per complete
``data: `` line, and stops for good at the ``[DONE]`` sentinel.

Line rules:
- Lines are trimmed; blank lines and lines without the ``data: `` marker
  (comments, ``event:``/``id:`` fields, keepalives) are skipped.
- ``data: [DONE]`` yields a terminal frame; nothing after it is processed.
- Any other payload is parsed as JSON. A payload that fails to parse is
  dropped and reported to the diagnostic sink; decoding continues.

One decoder instance belongs to exactly one stream. decode_stream creates
its own decoder per call and never hands it out.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..exceptions import DecodeError
from ..observability.constants import STREAM_DECODE_ERRORS_TOTAL, STREAM_FRAMES_TOTAL

if TYPE_CHECKING:
    from ..observability.collector import UnifiedMetricsCollector
    from ..protocols.diagnostics import DiagnosticSink

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

# Maximum payload characters included in a decode diagnostic
_DIAGNOSTIC_PREVIEW_CHARS = 100


class FrameKind(Enum):
    """Kinds of decoded frames."""

    MESSAGE = "message"
    TERMINAL = "terminal"


class DecoderState(Enum):
    """Lifecycle of a FrameDecoder: idle -> accumulating -> (terminal | idle)."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Frame:
    """
    One decoded unit of the stream.

    Attributes:
        kind: MESSAGE for an application payload, TERMINAL for the sentinel
        payload: The deserialized JSON value (None for TERMINAL)
    """

    kind: FrameKind
    payload: Any = None

    @classmethod
    def message(cls, payload: Any) -> Frame:
        return cls(FrameKind.MESSAGE, payload)

    @classmethod
    def terminal(cls) -> Frame:
        return cls(FrameKind.TERMINAL)

    @property
    def is_terminal(self) -> bool:
        return self.kind is FrameKind.TERMINAL


def log_decode_error(error: DecodeError) -> None:
    """Default diagnostic sink: log the dropped frame at WARNING."""
    logger.warning(
        f"Error parsing stream data: {error} "
        f"(data: {error.line[:_DIAGNOSTIC_PREVIEW_CHARS]!r})"
    )


class FrameDecoder:
    """
    Stateful decoder turning raw byte chunks into Frames.

    Usage:
        decoder = FrameDecoder()
        async for chunk in response.aiter_bytes():
            for frame in decoder.process_chunk(chunk):
                ...
        for frame in decoder.flush():
            ...

    Invariant:
        After process_chunk returns, the buffer holds at most one partial
        (newline-free) line.
    """

    __slots__ = (
        "_buffer",
        "_metrics",
        "_sink",
        "_terminated",
        "_text_decoder",
    )

    def __init__(
        self,
        diagnostic_sink: DiagnosticSink | None = None,
        metrics_collector: UnifiedMetricsCollector | None = None,
    ) -> None:
        """
        Initialize the decoder.

        Args:
            diagnostic_sink: Receives a DecodeError for every dropped line.
                Defaults to logging a warning.
            metrics_collector: Optional collector for frame/decode metrics
        """
        self._sink = diagnostic_sink or log_decode_error
        self._metrics = metrics_collector
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._terminated = False

    @property
    def state(self) -> DecoderState:
        if self._terminated:
            return DecoderState.TERMINAL
        return DecoderState.ACCUMULATING if self._buffer else DecoderState.IDLE

    @property
    def buffered_text(self) -> str:
        """The incomplete trailing line currently held back."""
        return self._buffer

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    def process_chunk(self, chunk: bytes) -> list[Frame]:
        """
        Decode one chunk and return the frames completed by it.

        Args:
            chunk: Raw bytes as delivered by the transport

        Returns:
            Frames in arrival order; at most one TERMINAL frame, always last
        """
        if self._terminated:
            return []

        self._buffer += self._text_decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        frames = self._parse_lines(lines)

        if self._terminated:
            self._buffer = ""
        return frames

    def flush(self) -> list[Frame]:
        """
        Decode whatever remains buffered as if it were a final complete line.

        Must be called once the transport signals end of input. The buffer
        is empty afterwards.
        """
        if self._terminated:
            return []

        remaining = self._buffer + self._text_decoder.decode(b"", final=True)
        self._buffer = ""
        if not remaining.strip():
            return []
        return self._parse_lines(remaining.split("\n"))

    def reset(self) -> None:
        """Discard buffered text and terminal state so the decoder can be reused."""
        self._buffer = ""
        self._terminated = False
        self._text_decoder.reset()

    def _parse_lines(self, lines: Iterable[str]) -> list[Frame]:
        frames: list[Frame] = []

        for line in lines:
            stripped = line.strip()
            if not stripped or not stripped.startswith(DATA_PREFIX):
                continue

            data = stripped[len(DATA_PREFIX) :]
            if data == DONE_SENTINEL:
                frames.append(Frame.terminal())
                self._terminated = True
                logger.debug("Stream sentinel received, decoder terminated")
                break

            try:
                payload = json.loads(data)
            except ValueError as e:
                self._report(DecodeError(f"Invalid JSON in stream frame: {e}", data))
                continue

            frames.append(Frame.message(payload))

        if self._metrics and frames:
            messages = sum(1 for frame in frames if not frame.is_terminal)
            if messages:
                self._metrics.inc_counter(STREAM_FRAMES_TOTAL, messages)

        return frames

    def _report(self, error: DecodeError) -> None:
        if self._metrics:
            self._metrics.inc_counter(STREAM_DECODE_ERRORS_TOTAL)
        self._sink(error)


async def decode_stream(
    chunks: AsyncIterable[bytes],
    diagnostic_sink: DiagnosticSink | None = None,
    metrics_collector: UnifiedMetricsCollector | None = None,
) -> AsyncIterator[Any]:
    """
    Decode an async byte-chunk source into message payloads.

    Yields decoded JSON values in arrival order. Ends at the terminal
    sentinel, or when the source is exhausted (after flushing the buffer).

    Args:
        chunks: Async iterable of raw byte chunks (e.g. response.aiter_bytes())
        diagnostic_sink: Receiver for malformed lines
        metrics_collector: Optional collector for frame/decode metrics
    """
    decoder = FrameDecoder(diagnostic_sink, metrics_collector)

    async for chunk in chunks:
        for frame in decoder.process_chunk(chunk):
            if frame.is_terminal:
                return
            yield frame.payload

    for frame in decoder.flush():
        if frame.is_terminal:
            return
        yield frame.payload


__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "DecoderState",
    "Frame",
    "FrameDecoder",
    "FrameKind",
    "decode_stream",
    "log_decode_error",
]
