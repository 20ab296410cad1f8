# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Terminal consumer that concatenates the text carried by a stream.

collect_text pulls every element of an async stream, reads the designated
text field (by default the chat-completion delta ``choices[0].delta.content``)
and returns the concatenation. Consumption can be bounded by a wall-clock
timeout and interrupted by an external abort signal; either way the
upstream iterator is closed before the error is raised.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from ..exceptions import StreamAbortedError, StreamTimeoutError
from ..observability.constants import STREAM_ABORTS_TOTAL, STREAM_TIMEOUTS_TOTAL

if TYPE_CHECKING:
    from ..observability.collector import UnifiedMetricsCollector
    from ..protocols.signal import AbortSignal

logger = logging.getLogger(__name__)

PathElement = Union[str, int]

DEFAULT_TEXT_PATH: tuple[PathElement, ...] = ("choices", 0, "delta", "content")
"""Location of the incremental text in a chat-completion chunk."""

ChunkCallback = Callable[[Any, int, str], Any]


def extract_text(item: Any, path: Sequence[PathElement] = DEFAULT_TEXT_PATH) -> str | None:
    """
    Follow ``path`` into ``item`` and return the string found there.

    String elements are looked up as mapping keys, or as attributes on
    objects such as pydantic models. Integer elements index sequences.

    Returns:
        The text, or None if any step is missing or the leaf is not a string
    """
    current = item
    for key in path:
        if current is None:
            return None
        if isinstance(key, int):
            if not isinstance(current, Sequence) or isinstance(current, (str, bytes)):
                return None
            if not -len(current) <= key < len(current):
                return None
            current = current[key]
        elif isinstance(current, Mapping):
            current = current.get(key)
        else:
            current = getattr(current, key, None)

    return current if isinstance(current, str) else None


@dataclass
class CollectOptions:
    """
    Options for collect_text.

    Attributes:
        on_chunk: Called with (item, index, text) for every element that
            carried text; may be sync or async
        abort_signal: Stops collection as soon as it is set
        timeout: Wall-clock limit in seconds, measured from the first pull
        text_path: Location of the text inside each element
    """

    on_chunk: ChunkCallback | None = None
    abort_signal: AbortSignal | None = None
    timeout: float | None = None
    text_path: Sequence[PathElement] = DEFAULT_TEXT_PATH

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")


async def collect_text(
    stream: AsyncIterable[Any],
    options: CollectOptions | None = None,
    metrics_collector: UnifiedMetricsCollector | None = None,
    **kwargs: Any,
) -> str:
    """
    Concatenate the text field of every element in ``stream``.

    Args:
        stream: Async iterable of chunks
        options: Collection options; keyword arguments build one when omitted
        metrics_collector: Optional collector for abort/timeout metrics
        **kwargs: CollectOptions fields, e.g. ``timeout=5.0``

    Returns:
        The concatenated text ("" for a stream without text)

    Raises:
        StreamAbortedError: If the abort signal was set before or during
            consumption
        StreamTimeoutError: If consumption exceeded ``timeout``
    """
    if options is None:
        options = CollectOptions(**kwargs)
    elif kwargs:
        raise TypeError("Pass either options or keyword options, not both")

    iterator = stream.__aiter__()
    parts: list[str] = []
    index = 0
    signal = options.abort_signal
    loop = asyncio.get_running_loop()
    deadline = loop.time() + options.timeout if options.timeout is not None else None

    try:
        while True:
            if signal is not None and signal.is_set():
                raise StreamAbortedError()

            remaining = None
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise StreamTimeoutError(timeout=options.timeout)

            try:
                item = await _next_item(iterator, signal, remaining)
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError:
                raise StreamTimeoutError(timeout=options.timeout) from None

            text = extract_text(item, options.text_path)
            if not text:
                continue

            parts.append(text)
            if options.on_chunk is not None:
                outcome = options.on_chunk(item, index, text)
                if inspect.isawaitable(outcome):
                    await outcome
            index += 1

    except (StreamAbortedError, StreamTimeoutError) as e:
        metric = (
            STREAM_ABORTS_TOTAL
            if isinstance(e, StreamAbortedError)
            else STREAM_TIMEOUTS_TOTAL
        )
        logger.info(f"Stream collection stopped after {index} chunks: {e}")
        if metrics_collector:
            metrics_collector.inc_counter(metric)
        await _close(iterator)
        raise

    return "".join(parts)


async def _next_item(
    iterator: Any, signal: AbortSignal | None, timeout: float | None
) -> Any:
    """Pull one element, racing the abort signal and the remaining time."""
    pull = asyncio.ensure_future(iterator.__anext__())
    if signal is None:
        return await asyncio.wait_for(pull, timeout)

    abort = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {pull, abort}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        pull.cancel()
        raise
    finally:
        abort.cancel()

    if pull in done:
        return pull.result()

    # The pull must settle before the iterator can be closed.
    pull.cancel()
    try:
        await pull
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Pending pull ended with {type(e).__name__}: {e}")
    if not done:
        raise asyncio.TimeoutError()
    raise StreamAbortedError()


async def _close(iterator: Any) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Error closing stream: {type(e).__name__}: {e}")


__all__ = [
    "DEFAULT_TEXT_PATH",
    "CollectOptions",
    "PathElement",
    "collect_text",
    "extract_text",
]
