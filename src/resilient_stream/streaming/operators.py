# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Composable pull-based operators over async streams.

Each operator is an explicit AsyncIterator wrapping one upstream iterator.
Nothing is pulled from upstream until the operator's own ``__anext__`` is
awaited, so a pipeline does no work until it is consumed. Closing an
operator closes its upstream, which lets ``take`` stop a network stream
as soon as it has enough elements.

Callbacks passed to map/filter/tap receive ``(item, index)`` when they
accept two positional arguments and ``(item)`` otherwise. They may be
plain functions or coroutines.

Usage:
    >>> texts = await (
    ...     Stream(client.stream("POST", "/chat/completions", json=body))
    ...     .text_only()
    ...     .take(10)
    ...     .to_list()
    ... )
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Sequence,
)
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

from typing_extensions import Self

from ..exceptions import StreamTimeoutError
from .collect import (
    DEFAULT_TEXT_PATH,
    CollectOptions,
    PathElement,
    collect_text,
    extract_text,
)

if TYPE_CHECKING:
    from ..retry import RetryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

StreamSource = Union[AsyncIterable[T], Awaitable[AsyncIterable[T]]]

_EXHAUSTED = object()


def _accepts_index(fn: Callable[..., Any]) -> bool:
    """Whether ``fn`` requires a second positional argument.

    Positional parameters with defaults do not count, so closures written
    as ``lambda x, scale=scale: ...`` are called with the item alone.
    """
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return False

    positional = 0
    for param in signature.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ) and param.default is inspect.Parameter.empty:
            positional += 1
    return positional >= 2


async def _invoke(fn: Callable[..., Any], with_index: bool, item: Any, index: int) -> Any:
    result = fn(item, index) if with_index else fn(item)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _close_iterator(iterator: Any) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Error closing upstream iterator: {type(e).__name__}: {e}")


class StreamOperator(AsyncIterator[U], Generic[T, U]):
    """
    Base class for operators wrapping a single upstream iterator.

    Subclasses implement ``_next``. Once closed, an operator yields nothing
    more; ``aclose`` is idempotent.
    """

    __slots__ = ("__weakref__", "_closed", "_upstream")

    def __init__(self, source: AsyncIterable[T] | None) -> None:
        self._upstream: AsyncIterator[T] | None = (
            source.__aiter__() if source is not None else None
        )
        self._closed = False

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> U:
        if self._closed:
            raise StopAsyncIteration
        return await self._next()

    async def _next(self) -> U:
        raise NotImplementedError

    async def _pull(self) -> T:
        if self._upstream is None:
            raise StopAsyncIteration
        return await self._upstream.__anext__()

    async def aclose(self) -> None:
        """Stop the operator and close its upstream iterator."""
        if self._closed:
            return
        self._closed = True
        if self._upstream is not None:
            await _close_iterator(self._upstream)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class MappedStream(StreamOperator[T, U]):
    """Yields ``fn(item)`` for every upstream element."""

    __slots__ = ("_fn", "_index", "_with_index")

    def __init__(self, source: AsyncIterable[T], fn: Callable[..., Any]) -> None:
        super().__init__(source)
        self._fn = fn
        self._with_index = _accepts_index(fn)
        self._index = 0

    async def _next(self) -> U:
        item = await self._pull()
        index = self._index
        self._index += 1
        return await _invoke(self._fn, self._with_index, item, index)


class FilteredStream(StreamOperator[T, T]):
    """Yields the upstream elements for which ``predicate`` is truthy."""

    __slots__ = ("_index", "_predicate", "_with_index")

    def __init__(self, source: AsyncIterable[T], predicate: Callable[..., Any]) -> None:
        super().__init__(source)
        self._predicate = predicate
        self._with_index = _accepts_index(predicate)
        self._index = 0

    async def _next(self) -> T:
        while True:
            item = await self._pull()
            index = self._index
            self._index += 1
            if await _invoke(self._predicate, self._with_index, item, index):
                return item


class TakeStream(StreamOperator[T, T]):
    """
    Yields at most ``count`` upstream elements.

    Upstream is closed as soon as the last element has been pulled, and is
    never pulled again afterwards.
    """

    __slots__ = ("_count", "_taken")

    def __init__(self, source: AsyncIterable[T], count: int) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        super().__init__(source)
        self._count = count
        self._taken = 0

    async def _next(self) -> T:
        if self._taken >= self._count:
            await self.aclose()
            raise StopAsyncIteration

        item = await self._pull()
        self._taken += 1
        if self._taken >= self._count:
            await self.aclose()
        return item


class TapStream(StreamOperator[T, T]):
    """Calls ``observer`` with each element and yields it unchanged."""

    __slots__ = ("_index", "_observer", "_with_index")

    def __init__(self, source: AsyncIterable[T], observer: Callable[..., Any]) -> None:
        super().__init__(source)
        self._observer = observer
        self._with_index = _accepts_index(observer)
        self._index = 0

    async def _next(self) -> T:
        item = await self._pull()
        index = self._index
        self._index += 1
        await _invoke(self._observer, self._with_index, item, index)
        return item


class BufferedStream(StreamOperator[T, list[T]]):
    """Groups upstream elements into lists of ``size``; the last may be shorter."""

    __slots__ = ("_exhausted", "_size")

    def __init__(self, source: AsyncIterable[T], size: int) -> None:
        if size < 1:
            raise ValueError("size must be >= 1")
        super().__init__(source)
        self._size = size
        self._exhausted = False

    async def _next(self) -> list[T]:
        if self._exhausted:
            raise StopAsyncIteration

        batch: list[T] = []
        while len(batch) < self._size:
            try:
                batch.append(await self._pull())
            except StopAsyncIteration:
                self._exhausted = True
                break

        if not batch:
            raise StopAsyncIteration
        return batch


class MergedStream(StreamOperator[T, T]):
    """Yields every element of each source in turn, one source after another."""

    __slots__ = ("_pending",)

    def __init__(self, *sources: AsyncIterable[T]) -> None:
        super().__init__(None)
        self._pending: deque[AsyncIterator[T]] = deque(
            source.__aiter__() for source in sources
        )
        self._upstream = self._pending.popleft() if self._pending else None

    async def _next(self) -> T:
        while self._upstream is not None:
            try:
                return await self._upstream.__anext__()
            except StopAsyncIteration:
                self._upstream = self._pending.popleft() if self._pending else None
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._closed:
            return
        await super().aclose()
        while self._pending:
            await _close_iterator(self._pending.popleft())


class TimeoutStream(StreamOperator[T, T]):
    """Fails with StreamTimeoutError when one pull takes longer than ``timeout``."""

    __slots__ = ("_timeout",)

    def __init__(self, source: AsyncIterable[T], timeout: float) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        super().__init__(source)
        self._timeout = timeout

    async def _next(self) -> T:
        try:
            return await asyncio.wait_for(self._pull(), self._timeout)
        except asyncio.TimeoutError:
            await self.aclose()
            raise StreamTimeoutError(
                f"Stream timeout: no chunk received for {self._timeout}s",
                timeout=self._timeout,
            ) from None


class RetryingStream(StreamOperator[T, T]):
    """
    Opens a stream through the retry engine.

    ``factory`` is called to open the stream, and the first element is
    pulled, inside one retried attempt. Once an element has been yielded
    the stream is committed: later failures propagate, so no element is
    delivered twice.
    """

    __slots__ = ("_executor", "_factory", "_started")

    def __init__(
        self,
        factory: Callable[[], StreamSource[T]],
        executor: RetryExecutor | None = None,
    ) -> None:
        super().__init__(None)
        if executor is None:
            from ..retry import RetryExecutor

            executor = RetryExecutor()
        self._factory = factory
        self._executor = executor
        self._started = False

    async def _next(self) -> T:
        if self._started:
            return await self._pull()

        self._started = True
        self._upstream, first = await self._executor.execute_with_retry(self._open)
        if first is _EXHAUSTED:
            raise StopAsyncIteration
        return first

    async def _open(self) -> tuple[AsyncIterator[T], Any]:
        source = self._factory()
        if inspect.isawaitable(source):
            source = await source
        iterator = source.__aiter__()
        try:
            first = await iterator.__anext__()
        except StopAsyncIteration:
            return iterator, _EXHAUSTED
        except BaseException:
            await _close_iterator(iterator)
            raise
        return iterator, first


# =============================================================================
# Function forms
# =============================================================================


def map_stream(source: AsyncIterable[T], fn: Callable[..., Any]) -> MappedStream[T, Any]:
    return MappedStream(source, fn)


def filter_stream(
    source: AsyncIterable[T], predicate: Callable[..., Any]
) -> FilteredStream[T]:
    return FilteredStream(source, predicate)


def take_stream(source: AsyncIterable[T], count: int) -> TakeStream[T]:
    return TakeStream(source, count)


def tap_stream(source: AsyncIterable[T], observer: Callable[..., Any]) -> TapStream[T]:
    return TapStream(source, observer)


def buffer_stream(source: AsyncIterable[T], size: int) -> BufferedStream[T]:
    return BufferedStream(source, size)


def merge_streams(*sources: AsyncIterable[T]) -> MergedStream[T]:
    return MergedStream(*sources)


def timeout_stream(source: AsyncIterable[T], timeout: float) -> TimeoutStream[T]:
    return TimeoutStream(source, timeout)


def retry_stream(
    factory: Callable[[], StreamSource[T]],
    executor: RetryExecutor | None = None,
) -> RetryingStream[T]:
    return RetryingStream(factory, executor)


def text_only_stream(
    source: AsyncIterable[Any],
    text_path: Sequence[PathElement] = DEFAULT_TEXT_PATH,
) -> FilteredStream[str]:
    """Yield the non-empty text field of each element, skipping the rest."""
    return FilteredStream(
        MappedStream(source, lambda item: extract_text(item, text_path)),
        lambda text: bool(text),
    )


async def iterable_to_stream(items: Iterable[T]) -> AsyncIterator[T]:
    """Turn a synchronous iterable into an async stream."""
    for item in items:
        yield item


async def stream_to_list(source: AsyncIterable[T]) -> list[T]:
    """Consume ``source`` entirely and return its elements."""
    return [item async for item in source]


async def count_stream(source: AsyncIterable[Any]) -> int:
    """Consume ``source`` entirely and return how many elements it had."""
    count = 0
    async for _ in source:
        count += 1
    return count


# =============================================================================
# Fluent wrapper
# =============================================================================


class Stream(AsyncIterator[T], Generic[T]):
    """
    Fluent wrapper chaining operators over an async stream.

    Example:
        >>> words = await Stream.of(["a", "bb", "ccc"]).filter(lambda w: len(w) > 1).to_list()
        >>> words
        ['bb', 'ccc']
    """

    __slots__ = ("__weakref__", "_source")

    def __init__(self, source: AsyncIterable[T]) -> None:
        self._source = source.__aiter__()

    @classmethod
    def of(cls, items: Iterable[T]) -> Stream[T]:
        return cls(iterable_to_stream(items))

    @classmethod
    def merge(cls, *sources: AsyncIterable[T]) -> Stream[T]:
        return cls(MergedStream(*sources))

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> T:
        return await self._source.__anext__()

    async def aclose(self) -> None:
        await _close_iterator(self._source)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def map(self, fn: Callable[..., Any]) -> Stream[Any]:
        return Stream(MappedStream(self._source, fn))

    def filter(self, predicate: Callable[..., Any]) -> Stream[T]:
        return Stream(FilteredStream(self._source, predicate))

    def take(self, count: int) -> Stream[T]:
        return Stream(TakeStream(self._source, count))

    def tap(self, observer: Callable[..., Any]) -> Stream[T]:
        return Stream(TapStream(self._source, observer))

    def buffer(self, size: int) -> Stream[list[T]]:
        return Stream(BufferedStream(self._source, size))

    def timeout(self, timeout: float) -> Stream[T]:
        return Stream(TimeoutStream(self._source, timeout))

    def text_only(self, text_path: Sequence[PathElement] = DEFAULT_TEXT_PATH) -> Stream[str]:
        return Stream(text_only_stream(self._source, text_path))

    async def to_list(self) -> list[T]:
        return await stream_to_list(self._source)

    async def count(self) -> int:
        return await count_stream(self._source)

    async def collect_text(
        self, options: CollectOptions | None = None, **kwargs: Any
    ) -> str:
        return await collect_text(self._source, options, **kwargs)


__all__ = [
    "BufferedStream",
    "FilteredStream",
    "MappedStream",
    "MergedStream",
    "RetryingStream",
    "Stream",
    "StreamOperator",
    "StreamSource",
    "TakeStream",
    "TapStream",
    "TimeoutStream",
    "buffer_stream",
    "count_stream",
    "filter_stream",
    "iterable_to_stream",
    "map_stream",
    "merge_streams",
    "retry_stream",
    "stream_to_list",
    "take_stream",
    "tap_stream",
    "text_only_stream",
    "timeout_stream",
]
