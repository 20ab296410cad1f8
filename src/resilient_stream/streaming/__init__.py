# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Streaming support: frame decoding, composable operators and text collection.

This module provides:
- FrameDecoder / decode_stream: incremental SSE decoding of byte chunks
- Stream and the *_stream operators: lazy pull-based transformations
- collect_text: terminal consumer with timeout and abort support
"""

from .collect import DEFAULT_TEXT_PATH, CollectOptions, collect_text, extract_text
from .decoder import (
    DATA_PREFIX,
    DONE_SENTINEL,
    DecoderState,
    Frame,
    FrameDecoder,
    FrameKind,
    decode_stream,
    log_decode_error,
)
from .operators import (
    BufferedStream,
    FilteredStream,
    MappedStream,
    MergedStream,
    RetryingStream,
    Stream,
    StreamOperator,
    TakeStream,
    TapStream,
    TimeoutStream,
    buffer_stream,
    count_stream,
    filter_stream,
    iterable_to_stream,
    map_stream,
    merge_streams,
    retry_stream,
    stream_to_list,
    take_stream,
    tap_stream,
    text_only_stream,
    timeout_stream,
)

__all__ = [
    "DATA_PREFIX",
    "DEFAULT_TEXT_PATH",
    "DONE_SENTINEL",
    "BufferedStream",
    "CollectOptions",
    "DecoderState",
    "FilteredStream",
    "Frame",
    "FrameDecoder",
    "FrameKind",
    "MappedStream",
    "MergedStream",
    "RetryingStream",
    "Stream",
    "StreamOperator",
    "TakeStream",
    "TapStream",
    "TimeoutStream",
    "buffer_stream",
    "collect_text",
    "count_stream",
    "decode_stream",
    "extract_text",
    "filter_stream",
    "iterable_to_stream",
    "log_decode_error",
    "map_stream",
    "merge_streams",
    "retry_stream",
    "stream_to_list",
    "take_stream",
    "tap_stream",
    "text_only_stream",
    "timeout_stream",
]
