# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Protocol definitions for pluggable runtime collaborators.

Available protocols:
- DiagnosticSink: Receiver for malformed frames dropped by the decoder
- AbortSignal: External cancellation flag (asyncio.Event compatible)
"""

from .diagnostics import DiagnosticSink
from .signal import AbortSignal

__all__ = [
    "AbortSignal",
    "DiagnosticSink",
]
