# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for decode diagnostics."""

from typing import Protocol, runtime_checkable

from ..exceptions import DecodeError


@runtime_checkable
class DiagnosticSink(Protocol):
    """
    Receiver for recoverable decode problems.

    The frame decoder calls the sink once per malformed line and then keeps
    decoding. A plain function with this signature satisfies the protocol.
    """

    def __call__(self, error: DecodeError) -> None:
        """Report one dropped frame."""
        ...
