# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for external abort signals."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class AbortSignal(Protocol):
    """
    Externally controlled cancellation flag.

    ``asyncio.Event`` satisfies this protocol: the caller sets the event to
    ask a consumer or a retry backoff to stop.
    """

    def is_set(self) -> bool:
        """Return True once abort has been requested."""
        ...

    async def wait(self) -> object:
        """Block until abort is requested."""
        ...
