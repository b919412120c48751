"""Resource serializer — per-key FIFO exclusion for async operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceSerializer:
    """Runs at most one operation at a time per resource key.

    Each key maps to the tail of a chain of futures.  A new operation
    appends itself after the current tail, becomes the new tail, waits for
    its predecessor to resolve and only then runs.  Operations on different
    keys never wait on each other.  The key is dropped once its last
    operation finishes, so memory tracks only keys that are in use.
    """

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}

    @property
    def active_keys(self) -> set[str]:
        """Keys with a running or queued operation."""
        return set(self._tails)

    def is_busy(self, key: str) -> bool:
        """True while *key* has a running or queued operation."""
        return key in self._tails

    async def run_exclusive(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *operation* once every earlier operation on *key* has finished.

        Exceptions raised by *operation* propagate to this caller and still
        release the slot for the next queued operation.
        """
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        done: asyncio.Future[None] = loop.create_future()
        self._tails[key] = done

        try:
            if previous is not None:
                logger.debug("waiting for resource %s", key)
                await asyncio.shield(previous)
            return await operation()
        finally:
            if previous is None or previous.done():
                self._release(key, done)
            else:
                # Cancelled while queued: hand over only after the predecessor.
                previous.add_done_callback(lambda _f: self._release(key, done))

    def _release(self, key: str, done: asyncio.Future[None]) -> None:
        if not done.done():
            done.set_result(None)
        if self._tails.get(key) is done:
            del self._tails[key]
