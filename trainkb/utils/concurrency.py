"""Shared concurrency primitives for the ingestion pipeline.

Two patterns are exposed:

1. **KeyedLocks** -- one ``asyncio.Lock`` per key (job id, organization id).
   Chunk claims, review saves and generation for the same job are
   serialized in-process; cross-process safety comes from the conditional
   claim update in the job store.

2. **call_with_timeout** -- ``asyncio.wait_for`` wrapper used to bound every
   blocking collaborator call (the extraction engine in particular) so a
   stuck provider surfaces as a retryable failure instead of a hung job.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, TypeVar

import structlog

from trainkb.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


class KeyedLocks:
    """Registry of per-key asyncio locks.

    Locks are created on first use and dropped once no coroutine holds or
    waits on them, so the registry does not grow with every job ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for *key* for the duration of the ``async with`` block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if lock.locked():
                _logger.debug("lock_contended", key=key)
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


async def call_with_timeout(awaitable: Awaitable[_T], timeout: float | None) -> _T:
    """Await *awaitable*, raising :class:`asyncio.TimeoutError` after *timeout* seconds.

    A ``None`` or non-positive timeout waits indefinitely.
    """
    if timeout is None or timeout <= 0:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)
