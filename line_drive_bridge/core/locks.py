"""Per-key asyncio locks.

WHY: Find-or-create and read-modify-write are only safe when no other
coroutine works on the same remote object at the same time. Work on
different objects should still proceed concurrently.

HOW: KeyedLock hands out one asyncio.Lock per key and drops it once the
last holder or waiter leaves, so the registry does not grow without bound.

RULES:
- Locks are per event loop; one KeyedLock must not be shared across loops
- A key's lock is removed when its reference count reaches zero
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """Mutual exclusion per hashable key."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._refcounts: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]
