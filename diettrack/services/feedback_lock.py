"""
Per-key async mutex registry.

One `asyncio.Lock` per key, created on first use and dropped when its last
waiter leaves. `asyncio.Lock` wakes waiters in FIFO order, so callers on the
same key run in arrival order while different keys never block each other.
The registry dict is only mutated between awaits, so it needs no lock of
its own on a single event loop.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class _Entry:
    __slots__ = ("lock", "waiters")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.waiters = 0


class KeyedLock:
    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.waiters += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def pending(self, key: str) -> int:
        """Holders plus waiters for `key` (0 when idle)."""
        entry = self._entries.get(key)
        return entry.waiters if entry else 0

    def reset(self) -> None:
        """Forget all keys. Only safe while nothing is held."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
