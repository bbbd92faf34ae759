"""
Keyed asyncio locks.

Syncs and token refreshes are serialized per (user, provider). The two use
separate registries so a refresh triggered from inside a sync never waits on
the sync's own lock.
"""
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLockRegistry:
    """Hands out one asyncio.Lock per key, dropping it when nobody holds or waits on it."""

    def __init__(self, name: str = "lock"):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def acquire(self, *key_parts):
        key = tuple(str(getattr(part, "value", part)) for part in key_parts)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def is_locked(self, *key_parts) -> bool:
        key = tuple(str(getattr(part, "value", part)) for part in key_parts)
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registries
sync_locks = KeyedLockRegistry("sync")
refresh_locks = KeyedLockRegistry("refresh")
