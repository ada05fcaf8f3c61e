"""
Per-key write serialization.

Writers that fold reports into the same aggregate row queue on one
asyncio.Lock per key inside a process. Cross-process safety comes from
the optimistic version column on the aggregate rows.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """A lazily-populated registry of asyncio locks keyed by entity id."""

    def __init__(self, name: str):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            # drop idle locks so the registry does not grow with every step ever touched
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


step_locks = KeyedLock("route-step-aggregate")
route_locks = KeyedLock("route-aggregate")
