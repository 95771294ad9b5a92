import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLock:
    """
    One asyncio.Lock per key (room id); different keys never contend.
    An entry lives while someone holds or waits for it and is dropped after
    the last user releases, so a waiter never ends up on a stale lock.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
