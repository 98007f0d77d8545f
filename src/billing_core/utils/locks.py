"""Per-key asyncio locks used to serialize ledger writes."""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager


class KeyedLock:
    """One :class:`asyncio.Lock` per key, alive while someone holds or awaits it.

    Writers touching several keys must go through :meth:`hold` so the locks
    are always taken in sorted order; two referral credits naming the same
    pair of organizations in opposite roles cannot deadlock. A key's lock is
    dropped once its last holder or waiter leaves.

    Example::

        locks = KeyedLock()
        async with locks.hold("org:acme"):
            ...  # read-modify-write acme's balance
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] += 1
        return lock

    def _checkin(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] <= 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire the locks for every distinct key, in sorted order."""
        ordered = sorted(set(keys))
        checked_out: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)

    def locked(self, key: str) -> bool:
        """Return ``True`` if *key* is currently held."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def keys(self) -> Iterable[str]:
        """Keys currently held or awaited."""
        return list(self._locks)
