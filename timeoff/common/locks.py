"""Per-key asyncio locks that serialize mutations of one ledger row or request."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Iterable

from timeoff.common.exceptions import LockTimeout


class KeyedLock:
    """A registry of ``asyncio.Lock`` objects, one per key, created on demand.

    Locks are reference-counted and dropped once nobody holds or waits on
    them. ``hold`` acquires several keys in a canonical (sorted) order so two
    units of work touching the same keys cannot deadlock.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def _checkin(self, key: Hashable) -> None:
        remaining = self._refs[key] - 1
        if remaining:
            self._refs[key] = remaining
        else:
            del self._refs[key]
            del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, keys: Iterable[Hashable]) -> AsyncIterator[None]:
        """Hold every lock in *keys* for the duration of the block.

        Raises ``LockTimeout`` if a lock cannot be obtained within the
        configured timeout.
        """
        ordered = sorted(set(keys), key=repr)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    if self._timeout is None:
                        await lock.acquire()
                    else:
                        await asyncio.wait_for(lock.acquire(), self._timeout)
                except asyncio.TimeoutError as exc:
                    self._checkin(key)
                    raise LockTimeout(key) from exc
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)
