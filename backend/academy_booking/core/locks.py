"""
Per-key asyncio locks.

Serializes writers inside one process: one lock per batch id for the
capacity ledger, one per booking id for state transitions. Cross-process
correctness comes from the database (conditional ledger update, booking
version column); these locks keep same-instance callers from burning
retries against each other.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class LockTimeout(Exception):
    def __init__(self, key: str, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for lock '{key}'")
        self.key = key
        self.timeout = timeout


class KeyedLock:
    def __init__(self, namespace: str):
        self.namespace = namespace
        # Entries disappear once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        lock = self._get(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise LockTimeout(f"{self.namespace}:{key}", timeout) from None
        try:
            yield
        finally:
            lock.release()

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())


batch_locks = KeyedLock("batch")
booking_locks = KeyedLock("booking")
