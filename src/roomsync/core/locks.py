"""Process-wide per-entity creation locks with LRU eviction."""

from __future__ import annotations

import asyncio
import contextvars
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

# Keys whose creation lock the current execution context holds. Child tasks
# spawned with asyncio.gather() inherit a copy, so they re-enter instead of
# deadlocking on their parent's lock.
_held_keys: contextvars.ContextVar[frozenset[str]] = contextvars.ContextVar(
    "_creation_locks_held", default=frozenset()
)


class CreationLockManager(ABC):
    """Abstract base for serializing room creation per entity key.

    Implement this to share creation locks between processes (Redis,
    Postgres advisory locks, etc.). The library ships with
    ``InMemoryCreationLockManager`` for single-process deployments; the
    store's unique key constraint still protects multi-process setups that
    keep the in-memory manager.

    Implementations must be reentrant within one execution context.
    """

    @abstractmethod
    @asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        """Acquire an exclusive creation lock for *key*."""
        yield  # pragma: no cover


class InMemoryCreationLockManager(CreationLockManager):
    """In-process per-key asyncio locks with LRU eviction.

    Locks that are held or awaited are never evicted; idle ones are dropped
    oldest first once more than *max_locks* exist.
    """

    def __init__(self, max_locks: int = 1024) -> None:
        self._locks: OrderedDict[str, asyncio.Lock] = OrderedDict()
        self._refcounts: dict[str, int] = {}
        self._max_locks = max_locks

    def _get_lock(self, key: str) -> asyncio.Lock:
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        lock = self._locks.get(key)
        if lock is not None:
            self._locks.move_to_end(key)
            return lock
        lock = asyncio.Lock()
        self._locks[key] = lock
        self._evict()
        return lock

    def _release_ref(self, key: str) -> None:
        count = self._refcounts.get(key, 0) - 1
        if count <= 0:
            self._refcounts.pop(key, None)
        else:
            self._refcounts[key] = count

    def _evict(self) -> None:
        excess = len(self._locks) - self._max_locks
        if excess <= 0:
            return
        idle = [
            key
            for key, lock in self._locks.items()
            if not lock.locked() and self._refcounts.get(key, 0) <= 0
        ]
        for key in idle[:excess]:
            del self._locks[key]

    @asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        held = _held_keys.get()
        if key in held:
            yield
            return

        lock = self._get_lock(key)
        try:
            async with lock:
                token = _held_keys.set(held | frozenset({key}))
                try:
                    yield
                finally:
                    _held_keys.reset(token)
        finally:
            self._release_ref(key)

    @property
    def size(self) -> int:
        """Number of locks currently tracked."""
        return len(self._locks)
