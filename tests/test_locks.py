"""Tests for InMemoryCreationLockManager."""

from __future__ import annotations

import asyncio

from roomsync.core.locks import InMemoryCreationLockManager, _held_keys


class TestInMemoryCreationLockManager:
    async def test_same_key_same_lock(self) -> None:
        mgr = InMemoryCreationLockManager()
        assert mgr._get_lock("group:9") is mgr._get_lock("group:9")

    async def test_different_keys_different_locks(self) -> None:
        mgr = InMemoryCreationLockManager()
        assert mgr._get_lock("group:9") is not mgr._get_lock("event:10")

    async def test_serialization(self) -> None:
        mgr = InMemoryCreationLockManager()
        inside = 0
        overlap = False

        async def task() -> None:
            nonlocal inside, overlap
            async with mgr.locked("group:9"):
                inside += 1
                overlap = overlap or inside > 1
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(task(), task(), task())
        assert overlap is False

    async def test_lru_eviction_of_idle_locks(self) -> None:
        mgr = InMemoryCreationLockManager(max_locks=2)
        for key in ("a", "b", "c"):
            async with mgr.locked(key):
                pass
        assert mgr.size == 2
        assert "a" not in mgr._locks

    async def test_held_lock_not_evicted(self) -> None:
        mgr = InMemoryCreationLockManager(max_locks=1)
        async with mgr.locked("a"):
            async with mgr.locked("b"):
                assert "a" in mgr._locks
                assert "b" in mgr._locks

    async def test_reentrant_same_context(self) -> None:
        mgr = InMemoryCreationLockManager()
        async with mgr.locked("group:9"):
            assert "group:9" in _held_keys.get()
            async with asyncio.timeout(1):
                async with mgr.locked("group:9"):
                    pass
        assert "group:9" not in _held_keys.get()

    async def test_refcount_released(self) -> None:
        mgr = InMemoryCreationLockManager()
        async with mgr.locked("group:9"):
            assert mgr._refcounts["group:9"] == 1
        assert "group:9" not in mgr._refcounts
