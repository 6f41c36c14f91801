"""
Unit tests for write-behind checkpointing.
"""

import asyncio
import json

import pytest

from cadence.core.errors import PersistenceError
from cadence.core.telemetry import InMemoryMetrics
from cadence.db.checkpoint import Checkpointer
from cadence.db.store import MemoryStore


class FailingStore(MemoryStore):
    async def save(self, key, blob):
        raise PersistenceError(key, "disk full")

    async def load(self, key):
        raise PersistenceError(key, "disk gone")


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def checkpointer(store, metrics):
    cp = Checkpointer(store, metrics)
    cp.register("confidence", "u1|confidence", lambda: {"overall": 0.7}, 30)
    cp.register("goals", "u1|goals", lambda: {"total_points": 80}, 120)
    return cp


class TestSave:
    @pytest.mark.asyncio
    async def test_save_writes_json(self, checkpointer, store, metrics):
        checkpointer.mark_dirty("confidence")
        assert await checkpointer.save("confidence")
        assert json.loads(store.data["u1|confidence"]) == {"overall": 0.7}
        assert not checkpointer.namespaces["confidence"].dirty
        assert metrics.counters["checkpoint.saves"] == 1

    @pytest.mark.asyncio
    async def test_failed_save_stays_dirty(self, metrics):
        cp = Checkpointer(FailingStore(), metrics)
        cp.register("confidence", "u1|confidence", lambda: {}, 30)
        cp.mark_dirty("confidence")

        assert not await cp.save("confidence")
        assert cp.namespaces["confidence"].dirty
        assert metrics.counters["checkpoint.failures"] == 1

    @pytest.mark.asyncio
    async def test_unserialisable_state_is_a_failure(self, store, metrics):
        cp = Checkpointer(store, metrics)
        cp.register("goals", "u1|goals", lambda: {(1, 2): "tuple key"}, 30)
        assert not await cp.save("goals")
        assert "u1|goals" not in store.data

    @pytest.mark.asyncio
    async def test_flush_saves_only_dirty(self, checkpointer, store):
        checkpointer.mark_dirty("goals")
        assert await checkpointer.flush()
        assert list(store.data) == ["u1|goals"]

    def test_mark_all_dirty(self, checkpointer):
        checkpointer.mark_dirty()
        assert all(ns.dirty for ns in checkpointer.namespaces.values())

    def test_unknown_namespace_ignored(self, checkpointer):
        checkpointer.mark_dirty("telepathy")
        assert not any(ns.dirty for ns in checkpointer.namespaces.values())


class TestLoad:
    @pytest.mark.asyncio
    async def test_missing_is_none(self, checkpointer):
        assert await checkpointer.load("confidence") is None

    @pytest.mark.asyncio
    async def test_round_trip(self, checkpointer):
        checkpointer.mark_dirty()
        await checkpointer.flush()
        assert await checkpointer.load("goals") == {"total_points": 80}

    @pytest.mark.asyncio
    async def test_corrupt_blob_is_none(self, checkpointer, store, metrics):
        store.data["u1|confidence"] = b"\x00not json"
        assert await checkpointer.load("confidence") is None
        assert metrics.counters["checkpoint.load_failures"] == 1

    @pytest.mark.asyncio
    async def test_non_object_is_none(self, checkpointer, store, metrics):
        store.data["u1|confidence"] = b"[1, 2, 3]"
        assert await checkpointer.load("confidence") is None
        assert metrics.counters["checkpoint.load_failures"] == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_none(self, metrics):
        cp = Checkpointer(FailingStore(), metrics)
        cp.register("temporal", "u1|temporal", lambda: {}, 60)
        assert await cp.load("temporal") is None


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_dirty_namespace_saved_on_tick(self, store):
        cp = Checkpointer(store)
        cp.register("confidence", "u1|confidence", lambda: {"overall": 0.5}, 0.01)
        cp.start()
        assert cp.running

        cp.mark_dirty("confidence")
        await asyncio.sleep(0.1)
        assert "u1|confidence" in store.data

        await cp.stop(flush=False)
        assert not cp.running

    @pytest.mark.asyncio
    async def test_clean_namespace_not_saved(self, store):
        cp = Checkpointer(store)
        cp.register("confidence", "u1|confidence", lambda: {}, 0.01)
        cp.start()
        await asyncio.sleep(0.05)
        await cp.stop(flush=False)
        assert store.data == {}

    @pytest.mark.asyncio
    async def test_stop_flushes(self, checkpointer, store):
        checkpointer.start()
        checkpointer.mark_dirty("confidence")
        await checkpointer.stop()
        assert "u1|confidence" in store.data
