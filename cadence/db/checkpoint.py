"""
Write-behind checkpointing.

Engine state is authoritative in memory. Each namespace (confidence,
temporal, goals) registers a dump function and a save interval; a
background asyncio task per namespace saves it whenever it has been marked
dirty since the last successful save.

A failed save is logged and counted, never raised. The namespace stays
dirty so the next tick retries.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from cadence.core.errors import PersistenceError
from cadence.core.telemetry import MetricsSink, NullMetrics
from cadence.db.store import Store


@dataclass
class Namespace:
    name: str
    key: str
    dump: Callable[[], dict]
    interval_s: float
    dirty: bool = False


class Checkpointer:
    """
    Periodic best-effort persistence of engine state.

    Usage:
        checkpointer = Checkpointer(store, metrics)
        checkpointer.register("confidence", "u1|confidence", engine.to_dict, 30)
        checkpointer.start()
        checkpointer.mark_dirty("confidence")
        ...
        await checkpointer.stop()
    """

    def __init__(self, store: Store, metrics: MetricsSink | None = None):
        self.store = store
        self.metrics = metrics or NullMetrics()
        self.namespaces: dict[str, Namespace] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def register(self, name: str, key: str, dump: Callable[[], dict], interval_s: float) -> None:
        self.namespaces[name] = Namespace(name=name, key=key, dump=dump, interval_s=interval_s)

    def mark_dirty(self, *names: str) -> None:
        for name in names or tuple(self.namespaces):
            if name in self.namespaces:
                self.namespaces[name].dirty = True

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    # =========================================================================
    # Save / load
    # =========================================================================

    async def save(self, name: str) -> bool:
        """Save one namespace now. Returns False on failure."""
        ns = self.namespaces[name]
        ns.dirty = False
        try:
            blob = json.dumps(ns.dump(), default=str).encode("utf-8")
            await self.store.save(ns.key, blob)
        except (PersistenceError, TypeError, ValueError) as e:
            ns.dirty = True
            self.metrics.increment("checkpoint.failures")
            logger.warning(f"Checkpoint save failed for {name}: {e}")
            return False

        self.metrics.increment("checkpoint.saves")
        logger.info(f"Checkpoint saved: {ns.key} ({len(blob)} bytes)")
        return True

    async def load(self, name: str) -> dict | None:
        """Load one namespace. Missing or unreadable data yields None."""
        ns = self.namespaces[name]
        try:
            blob = await self.store.load(ns.key)
            if blob is None:
                return None
            data = json.loads(blob.decode("utf-8"))
        except (PersistenceError, UnicodeDecodeError, ValueError) as e:
            self.metrics.increment("checkpoint.load_failures")
            logger.warning(f"Checkpoint load failed for {name}: {e}")
            return None

        if not isinstance(data, dict):
            self.metrics.increment("checkpoint.load_failures")
            logger.warning(f"Checkpoint {ns.key} is not an object; ignoring")
            return None
        return data

    async def flush(self) -> bool:
        """Save every dirty namespace. Returns True if all saves succeeded."""
        results = [await self.save(ns.name) for ns in list(self.namespaces.values()) if ns.dirty]
        return all(results)

    # =========================================================================
    # Background tasks
    # =========================================================================

    def start(self) -> None:
        """Start one write-behind task per namespace (requires a running loop)."""
        for name, ns in self.namespaces.items():
            task = self._tasks.get(name)
            if task is None or task.done():
                self._tasks[name] = asyncio.create_task(self._run(ns), name=f"checkpoint:{ns.key}")
        logger.debug(f"Checkpointer started for {sorted(self.namespaces)}")

    async def stop(self, flush: bool = True) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        if flush:
            await self.flush()

    async def _run(self, ns: Namespace) -> None:
        while True:
            await asyncio.sleep(ns.interval_s)
            if ns.dirty:
                await self.save(ns.name)
