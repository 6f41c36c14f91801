"""
Engine Registry - one Orchestrator per user.

None of the update formulas commute, so attempts for the same user are
serialised behind a per-user asyncio.Lock; different users proceed
concurrently. Engines are created lazily on first use, restored from the
store, and their write-behind checkpointers are started then.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from loguru import logger

from cadence.core.config import Settings, get_settings
from cadence.core.feature_flags import FeatureFlags
from cadence.core.models import AttemptEvent
from cadence.core.telemetry import MetricsSink, NullMetrics
from cadence.db.store import MemoryStore, Store
from cadence.engine.orchestrator import AttemptResult, Orchestrator


class EngineRegistry:
    """
    Per-user engines behind per-user locks.

    Usage:
        registry = EngineRegistry(store=store)
        result = await registry.process_attempt("u1", event)
        snapshot = await registry.snapshot("u1")
        await registry.close()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        flags: FeatureFlags | None = None,
        store: Store | None = None,
        metrics: MetricsSink | None = None,
        autostart_checkpoints: bool = True,
    ):
        self.settings = settings or get_settings()
        self.flags = flags or FeatureFlags()
        self.store = store or MemoryStore()
        self.metrics = metrics or NullMetrics()
        self.autostart_checkpoints = autostart_checkpoints
        self.engines: dict[str, Orchestrator] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def _engine_for(self, user_id: str) -> Orchestrator:
        """Caller must hold the user's lock."""
        engine = self.engines.get(user_id)
        if engine is None:
            engine = Orchestrator(
                user_id=user_id,
                settings=self.settings,
                flags=self.flags,
                store=self.store,
                metrics=self.metrics,
            )
            await engine.load_checkpoint()
            if self.autostart_checkpoints:
                engine.checkpointer.start()
            self.engines[user_id] = engine
            logger.info(f"Engine created for user {user_id}")
        return engine

    async def get(self, user_id: str) -> Orchestrator:
        async with self._lock_for(user_id):
            return await self._engine_for(user_id)

    async def process_attempt(self, user_id: str, ctx: AttemptEvent | dict[str, Any]) -> AttemptResult:
        async with self._lock_for(user_id):
            engine = await self._engine_for(user_id)
            return engine.process_attempt(ctx)

    async def replay(self, user_id: str, events: Iterable[AttemptEvent | dict[str, Any]]) -> AttemptResult | None:
        async with self._lock_for(user_id):
            engine = await self._engine_for(user_id)
            return engine.replay(events)

    async def snapshot(self, user_id: str) -> dict:
        async with self._lock_for(user_id):
            engine = await self._engine_for(user_id)
            return engine.get_snapshot()

    async def close(self) -> None:
        """Stop every checkpointer and flush pending state."""
        for user_id, engine in list(self.engines.items()):
            async with self._lock_for(user_id):
                await engine.checkpointer.stop(flush=True)
        logger.info(f"Registry closed ({len(self.engines)} engines)")
