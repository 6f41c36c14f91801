"""
Orchestrator - per-user composition root.

Owns one instance of each adaptive component plus the scheduler, and runs
them in a fixed order for every attempt:

    AttemptEvent -> FlowStateDetector -> MomentumTracker -> ConfidenceEngine
                 -> GoalTracker -> snapshot -> subscribers

Temporal Intelligence is fed session summaries on a coarser cadence
(explicit process_session() calls or start_session()/end_session()).

The scheduler never reaches into the components; calculate_next_interval()
hands it read-only views of the current flow, confidence and temporal state.

Component failures are logged and the previous snapshot values are kept,
so process_attempt() always returns a result.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError

from cadence.adaptive.confidence_engine import ConfidenceEngine
from cadence.adaptive.flow_detector import FlowConfig, FlowStateDetector
from cadence.adaptive.goals import GoalTracker
from cadence.adaptive.momentum_tracker import MomentumTracker
from cadence.adaptive.temporal_intelligence import TemporalIntelligence, TemporalResult
from cadence.core.config import Settings, get_settings
from cadence.core.errors import PersistenceError
from cadence.core.feature_flags import FeatureFlags
from cadence.core.models import (
    AttemptEvent,
    FlowState,
    Item,
    MomentumType,
    ScheduleCard,
    SessionSummary,
    SessionType,
    coerce_latency,
    coerce_tags,
)
from cadence.core.stats import mean
from cadence.core.telemetry import MetricsSink, NullMetrics
from cadence.db.checkpoint import Checkpointer
from cadence.db.store import MemoryStore, Store, card_key, confidence_key, goals_key, temporal_key
from cadence.study.adaptive_scheduler import AdaptiveScheduler, ScheduleResult, SchedulingContext

Subscriber = Callable[[dict], None]


@dataclass
class AttemptResult:
    """What process_attempt() reports back to the drill layer."""

    flow_state: FlowState
    momentum_type: MomentumType
    momentum_score: float
    confidence_overall: float
    confidence_category: float

    def to_dict(self) -> dict:
        return {
            "flow_state": self.flow_state.value,
            "momentum_type": self.momentum_type.value,
            "momentum_score": self.momentum_score,
            "confidence_overall": self.confidence_overall,
            "confidence_category": self.confidence_category,
        }


class Orchestrator:
    """
    Sequences the adaptive components for one learner.

    Usage:
        engine = Orchestrator(user_id="u1")
        unsubscribe = engine.subscribe(print)
        result = engine.process_attempt({"correct": True, "responseTimeMs": 1200, ...})
        card = engine.calculate_next_interval(card, correct=True, hints_used=0)
    """

    def __init__(
        self,
        user_id: str = "default",
        settings: Settings | None = None,
        flags: FeatureFlags | None = None,
        store: Store | None = None,
        metrics: MetricsSink | None = None,
        scheduler: AdaptiveScheduler | None = None,
    ):
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.flags = flags or FeatureFlags()
        self.store = store or MemoryStore()
        self.metrics = metrics or NullMetrics()

        self.flow = FlowStateDetector(
            FlowConfig(
                fast_response_ms=self.settings.fast_threshold_ms,
                slow_response_ms=self.settings.slow_threshold_ms,
                hysteresis_seconds=self.settings.flow_hysteresis_seconds,
            )
        )
        self.momentum = MomentumTracker()
        self.confidence = ConfidenceEngine()
        self.temporal = TemporalIntelligence()
        self.goals = GoalTracker()
        self.scheduler = scheduler or AdaptiveScheduler(self.settings, self.flags, self.metrics)

        self.checkpointer = Checkpointer(self.store, self.metrics)
        self.checkpointer.register(
            "confidence", confidence_key(user_id), self.confidence.to_dict, self.settings.confidence_save_interval_s
        )
        self.checkpointer.register(
            "temporal", temporal_key(user_id), self.temporal.to_dict, self.settings.temporal_save_interval_s
        )
        self.checkpointer.register("goals", goals_key(user_id), self.goals.to_dict, self.settings.goals_save_interval_s)

        self._subscribers: list[Subscriber] = []
        self._session_events: list[AttemptEvent] = []
        self._session_start: datetime | None = None
        self.snapshot = self._initial_snapshot()

    # =========================================================================
    # Attempts
    # =========================================================================

    def process_attempt(self, ctx: AttemptEvent | dict[str, Any]) -> AttemptResult:
        """Run one attempt through flow, momentum and confidence."""
        event = AttemptEvent.coerce(ctx)
        snap = self.snapshot
        previous_flow = snap["flow_state"]
        previous_momentum = snap["momentum_type"]

        try:
            flow = self.flow.process(event)
            snap["flow_state"] = flow.state.value
            m = flow.metrics
            snap["metrics"].update(
                current_streak=m["current_streak"]["correct"],
                flow_percentage=m["flow_percentage"],
                consistency_score=m["consistency_score"],
                session_duration=m["session_duration"],
                deep_flow_sessions=m["deep_flow_sessions"],
            )
        except Exception as e:  # Component failure keeps the previous flow values
            self._component_failed("flow", e)

        try:
            momentum = self.momentum.process(event, FlowState(snap["flow_state"]))
            snap["momentum_type"] = momentum.momentum_type.value
            snap["momentum_score"] = momentum.momentum_score
        except Exception as e:  # Component failure keeps the previous momentum values
            self._component_failed("momentum", e)

        try:
            confidence = self.confidence.process(event)
            snap["confidence_overall"] = confidence.confidence.overall
            snap["confidence_category"] = confidence.confidence.category
            snap["confidence_level"] = confidence.confidence.level.value
            self.checkpointer.mark_dirty("confidence")
        except Exception as e:  # Component failure keeps the previous confidence values
            self._component_failed("confidence", e)

        try:
            goals = self.goals.process(event)
            snap["goals"] = {"active": goals.total_active, "total_points": self.goals.total_points}
            self.checkpointer.mark_dirty("goals")
        except Exception as e:  # Goals are auxiliary; a failure never blocks the attempt
            self._component_failed("goals", e)

        snap["metrics"]["total_responses"] += 1
        snap["updated_at"] = event.timestamp.isoformat()
        self._session_events.append(event)
        self.metrics.increment("engine.attempts")
        self.metrics.gauge("engine.momentum_score", snap["momentum_score"])

        self._publish()
        if snap["flow_state"] != previous_flow:
            logger.debug(f"[{self.user_id}] flow {previous_flow} -> {snap['flow_state']}")
            self._publish()
        if snap["momentum_type"] != previous_momentum:
            logger.debug(f"[{self.user_id}] momentum {previous_momentum} -> {snap['momentum_type']}")
            self._publish()

        return AttemptResult(
            flow_state=FlowState(snap["flow_state"]),
            momentum_type=MomentumType(snap["momentum_type"]),
            momentum_score=snap["momentum_score"],
            confidence_overall=snap["confidence_overall"],
            confidence_category=snap["confidence_category"],
        )

    def replay(self, events: Iterable[AttemptEvent | dict[str, Any]]) -> AttemptResult | None:
        """Process historical attempts in chronological order."""
        ordered = sorted((AttemptEvent.coerce(e) for e in events), key=lambda e: e.timestamp)
        result = None
        for event in ordered:
            result = self.process_attempt(event)
        logger.info(f"[{self.user_id}] replayed {len(ordered)} attempts")
        return result

    # =========================================================================
    # Sessions
    # =========================================================================

    def process_session(self, summary: SessionSummary | dict[str, Any]) -> TemporalResult:
        result = self.temporal.process_session(summary)
        self.snapshot["cognitive_load"] = result.cognitive_load
        self.snapshot["fatigue"] = result.fatigue
        self.checkpointer.mark_dirty("temporal")
        return result

    def start_session(self, now: datetime | None = None) -> None:
        now = now or datetime.now()
        self._session_start = now
        self._session_events = []
        self.flow.reset(now)
        self.momentum.reset(now)

    def end_session(
        self,
        now: datetime | None = None,
        session_type: SessionType = SessionType.MIXED,
        interruptions: int = 0,
    ) -> TemporalResult | None:
        """Summarise the attempts since start_session() and feed Temporal Intelligence."""
        events = self._session_events
        if not events:
            return None
        start = self._session_start or events[0].timestamp
        end = now or events[-1].timestamp
        summary = SessionSummary(
            start=start,
            end=end,
            accuracy=mean([1.0 if e.correct else 0.0 for e in events]),
            avg_response_time_ms=mean([e.response_time_ms for e in events]),
            total_attempts=len(events),
            max_error_streak=_longest_error_streak(events),
            fatigue=self.momentum.emotional_state.fatigue,
            interruptions=interruptions,
            session_type=session_type,
        )
        self._session_events = []
        self._session_start = None
        return self.process_session(summary)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def scheduling_context(self, item: Item | None = None, now: datetime | None = None, **kwargs) -> SchedulingContext:
        """Read-only views of the current engine state for one scheduling call."""
        category = item.category_key if item else self.confidence.last_category_key
        return SchedulingContext(
            now=now or datetime.now(),
            confidence_level=self.confidence.current_level(),
            flow_state=self.flow.current_state,
            confidence_advice=self.confidence.get_srs_recommendations(category),
            flow_advice=self.flow.get_srs_scheduling_recommendations(),
            temporal_advice=self.temporal.get_srs_scheduling_recommendations,
            **kwargs,
        )

    def calculate_next_interval(
        self,
        card: ScheduleCard | None,
        correct: bool,
        hints_used: int = 0,
        meta: dict[str, Any] | None = None,
    ) -> ScheduleCard:
        return self.review(card, correct, hints_used, meta).card

    def review(
        self,
        card: ScheduleCard | None,
        correct: bool,
        hints_used: int = 0,
        meta: dict[str, Any] | None = None,
    ) -> ScheduleResult:
        """Schedule one review. Malformed meta values are defaulted, never raised."""
        meta = meta if isinstance(meta, dict) else {}
        item = meta.get("item")
        if not isinstance(item, Item):
            try:
                item = Item.model_validate(item) if isinstance(item, dict) else None
            except ValidationError:
                item = None
        now = meta.get("now")
        context = self.scheduling_context(
            item,
            now=now if isinstance(now, datetime) else None,
            latency_ms=coerce_latency(meta.get("latency_ms")),
            error_tags=coerce_tags(meta.get("error_tags")),
        )
        return self.scheduler.review(card, correct, hints_used, context)

    async def schedule_item(self, event: AttemptEvent | dict[str, Any]) -> ScheduleResult:
        """Load the item's card, schedule it from this attempt, save it back."""
        event = AttemptEvent.coerce(event)
        item = event.item
        key = card_key(self.user_id, item.mood, item.tense, item.person, item.verb)

        card = None
        try:
            blob = await self.store.load(key)
            if blob is not None:
                card = ScheduleCard.from_dict(json.loads(blob.decode("utf-8")))
        except (PersistenceError, ValueError, KeyError, TypeError) as e:
            self.metrics.increment("checkpoint.load_failures")
            logger.warning(f"Could not load card {key}: {e}; starting fresh")

        result = self.review(
            card,
            event.correct,
            event.hints_used,
            {
                "item": item,
                "now": event.timestamp,
                "latency_ms": event.response_time_ms,
                "error_tags": event.error_tags,
            },
        )

        try:
            await self.store.save(key, json.dumps(result.card.to_dict()).encode("utf-8"))
        except PersistenceError as e:
            self.metrics.increment("checkpoint.failures")
            logger.warning(f"Could not save card {key}: {e}")
        return result

    # =========================================================================
    # Snapshot & subscriptions
    # =========================================================================

    def get_snapshot(self) -> dict:
        return copy.deepcopy(self.snapshot)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a snapshot observer. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.get_snapshot())
            except Exception as e:  # A broken observer must not affect the engine
                logger.warning(f"Snapshot subscriber {callback!r} failed: {e}")

    def _component_failed(self, name: str, error: Exception) -> None:
        self.metrics.increment(f"engine.{name}_errors")
        logger.warning(f"[{self.user_id}] {name} component failed: {type(error).__name__}: {error}")

    def _initial_snapshot(self) -> dict:
        return {
            "user_id": self.user_id,
            "flow_state": FlowState.NEUTRAL.value,
            "momentum_type": MomentumType.STEADY_PROGRESS.value,
            "momentum_score": self.momentum.momentum_score,
            "confidence_overall": self.confidence.overall,
            "confidence_category": 0.5,
            "confidence_level": self.confidence.current_level().value,
            "cognitive_load": self.temporal.load.current,
            "fatigue": None,
            "goals": {"active": len(self.goals.active), "total_points": self.goals.total_points},
            "metrics": {
                "current_streak": 0,
                "flow_percentage": 0,
                "consistency_score": 0,
                "total_responses": 0,
                "session_duration": 0.0,
                "deep_flow_sessions": 0,
            },
            "updated_at": None,
        }

    def reset(self) -> None:
        self.flow.reset()
        self.momentum.reset()
        self.confidence.reset()
        self.temporal.reset()
        self.goals.reset()
        self._session_events = []
        self._session_start = None
        self.snapshot = self._initial_snapshot()
        self.checkpointer.mark_dirty()

    # =========================================================================
    # Checkpointing
    # =========================================================================

    async def save_checkpoint(self) -> bool:
        """Save every namespace now. Returns False if any save failed."""
        results = [await self.checkpointer.save(name) for name in self.checkpointer.namespaces]
        return all(results)

    async def load_checkpoint(self) -> None:
        """Restore confidence, temporal and goal state saved earlier."""
        components = {
            "confidence": self.confidence,
            "temporal": self.temporal,
            "goals": self.goals,
        }
        for name, component in components.items():
            data = await self.checkpointer.load(name)
            if data is None:
                continue
            try:
                component.load_dict(data)
            except Exception as e:  # Any shape or decode failure means a corrupt checkpoint
                component.reset()
                self.metrics.increment("checkpoint.load_failures")
                logger.warning(f"[{self.user_id}] ignoring corrupt {name} checkpoint: {type(e).__name__}: {e}")
        self.snapshot["confidence_overall"] = self.confidence.overall
        self.snapshot["confidence_level"] = self.confidence.current_level().value
        self.snapshot["cognitive_load"] = self.temporal.load.current
        self.snapshot["goals"] = {"active": len(self.goals.active), "total_points": self.goals.total_points}

    def stats(self) -> dict:
        return {
            "flow": self.flow.get_flow_metrics(),
            "momentum": self.momentum.get_momentum_stats(),
            "confidence": self.confidence.get_current_state(),
            "goals": self.goals.get_state(),
            "scheduler": self.scheduler.get_metrics(),
            "checkpoint_dirty": {name: ns.dirty for name, ns in self.checkpointer.namespaces.items()},
        }


def _longest_error_streak(events: list[AttemptEvent]) -> int:
    longest = current = 0
    for event in events:
        current = 0 if event.correct else current + 1
        longest = max(longest, current)
    return longest
