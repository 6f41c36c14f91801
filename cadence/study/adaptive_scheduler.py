"""
Adaptive Scheduler - FSRS conditioned on flow, confidence and timing.

One review goes through three steps:

1. Rating: correctness, hints, latency and the learner's emotional state
   are folded into AGAIN/HARD/GOOD/EASY
2. FSRS update: new stability, difficulty, interval and due date
3. Adjustments: confidence, flow and temporal multipliers on the interval,
   recovery/fatigue delay floors, and an early advance at optimal times

Anything that goes wrong in steps 1-3 (an exception or a non-finite value)
is counted and replaced by the fixed-table FallbackScheduler. The caller
always gets a valid card back.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from loguru import logger

from cadence.core.config import Settings, get_settings
from cadence.core.errors import SchedulingError
from cadence.core.feature_flags import FeatureFlags
from cadence.core.models import (
    ConfidenceLevel,
    FlowState,
    Rating,
    ScheduleCard,
    SchedulingAdjustment,
    coerce_count,
)
from cadence.core.stats import is_finite
from cadence.core.telemetry import MetricsSink, NullMetrics
from cadence.study.fallback import FallbackScheduler
from cadence.study.fsrs import FSRSParams, FSRSScheduler

ACCENT_ERROR = "accent"
FLOW_RECOVERY_DELAY = timedelta(hours=2)
TEMPORAL_DELAY = timedelta(hours=2)
TEMPORAL_DELAY_FATIGUED = timedelta(hours=4)
OPTIMAL_ADVANCE = timedelta(hours=1)
MIN_INTERVAL = timedelta(days=1)

LOW_CONFIDENCE_LEVELS = frozenset({ConfidenceLevel.STRUGGLING})
HIGH_CONFIDENCE_LEVELS = frozenset({ConfidenceLevel.CONFIDENT, ConfidenceLevel.OVERCONFIDENT})


@dataclass
class SchedulingContext:
    """
    Read-only view of the learner's state at review time.

    Attributes:
        now: Review time (the attempt timestamp)
        latency_ms: Response latency, None if unknown
        error_tags: Error classification of a wrong answer
        confidence_level: Session-wide confidence bucket
        flow_state: Current flow state
        confidence_advice: ConfidenceEngine.get_srs_recommendations() output
        flow_advice: FlowStateDetector.get_srs_scheduling_recommendations() output
        temporal_advice: callable(due, now) -> TemporalIntelligence advice dict
    """

    now: datetime = field(default_factory=datetime.now)
    latency_ms: float | None = None
    error_tags: tuple[str, ...] = ()
    confidence_level: ConfidenceLevel = ConfidenceLevel.UNCERTAIN
    flow_state: FlowState = FlowState.NEUTRAL
    confidence_advice: dict | None = None
    flow_advice: dict | None = None
    temporal_advice: Callable[[datetime, datetime], dict] | None = None


@dataclass
class ScheduleResult:
    """Updated card plus explanation of how it was produced."""

    card: ScheduleCard
    rating: Rating | None
    adjustment: SchedulingAdjustment
    used_fallback: bool = False

    @property
    def ease(self) -> float:
        return self.card.ease

    def to_dict(self) -> dict:
        return {
            **self.card.to_dict(),
            "rating": int(self.rating) if self.rating is not None else None,
            "adjustment": self.adjustment.to_dict(),
            "used_fallback": self.used_fallback,
        }


class AdaptiveScheduler:
    """
    FSRS scheduler with emotional and temporal adjustments and a fallback.

    Usage:
        scheduler = AdaptiveScheduler()
        card = scheduler.calculate_next_interval(card, correct=True, hints_used=0, meta=ctx)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        flags: FeatureFlags | None = None,
        metrics: MetricsSink | None = None,
        fsrs: FSRSScheduler | None = None,
        fallback: FallbackScheduler | None = None,
    ):
        self.settings = settings or get_settings()
        self.flags = flags or FeatureFlags()
        self.metrics = metrics or NullMetrics()
        self.fsrs = fsrs or FSRSScheduler(
            FSRSParams(
                request_retention=self.settings.request_retention,
                maximum_interval=self.settings.maximum_interval_days,
            )
        )
        self.fallback = fallback or FallbackScheduler()
        self.counters = {
            "fsrs_usage": 0,
            "fallbacks": 0,
            "emotional_adjustments": 0,
            "temporal_adjustments": 0,
            "total_reviews": 0,
            "successful_reviews": 0,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def calculate_next_interval(
        self,
        card: ScheduleCard | None,
        correct: bool,
        hints_used: int = 0,
        meta: SchedulingContext | None = None,
    ) -> ScheduleCard:
        """Schedule the next review; returns the updated card."""
        return self.review(card, correct, hints_used, meta).card

    def review(
        self,
        card: ScheduleCard | None,
        correct: bool,
        hints_used: int = 0,
        meta: SchedulingContext | None = None,
    ) -> ScheduleResult:
        """Like calculate_next_interval but also returns rating and adjustments."""
        card = card or ScheduleCard()
        meta = meta or SchedulingContext()
        hints_used = coerce_count(hints_used)
        self._count("total_reviews")
        if correct:
            self._count("successful_reviews")

        if not self.flags.is_enabled("ADAPTIVE_SCHEDULING"):
            return self._fallback(card, correct, hints_used, meta.now, reason="disabled")

        try:
            result = self._adaptive(card, correct, hints_used, meta)
        except Exception as e:  # Any adaptive failure degrades to the fixed table
            logger.warning(f"Adaptive scheduling failed ({type(e).__name__}: {e}); using fallback")
            return self._fallback(card, correct, hints_used, meta.now, reason="error")

        self._count("fsrs_usage")
        return result

    def get_metrics(self) -> dict:
        total = self.counters["total_reviews"]
        return {
            **self.counters,
            "success_rate": self.counters["successful_reviews"] / total if total else 0.0,
        }

    # =========================================================================
    # Rating
    # =========================================================================

    def determine_rating(self, correct: bool, hints_used: int, meta: SchedulingContext) -> Rating:
        if not correct:
            only_accent = list(meta.error_tags) == [ACCENT_ERROR]
            return Rating.HARD if only_accent else Rating.AGAIN

        rating = Rating.HARD if hints_used > 0 else Rating.GOOD

        if meta.latency_ms:
            if meta.latency_ms < self.settings.fast_guess_ms:
                rating = Rating.EASY if hints_used == 0 else Rating.GOOD
            elif meta.latency_ms > self.settings.slow_ms:
                rating = Rating(max(Rating.HARD, rating - 1))

        if self.flags.is_enabled("EMOTIONAL_SRS_INTEGRATION"):
            if meta.confidence_level in LOW_CONFIDENCE_LEVELS or meta.flow_state == FlowState.FRUSTRATED:
                rating = Rating(max(Rating.AGAIN, rating - 1))
            elif meta.confidence_level in HIGH_CONFIDENCE_LEVELS or meta.flow_state == FlowState.DEEP_FLOW:
                rating = Rating(min(Rating.EASY, rating + 1))

        return rating

    # =========================================================================
    # Internals
    # =========================================================================

    def _adaptive(
        self, card: ScheduleCard, correct: bool, hints_used: int, meta: SchedulingContext
    ) -> ScheduleResult:
        now = meta.now
        rating = self.determine_rating(correct, hints_used, meta)
        updated = self.fsrs.review(card, rating, now)

        due, adjustment = self.apply_adjustments(updated.due or now, meta)
        interval = max(1, round((due - now) / timedelta(days=1)))

        if not is_finite(interval, updated.stability, updated.difficulty):
            raise SchedulingError(f"non-finite schedule (interval={interval})")

        updated = replace(
            updated,
            interval_days=int(interval),
            due=due,
            leech=updated.leech or updated.lapses >= self.settings.leech_threshold,
        )
        if updated.leech and not card.leech:
            logger.info(f"Item flagged as leech after {updated.lapses} lapses")

        return ScheduleResult(card=updated, rating=rating, adjustment=adjustment)

    def apply_adjustments(self, due: datetime, meta: SchedulingContext) -> tuple[datetime, SchedulingAdjustment]:
        """Apply confidence, flow and temporal adjustments to a raw FSRS due date."""
        now = meta.now
        factor = 1.0
        reasons: list[str] = []
        window = None

        if self.flags.is_enabled("EMOTIONAL_SRS_INTEGRATION"):
            advice = meta.confidence_advice
            if advice and advice.get("interval_multiplier", 1.0) != 1.0:
                factor *= advice["interval_multiplier"]
                reasons.append(f"confidence:{advice.get('confidence_level')}")
                self._count("emotional_adjustments")

            flow = meta.flow_advice
            if flow and flow.get("scheduling_multiplier", 1.0) != 1.0:
                factor *= flow["scheduling_multiplier"]
                reasons.append(f"flow:{flow.get('flow_state')}")
                if flow.get("should_delay"):
                    due = max(due, now + FLOW_RECOVERY_DELAY)
                    reasons.append("frustrated_recovery_delay")

        if self.flags.is_enabled("TEMPORAL_SCHEDULING") and meta.temporal_advice is not None:
            temporal = meta.temporal_advice(due, now)
            if temporal.get("timing_multiplier", 1.0) != 1.0:
                factor *= temporal["timing_multiplier"]
                reasons.append(f"temporal:{temporal.get('priority_adjustment')}")
                self._count("temporal_adjustments")

            if temporal.get("should_delay"):
                delay = TEMPORAL_DELAY_FATIGUED if temporal.get("current_fatigue", 0.0) > 0.8 else TEMPORAL_DELAY
                due = max(due, now + delay)
                reasons.append("temporal_delay_fatigue_overload")
            elif temporal.get("is_optimal_time"):
                due = max(now, due - OPTIMAL_ADVANCE)
                reasons.append("temporal_advance_optimal")

            window = temporal.get("optimal_window")

        if factor != 1.0:
            if not math.isfinite(factor):
                raise SchedulingError(f"non-finite adjustment factor {factor}")
            original_days = (due - now) / timedelta(days=1)
            adjusted_days = max(1.0, original_days * factor)
            due = now + timedelta(days=adjusted_days)
            logger.debug(
                f"Adjusted interval {original_days:.1f}d -> {adjusted_days:.1f}d (x{factor:.2f}: {', '.join(reasons)})"
            )

        due = max(due, now + MIN_INTERVAL)

        # Peak-hour snapping runs last and never lands before the minimum interval
        if window and window.get("confidence", 0.0) > 0.6:
            peak = int(window["peak_hour"])
            if abs(due.hour - peak) > 3:
                snapped = due.replace(hour=peak, minute=0, second=0, microsecond=0)
                if snapped < now + MIN_INTERVAL:
                    snapped += timedelta(days=1)
                due = snapped
                reasons.append("temporal_optimal_window_adjustment")

        return due, SchedulingAdjustment(multiplier=factor, reasons=reasons)

    def _fallback(self, card: ScheduleCard, correct: bool, hints_used: int, now: datetime, reason: str) -> ScheduleResult:
        self._count("fallbacks")
        updated = self.fallback.review(card, correct, hints_used, now)
        updated = replace(updated, leech=updated.leech or updated.lapses >= self.settings.leech_threshold)
        return ScheduleResult(
            card=updated,
            rating=None,
            adjustment=SchedulingAdjustment(multiplier=1.0, reasons=[f"fallback:{reason}"]),
            used_fallback=True,
        )

    def _count(self, name: str) -> None:
        self.counters[name] += 1
        self.metrics.increment(f"scheduler.{name}")
