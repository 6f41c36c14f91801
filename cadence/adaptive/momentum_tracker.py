"""
Momentum Tracker - emotional streaks and performance trends.

Momentum is the medium-term counterpart of flow. Each response is scored
on five weighted factors over the last 15 answers:

    accuracy 0.30 | speed 0.25 | consistency 0.20 | difficulty 0.15 | recovery 0.10

The weighted sum is the *target*; the published momentum score moves
toward it by exponential smoothing so a single answer cannot swing it
across a category boundary. After more than five idle minutes the score
first relaxes toward the window's mean confidence.

Six momentum types are derived from the score and the short-term trend
(linear-regression slope of adjusted confidence, normalised to [-1, 1]).
"""
from __future__ import annotations

import math
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime

from loguru import logger

from cadence.core.models import AttemptEvent, FlowState, MomentumType
from cadence.core.stats import clamp, linear_slope, mean, pstdev

# =============================================================================
# Constants
# =============================================================================

MOMENTUM_FACTORS = {
    "accuracy": 0.30,
    "response_time": 0.25,
    "consistency": 0.20,
    "difficulty_progress": 0.15,
    "recovery_rate": 0.10,
}

MOMENTUM_THRESHOLDS = {
    "peak_performance": 0.85,
    "confidence_building": 0.70,
    "minor_setback": 0.40,
    "recovery_mode": 0.25,
    "confidence_crisis": 0.25,
}

ENGAGEMENT_BOOST = {
    FlowState.DEEP_FLOW: 0.3,
    FlowState.LIGHT_FLOW: 0.2,
    FlowState.FRUSTRATED: -0.3,
}

MOMENTUM_RECOMMENDATIONS = {
    MomentumType.PEAK_PERFORMANCE: {
        "type": "maintain",
        "message": "Extraordinary momentum. Keep this pace.",
        "action": "continue_challenging_content",
        "priority": "high",
    },
    MomentumType.CONFIDENCE_BUILDING: {
        "type": "reinforce",
        "message": "Your confidence is growing.",
        "action": "gradually_increase_difficulty",
        "priority": "medium",
    },
    MomentumType.RECOVERY_MODE: {
        "type": "support",
        "message": "You're recovering well. Keep going patiently.",
        "action": "provide_easier_content",
        "priority": "high",
    },
    MomentumType.CONFIDENCE_CRISIS: {
        "type": "recover",
        "message": "One step at a time. Take your time.",
        "action": "switch_to_confidence_building",
        "priority": "critical",
    },
    MomentumType.MINOR_SETBACK: {
        "type": "adjust",
        "message": "A small adjustment and you're back on track.",
        "action": "slight_difficulty_reduction",
        "priority": "medium",
    },
    MomentumType.STEADY_PROGRESS: {
        "type": "continue",
        "message": "Steady progress. Keep at it.",
        "action": "maintain_current_level",
        "priority": "low",
    },
}


@dataclass
class MomentumConfig:
    """Windows and smoothing for momentum tracking."""

    short_window: int = 5
    medium_window: int = 15
    long_window: int = 30
    trend_min_responses: int = 8
    pattern_min_responses: int = 10
    decay_seconds: float = 300.0
    smoothing: float = 0.3
    initial_score: float = 0.5
    max_history: int = 1000
    trimmed_history: int = 500


@dataclass
class MomentumSample:
    """A response enriched with momentum-specific indicators."""

    correct: bool
    response_time_ms: float
    timestamp: datetime
    hints_used: int
    raw_confidence: float
    adjusted_confidence: float
    perceived_difficulty: float
    is_improvement: bool
    session_minutes: float


@dataclass
class Streaks:
    confidence: int = 0
    struggle: int = 0
    improvement: int = 0
    consistency: int = 0


@dataclass
class Trends:
    short_term: float = 0.0
    medium_term: float = 0.0
    long_term: float = 0.0


@dataclass
class LearningPatterns:
    recovery_rate: float = 0.0
    difficulty_tolerance: float = 0.0
    performance_variability: float = 0.0
    learning_velocity: float = 0.0


@dataclass
class EmotionalState:
    confidence: float = 0.5
    frustration: float = 0.0
    engagement: float = 0.5
    fatigue: float = 0.0


@dataclass
class MomentumResult:
    momentum_type: MomentumType
    momentum_score: float
    momentum_changed: bool
    trends: Trends
    streaks: Streaks
    emotional_state: EmotionalState
    recommendations: list[dict] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)


class MomentumTracker:
    """
    Tracks emotional streaks and score trends over short/medium/long windows.

    Usage:
        tracker = MomentumTracker()
        result = tracker.process(event, flow_state=FlowState.LIGHT_FLOW)
    """

    def __init__(self, config: MomentumConfig | None = None):
        self.config = config or MomentumConfig()
        self.reset()

    def reset(self, now: datetime | None = None) -> None:
        self.samples: deque[MomentumSample] = deque(maxlen=self.config.long_window)
        self.current_momentum = MomentumType.STEADY_PROGRESS
        self.momentum_history: list[dict] = []
        self.momentum_change_count = 0
        self.momentum_score = self.config.initial_score
        self.target_score = self.config.initial_score
        self.trends = Trends()
        self.streaks = Streaks()
        self.patterns = LearningPatterns()
        self.emotional_state = EmotionalState()
        self.session_start: datetime | None = now
        self.last_momentum_change: datetime | None = now

    # =========================================================================
    # Processing
    # =========================================================================

    def process(self, event: AttemptEvent, flow_state: FlowState | None = None) -> MomentumResult:
        if self.session_start is None:
            self.session_start = event.timestamp
        previous_at = self.samples[-1].timestamp if self.samples else None

        sample = self.enrich(event)
        self.samples.append(sample)

        self._update_streaks(sample)
        self._update_score(sample.timestamp, previous_at)
        self._update_trends()
        self._update_patterns()
        self._update_emotional_state(flow_state, sample.session_minutes)

        new_type = self.detect_momentum_type()
        changed = new_type != self.current_momentum
        if changed:
            self._change_momentum(new_type, sample)

        return MomentumResult(
            momentum_type=self.current_momentum,
            momentum_score=self.momentum_score,
            momentum_changed=changed,
            trends=self.trends,
            streaks=self.streaks,
            emotional_state=self.emotional_state,
            recommendations=self.get_momentum_recommendations(),
            insights=self.get_momentum_insights(),
        )

    def enrich(self, event: AttemptEvent) -> MomentumSample:
        rt = event.response_time_ms
        speed_confidence = 0.8 if rt < 3000 else 0.2 if rt > 8000 else 0.5
        accuracy_confidence = 0.9 if event.correct else 0.1
        raw = (speed_confidence + accuracy_confidence) / 2
        penalties = event.hesitation_count * 0.1 + event.hints_used * 0.2
        minutes = (event.timestamp - self.session_start).total_seconds() / 60 if self.session_start else 0.0

        return MomentumSample(
            correct=event.correct,
            response_time_ms=rt,
            timestamp=event.timestamp,
            hints_used=event.hints_used,
            raw_confidence=raw,
            adjusted_confidence=max(0.0, raw - penalties),
            perceived_difficulty=self.perceived_difficulty(event),
            is_improvement=self._is_improvement(event),
            session_minutes=max(0.0, minutes),
        )

    @staticmethod
    def perceived_difficulty(event: AttemptEvent) -> float:
        difficulty = min(1.0, event.response_time_ms / 10000)
        if not event.correct:
            difficulty += 0.3
        difficulty += event.hints_used * 0.1
        item = event.item
        if item.mood == "subjunctive":
            difficulty += 0.2
        if "Perf" in item.tense:
            difficulty += 0.1
        if item.is_irregular:
            difficulty += 0.1
        return min(1.0, difficulty)

    def _is_improvement(self, event: AttemptEvent) -> bool:
        if len(self.samples) < 3:
            return False
        recent = list(self.samples)[-3:]
        avg_time = mean([s.response_time_ms for s in recent])
        avg_accuracy = mean([1.0 if s.correct else 0.0 for s in recent])
        current_accuracy = 1.0 if event.correct else 0.0
        return event.response_time_ms < avg_time * 0.9 or current_accuracy > avg_accuracy

    def _update_streaks(self, sample: MomentumSample) -> None:
        s = self.streaks
        confidence = sample.adjusted_confidence

        if confidence > 0.7 and sample.correct:
            s.confidence += 1
            s.struggle = 0
        elif confidence < 0.4 or not sample.correct:
            s.struggle += 1
            s.confidence = 0
        else:
            s.confidence = max(0, s.confidence - 1)
            s.struggle = max(0, s.struggle - 1)

        if sample.is_improvement:
            s.improvement += 1
        else:
            s.improvement = max(0, s.improvement - 1)

        if len(self.samples) >= 3:
            last_three = [x.adjusted_confidence for x in list(self.samples)[-3:]]
            if pstdev(last_three) < 0.2:
                s.consistency += 1
            else:
                s.consistency = max(0, s.consistency - 1)

    # =========================================================================
    # Score
    # =========================================================================

    def compute_target_score(self) -> float:
        """Weighted five-factor score over the medium window."""
        recent = list(self.samples)[-self.config.medium_window:]
        if not recent:
            return self.config.initial_score

        accuracy = mean([1.0 if s.correct else 0.0 for s in recent])
        speed = self.speed_score(recent)
        consistency = self.consistency_score(recent)
        difficulty = self.difficulty_handling_score(recent)
        recovery = self.recovery_score(recent)

        return clamp(
            accuracy * MOMENTUM_FACTORS["accuracy"]
            + speed * MOMENTUM_FACTORS["response_time"]
            + consistency * MOMENTUM_FACTORS["consistency"]
            + difficulty * MOMENTUM_FACTORS["difficulty_progress"]
            + recovery * MOMENTUM_FACTORS["recovery_rate"]
        )

    @staticmethod
    def speed_score(samples: list[MomentumSample]) -> float:
        """8000 ms maps to 0, 3000 ms (or faster) to 1."""
        avg = mean([s.response_time_ms for s in samples])
        return clamp((8000 - avg) / 5000)

    @staticmethod
    def consistency_score(samples: list[MomentumSample]) -> float:
        return max(0.0, 1 - 2 * pstdev([s.adjusted_confidence for s in samples]))

    @staticmethod
    def difficulty_handling_score(samples: list[MomentumSample]) -> float:
        hard = [s for s in samples if s.perceived_difficulty > 0.6]
        if not hard:
            return 0.5
        return sum(1 for s in hard if s.correct) / len(hard)

    @staticmethod
    def recovery_score(samples: list[MomentumSample]) -> float:
        """Fraction of post-error answers that were correct and under 6 s."""
        recoveries = 0
        quick = 0
        for prev, cur in zip(samples, samples[1:]):
            if not prev.correct and cur.correct:
                recoveries += 1
                if cur.response_time_ms < 6000:
                    quick += 1
        return quick / recoveries if recoveries else 0.5

    def _update_score(self, now: datetime, previous_at: datetime | None) -> None:
        cfg = self.config
        if previous_at is not None:
            idle = (now - previous_at).total_seconds()
            if idle > cfg.decay_seconds:
                self.apply_idle_decay(idle)

        self.target_score = self.compute_target_score()
        self.momentum_score += cfg.smoothing * (self.target_score - self.momentum_score)
        self.momentum_score = clamp(self.momentum_score)

    def apply_idle_decay(self, idle_seconds: float) -> None:
        """Relax the score toward the window's mean confidence."""
        window = list(self.samples)[-self.config.medium_window:]
        anchor = mean([s.adjusted_confidence for s in window], default=self.config.initial_score)
        factor = math.exp(-idle_seconds / self.config.decay_seconds)
        self.momentum_score = clamp(anchor + (self.momentum_score - anchor) * factor)
        logger.debug(f"Momentum idle decay after {idle_seconds:.0f}s -> {self.momentum_score:.3f}")

    # =========================================================================
    # Trends & patterns
    # =========================================================================

    def _update_trends(self) -> None:
        cfg = self.config
        if len(self.samples) < cfg.trend_min_responses:
            return
        samples = list(self.samples)
        self.trends.short_term = self.calculate_trend(samples[-cfg.short_window:])
        self.trends.medium_term = self.calculate_trend(samples[-cfg.medium_window:])
        if len(samples) >= cfg.long_window:
            self.trends.long_term = self.calculate_trend(samples[-cfg.long_window:])

    @staticmethod
    def calculate_trend(samples: list[MomentumSample]) -> float:
        if len(samples) < 3:
            return 0.0
        slope = linear_slope([s.adjusted_confidence for s in samples])
        return clamp(slope * len(samples), -1.0, 1.0)

    def _update_patterns(self) -> None:
        if len(self.samples) < self.config.pattern_min_responses:
            return
        samples = list(self.samples)
        confidences = [s.adjusted_confidence for s in samples]

        self.patterns.recovery_rate = self._recovery_pattern(samples)

        hard = [s.adjusted_confidence for s in samples if s.perceived_difficulty > 0.6]
        self.patterns.difficulty_tolerance = mean(hard, default=0.5)

        self.patterns.performance_variability = max(0.0, 1 - pstdev(confidences) * 3)

        if len(samples) < 15:
            self.patterns.learning_velocity = 0.5
        else:
            half = len(samples) // 2
            improvement = mean(confidences[half:]) - mean(confidences[:half])
            self.patterns.learning_velocity = clamp(0.5 + improvement)

    @staticmethod
    def _recovery_pattern(samples: list[MomentumSample]) -> float:
        """1.0 = recovers on the next answer, 0.0 = takes five or more."""
        steps: list[int] = []
        for i in range(1, len(samples)):
            if samples[i - 1].correct:
                continue
            if samples[i].correct:
                steps.append(1)
                continue
            for offset, j in enumerate(range(i + 1, min(i + 5, len(samples))), start=1):
                if samples[j].correct:
                    steps.append(offset)
                    break
        if not steps:
            return 0.5
        return max(0.0, 1 - (mean(steps) - 1) / 4)

    def _update_emotional_state(self, flow_state: FlowState | None, session_minutes: float) -> None:
        es = self.emotional_state
        es.confidence = clamp(self.momentum_score * 0.7 + (self.streaks.confidence / 10) * 0.3)

        recent_errors = sum(1 for s in list(self.samples)[-5:] if not s.correct)
        es.frustration = clamp((self.streaks.struggle / 5) * 0.6 + (recent_errors / 5) * 0.4)

        boost = ENGAGEMENT_BOOST.get(flow_state, 0.0) if flow_state else 0.0
        es.engagement = clamp(0.5 + boost + (self.streaks.consistency / 10) * 0.2)

        time_fatigue = min(0.8, session_minutes / 30)
        performance_fatigue = 0.3 if self.trends.short_term < -0.5 else 0.0
        es.fatigue = clamp(time_fatigue + performance_fatigue)

    # =========================================================================
    # Classification
    # =========================================================================

    def detect_momentum_type(self) -> MomentumType:
        score = self.momentum_score
        trend = self.trends.short_term
        t = MOMENTUM_THRESHOLDS

        if score >= t["peak_performance"] and trend > 0.3:
            return MomentumType.PEAK_PERFORMANCE
        if score >= t["confidence_building"] and trend > 0.1:
            return MomentumType.CONFIDENCE_BUILDING
        if score <= t["confidence_crisis"] and trend < -0.3:
            return MomentumType.CONFIDENCE_CRISIS
        if score <= t["recovery_mode"] and trend > 0.2:
            return MomentumType.RECOVERY_MODE
        if score <= t["minor_setback"] and trend < -0.1:
            return MomentumType.MINOR_SETBACK
        return MomentumType.STEADY_PROGRESS

    def _change_momentum(self, new_type: MomentumType, sample: MomentumSample) -> None:
        previous = self.current_momentum
        since = self.last_momentum_change or self.session_start or sample.timestamp
        self.momentum_history.append(
            {
                "previous_momentum": previous.value,
                "new_momentum": new_type.value,
                "timestamp": sample.timestamp.isoformat(),
                "duration_seconds": max(0.0, (sample.timestamp - since).total_seconds()),
                "triggering_response": {
                    "correct": sample.correct,
                    "response_time_ms": sample.response_time_ms,
                    "confidence": sample.adjusted_confidence,
                },
                "context": {
                    "momentum_score": self.momentum_score,
                    "trend": self.trends.short_term,
                    "streaks": asdict(self.streaks),
                },
            }
        )
        self.momentum_change_count += 1
        if len(self.momentum_history) > self.config.max_history:
            self.momentum_history = self.momentum_history[-self.config.trimmed_history:]
        self.current_momentum = new_type
        self.last_momentum_change = sample.timestamp
        logger.info(f"Momentum changed: {previous.value} -> {new_type.value} (score {self.momentum_score:.2f})")

    # =========================================================================
    # Read side
    # =========================================================================

    def get_momentum_recommendations(self) -> list[dict]:
        recommendations = [dict(MOMENTUM_RECOMMENDATIONS[self.current_momentum])]
        if self.emotional_state.fatigue > 0.7:
            recommendations.append(
                {
                    "type": "rest",
                    "message": "Consider taking a break.",
                    "action": "suggest_break",
                    "priority": "high",
                }
            )
        if self.emotional_state.frustration > 0.6:
            recommendations.append(
                {
                    "type": "reassure",
                    "message": "Feeling challenged is fine. You can do this.",
                    "action": "provide_encouragement",
                    "priority": "medium",
                }
            )
        return recommendations

    def get_momentum_insights(self) -> list[str]:
        insights = []
        if self.trends.short_term > 0.5:
            insights.append("Performance is improving consistently")
        elif self.trends.short_term < -0.5:
            insights.append("Performance has dipped recently")

        if self.streaks.confidence > 7:
            insights.append("Exceptional confidence streak")
        elif self.streaks.consistency > 5:
            insights.append("Very consistent practice")

        if self.patterns.recovery_rate > 0.8:
            insights.append("You bounce back from errors quickly")
        elif self.patterns.difficulty_tolerance > 0.7:
            insights.append("You handle difficult content well")

        if self.patterns.learning_velocity > 0.7:
            insights.append("Your learning velocity is impressive")
        return insights

    def get_momentum_stats(self) -> dict:
        duration = 0.0
        if self.session_start and self.samples:
            duration = (self.samples[-1].timestamp - self.session_start).total_seconds()
        return {
            "current_momentum": self.current_momentum.value,
            "momentum_score": round(self.momentum_score * 100),
            "trends": {k: round(v * 100) for k, v in asdict(self.trends).items()},
            "streaks": asdict(self.streaks),
            "patterns": {k: round(v * 100) for k, v in asdict(self.patterns).items()},
            "emotional_state": {k: round(v * 100) for k, v in asdict(self.emotional_state).items()},
            "session_duration": duration,
            "total_responses": len(self.samples),
            "momentum_changes": self.momentum_change_count,
        }
