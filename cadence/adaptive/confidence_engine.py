"""
Confidence Engine - per-category confidence profiles and calibration.

Every attempt updates the profile of its category (mood|tense|verb):

    confidence = accuracy * 0.4 + speed_factor * 0.2 + consistency_factor * 0.2

The weights sum to 0.8, not 1.0, so a category tops out at 0.8 and the
"overconfident" bucket (>= 0.9) is only reachable through the session-wide
overall score. This is the established behaviour and is kept as is.

Calibration compares optional self-reported confidence with actual
correctness (EMA, alpha 0.2) and only moves when a self-report is given.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from cadence.core.models import AttemptEvent, ConfidenceLevel, require_list, require_mapping
from cadence.core.stats import clamp, mean, variance

# Level thresholds; boundary values resolve to the upper bucket
CONFIDENCE_THRESHOLDS = {
    ConfidenceLevel.OVERCONFIDENT: 0.9,
    ConfidenceLevel.CONFIDENT: 0.7,
    ConfidenceLevel.UNCERTAIN: 0.5,
    ConfidenceLevel.HESITANT: 0.3,
}

# Interval multipliers handed to the SRS layer per category level
SRS_INTERVAL_MULTIPLIERS = {
    ConfidenceLevel.OVERCONFIDENT: 1.3,
    ConfidenceLevel.CONFIDENT: 1.15,
    ConfidenceLevel.UNCERTAIN: 1.0,
    ConfidenceLevel.HESITANT: 0.85,
    ConfidenceLevel.STRUGGLING: 0.7,
}


@dataclass
class ConfidenceConfig:
    """Speed band and window sizes for confidence estimation."""

    optimal_min_ms: float = 2000.0
    optimal_max_ms: float = 4000.0
    fast_threshold_ms: float = 1500.0
    slow_threshold_ms: float = 6000.0
    response_time_alpha: float = 0.3
    calibration_alpha: float = 0.2
    consistency_window: int = 10
    trend_window: int = 15
    max_patterns: int = 1000
    trimmed_patterns: int = 500
    stale_after_seconds: float = 300.0


def get_confidence_level(confidence: float) -> ConfidenceLevel:
    """Bucket a confidence value; 0.9/0.7/0.5/0.3 belong to the upper bucket."""
    for level, threshold in CONFIDENCE_THRESHOLDS.items():
        if confidence >= threshold:
            return level
    return ConfidenceLevel.STRUGGLING


@dataclass
class ConfidenceProfile:
    """Aggregate statistics for one category."""

    attempts: int = 0
    correct: int = 0
    avg_response_time_ms: float = 0.0
    confidence: float = 0.5
    trend: str = "neutral"
    last_seen: datetime | None = None
    strength_areas: list[str] = field(default_factory=list)
    improvement_areas: list[str] = field(default_factory=list)
    recent_results: list[bool] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        return self.correct / self.attempts if self.attempts else 0.0

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "correct": self.correct,
            "avg_response_time_ms": self.avg_response_time_ms,
            "confidence": self.confidence,
            "trend": self.trend,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "strength_areas": list(self.strength_areas),
            "improvement_areas": list(self.improvement_areas),
            "recent_results": list(self.recent_results),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConfidenceProfile:
        data = require_mapping(data, "profile")
        last_seen = data.get("last_seen")
        return cls(
            attempts=int(data.get("attempts", 0)),
            correct=int(data.get("correct", 0)),
            avg_response_time_ms=float(data.get("avg_response_time_ms", 0.0)),
            confidence=clamp(float(data.get("confidence", 0.5))),
            trend=str(data.get("trend", "neutral")),
            last_seen=datetime.fromisoformat(last_seen) if last_seen else None,
            strength_areas=list(require_list(data.get("strength_areas", []), "strength_areas")),
            improvement_areas=list(require_list(data.get("improvement_areas", []), "improvement_areas")),
            recent_results=[bool(r) for r in require_list(data.get("recent_results", []), "recent_results")],
        )


@dataclass
class ConfidenceUpdate:
    overall: float
    category: float
    trend: str
    calibration: float
    level: ConfidenceLevel
    category_key: str

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "category": self.category,
            "trend": self.trend,
            "calibration": self.calibration,
            "level": self.level.value,
            "category_key": self.category_key,
        }


@dataclass
class ConfidenceResult:
    confidence: ConfidenceUpdate
    calibration: float
    recommendations: list[dict]
    insights: list[str]
    next_suggestions: list[dict]


@dataclass
class _PatternEntry:
    category_key: str
    correct: bool
    response_time_ms: float
    timestamp: datetime
    indicators: dict


class ConfidenceEngine:
    """
    Maintains per-category confidence profiles and a calibration score.

    Profiles are created lazily on first attempt in a category, updated on
    every attempt in it, and never deleted.
    """

    def __init__(self, config: ConfidenceConfig | None = None):
        self.config = config or ConfidenceConfig()
        self.reset()

    def reset(self) -> None:
        self.profiles: dict[str, ConfidenceProfile] = {}
        self.patterns: list[_PatternEntry] = []
        self.overall = 0.5
        self.calibration = 0.5
        self.last_category_key: str | None = None
        self.last_seen_at: datetime | None = None

    # =========================================================================
    # Processing
    # =========================================================================

    def process(self, event: AttemptEvent) -> ConfidenceResult:
        key = event.item.category_key
        entry = _PatternEntry(
            category_key=key,
            correct=event.correct,
            response_time_ms=event.response_time_ms,
            timestamp=event.timestamp,
            indicators=self.analyze_indicators(event),
        )
        self.patterns.append(entry)
        if len(self.patterns) > self.config.max_patterns:
            self.patterns = self.patterns[-self.config.trimmed_patterns:]

        self._update_profile(event)
        if event.reported_confidence is not None:
            self.update_calibration(event.reported_confidence, event.correct)

        update = self._calculate_update(key)
        self.last_category_key = key
        self.last_seen_at = event.timestamp

        return ConfidenceResult(
            confidence=update,
            calibration=self.calibration,
            recommendations=generate_recommendations(update.level, self.calibration, update.trend),
            insights=self._insights(entry),
            next_suggestions=self.get_next_practice_targets(event.timestamp),
        )

    @staticmethod
    def analyze_indicators(event: AttemptEvent) -> dict:
        """Behavioural indicators: fluency, hesitation, impulsiveness, help seeking."""
        rt = event.response_time_ms
        correct = event.correct
        indicators = {
            "speed": _speed_bucket(rt),
            "accuracy": correct,
            "help_seeking": event.hints_used > 0,
            "fluency": rt < 3000 and correct,
            "hesitation": rt > 8000,
            "impulsiveness": rt < 1000 and not correct,
        }
        score = 0.5
        if indicators["fluency"]:
            score += 0.3
        if correct and not indicators["help_seeking"]:
            score += 0.2
        if indicators["hesitation"]:
            score -= 0.2
        if indicators["impulsiveness"]:
            score -= 0.3
        if indicators["help_seeking"]:
            score -= 0.1
        indicators["behavioral_confidence"] = clamp(score)
        return indicators

    def _update_profile(self, event: AttemptEvent) -> None:
        cfg = self.config
        key = event.item.category_key
        profile = self.profiles.get(key)
        if profile is None:
            profile = self.profiles[key] = ConfidenceProfile()
            logger.debug(f"New confidence profile for {key}")

        profile.attempts += 1
        if event.correct:
            profile.correct += 1
        profile.recent_results.append(event.correct)
        profile.recent_results = profile.recent_results[-cfg.trend_window:]

        alpha = cfg.response_time_alpha
        profile.avg_response_time_ms = alpha * event.response_time_ms + (1 - alpha) * profile.avg_response_time_ms

        profile.confidence = clamp(
            profile.accuracy * 0.4
            + self.speed_factor(profile.avg_response_time_ms) * 0.2
            + self.consistency_factor(profile) * 0.2
        )
        profile.trend = self.category_trend(profile)
        profile.last_seen = event.timestamp

        area = f"{event.item.mood}/{event.item.tense}"
        if profile.confidence > 0.7 and profile.trend == "improving" and area not in profile.strength_areas:
            profile.strength_areas = (profile.strength_areas + [area])[-5:]
        if (profile.confidence < 0.4 or profile.trend == "declining") and area not in profile.improvement_areas:
            profile.improvement_areas = (profile.improvement_areas + [area])[-5:]

    def speed_factor(self, avg_time_ms: float) -> float:
        """Trapezoid: 1.0 inside the optimal band, tapering outside it."""
        cfg = self.config
        if cfg.optimal_min_ms <= avg_time_ms <= cfg.optimal_max_ms:
            return 1.0
        if cfg.fast_threshold_ms <= avg_time_ms <= cfg.slow_threshold_ms:
            return 0.8
        if avg_time_ms < cfg.fast_threshold_ms:
            # Very fast can mean guessing
            return 0.4
        return max(0.2, 1.0 - (avg_time_ms - cfg.slow_threshold_ms) / 10000)

    def consistency_factor(self, profile: ConfidenceProfile) -> float:
        recent = profile.recent_results[-self.config.consistency_window:]
        if len(recent) < 3:
            return 0.5
        return max(0.1, 1.0 - variance([1.0 if r else 0.0 for r in recent]))

    @staticmethod
    def category_trend(profile: ConfidenceProfile) -> str:
        recent = profile.recent_results
        if len(recent) < 5:
            return "neutral"
        half = len(recent) // 2
        first = mean([1.0 if r else 0.0 for r in recent[:half]])
        second = mean([1.0 if r else 0.0 for r in recent[half:]])
        difference = second - first
        if difference > 0.2:
            return "improving"
        if difference < -0.2:
            return "declining"
        return "stable"

    def update_calibration(self, reported: float, correct: bool) -> None:
        score = 1 - abs(reported - (1.0 if correct else 0.0))
        alpha = self.config.calibration_alpha
        self.calibration = clamp(alpha * score + (1 - alpha) * self.calibration)

    def _calculate_update(self, key: str) -> ConfidenceUpdate:
        profile = self.profiles.get(key)
        category = profile.confidence if profile else 0.5

        recent = self.patterns[-20:]
        recent_accuracy = mean([1.0 if p.correct else 0.0 for p in recent], default=0.5)
        self.overall = clamp(recent_accuracy * 0.5 + category * 0.3 + self.session_trend() * 0.2)

        return ConfidenceUpdate(
            overall=self.overall,
            category=category,
            trend=profile.trend if profile else "neutral",
            calibration=self.calibration,
            level=get_confidence_level(category),
            category_key=key,
        )

    def session_trend(self) -> float:
        """Recent-10 accuracy against the 10 before it, centred on 0.5.

        Neutral (0.5) until there are 10 responses, and also when the
        older comparison window is empty.
        """
        if len(self.patterns) < 10:
            return 0.5
        recent = self.patterns[-10:]
        older = self.patterns[-20:-10]
        if not older:
            return 0.5
        recent_acc = mean([1.0 if p.correct else 0.0 for p in recent])
        older_acc = mean([1.0 if p.correct else 0.0 for p in older])
        return clamp(0.5 + recent_acc - older_acc)

    # =========================================================================
    # Read side
    # =========================================================================

    def get_current_state(self) -> dict:
        recent = self.patterns[-10:]
        return {
            "overall": self.overall,
            "level": get_confidence_level(self.overall).value,
            "calibration": self.calibration,
            "total_categories": len(self.profiles),
            "strong_areas": self.top_areas(5),
            "improvement_areas": self.lowest_areas(5),
            "session_stats": {
                "total_responses": len(self.patterns),
                "recent_accuracy": mean([1.0 if p.correct else 0.0 for p in recent]),
            },
        }

    def current_level(self) -> ConfidenceLevel:
        return get_confidence_level(self.overall)

    def top_areas(self, count: int) -> list[dict]:
        ranked = sorted(self.profiles.items(), key=lambda kv: kv[1].confidence, reverse=True)
        return [
            {"category": k, "confidence": round(p.confidence * 100), "accuracy": round(p.accuracy * 100)}
            for k, p in ranked[:count]
        ]

    def lowest_areas(self, count: int) -> list[dict]:
        ranked = sorted(self.profiles.items(), key=lambda kv: kv[1].confidence)
        return [
            {
                "category": k,
                "confidence": round(p.confidence * 100),
                "accuracy": round(p.accuracy * 100),
                "needs_practice": p.attempts < 10 or p.confidence < 0.5,
            }
            for k, p in ranked[:count]
        ]

    def get_next_practice_targets(self, now: datetime) -> list[dict]:
        """Low-confidence categories not seen recently, plus strengths to maintain."""
        ranked = sorted(self.profiles.items(), key=lambda kv: kv[1].confidence)
        stale = timedelta(seconds=self.config.stale_after_seconds)

        suggestions = [
            {"type": "improvement", "category": k, "reason": "Low confidence area", "priority": "high"}
            for k, p in ranked
            if p.confidence < 0.6 and (p.last_seen is None or now - p.last_seen > stale)
        ][:3]
        strengths = [(k, p) for k, p in ranked if p.confidence > 0.8][-2:]
        suggestions += [
            {"type": "maintenance", "category": k, "reason": "Maintain strong area", "priority": "low"}
            for k, _ in strengths
        ]
        return suggestions

    def get_srs_recommendations(self, category_key: str | None = None) -> dict:
        """Interval multiplier for the scheduler, from the category's level."""
        profile = self.profiles.get(category_key) if category_key else None
        if profile is None:
            level = ConfidenceLevel.UNCERTAIN
            value = 0.5
        else:
            level = get_confidence_level(profile.confidence)
            value = profile.confidence
        return {
            "category_key": category_key,
            "confidence": value,
            "confidence_level": level.value,
            "interval_multiplier": SRS_INTERVAL_MULTIPLIERS[level],
        }

    @staticmethod
    def _insights(entry: _PatternEntry) -> list[str]:
        ind = entry.indicators
        insights = []
        if ind["fluency"]:
            insights.append("Fluent answer - confidence in this area is growing")
        if ind["hesitation"] and entry.correct:
            insights.append("You knew it but hesitated - trust your instinct")
        if ind["impulsiveness"]:
            insights.append("Take a moment to think - speed doesn't always help")
        if ind["help_seeking"] and entry.correct:
            insights.append("Good use of hints")
        return insights

    # =========================================================================
    # Checkpointing
    # =========================================================================

    def to_dict(self) -> dict:
        return {
            "profiles": {k: p.to_dict() for k, p in self.profiles.items()},
            "overall": self.overall,
            "calibration": self.calibration,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Restore from to_dict() output. Nothing is assigned unless the whole blob parses."""
        data = require_mapping(data, "confidence checkpoint")
        raw_profiles = require_mapping(data.get("profiles", {}), "profiles")
        profiles = {str(k): ConfidenceProfile.from_dict(v) for k, v in raw_profiles.items()}
        overall = clamp(float(data.get("overall", 0.5)), 0.0, 1.0)
        calibration = clamp(float(data.get("calibration", 0.5)), 0.0, 1.0)

        self.profiles = profiles
        self.overall = overall
        self.calibration = calibration


def generate_recommendations(level: ConfidenceLevel, calibration: float, trend: str) -> list[dict]:
    """Pure function of (level, calibration, trend)."""
    recommendations = []
    if level == ConfidenceLevel.STRUGGLING:
        recommendations.append(
            {
                "type": "support",
                "message": "Review the fundamentals before continuing",
                "action": "review_basics",
                "priority": "high",
            }
        )
    elif level == ConfidenceLevel.HESITANT:
        recommendations.append(
            {
                "type": "practice",
                "message": "More focused practice will build confidence",
                "action": "focused_practice",
                "priority": "medium",
            }
        )
    elif level == ConfidenceLevel.OVERCONFIDENT:
        recommendations.append(
            {
                "type": "challenge",
                "message": "You're ready for harder material",
                "action": "increase_difficulty",
                "priority": "medium",
            }
        )

    if calibration < 0.6:
        recommendations.append(
            {
                "type": "self_awareness",
                "message": "Try rating your confidence before answering",
                "action": "confidence_tracking",
                "priority": "low",
            }
        )

    if trend == "declining":
        recommendations.append(
            {
                "type": "recovery",
                "message": "Consider a break and come back fresh",
                "action": "break_suggestion",
                "priority": "high",
            }
        )
    return recommendations


def _speed_bucket(rt: float) -> str:
    if rt < 1500:
        return "very_fast"
    if rt < 3000:
        return "fast"
    if rt < 6000:
        return "normal"
    if rt < 10000:
        return "slow"
    return "very_slow"
