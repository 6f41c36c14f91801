"""
Temporal Intelligence - circadian profile and cognitive load.

Updated once per practice session (not per attempt):

1. Per-hour slots accumulate performance and cognitive load (EMA, alpha 0.3)
2. Cognitive load decays linearly between sessions and rises with each
   session's computed load
3. Once enough sessions exist (>= 10 overall, >= 2 per candidate hour) the
   circadian profile is recomputed: peak/low hours, rhythm, session length
4. Fatigue blends a time-of-day base curve, the personal hourly profile,
   accumulated load and the number of sessions in the last hour

The scheduler reads get_srs_scheduling_recommendations(), which turns all
of this into a bounded timing multiplier plus a delay flag.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from cadence.core.models import SessionSummary, SessionType, require_list, require_mapping
from cadence.core.stats import clamp, mean

SESSION_TYPE_FACTORS = {
    SessionType.REVIEW: 0.3,
    SessionType.MIXED: 0.6,
    SessionType.SPECIFIC: 0.7,
    SessionType.CHALLENGE: 0.9,
    SessionType.SPEED: 0.8,
}

# Session-length buckets (upper bound in minutes) and the length each recommends
DURATION_BUCKETS = (
    ("short", 15, 12),
    ("medium", 30, 22),
    ("long", 60, 45),
    ("very_long", None, 30),
)


@dataclass
class TemporalConfig:
    """Time-of-day curve, load dynamics and scheduling bounds."""

    slot_alpha: float = 0.3
    initial_load: float = 0.5
    load_threshold: float = 0.8
    recovery_rate_per_minute: float = 0.1
    load_history_max: int = 100
    load_history_keep: int = 50
    session_history_max: int = 500
    session_history_keep: int = 300

    min_sessions_for_profile: int = 10
    min_sessions_per_hour: int = 2
    default_session_minutes: int = 20

    # Base fatigue by hour of day
    post_lunch_hours: tuple[int, int] = (13, 15)
    morning_peak_hours: tuple[int, int] = (9, 11)
    night_start_hour: int = 22
    night_end_hour: int = 6
    base_fatigue: float = 0.3
    post_lunch_fatigue: float = 0.6
    night_fatigue: float = 0.7
    morning_fatigue: float = 0.2

    # SRS timing multiplier
    peak_bonus: float = 1.15
    low_penalty: float = 0.85
    fatigue_delay_threshold: float = 0.7
    fatigue_multiplier: float = 1.1
    overload_multiplier: float = 1.2
    multiplier_bounds: tuple[float, float] = (0.5, 2.0)


@dataclass
class SessionEntry:
    """A processed session as kept in history."""

    start: datetime
    duration_minutes: float
    hour: int
    accuracy: float
    avg_response_time_ms: float
    fatigue: float
    interruptions: int
    session_type: SessionType
    cognitive_load: float
    performance: float

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "duration_minutes": self.duration_minutes,
            "hour": self.hour,
            "accuracy": self.accuracy,
            "avg_response_time_ms": self.avg_response_time_ms,
            "fatigue": self.fatigue,
            "interruptions": self.interruptions,
            "session_type": self.session_type.value,
            "cognitive_load": self.cognitive_load,
            "performance": self.performance,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionEntry:
        return cls(
            start=datetime.fromisoformat(data["start"]),
            duration_minutes=float(data["duration_minutes"]),
            hour=int(data["hour"]),
            accuracy=float(data["accuracy"]),
            avg_response_time_ms=float(data["avg_response_time_ms"]),
            fatigue=float(data["fatigue"]),
            interruptions=int(data["interruptions"]),
            session_type=SessionType(data["session_type"]),
            cognitive_load=float(data["cognitive_load"]),
            performance=float(data["performance"]),
        )


@dataclass
class TimeSlot:
    """Aggregates for one hour of the day."""

    total_sessions: int = 0
    average_performance: float = 0.0
    average_accuracy: float = 0.0
    average_cognitive_load: float = 0.0
    best_performance: float = 0.0
    worst_performance: float = 1.0
    session_types: dict[str, int] = field(default_factory=dict)


@dataclass
class CircadianProfile:
    peak_hours: list[int] = field(default_factory=list)
    low_hours: list[int] = field(default_factory=list)
    optimal_session_length_minutes: int = 20
    learning_rhythm: str = "neutral"


@dataclass
class CognitiveLoadState:
    current: float = 0.5
    threshold: float = 0.8
    recovery_rate_per_minute: float = 0.1
    history: list[dict] = field(default_factory=list)
    last_update: datetime | None = None


@dataclass
class TemporalResult:
    optimal_timing: dict
    cognitive_load: float
    fatigue: float
    session_type_recommendation: dict
    recommendations: list[dict]
    insights: list[str]


class TemporalIntelligence:
    """
    Circadian profile and cognitive-load estimator.

    All "now" arguments default to the wall clock but callers replaying
    history should pass the event time explicitly.
    """

    def __init__(self, config: TemporalConfig | None = None):
        self.config = config or TemporalConfig()
        self.reset()

    def reset(self) -> None:
        cfg = self.config
        self.time_slots: dict[int, TimeSlot] = {}
        self.sessions: list[SessionEntry] = []
        self.profile = CircadianProfile(optimal_session_length_minutes=cfg.default_session_minutes)
        self.load = CognitiveLoadState(
            current=cfg.initial_load,
            threshold=cfg.load_threshold,
            recovery_rate_per_minute=cfg.recovery_rate_per_minute,
        )

    # =========================================================================
    # Session processing
    # =========================================================================

    def process_session(self, summary: SessionSummary) -> TemporalResult:
        summary = SessionSummary.coerce(summary)
        entry = SessionEntry(
            start=summary.start,
            duration_minutes=summary.duration_minutes,
            hour=summary.start.hour,
            accuracy=summary.accuracy,
            avg_response_time_ms=summary.avg_response_time_ms,
            fatigue=summary.fatigue,
            interruptions=summary.interruptions,
            session_type=summary.session_type,
            cognitive_load=self.session_cognitive_load(summary),
            performance=self.session_performance(summary),
        )
        self.sessions.append(entry)
        if len(self.sessions) > self.config.session_history_max:
            self.sessions = self.sessions[-self.config.session_history_keep:]

        self._update_slot(entry)
        self._update_cognitive_load(entry)
        self.analyze_circadian_patterns()

        now = summary.end
        logger.debug(
            f"Session at {entry.hour:02d}h: load={entry.cognitive_load:.2f} "
            f"perf={entry.performance:.2f} current_load={self.load.current:.2f}"
        )
        return TemporalResult(
            optimal_timing=self.get_optimal_practice_time(now),
            cognitive_load=self.load.current,
            fatigue=self.get_current_fatigue(now),
            session_type_recommendation=self.recommend_session_type(now),
            recommendations=self.get_temporal_recommendations(now),
            insights=self._insights(entry),
        )

    @staticmethod
    def session_cognitive_load(summary: SessionSummary) -> float:
        """Load weighted by session type, response time and longest error streak."""
        load = 0.5 * SESSION_TYPE_FACTORS.get(summary.session_type, 0.6)
        if summary.avg_response_time_ms > 6000:
            load += 0.2
        if summary.avg_response_time_ms > 10000:
            load += 0.3
        load += min(0.3, summary.max_error_streak * 0.1)
        return clamp(load)

    @staticmethod
    def session_performance(summary: SessionSummary) -> float:
        performance = summary.accuracy
        if summary.avg_response_time_ms > 8000:
            performance *= 0.9
        if summary.avg_response_time_ms < 1000:
            # Possible guessing
            performance *= 0.8
        performance *= 1 - summary.fatigue * 0.3
        performance *= max(0.7, 1 - summary.interruptions * 0.1)
        return clamp(performance)

    def _update_slot(self, entry: SessionEntry) -> None:
        slot = self.time_slots.setdefault(entry.hour, TimeSlot())
        alpha = self.config.slot_alpha
        slot.total_sessions += 1
        slot.average_performance = alpha * entry.performance + (1 - alpha) * slot.average_performance
        slot.average_accuracy = alpha * entry.accuracy + (1 - alpha) * slot.average_accuracy
        slot.average_cognitive_load = alpha * entry.cognitive_load + (1 - alpha) * slot.average_cognitive_load
        slot.best_performance = max(slot.best_performance, entry.performance)
        slot.worst_performance = min(slot.worst_performance, entry.performance)
        key = entry.session_type.value
        slot.session_types[key] = slot.session_types.get(key, 0) + 1

    def _update_cognitive_load(self, entry: SessionEntry) -> None:
        load = self.load
        if load.last_update is not None:
            minutes = max(0.0, (entry.start - load.last_update).total_seconds() / 60)
            load.current = max(0.0, load.current - minutes * load.recovery_rate_per_minute)
        load.current = min(1.0, load.current + entry.cognitive_load * 0.5)

        load.history.append(
            {"timestamp": entry.start.isoformat(), "load": load.current, "session_load": entry.cognitive_load}
        )
        if len(load.history) > self.config.load_history_max:
            load.history = load.history[-self.config.load_history_keep:]
        load.last_update = entry.start

    def current_load(self, now: datetime | None = None) -> float:
        """Cognitive load with recovery applied up to `now` (read-only)."""
        if now is None or self.load.last_update is None:
            return self.load.current
        minutes = max(0.0, (now - self.load.last_update).total_seconds() / 60)
        return max(0.0, self.load.current - minutes * self.load.recovery_rate_per_minute)

    # =========================================================================
    # Circadian analysis
    # =========================================================================

    def analyze_circadian_patterns(self) -> None:
        cfg = self.config
        if len(self.sessions) < cfg.min_sessions_for_profile:
            return

        by_hour: dict[int, list[SessionEntry]] = {}
        for s in self.sessions:
            by_hour.setdefault(s.hour, []).append(s)

        candidates = [
            (hour, mean([s.performance for s in entries]))
            for hour, entries in by_hour.items()
            if len(entries) >= cfg.min_sessions_per_hour
        ]
        candidates.sort(key=lambda hp: hp[1], reverse=True)

        if len(candidates) >= 4:
            self.profile.peak_hours = [h for h, _ in candidates[:2]]
            self.profile.low_hours = [h for h, _ in candidates[-2:]]

        previous_rhythm = self.profile.learning_rhythm
        self.profile.learning_rhythm = self._circadian_type([h for h, _ in candidates])
        self.profile.optimal_session_length_minutes = self._optimal_session_length()
        if self.profile.learning_rhythm != previous_rhythm:
            logger.info(f"Learning rhythm: {previous_rhythm} -> {self.profile.learning_rhythm}")

    @staticmethod
    def _circadian_type(sorted_hours: list[int]) -> str:
        if len(sorted_hours) < 3:
            return "neutral"
        top = sorted_hours[:3]
        if sum(1 for h in top if 6 <= h <= 11) >= 2:
            return "morning_person"
        if sum(1 for h in top if 18 <= h <= 23) >= 2:
            return "night_owl"
        if sum(1 for h in top if 12 <= h <= 17) >= 2:
            return "afternoon_peak"
        return "consistent"

    def _optimal_session_length(self) -> int:
        default = self.config.default_session_minutes
        timed = [s for s in self.sessions if s.duration_minutes > 5]
        if len(timed) < 5:
            return default

        groups: dict[str, list[SessionEntry]] = {name: [] for name, _, _ in DURATION_BUCKETS}
        for s in timed:
            for name, upper, _ in DURATION_BUCKETS:
                if upper is None or s.duration_minutes <= upper:
                    groups[name].append(s)
                    break

        best_length = default
        best_performance = 0.0
        for name, _, length in DURATION_BUCKETS:
            sessions = groups[name]
            if len(sessions) < 2:
                continue
            performance = mean([s.performance for s in sessions])
            if performance > best_performance:
                best_performance = performance
                best_length = length
        return best_length

    # =========================================================================
    # Fatigue & timing
    # =========================================================================

    def base_fatigue(self, hour: int) -> float:
        """Time-of-day fatigue curve."""
        cfg = self.config
        fatigue = cfg.base_fatigue
        if cfg.post_lunch_hours[0] <= hour <= cfg.post_lunch_hours[1]:
            fatigue = cfg.post_lunch_fatigue
        if hour >= cfg.night_start_hour or hour <= cfg.night_end_hour:
            fatigue = cfg.night_fatigue
        if cfg.morning_peak_hours[0] <= hour <= cfg.morning_peak_hours[1]:
            fatigue = cfg.morning_fatigue
        return fatigue

    def get_current_fatigue(self, now: datetime | None = None) -> float:
        now = now or datetime.now()
        fatigue = self.base_fatigue(now.hour)

        slot = self.time_slots.get(now.hour)
        if slot is not None:
            fatigue = (fatigue + slot.average_cognitive_load) / 2

        load_fatigue = self.current_load(now) * 0.4
        last_hour = [s for s in self.sessions if timedelta(0) <= now - s.start < timedelta(hours=1)]
        session_fatigue = min(0.3, len(last_hour) * 0.1)
        return min(1.0, fatigue + load_fatigue + session_fatigue)

    def get_optimal_practice_time(self, now: datetime | None = None) -> dict:
        now = now or datetime.now()
        peaks = self.profile.peak_hours
        if now.hour in peaks:
            return {"recommendation": "now", "reason": "You are in your best performance window", "confidence": 0.9}

        next_hour = None
        hours_until = 24
        for peak in peaks:
            distance = (peak - now.hour) % 24
            if distance < hours_until:
                hours_until = distance
                next_hour = peak

        if next_hour is not None:
            return {
                "recommendation": "later",
                "next_optimal_hour": next_hour,
                "hours_until": hours_until,
                "reason": f"You usually perform best around {next_hour}:00",
                "confidence": 0.8 if len(peaks) >= 2 else 0.6,
            }
        return {"recommendation": "now", "reason": "Any time is a good time to practise", "confidence": 0.5}

    def recommend_session_type(self, now: datetime | None = None) -> dict:
        now = now or datetime.now()
        fatigue = self.get_current_fatigue(now)
        load = self.current_load(now)
        length = self.profile.optimal_session_length_minutes

        if fatigue > 0.7 or load > self.load.threshold:
            return {
                "type": SessionType.REVIEW.value,
                "intensity": "light",
                "duration": min(length, 15),
                "reason": "High fatigue - light review recommended",
            }
        if now.hour in self.profile.peak_hours and fatigue < 0.4:
            return {
                "type": SessionType.CHALLENGE.value,
                "intensity": "high",
                "duration": length,
                "reason": "Peak window - good time for a challenge",
            }
        if now.hour in self.profile.low_hours:
            return {
                "type": SessionType.SPECIFIC.value,
                "intensity": "medium",
                "duration": min(length, 20),
                "reason": "Low-performance hour - focused practice recommended",
            }
        return {
            "type": SessionType.MIXED.value,
            "intensity": "medium",
            "duration": length,
            "reason": "Normal conditions - balanced session",
        }

    def get_srs_scheduling_recommendations(self, due: datetime | None, now: datetime | None = None) -> dict:
        """
        Timing advice for a review that would fall due at `due`.

        Returns:
            timing_multiplier: interval multiplier, bounded to multiplier_bounds
            should_delay: fatigue or cognitive overload, postpone the review
            current_fatigue: fatigue estimate at `now`
            is_optimal_time: `now` is a peak hour and fatigue is low
            optimal_window: {"peak_hour", "confidence"} or None
            priority_adjustment: short label of what drove the multiplier
        """
        cfg = self.config
        now = now or datetime.now()
        due = due or now
        fatigue = self.get_current_fatigue(now)
        load = self.current_load(now)

        multiplier = 1.0
        reasons: list[str] = []
        if due.hour in self.profile.peak_hours:
            multiplier *= cfg.peak_bonus
            reasons.append("peak_hour")
        elif due.hour in self.profile.low_hours:
            multiplier *= cfg.low_penalty
            reasons.append("low_hour")

        fatigued = fatigue > cfg.fatigue_delay_threshold
        overloaded = load > self.load.threshold
        if fatigued:
            multiplier *= cfg.fatigue_multiplier
            reasons.append("fatigue")
        if overloaded:
            multiplier *= cfg.overload_multiplier
            reasons.append("overload")

        low, high = cfg.multiplier_bounds
        optimal_window = None
        if self.profile.peak_hours:
            optimal_window = {
                "peak_hour": self.profile.peak_hours[0],
                "confidence": 0.8 if len(self.profile.peak_hours) >= 2 else 0.6,
            }

        return {
            "timing_multiplier": clamp(multiplier, low, high),
            "should_delay": fatigued or overloaded,
            "current_fatigue": fatigue,
            "is_optimal_time": now.hour in self.profile.peak_hours and fatigue < 0.4,
            "optimal_window": optimal_window,
            "priority_adjustment": "+".join(reasons) if reasons else "none",
        }

    def get_temporal_recommendations(self, now: datetime | None = None) -> list[dict]:
        now = now or datetime.now()
        recommendations = []
        if self.get_current_fatigue(now) > 0.8:
            recommendations.append(
                {"type": "rest", "priority": "high", "message": "High fatigue - consider a break", "action": "suggest_break"}
            )
        rhythm = self.profile.learning_rhythm
        if rhythm == "morning_person" and now.hour > 14:
            recommendations.append(
                {
                    "type": "timing",
                    "priority": "medium",
                    "message": "You usually perform better in the morning",
                    "action": "suggest_morning_practice",
                }
            )
        if rhythm == "night_owl" and now.hour < 12:
            recommendations.append(
                {
                    "type": "timing",
                    "priority": "medium",
                    "message": "You usually perform better in the evening",
                    "action": "suggest_evening_practice",
                }
            )
        if self.current_load(now) > 0.6:
            recommendations.append(
                {
                    "type": "duration",
                    "priority": "medium",
                    "message": "Shorter sessions may help you stay focused",
                    "action": "suggest_shorter_sessions",
                }
            )
        return recommendations

    def _insights(self, entry: SessionEntry) -> list[str]:
        insights = []
        slot = self.time_slots.get(entry.hour)
        if slot is not None and slot.total_sessions > 3:
            if entry.performance > slot.average_performance + 0.1:
                insights.append("Exceptional performance for this time of day")
            elif entry.performance < slot.average_performance - 0.1:
                insights.append("Below your usual performance for this hour")
        if entry.fatigue < 0.3 and entry.performance > 0.8:
            insights.append("Low fatigue and high performance - great combination")
        if (
            entry.duration_minutes > self.profile.optimal_session_length_minutes * 1.5
            and entry.performance < 0.6
        ):
            insights.append("Long session detected - consider shorter sessions")
        return insights

    def get_temporal_stats(self, now: datetime | None = None) -> dict:
        now = now or datetime.now()
        week_ago = now - timedelta(days=7)
        return {
            "circadian_profile": {
                "peak_hours": list(self.profile.peak_hours),
                "low_hours": list(self.profile.low_hours),
                "optimal_session_length_minutes": self.profile.optimal_session_length_minutes,
                "learning_rhythm": self.profile.learning_rhythm,
            },
            "current_fatigue": self.get_current_fatigue(now),
            "current_cognitive_load": self.current_load(now),
            "hourly_stats": [
                {"hour": h, "average_performance": round(s.average_performance * 100), "sessions": s.total_sessions}
                for h, s in sorted(self.time_slots.items())
            ],
            "total_sessions": len(self.sessions),
            "last_7_days_avg": mean([s.performance for s in self.sessions if s.start >= week_ago]),
        }

    # =========================================================================
    # Checkpointing
    # =========================================================================

    def to_dict(self) -> dict:
        return {
            "time_slots": {
                str(h): {
                    "total_sessions": s.total_sessions,
                    "average_performance": s.average_performance,
                    "average_accuracy": s.average_accuracy,
                    "average_cognitive_load": s.average_cognitive_load,
                    "best_performance": s.best_performance,
                    "worst_performance": s.worst_performance,
                    "session_types": dict(s.session_types),
                }
                for h, s in self.time_slots.items()
            },
            "sessions": [s.to_dict() for s in self.sessions],
            "profile": {
                "peak_hours": list(self.profile.peak_hours),
                "low_hours": list(self.profile.low_hours),
                "optimal_session_length_minutes": self.profile.optimal_session_length_minutes,
                "learning_rhythm": self.profile.learning_rhythm,
            },
            "cognitive_load": {
                "current": self.load.current,
                "history": list(self.load.history),
                "last_update": self.load.last_update.isoformat() if self.load.last_update else None,
            },
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Restore from to_dict() output. Nothing is assigned unless the whole blob parses."""
        data = require_mapping(data, "temporal checkpoint")
        time_slots = {
            _hour(h): TimeSlot(**require_mapping(s, f"time slot {h}"))
            for h, s in require_mapping(data.get("time_slots", {}), "time_slots").items()
        }
        sessions = [
            SessionEntry.from_dict(require_mapping(s, "session"))
            for s in require_list(data.get("sessions", []), "sessions")
        ]
        profile = require_mapping(data.get("profile", {}), "profile")
        circadian = CircadianProfile(
            peak_hours=[_hour(h) for h in require_list(profile.get("peak_hours", []), "peak_hours")],
            low_hours=[_hour(h) for h in require_list(profile.get("low_hours", []), "low_hours")],
            optimal_session_length_minutes=int(
                profile.get("optimal_session_length_minutes", self.config.default_session_minutes)
            ),
            learning_rhythm=str(profile.get("learning_rhythm", "neutral")),
        )
        load = require_mapping(data.get("cognitive_load", {}), "cognitive_load")
        last_update = load.get("last_update")
        current = clamp(float(load.get("current", self.config.initial_load)))
        history = list(require_list(load.get("history", []), "load history"))
        last_update = datetime.fromisoformat(last_update) if last_update else None

        self.time_slots = time_slots
        self.sessions = sessions
        self.profile = circadian
        self.load.current = current
        self.load.history = history
        self.load.last_update = last_update


def _hour(value: Any) -> int:
    hour = int(value)
    if not 0 <= hour < 24:
        raise ValueError(f"hour out of range: {hour}")
    return hour
