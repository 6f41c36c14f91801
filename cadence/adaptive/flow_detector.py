"""
Flow State Detection.

Classifies moment-to-moment engagement from a sliding window of recent
attempts:

1. DEEP_FLOW   - fast, accurate, steady ("in the zone")
2. LIGHT_FLOW  - good rhythm with some inconsistency
3. NEUTRAL     - ordinary learning
4. STRUGGLING  - below par, needs support
5. FRUSTRATED  - repeated errors or very slow answers, needs recovery

Transitions are gated by hysteresis: a committed change must be at least
`hysteresis_seconds` after the previous one, and the two extreme states
additionally need corroboration from the last few individual responses.

All timing uses attempt timestamps, never the wall clock, so a replayed
history reproduces the same state sequence.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from cadence.core.models import AttemptEvent, FlowState, Item, ResponseRecord
from cadence.core.stats import mean, pstdev


@dataclass
class FlowConfig:
    """Thresholds for flow classification."""

    fast_response_ms: float = 3000.0
    slow_response_ms: float = 8000.0
    high_accuracy: float = 0.85
    low_accuracy: float = 0.60
    velocity_consistency: float = 0.3
    flow_streak: int = 5
    struggle_streak: int = 3

    max_history: int = 20
    detection_window: int = 10
    confirmation_window: int = 3
    hysteresis_seconds: float = 10.0
    max_state_changes: int = 1000
    trimmed_state_changes: int = 500


FLOW_STATES = frozenset({FlowState.DEEP_FLOW, FlowState.LIGHT_FLOW})
LOW_STATES = frozenset({FlowState.STRUGGLING, FlowState.FRUSTRATED})

# Scheduling multipliers handed to the SRS layer per flow state
SRS_MULTIPLIERS = {
    FlowState.DEEP_FLOW: 1.2,
    FlowState.LIGHT_FLOW: 1.1,
    FlowState.NEUTRAL: 1.0,
    FlowState.STRUGGLING: 0.9,
    FlowState.FRUSTRATED: 0.8,
}

STATE_RECOMMENDATIONS = {
    FlowState.DEEP_FLOW: {
        "action": "maintain",
        "message": "You're in the zone. Keep the pace.",
        "difficulty_adjustment": "increase_slightly",
        "content_type": "challenging",
        "urgency": "low",
    },
    FlowState.LIGHT_FLOW: {
        "action": "enhance",
        "message": "Good rhythm, you can push a little faster.",
        "difficulty_adjustment": "maintain",
        "content_type": "balanced",
        "urgency": "low",
    },
    FlowState.STRUGGLING: {
        "action": "support",
        "message": "Take it easy, you're doing fine.",
        "difficulty_adjustment": "decrease",
        "content_type": "easier",
        "urgency": "medium",
    },
    FlowState.FRUSTRATED: {
        "action": "recover",
        "message": "Deep breath. Let's switch to something easier.",
        "difficulty_adjustment": "decrease_significantly",
        "content_type": "confidence_building",
        "urgency": "high",
    },
    FlowState.NEUTRAL: {
        "action": "continue",
        "message": "Keep practising.",
        "difficulty_adjustment": "maintain",
        "content_type": "balanced",
        "urgency": "low",
    },
}


@dataclass
class StreakCounter:
    correct: int = 0
    fast: int = 0
    slow: int = 0
    errors: int = 0


@dataclass
class StateChange:
    """One committed flow transition."""

    previous_state: FlowState
    new_state: FlowState
    timestamp: datetime
    duration_seconds: float
    triggering_factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "previous_state": self.previous_state.value,
            "new_state": self.new_state.value,
            "timestamp": self.timestamp.isoformat(),
            "duration_seconds": self.duration_seconds,
            "triggering_factors": list(self.triggering_factors),
        }


@dataclass
class FlowResult:
    """Outcome of processing one response."""

    state: FlowState
    state_changed: bool
    response: ResponseRecord
    metrics: dict
    recommendations: dict


class FlowStateDetector:
    """
    Sliding-window flow classifier with hysteresis.

    Usage:
        detector = FlowStateDetector()
        result = detector.process(event)
        if result.state_changed:
            ...
    """

    def __init__(self, config: FlowConfig | None = None):
        self.config = config or FlowConfig()
        self.reset()

    def reset(self, now: datetime | None = None) -> None:
        """Start a fresh session."""
        self.history: deque[ResponseRecord] = deque(maxlen=self.config.max_history)
        self.current_state = FlowState.NEUTRAL
        self.state_history: list[StateChange] = []
        self.state_change_count = 0
        self.streaks = StreakCounter()
        self.session_start: datetime | None = now
        self.last_state_change: datetime | None = None
        self.last_response_at: datetime | None = None

        self.total_flow_seconds = 0.0
        self.deep_flow_sessions = 0
        self.recovery_count = 0
        self.average_response_time = 0.0
        self.consistency_score = 0.0
        self._responses_seen = 0

    # =========================================================================
    # Processing
    # =========================================================================

    def process(self, event: AttemptEvent) -> FlowResult:
        """Fold one attempt into the window and re-evaluate the flow state."""
        record = self.analyze_response(event)
        if self.session_start is None:
            self.session_start = record.timestamp

        self.history.append(record)
        self.last_response_at = record.timestamp
        self._update_streaks(record)

        candidate = self.detect_flow_state()
        changed = False
        if self.should_change_state(candidate, record.timestamp):
            self._change_state(candidate, record.timestamp)
            changed = True

        self._update_metrics(record)

        return FlowResult(
            state=self.current_state,
            state_changed=changed,
            response=record,
            metrics=self.get_flow_metrics(),
            recommendations=self.get_state_recommendations(),
        )

    def analyze_response(self, event: AttemptEvent) -> ResponseRecord:
        rt = event.response_time_ms
        return ResponseRecord(
            correct=event.correct,
            response_time_ms=rt,
            timestamp=event.timestamp,
            item=event.item,
            hints_used=event.hints_used,
            confidence=self.calculate_confidence(event.correct, rt),
            complexity=estimate_complexity(event.item),
            is_fast=rt < self.config.fast_response_ms,
            is_slow=rt > self.config.slow_response_ms,
        )

    def calculate_confidence(self, correct: bool, response_time_ms: float) -> float:
        """Confidence proxy from speed and correctness."""
        if response_time_ms < self.config.fast_response_ms:
            return 0.9 if correct else 0.3
        if response_time_ms > self.config.slow_response_ms:
            return 0.6 if correct else 0.2
        return 0.7 if correct else 0.4

    def _update_streaks(self, record: ResponseRecord) -> None:
        s = self.streaks
        if record.correct:
            s.correct += 1
            s.errors = 0
            if record.is_fast:
                s.fast += 1
                s.slow = 0
            elif record.is_slow:
                s.slow += 1
                s.fast = 0
        else:
            s.errors += 1
            s.correct = 0
            s.fast = 0

    # =========================================================================
    # Classification
    # =========================================================================

    def detect_flow_state(self) -> FlowState:
        """Classify the current window, ignoring hysteresis."""
        cfg = self.config
        if len(self.history) < 3:
            return FlowState.NEUTRAL

        window = list(self.history)[-cfg.detection_window:]
        very_recent = list(self.history)[-5:]

        accuracy = sum(r.correct for r in window) / len(window)
        times = [r.response_time_ms for r in window]
        avg_time = mean(times)
        avg_confidence = mean([r.confidence for r in window])
        velocity_variation = pstdev(times) / avg_time if avg_time > 0 else 0.0

        if (
            accuracy >= cfg.high_accuracy
            and avg_time <= cfg.fast_response_ms * 1.2
            and velocity_variation < cfg.velocity_consistency
            and self.streaks.correct >= cfg.flow_streak
        ):
            return FlowState.DEEP_FLOW

        if (
            accuracy >= 0.75
            and avg_time <= cfg.fast_response_ms * 1.5
            and avg_confidence > 0.6
            and self.streaks.correct >= 3
        ):
            return FlowState.LIGHT_FLOW

        very_slow = sum(1 for r in very_recent if r.response_time_ms > cfg.slow_response_ms * 1.5)
        if (
            accuracy < cfg.low_accuracy
            or self.streaks.errors >= cfg.struggle_streak
            or very_slow >= 3
        ):
            return FlowState.FRUSTRATED

        if (
            accuracy < 0.70
            or avg_time > cfg.slow_response_ms
            or self.streaks.slow >= cfg.struggle_streak
        ):
            return FlowState.STRUGGLING

        return FlowState.NEUTRAL

    def should_change_state(self, new_state: FlowState, now: datetime) -> bool:
        """Apply dwell time and corroboration rules to a candidate state."""
        if new_state == self.current_state:
            return False

        if self.last_state_change is not None:
            elapsed = (now - self.last_state_change).total_seconds()
            if elapsed < self.config.hysteresis_seconds:
                return False

        if new_state in (FlowState.DEEP_FLOW, FlowState.FRUSTRATED):
            window = self.config.confirmation_window
            confirming = list(self.history)[-window:]
            return self.count_supporting(confirming, new_state) >= window - 1

        return True

    def count_supporting(self, responses: list[ResponseRecord], state: FlowState) -> int:
        """Count responses that individually look like `state`."""
        slow = self.config.slow_response_ms
        predicates = {
            FlowState.DEEP_FLOW: lambda r: r.correct and r.is_fast and r.confidence > 0.7,
            FlowState.LIGHT_FLOW: lambda r: r.correct and r.confidence > 0.6,
            FlowState.FRUSTRATED: lambda r: (not r.correct) or r.is_slow or r.confidence < 0.4,
            FlowState.STRUGGLING: lambda r: (not r.correct) or r.response_time_ms > slow,
        }
        predicate = predicates.get(state)
        if predicate is None:
            return 0
        return sum(1 for r in responses if predicate(r))

    def _change_state(self, new_state: FlowState, now: datetime) -> None:
        previous = self.current_state
        since = self.last_state_change or self.session_start or now
        duration = max(0.0, (now - since).total_seconds())

        if previous in FLOW_STATES:
            self.total_flow_seconds += duration

        self.state_history.append(
            StateChange(
                previous_state=previous,
                new_state=new_state,
                timestamp=now,
                duration_seconds=duration,
                triggering_factors=self._triggering_factors(new_state),
            )
        )
        self.state_change_count += 1
        if len(self.state_history) > self.config.max_state_changes:
            self.state_history = self.state_history[-self.config.trimmed_state_changes:]
        self.current_state = new_state
        self.last_state_change = now

        if new_state == FlowState.DEEP_FLOW:
            self.deep_flow_sessions += 1
        if previous == FlowState.FRUSTRATED:
            self.recovery_count += 1

        logger.info(f"Flow state change: {previous.value} -> {new_state.value}")

    def _triggering_factors(self, new_state: FlowState) -> list[str]:
        recent = list(self.history)[-3:]
        factors: list[str] = []
        if new_state == FlowState.DEEP_FLOW:
            factors += ["consecutive_correct_responses", "fast_response_times", "high_confidence"]
        elif new_state == FlowState.FRUSTRATED:
            if any(not r.correct for r in recent):
                factors.append("multiple_errors")
            if any(r.is_slow for r in recent):
                factors.append("slow_responses")
            factors.append("low_confidence")
        elif new_state == FlowState.STRUGGLING:
            if self.streaks.slow >= self.config.struggle_streak:
                factors.append("slow_streak")
            if any(not r.correct for r in recent):
                factors.append("errors")
        return factors

    def _update_metrics(self, record: ResponseRecord) -> None:
        self._responses_seen += 1
        n = self._responses_seen
        self.average_response_time += (record.response_time_ms - self.average_response_time) / n

        if len(self.history) >= 5:
            recent = list(self.history)[-10:]
            times = [r.response_time_ms for r in recent]
            accuracies = [1.0 if r.correct else 0.0 for r in recent]
            avg = mean(times)
            time_consistency = 1 - (pstdev(times) / avg) if avg > 0 else 0.0
            accuracy_consistency = 1 - pstdev(accuracies)
            self.consistency_score = (time_consistency + accuracy_consistency) / 2

    # =========================================================================
    # Read side
    # =========================================================================

    def session_duration_seconds(self) -> float:
        if self.session_start is None or self.last_response_at is None:
            return 0.0
        return max(0.0, (self.last_response_at - self.session_start).total_seconds())

    def get_flow_metrics(self) -> dict:
        duration = self.session_duration_seconds()
        flow_seconds = self.total_flow_seconds
        # Count the open flow interval up to the latest response
        if self.current_state in FLOW_STATES and self.last_state_change and self.last_response_at:
            flow_seconds += max(0.0, (self.last_response_at - self.last_state_change).total_seconds())
        flow_percentage = (flow_seconds / duration) * 100 if duration > 0 else 0.0

        return {
            "current_state": self.current_state.value,
            "session_duration": duration,
            "total_flow_time": flow_seconds,
            "flow_percentage": round(min(100.0, flow_percentage)),
            "deep_flow_sessions": self.deep_flow_sessions,
            "recovery_count": self.recovery_count,
            "average_response_time": round(self.average_response_time),
            "consistency_score": round(self.consistency_score * 100),
            "current_streak": {
                "correct": self.streaks.correct,
                "fast": self.streaks.fast,
                "errors": self.streaks.errors,
            },
            "state_changes": self.state_change_count,
        }

    def get_state_recommendations(self) -> dict:
        return dict(STATE_RECOMMENDATIONS[self.current_state])

    def get_srs_scheduling_recommendations(self) -> dict:
        """Interval multiplier and delay hint for the scheduler."""
        return {
            "flow_state": self.current_state.value,
            "scheduling_multiplier": SRS_MULTIPLIERS[self.current_state],
            "should_delay": self.current_state == FlowState.FRUSTRATED,
            "should_accelerate": self.current_state == FlowState.DEEP_FLOW,
        }

    def get_detailed_state(self) -> dict:
        return {
            "current_state": self.current_state.value,
            "streaks": vars(self.streaks).copy(),
            "state_history": [c.to_dict() for c in self.state_history],
            "metrics": self.get_flow_metrics(),
            "recommendations": self.get_state_recommendations(),
        }


def estimate_complexity(item: Item) -> float:
    """Rough item complexity in [0, 1] from mood, tense and irregularity."""
    complexity = 0.3
    if item.mood == "subjunctive":
        complexity += 0.3
    elif item.mood in ("conditional", "imperative"):
        complexity += 0.2

    if "Perf" in item.tense or "Plusc" in item.tense:
        complexity += 0.2
    if item.tense in ("subjImpf", "subjPlusc"):
        complexity += 0.3

    if item.is_irregular:
        complexity += 0.2
    return min(1.0, complexity)
