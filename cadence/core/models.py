"""
Domain models shared across the scheduling core.

Inbound payloads (AttemptEvent, SessionSummary) are pydantic models whose
"before" validators default anything malformed instead of rejecting it:
the practice layer is untrusted and a bad field must never stop processing.

Internal state (ResponseRecord, ScheduleCard, SchedulingAdjustment) is
plain dataclasses with to_dict()/from_dict() for checkpointing.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

# Absent or unreadable response time. Large enough to count as "slow".
DEFAULT_RESPONSE_TIME_MS = 10000.0
UNKNOWN = "unknown"


# =============================================================================
# Enums
# =============================================================================


class FlowState(str, Enum):
    """Moment-to-moment engagement classification."""

    DEEP_FLOW = "deep_flow"
    LIGHT_FLOW = "light_flow"
    NEUTRAL = "neutral"
    STRUGGLING = "struggling"
    FRUSTRATED = "frustrated"


class MomentumType(str, Enum):
    """Medium-term performance/emotional trend."""

    PEAK_PERFORMANCE = "peak_performance"
    CONFIDENCE_BUILDING = "confidence_building"
    STEADY_PROGRESS = "steady_progress"
    MINOR_SETBACK = "minor_setback"
    RECOVERY_MODE = "recovery_mode"
    CONFIDENCE_CRISIS = "confidence_crisis"


class ConfidenceLevel(str, Enum):
    """Discrete confidence bucket."""

    OVERCONFIDENT = "overconfident"
    CONFIDENT = "confident"
    UNCERTAIN = "uncertain"
    HESITANT = "hesitant"
    STRUGGLING = "struggling"


class SessionType(str, Enum):
    """Kind of practice session, used to weight cognitive load."""

    REVIEW = "review"
    MIXED = "mixed"
    SPECIFIC = "specific"
    CHALLENGE = "challenge"
    SPEED = "speed"


class Rating(IntEnum):
    """4-level review outcome fed into FSRS."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class CardState(IntEnum):
    """FSRS card lifecycle state."""

    NEW = 0
    LEARNING = 1
    RELEARNING = 2
    REVIEW = 3


# =============================================================================
# Inbound payloads
# =============================================================================


class Item(BaseModel):
    """The practised item. Only used for categorisation and complexity."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    verb: str = UNKNOWN
    mood: str = UNKNOWN
    tense: str = UNKNOWN
    person: str = UNKNOWN
    verb_type: str | None = Field(default=None, validation_alias=AliasChoices("verb_type", "verbType"))

    @field_validator("verb", "mood", "tense", "person", mode="before")
    @classmethod
    def _default_blank(cls, v: Any) -> str:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN
        return str(v)

    @field_validator("verb_type", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> str | None:
        return None if v is None else str(v)

    @property
    def category_key(self) -> str:
        return f"{self.mood}|{self.tense}|{self.verb}"

    @property
    def is_irregular(self) -> bool:
        return self.verb_type == "irregular"


def _coerce_timestamp(v: Any) -> datetime:
    """Accept datetimes, ISO strings and epoch numbers (s or ms); else now."""
    if isinstance(v, datetime):
        if v.tzinfo is not None:
            return v.astimezone().replace(tzinfo=None)
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v):
        seconds = v / 1000 if v > 1e11 else v
        try:
            return datetime.fromtimestamp(seconds)
        except (OverflowError, OSError, ValueError):
            return datetime.now()
    if isinstance(v, str):
        try:
            return _coerce_timestamp(datetime.fromisoformat(v))
        except ValueError:
            pass
    return datetime.now()


def coerce_count(v: Any) -> int:
    """Non-negative integer, or 0 for anything unparsable."""
    try:
        value = int(v)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, value)


def coerce_tags(v: Any) -> tuple[str, ...]:
    if isinstance(v, (list, tuple)):
        return tuple(str(t) for t in v)
    if isinstance(v, str) and v:
        return (v,)
    return ()


def coerce_latency(v: Any) -> float | None:
    """Positive finite milliseconds, or None when unknown."""
    if v is None or isinstance(v, bool):
        return None
    try:
        value = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def require_mapping(value: Any, what: str) -> dict:
    """Checkpoint sections must decode to JSON objects."""
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be an object, got {type(value).__name__}")
    return value


def require_list(value: Any, what: str) -> list:
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list, got {type(value).__name__}")
    return value


class AttemptEvent(BaseModel):
    """
    A single answered drill item, produced by the practice layer.

    Accepts both snake_case and the camelCase keys the drill layer emits
    (responseTimeMs / latencyMs, hintsUsed, errorTags). Missing or
    malformed fields are defaulted: an absent response time becomes
    DEFAULT_RESPONSE_TIME_MS and is therefore treated as slow.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    correct: bool = False
    response_time_ms: float = Field(
        default=DEFAULT_RESPONSE_TIME_MS,
        validation_alias=AliasChoices("response_time_ms", "responseTimeMs", "latencyMs", "responseTime"),
    )
    hints_used: int = Field(default=0, validation_alias=AliasChoices("hints_used", "hintsUsed"))
    hesitation_count: int = Field(
        default=0, validation_alias=AliasChoices("hesitation_count", "hesitationCount")
    )
    item: Item = Field(default_factory=Item)
    timestamp: datetime = Field(default_factory=datetime.now)
    error_tags: tuple[str, ...] = Field(default=(), validation_alias=AliasChoices("error_tags", "errorTags"))
    reported_confidence: float | None = Field(
        default=None, validation_alias=AliasChoices("reported_confidence", "reportedConfidence")
    )

    @field_validator("correct", mode="before")
    @classmethod
    def _coerce_correct(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "y", "correct")
        return bool(v)

    @field_validator("response_time_ms", mode="before")
    @classmethod
    def _coerce_response_time(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return DEFAULT_RESPONSE_TIME_MS
        if not math.isfinite(value) or value <= 0:
            return DEFAULT_RESPONSE_TIME_MS
        return value

    @field_validator("hints_used", "hesitation_count", mode="before")
    @classmethod
    def _coerce_hints(cls, v: Any) -> int:
        return coerce_count(v)

    @field_validator("item", mode="before")
    @classmethod
    def _coerce_item(cls, v: Any) -> Any:
        if isinstance(v, (Item, dict)):
            return v
        return {}

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_ts(cls, v: Any) -> datetime:
        return _coerce_timestamp(v)

    @field_validator("error_tags", mode="before")
    @classmethod
    def _coerce_tags(cls, v: Any) -> tuple[str, ...]:
        return coerce_tags(v)

    @field_validator("reported_confidence", mode="before")
    @classmethod
    def _coerce_reported(cls, v: Any) -> float | None:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(value):
            return None
        return max(0.0, min(1.0, value))

    @classmethod
    def coerce(cls, obj: Any) -> AttemptEvent:
        """Build an event from a dict or model without ever raising."""
        if isinstance(obj, cls):
            return obj
        if not isinstance(obj, dict):
            logger.warning(f"Unreadable attempt payload of type {type(obj).__name__}, using defaults")
            return cls()
        try:
            return cls.model_validate(obj)
        except ValidationError as e:
            logger.warning(f"Malformed attempt payload, using defaults: {e.error_count()} error(s)")
            return cls()


class SessionSummary(BaseModel):
    """Session-level aggregate fed to Temporal Intelligence."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    start: datetime = Field(default_factory=datetime.now, validation_alias=AliasChoices("start", "startTime"))
    end: datetime = Field(default_factory=datetime.now, validation_alias=AliasChoices("end", "endTime"))
    accuracy: float = 0.0
    avg_response_time_ms: float = Field(
        default=5000.0, validation_alias=AliasChoices("avg_response_time_ms", "averageResponseTime")
    )
    total_attempts: int = Field(default=0, validation_alias=AliasChoices("total_attempts", "totalAttempts"))
    max_error_streak: int = Field(default=0, validation_alias=AliasChoices("max_error_streak", "maxErrorStreak"))
    fatigue: float = Field(default=0.0, validation_alias=AliasChoices("fatigue", "fatigueLevel"))
    interruptions: int = 0
    session_type: SessionType = Field(
        default=SessionType.MIXED, validation_alias=AliasChoices("session_type", "sessionType")
    )

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_ts(cls, v: Any) -> datetime:
        return _coerce_timestamp(v)

    @field_validator("accuracy", "fatigue", mode="before")
    @classmethod
    def _coerce_unit(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, value)) if math.isfinite(value) else 0.0

    @field_validator("avg_response_time_ms", mode="before")
    @classmethod
    def _coerce_rt(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 5000.0
        return value if math.isfinite(value) and value > 0 else 5000.0

    @field_validator("total_attempts", "max_error_streak", "interruptions", mode="before")
    @classmethod
    def _coerce_count(cls, v: Any) -> int:
        return coerce_count(v)

    @field_validator("session_type", mode="before")
    @classmethod
    def _coerce_type(cls, v: Any) -> SessionType:
        try:
            return SessionType(v)
        except ValueError:
            logger.warning(f"Unknown session type {v!r}, treating as mixed")
            return SessionType.MIXED

    @property
    def duration_minutes(self) -> float:
        return max(0.0, (self.end - self.start).total_seconds() / 60)

    @classmethod
    def coerce(cls, obj: Any) -> SessionSummary:
        if isinstance(obj, cls):
            return obj
        try:
            return cls.model_validate(obj if isinstance(obj, dict) else {})
        except ValidationError as e:
            logger.warning(f"Malformed session summary, using defaults: {e.error_count()} error(s)")
            return cls()


# =============================================================================
# Internal records
# =============================================================================


@dataclass
class ResponseRecord:
    """An AttemptEvent enriched with derived per-response signals."""

    correct: bool
    response_time_ms: float
    timestamp: datetime
    item: Item
    hints_used: int = 0
    confidence: float = 0.5
    complexity: float = 0.5
    is_fast: bool = False
    is_slow: bool = False


@dataclass
class SchedulingAdjustment:
    """Explains how the adaptive layer altered an FSRS interval."""

    multiplier: float = 1.0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# SM-2 ease range mapped onto FSRS difficulty [1, 10]
EASE_MIN = 1.3
EASE_MAX = 3.2
DIFFICULTY_MIN = 1.0
DIFFICULTY_MAX = 10.0


def ease_to_difficulty(ease: float) -> float:
    """Map a legacy SM-2 ease onto FSRS difficulty (high ease = low difficulty)."""
    normalized = (ease - EASE_MIN) / (EASE_MAX - EASE_MIN)
    return max(DIFFICULTY_MIN, min(DIFFICULTY_MAX, DIFFICULTY_MAX - normalized * 9))


def difficulty_to_ease(difficulty: float) -> float:
    """Inverse of ease_to_difficulty over the valid ease range."""
    normalized = (DIFFICULTY_MAX - difficulty) / 9
    return max(EASE_MIN, min(EASE_MAX, EASE_MIN + normalized * (EASE_MAX - EASE_MIN)))


@dataclass
class ScheduleCard:
    """
    Durable spaced-repetition state for one user x item.

    Attributes:
        difficulty: FSRS difficulty in [1, 10]
        stability: Days until recall probability drops to 90%
        interval_days: Current interval, always >= 1
        reps: Successful reviews since the last lapse (the fixed table stops
            counting once it reaches its last step)
        lapses: Total failed reviews
        state: FSRS lifecycle state
        due: When the item should next be reviewed
        last_review: When it was last reviewed
        leech: Flagged after repeated lapses; never removed
    """

    difficulty: float = 5.0
    stability: float = 0.1
    interval_days: int = 1
    reps: int = 0
    lapses: int = 0
    state: CardState = CardState.NEW
    due: datetime | None = None
    last_review: datetime | None = None
    leech: bool = False

    @property
    def ease(self) -> float:
        """Legacy SM-2 ease derived from difficulty."""
        return difficulty_to_ease(self.difficulty)

    def is_due(self, now: datetime | None = None) -> bool:
        if self.due is None:
            return True
        return (now or datetime.now()) >= self.due

    @classmethod
    def from_legacy(
        cls,
        interval_days: int = 1,
        ease: float = 2.5,
        reps: int = 0,
        lapses: int = 0,
        due: datetime | None = None,
        last_review: datetime | None = None,
    ) -> ScheduleCard:
        """Build a card from an SM-2 style schedule (interval + ease)."""
        interval = max(1, int(interval_days or 1))
        if reps == 0:
            state = CardState.NEW
        elif reps == 1:
            state = CardState.LEARNING
        elif lapses > 0:
            state = CardState.RELEARNING
        else:
            state = CardState.REVIEW
        return cls(
            difficulty=ease_to_difficulty(ease),
            stability=max(0.1, interval * 0.9),
            interval_days=interval,
            reps=reps,
            lapses=lapses,
            state=state,
            due=due,
            last_review=last_review,
        )

    def elapsed_days(self, now: datetime) -> float:
        if self.last_review is None:
            return float(self.interval_days)
        return max(0.0, (now - self.last_review) / timedelta(days=1))

    def to_dict(self) -> dict:
        return {
            "difficulty": self.difficulty,
            "stability": self.stability,
            "interval_days": self.interval_days,
            "reps": self.reps,
            "lapses": self.lapses,
            "state": int(self.state),
            "due": self.due.isoformat() if self.due else None,
            "last_review": self.last_review.isoformat() if self.last_review else None,
            "leech": self.leech,
            "ease": self.ease,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScheduleCard:
        data = require_mapping(data, "card")
        due = data.get("due")
        last = data.get("last_review")
        return cls(
            difficulty=float(data.get("difficulty", 5.0)),
            stability=float(data.get("stability", 0.1)),
            interval_days=int(data.get("interval_days", 1)),
            reps=int(data.get("reps", 0)),
            lapses=int(data.get("lapses", 0)),
            state=CardState(int(data.get("state", 0))),
            due=datetime.fromisoformat(due) if due else None,
            last_review=datetime.fromisoformat(last) if last else None,
            leech=bool(data.get("leech", False)),
        )
