"""
Fixed-table fallback scheduler.

Deterministic and non-adaptive. Used when adaptive scheduling is switched
off or when the adaptive path fails:

- failure: lapses + 1, reps reset to 0, interval 1 day
- success: walk the table [1, 3, 7, 14, 30, 90], then multiply by ease
- hints: shrink the result to 80%
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from cadence.core.models import CardState, ScheduleCard

INTERVAL_TABLE = (1, 3, 7, 14, 30, 90)


@dataclass
class FallbackConfig:
    intervals: tuple[int, ...] = INTERVAL_TABLE
    hint_multiplier: float = 0.8
    maximum_interval: int = 365


class FallbackScheduler:
    """SM-2 flavoured fixed-table scheduler."""

    def __init__(self, config: FallbackConfig | None = None):
        self.config = config or FallbackConfig()

    def next_interval(self, card: ScheduleCard, correct: bool, hints_used: int = 0) -> tuple[int, int, int]:
        """Return (interval_days, reps, lapses) after this review."""
        cfg = self.config
        if not correct:
            return 1, 0, card.lapses + 1

        reps = card.reps
        if reps < len(cfg.intervals):
            interval = cfg.intervals[reps]
            reps += 1
        else:
            interval = round(card.interval_days * card.ease)

        if hints_used > 0:
            interval = round(interval * cfg.hint_multiplier)

        interval = max(1, min(cfg.maximum_interval, interval))
        return interval, reps, card.lapses

    def review(self, card: ScheduleCard, correct: bool, hints_used: int, now: datetime) -> ScheduleCard:
        interval, reps, lapses = self.next_interval(card, correct, hints_used)
        if not correct:
            state = CardState.RELEARNING if card.state == CardState.REVIEW else CardState.LEARNING
        else:
            state = CardState.REVIEW if reps >= 2 else CardState.LEARNING
        return replace(
            card,
            interval_days=interval,
            reps=reps,
            lapses=lapses,
            state=state,
            # Same interval-to-stability mapping as ScheduleCard.from_legacy
            stability=max(0.1, interval * 0.9),
            due=now + timedelta(days=interval),
            last_review=now,
        )
