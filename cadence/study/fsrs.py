"""
FSRS Memory Model.

Stability/difficulty update for a single review, FSRS-4.5 style:

- Difficulty D lives on [1, 10] (higher = harder)
- Stability S is the number of days until recall probability hits 90%
- Retrievability follows R(t) = 0.9 ** (t / S), so the interval that
  yields a requested retention r is S * ln(r) / ln(0.9)

Based on research from:
- Ye (FSRS algorithm)
- Wozniak (SM algorithms)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from cadence.core.errors import SchedulingError
from cadence.core.models import DIFFICULTY_MAX, DIFFICULTY_MIN, CardState, Rating, ScheduleCard
from cadence.core.stats import is_finite

# =============================================================================
# FSRS CONSTANTS
# =============================================================================

FSRS_PARAMS = {
    "w": [
        0.4872,  # w0: initial stability for Again
        1.4003,  # w1: initial stability for Hard
        3.7145,  # w2: initial stability for Good
        13.8206,  # w3: initial stability for Easy
        5.1618,  # w4: initial difficulty for Good
        1.2298,  # w5: initial difficulty slope per grade
        0.8975,  # w6: difficulty change per grade
        0.0310,  # w7: difficulty mean reversion
        1.6474,  # w8: recall stability growth (exp)
        0.1367,  # w9: recall stability saturation
        1.0461,  # w10: recall retrievability gain
        2.1072,  # w11: forget stability scale
        0.0793,  # w12: forget difficulty exponent
        0.3246,  # w13: forget stability exponent
        1.5870,  # w14: forget retrievability gain
        0.2272,  # w15: hard penalty
        2.8755,  # w16: easy bonus
    ],
    "requestRetention": 0.90,
    "maximumInterval": 365,
}

MIN_STABILITY = 0.1


@dataclass
class FSRSParams:
    """Tunable FSRS parameters."""

    w: tuple[float, ...] = tuple(FSRS_PARAMS["w"])
    request_retention: float = FSRS_PARAMS["requestRetention"]
    maximum_interval: int = FSRS_PARAMS["maximumInterval"]


class FSRSScheduler:
    """
    Pure FSRS review update. No adaptive adjustments, no persistence.

    Usage:
        fsrs = FSRSScheduler()
        new_card = fsrs.review(card, Rating.GOOD, now)
    """

    def __init__(self, params: FSRSParams | None = None):
        self.params = params or FSRSParams()
        self.w = self.params.w

    # =========================================================================
    # Memory model
    # =========================================================================

    @staticmethod
    def retrievability(stability: float, elapsed_days: float) -> float:
        """Recall probability after elapsed_days."""
        if stability <= 0:
            return 0.0
        return math.pow(0.9, max(0.0, elapsed_days) / stability)

    def initial_stability(self, rating: Rating) -> float:
        return max(MIN_STABILITY, self.w[int(rating) - 1])

    def initial_difficulty(self, rating: Rating) -> float:
        return _clamp_difficulty(self.w[4] - (int(rating) - 3) * self.w[5])

    def next_difficulty(self, difficulty: float, rating: Rating) -> float:
        updated = difficulty - self.w[6] * (int(rating) - 3)
        # Mean reversion toward the "Easy" initial difficulty
        reverted = self.w[7] * self.initial_difficulty(Rating.EASY) + (1 - self.w[7]) * updated
        return _clamp_difficulty(reverted)

    def recall_stability(self, difficulty: float, stability: float, r: float, rating: Rating) -> float:
        w = self.w
        hard_penalty = w[15] if rating == Rating.HARD else 1.0
        easy_bonus = w[16] if rating == Rating.EASY else 1.0
        growth = (
            math.exp(w[8])
            * (11 - difficulty)
            * math.pow(stability, -w[9])
            * (math.exp((1 - r) * w[10]) - 1)
            * hard_penalty
            * easy_bonus
        )
        return stability * (1 + growth)

    def forget_stability(self, difficulty: float, stability: float, r: float) -> float:
        w = self.w
        new_s = (
            w[11]
            * math.pow(difficulty, -w[12])
            * (math.pow(stability + 1, w[13]) - 1)
            * math.exp((1 - r) * w[14])
        )
        return min(new_s, stability)

    def next_interval(self, stability: float) -> int:
        """Days until retrievability decays to the requested retention."""
        raw = stability * math.log(self.params.request_retention) / math.log(0.9)
        return int(max(1, min(self.params.maximum_interval, round(raw))))

    # =========================================================================
    # Review
    # =========================================================================

    def review(self, card: ScheduleCard, rating: Rating, now: datetime) -> ScheduleCard:
        """
        Apply one review and return the updated card (input is not mutated).

        Raises:
            SchedulingError: if the update produced a non-finite value
        """
        rating = Rating(rating)

        if card.state == CardState.NEW:
            stability = self.initial_stability(rating)
            difficulty = self.initial_difficulty(rating)
            lapses = card.lapses
        else:
            elapsed = card.elapsed_days(now)
            r = self.retrievability(card.stability, elapsed)
            difficulty = self.next_difficulty(card.difficulty, rating)
            if rating == Rating.AGAIN:
                stability = self.forget_stability(card.difficulty, card.stability, r)
                lapses = card.lapses + 1
            else:
                stability = self.recall_stability(card.difficulty, card.stability, r, rating)
                lapses = card.lapses

        stability = max(MIN_STABILITY, stability)
        if not is_finite(stability, difficulty):
            raise SchedulingError(f"non-finite FSRS state (S={stability}, D={difficulty})")

        interval = 1 if rating == Rating.AGAIN else self.next_interval(stability)
        reps = 0 if rating == Rating.AGAIN else card.reps + 1

        return ScheduleCard(
            difficulty=difficulty,
            stability=stability,
            interval_days=interval,
            reps=reps,
            lapses=lapses,
            state=_next_state(card.state, rating, reps),
            due=now + timedelta(days=interval),
            last_review=now,
            leech=card.leech,
        )


def _next_state(state: CardState, rating: Rating, reps: int) -> CardState:
    if rating == Rating.AGAIN:
        if state in (CardState.REVIEW, CardState.RELEARNING):
            return CardState.RELEARNING
        return CardState.LEARNING
    if rating == Rating.EASY or reps >= 2 or state == CardState.RELEARNING:
        return CardState.REVIEW
    return CardState.LEARNING


def _clamp_difficulty(d: float) -> float:
    return max(DIFFICULTY_MIN, min(DIFFICULTY_MAX, d))
