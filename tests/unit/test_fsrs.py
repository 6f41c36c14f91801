"""
Unit tests for the FSRS memory model.
"""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from cadence.core.errors import SchedulingError
from cadence.core.models import CardState, Rating, ScheduleCard
from cadence.study.fsrs import FSRSParams, FSRSScheduler

NOW = datetime(2024, 3, 4, 10, 0)


@pytest.fixture
def fsrs():
    return FSRSScheduler()


@pytest.fixture
def review_card():
    return ScheduleCard(
        difficulty=5.0,
        stability=10.0,
        interval_days=10,
        reps=3,
        state=CardState.REVIEW,
        due=NOW,
        last_review=NOW - timedelta(days=10),
    )


class TestMemoryModel:
    def test_retrievability(self):
        assert FSRSScheduler.retrievability(10.0, 0) == 1.0
        assert FSRSScheduler.retrievability(10.0, 10) == pytest.approx(0.9)
        assert FSRSScheduler.retrievability(0.0, 3) == 0.0

    def test_initial_state_per_rating(self, fsrs):
        assert fsrs.initial_stability(Rating.AGAIN) == pytest.approx(0.4872)
        assert fsrs.initial_stability(Rating.EASY) == pytest.approx(13.8206)
        assert fsrs.initial_difficulty(Rating.GOOD) == pytest.approx(5.1618)
        assert fsrs.initial_difficulty(Rating.AGAIN) > fsrs.initial_difficulty(Rating.EASY)

    def test_difficulty_moves_with_rating(self, fsrs):
        assert fsrs.next_difficulty(5.0, Rating.AGAIN) > 5.0
        assert fsrs.next_difficulty(5.0, Rating.EASY) < 5.0
        assert fsrs.next_difficulty(10.0, Rating.AGAIN) == 10.0

    def test_interval_matches_retention(self, fsrs):
        assert fsrs.next_interval(10.0) == 10
        assert fsrs.next_interval(0.2) == 1
        assert fsrs.next_interval(5000.0) == 365

    def test_lower_retention_means_longer_interval(self):
        fsrs = FSRSScheduler(FSRSParams(request_retention=0.8))
        assert fsrs.next_interval(10.0) == 21


class TestReview:
    def test_new_card_good(self, fsrs):
        card = fsrs.review(ScheduleCard(), Rating.GOOD, NOW)
        assert card.stability == pytest.approx(3.7145)
        assert card.interval_days == 4
        assert card.reps == 1
        assert card.state == CardState.LEARNING
        assert card.due == NOW + timedelta(days=4)
        assert card.last_review == NOW

    def test_new_card_easy_graduates(self, fsrs):
        card = fsrs.review(ScheduleCard(), Rating.EASY, NOW)
        assert card.state == CardState.REVIEW
        assert card.interval_days == 14

    def test_recall_grows_stability(self, fsrs, review_card):
        hard = fsrs.review(review_card, Rating.HARD, NOW)
        good = fsrs.review(review_card, Rating.GOOD, NOW)
        easy = fsrs.review(review_card, Rating.EASY, NOW)
        assert review_card.stability < hard.stability < good.stability < easy.stability
        assert good.state == CardState.REVIEW

    def test_lapse(self, fsrs, review_card):
        card = fsrs.review(review_card, Rating.AGAIN, NOW)
        assert card.stability < review_card.stability
        assert card.lapses == review_card.lapses + 1
        assert card.interval_days == 1
        assert card.state == CardState.RELEARNING

    def test_lapse_resets_success_count(self, fsrs, review_card):
        card = fsrs.review(review_card, Rating.AGAIN, NOW)
        assert card.reps == 0

    def test_relearning_recall_returns_to_review(self, fsrs, review_card):
        lapsed = fsrs.review(review_card, Rating.AGAIN, NOW)
        recovered = fsrs.review(lapsed, Rating.GOOD, NOW + timedelta(days=1))
        assert recovered.reps == 1
        assert recovered.state == CardState.REVIEW

    def test_input_not_mutated(self, fsrs, review_card):
        before = review_card.to_dict()
        fsrs.review(review_card, Rating.GOOD, NOW)
        assert review_card.to_dict() == before

    def test_non_finite_state_raises(self, fsrs, review_card):
        broken = replace(review_card, stability=float("inf"))
        with pytest.raises(SchedulingError):
            fsrs.review(broken, Rating.GOOD, NOW)
