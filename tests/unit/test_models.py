"""
Unit tests for the shared domain models.

Tests:
- AttemptEvent defaulting of malformed fields (never raises)
- SessionSummary coercion
- Legacy ease <-> FSRS difficulty mapping
- ScheduleCard legacy construction and serialisation
"""

from datetime import datetime, timedelta

import pytest

from cadence.core.models import (
    DEFAULT_RESPONSE_TIME_MS,
    AttemptEvent,
    CardState,
    Item,
    ScheduleCard,
    SessionSummary,
    SessionType,
    difficulty_to_ease,
    ease_to_difficulty,
)


class TestAttemptEvent:
    """Malformed attempts are defaulted, not rejected."""

    def test_camel_case_payload(self):
        event = AttemptEvent.coerce(
            {
                "correct": True,
                "responseTimeMs": 1234,
                "hintsUsed": 2,
                "item": {"verb": "ser", "mood": "subjunctive", "tense": "subjPres", "person": "3s"},
                "errorTags": ["accent"],
            }
        )
        assert event.correct is True
        assert event.response_time_ms == 1234.0
        assert event.hints_used == 2
        assert event.item.category_key == "subjunctive|subjPres|ser"
        assert event.error_tags == ("accent",)

    def test_missing_response_time_counts_as_slow(self):
        event = AttemptEvent.coerce({"correct": True})
        assert event.response_time_ms == DEFAULT_RESPONSE_TIME_MS

    @pytest.mark.parametrize("bad", [None, "fast", -5, 0, float("nan")])
    def test_bad_response_time_is_defaulted(self, bad):
        event = AttemptEvent.coerce({"correct": False, "response_time_ms": bad})
        assert event.response_time_ms == DEFAULT_RESPONSE_TIME_MS

    def test_negative_hints_become_zero(self):
        assert AttemptEvent.coerce({"hints_used": -3}).hints_used == 0

    def test_missing_item_is_unknown(self):
        event = AttemptEvent.coerce({"correct": True, "item": "not-an-item"})
        assert event.item.verb == "unknown"
        assert event.item.mood == "unknown"

    def test_non_dict_payload_yields_default_event(self):
        event = AttemptEvent.coerce(["garbage"])
        assert event.correct is False
        assert event.response_time_ms == DEFAULT_RESPONSE_TIME_MS

    def test_epoch_millis_timestamp(self):
        ts = datetime(2024, 1, 2, 3, 4, 5)
        event = AttemptEvent.coerce({"timestamp": ts.timestamp() * 1000})
        assert abs((event.timestamp - ts).total_seconds()) < 1

    def test_iso_timestamp(self):
        event = AttemptEvent.coerce({"timestamp": "2024-03-04T10:00:00"})
        assert event.timestamp == datetime(2024, 3, 4, 10, 0, 0)

    def test_reported_confidence_is_clamped(self):
        assert AttemptEvent.coerce({"reportedConfidence": 1.7}).reported_confidence == 1.0
        assert AttemptEvent.coerce({"reportedConfidence": "n/a"}).reported_confidence is None

    def test_events_are_immutable(self):
        event = AttemptEvent()
        with pytest.raises(Exception):
            event.correct = True


class TestItem:
    def test_irregular_flag(self):
        assert Item(verb="ir", verb_type="irregular").is_irregular
        assert not Item(verb="hablar", verb_type="regular").is_irregular

    def test_blank_fields_default(self):
        assert Item(verb="  ").verb == "unknown"


class TestSessionSummary:
    def test_duration_and_aliases(self):
        start = datetime(2024, 3, 4, 9, 0)
        summary = SessionSummary.coerce(
            {
                "startTime": start.isoformat(),
                "endTime": (start + timedelta(minutes=25)).isoformat(),
                "accuracy": 0.8,
                "averageResponseTime": 2500,
                "sessionType": "challenge",
            }
        )
        assert summary.duration_minutes == pytest.approx(25.0)
        assert summary.session_type == SessionType.CHALLENGE
        assert summary.avg_response_time_ms == 2500.0

    def test_unknown_session_type_becomes_mixed(self):
        assert SessionSummary.coerce({"session_type": "marathon"}).session_type == SessionType.MIXED

    def test_accuracy_clamped(self):
        assert SessionSummary.coerce({"accuracy": 3}).accuracy == 1.0


class TestEaseDifficultyMapping:
    """Fixed invertible mapping between the SM-2 ease and FSRS difficulty scales."""

    def test_endpoints(self):
        assert ease_to_difficulty(1.3) == pytest.approx(10.0)
        assert ease_to_difficulty(3.2) == pytest.approx(1.0)
        assert difficulty_to_ease(10.0) == pytest.approx(1.3)
        assert difficulty_to_ease(1.0) == pytest.approx(3.2)

    def test_round_trip_over_valid_range(self):
        for i in range(191):
            ease = 1.3 + i * 0.01
            assert difficulty_to_ease(ease_to_difficulty(ease)) == pytest.approx(ease, abs=1e-6)

    def test_out_of_range_is_clamped(self):
        assert ease_to_difficulty(5.0) == 1.0
        assert difficulty_to_ease(0.0) == 3.2


class TestScheduleCard:
    def test_from_legacy(self):
        card = ScheduleCard.from_legacy(interval_days=10, ease=2.5, reps=3)
        assert card.state == CardState.REVIEW
        assert card.stability == pytest.approx(9.0)
        assert card.ease == pytest.approx(2.5)

    def test_from_legacy_states(self):
        assert ScheduleCard.from_legacy(reps=0).state == CardState.NEW
        assert ScheduleCard.from_legacy(reps=1).state == CardState.LEARNING
        assert ScheduleCard.from_legacy(reps=2, lapses=1).state == CardState.RELEARNING

    def test_interval_floor(self):
        assert ScheduleCard.from_legacy(interval_days=0).interval_days == 1

    def test_dict_round_trip(self):
        now = datetime(2024, 3, 4, 10, 0)
        card = ScheduleCard(
            difficulty=6.2, stability=12.5, interval_days=11, reps=4, lapses=1,
            state=CardState.REVIEW, due=now + timedelta(days=11), last_review=now, leech=False,
        )
        data = card.to_dict()
        assert "ease" in data
        assert ScheduleCard.from_dict(data) == card

    def test_is_due(self):
        now = datetime(2024, 3, 4, 10, 0)
        assert ScheduleCard().is_due(now)
        assert not ScheduleCard(due=now + timedelta(hours=1)).is_due(now)
