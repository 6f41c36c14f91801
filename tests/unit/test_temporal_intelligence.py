"""
Unit tests for TemporalIntelligence.

Tests:
- Session cognitive load and performance
- Cognitive load recovery between sessions
- Circadian profile (peak/low hours, rhythm, session length)
- Fatigue curve and SRS timing advice
"""

from datetime import datetime, timedelta

import pytest

from cadence.adaptive.temporal_intelligence import TemporalIntelligence
from cadence.core.models import SessionSummary, SessionType

DAY0 = datetime(2024, 3, 4)


def session(start, minutes=20, accuracy=0.8, rt=3000.0, session_type=SessionType.MIXED, **kwargs):
    return SessionSummary(
        start=start,
        end=start + timedelta(minutes=minutes),
        accuracy=accuracy,
        avg_response_time_ms=rt,
        session_type=session_type,
        **kwargs,
    )


@pytest.fixture
def temporal():
    return TemporalIntelligence()


@pytest.fixture
def profiled(temporal):
    """Three days of practice: strong mornings, weak evenings."""
    accuracy_by_hour = {9: 0.95, 10: 0.9, 20: 0.5, 21: 0.4}
    for day in range(3):
        for hour, accuracy in accuracy_by_hour.items():
            temporal.process_session(session(DAY0 + timedelta(days=day, hours=hour), accuracy=accuracy))
    return temporal


class TestSessionScores:
    @pytest.mark.parametrize(
        "summary,expected",
        [
            (session(DAY0), 0.3),
            (session(DAY0, session_type=SessionType.REVIEW), 0.15),
            (session(DAY0, rt=7000), 0.5),
            (session(DAY0, session_type=SessionType.CHALLENGE, rt=11000, max_error_streak=5), 1.0),
        ],
    )
    def test_cognitive_load(self, summary, expected):
        assert TemporalIntelligence.session_cognitive_load(summary) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "summary,expected",
        [
            (session(DAY0), 0.8),
            (session(DAY0, rt=500), 0.64),
            (session(DAY0, rt=9000), 0.72),
            (session(DAY0, interruptions=5), 0.56),
            (session(DAY0, fatigue=0.5), 0.68),
        ],
    )
    def test_performance(self, summary, expected):
        assert TemporalIntelligence.session_performance(summary) == pytest.approx(expected)


class TestCognitiveLoad:
    def test_session_raises_load(self, temporal):
        result = temporal.process_session(session(DAY0 + timedelta(hours=10)))
        assert temporal.load.current == pytest.approx(0.65)
        assert result.cognitive_load == pytest.approx(0.65)

    def test_load_recovers_between_sessions(self, temporal):
        temporal.process_session(session(DAY0 + timedelta(hours=10)))
        temporal.process_session(session(DAY0 + timedelta(hours=10, minutes=30)))
        assert temporal.load.current == pytest.approx(0.15)

    def test_current_load_is_read_only(self, temporal):
        temporal.process_session(session(DAY0 + timedelta(hours=10)))
        assert temporal.current_load(DAY0 + timedelta(hours=10, minutes=2)) == pytest.approx(0.45)
        assert temporal.load.current == pytest.approx(0.65)

    def test_accepts_raw_payload(self, temporal):
        temporal.process_session({"startTime": "2024-03-04T09:00:00", "endTime": "2024-03-04T09:20:00"})
        assert temporal.sessions[0].hour == 9
        assert temporal.sessions[0].duration_minutes == pytest.approx(20)


class TestCircadianProfile:
    def test_no_profile_before_ten_sessions(self, temporal):
        for i in range(9):
            temporal.process_session(session(DAY0 + timedelta(days=i, hours=9), accuracy=0.9))
        assert temporal.profile.peak_hours == []
        assert temporal.profile.learning_rhythm == "neutral"

    def test_peak_and_low_hours(self, profiled):
        assert profiled.profile.peak_hours == [9, 10]
        assert profiled.profile.low_hours == [20, 21]

    def test_rhythm_and_session_length(self, profiled):
        assert profiled.profile.learning_rhythm == "morning_person"
        assert profiled.profile.optimal_session_length_minutes == 22

    def test_slot_statistics(self, profiled):
        slot = profiled.time_slots[9]
        assert slot.total_sessions == 3
        assert slot.best_performance == pytest.approx(0.95)
        assert slot.session_types == {"mixed": 3}


class TestFatigue:
    @pytest.mark.parametrize("hour,expected", [(10, 0.2), (14, 0.6), (17, 0.3), (23, 0.7), (3, 0.7)])
    def test_base_curve(self, temporal, hour, expected):
        assert temporal.base_fatigue(hour) == expected

    def test_fatigue_includes_load(self, temporal):
        assert temporal.get_current_fatigue(DAY0 + timedelta(hours=17)) == pytest.approx(0.3 + 0.5 * 0.4)

    def test_late_night_recommends_light_review(self, temporal):
        advice = temporal.recommend_session_type(DAY0 + timedelta(hours=23))
        assert advice["type"] == "review"
        assert advice["intensity"] == "light"
        assert advice["duration"] == 15


class TestSchedulingAdvice:
    def test_due_in_peak_hour_is_stretched(self, profiled):
        now = DAY0 + timedelta(days=3, hours=8)
        advice = profiled.get_srs_scheduling_recommendations(now.replace(hour=9), now)
        assert advice["timing_multiplier"] == pytest.approx(1.15)
        assert advice["priority_adjustment"] == "peak_hour"
        assert advice["should_delay"] is False
        assert advice["optimal_window"] == {"peak_hour": 9, "confidence": 0.8}

    def test_due_in_low_hour_is_shortened(self, profiled):
        now = DAY0 + timedelta(days=3, hours=8)
        advice = profiled.get_srs_scheduling_recommendations(now.replace(hour=20), now)
        assert advice["timing_multiplier"] == pytest.approx(0.85)

    def test_peak_hour_with_low_fatigue_is_optimal(self, profiled):
        now = DAY0 + timedelta(days=3, hours=9)
        assert profiled.get_srs_scheduling_recommendations(now, now)["is_optimal_time"]

    def test_overload_delays(self, temporal):
        now = DAY0 + timedelta(hours=17)
        temporal.load.current = 0.95
        temporal.load.last_update = now
        advice = temporal.get_srs_scheduling_recommendations(now + timedelta(days=1), now)
        assert advice["should_delay"] is True
        assert advice["timing_multiplier"] == pytest.approx(1.2)
        assert advice["priority_adjustment"] == "overload"

    def test_without_profile_any_time_is_fine(self, temporal):
        timing = temporal.get_optimal_practice_time(DAY0 + timedelta(hours=12))
        assert timing["recommendation"] == "now"
        assert timing["confidence"] == 0.5

    def test_next_peak_is_suggested(self, profiled):
        timing = profiled.get_optimal_practice_time(DAY0 + timedelta(days=3, hours=12))
        assert timing["recommendation"] == "later"
        assert timing["next_optimal_hour"] == 9
        assert timing["hours_until"] == 21


class TestCheckpoint:
    def test_round_trip(self, profiled):
        restored = TemporalIntelligence()
        restored.load_dict(profiled.to_dict())

        assert restored.time_slots == profiled.time_slots
        assert restored.sessions == profiled.sessions
        assert restored.profile == profiled.profile
        assert restored.load.current == profiled.load.current
        assert restored.load.last_update == profiled.load.last_update

    @pytest.mark.parametrize(
        "section,value",
        [
            ("sessions", [{"start": "garbage"}]),
            ("sessions", {}),
            ("profile", {"peak_hours": [25]}),
            ("cognitive_load", {"last_update": "noon"}),
        ],
    )
    def test_failed_restore_assigns_nothing(self, profiled, section, value):
        blob = profiled.to_dict()
        blob[section] = value
        target = TemporalIntelligence()
        with pytest.raises((ValueError, KeyError, TypeError)):
            target.load_dict(blob)
        assert target.time_slots == {}
        assert target.sessions == []
        assert target.profile == TemporalIntelligence().profile

    def test_reset(self, profiled):
        profiled.reset()
        assert profiled.sessions == []
        assert profiled.load.current == 0.5
