"""
Unit tests for MomentumTracker.

Tests:
- Response enrichment (confidence proxy, perceived difficulty)
- Five-factor target score and smoothing
- Idle decay
- Momentum type classification and recommendations
"""

import math

import pytest

from cadence.adaptive.momentum_tracker import MomentumConfig, MomentumTracker
from cadence.core.models import FlowState, MomentumType


@pytest.fixture
def tracker():
    return MomentumTracker()


def feed(tracker, events, flow_state=None):
    return [tracker.process(e, flow_state=flow_state) for e in events]


class TestEnrichment:
    def test_fast_correct_answer(self, tracker, make_event):
        sample = tracker.enrich(make_event(0, True, 800))
        assert sample.raw_confidence == pytest.approx(0.85)
        assert sample.adjusted_confidence == pytest.approx(0.85)

    def test_slow_wrong_answer(self, tracker, make_event):
        sample = tracker.enrich(make_event(0, False, 9000))
        assert sample.raw_confidence == pytest.approx(0.15)

    def test_hints_and_hesitation_penalise(self, tracker, make_event):
        sample = tracker.enrich(make_event(0, True, 800, hints_used=1, hesitation_count=2))
        assert sample.adjusted_confidence == pytest.approx(0.85 - 0.2 - 0.2)

    def test_penalties_never_go_negative(self, tracker, make_event):
        sample = tracker.enrich(make_event(0, False, 9000, hints_used=3))
        assert sample.adjusted_confidence == 0.0

    def test_perceived_difficulty(self, make_event):
        easy = make_event(0, True, 1000)
        assert MomentumTracker.perceived_difficulty(easy) == pytest.approx(0.1)

        hard = make_event(
            0, False, 6000,
            item={"verb": "ir", "mood": "subjunctive", "tense": "subjPlusc", "verb_type": "irregular"},
        )
        assert MomentumTracker.perceived_difficulty(hard) == 1.0


class TestScore:
    def test_all_wrong_decreases_toward_target(self, tracker, event_stream):
        results = feed(tracker, event_stream(10, correct=False, rt=5000))
        scores = [r.momentum_score for r in results]

        assert tracker.target_score == pytest.approx(0.40)
        assert scores[0] < 0.5
        assert all(b < a for a, b in zip(scores, scores[1:]))
        assert all(s > 0.40 for s in scores)

    def test_all_fast_correct_is_steady(self, tracker, event_stream):
        results = feed(tracker, event_stream(12, correct=True, rt=800))
        assert tracker.target_score == pytest.approx(0.875)
        assert tracker.trends.short_term == pytest.approx(0.0)
        assert results[-1].momentum_type == MomentumType.STEADY_PROGRESS

    def test_score_stays_in_unit_interval(self, tracker, make_event):
        events = [make_event(i, i % 3 == 0, 500 + (i * 977) % 12000) for i in range(40)]
        for result in feed(tracker, events):
            assert 0.0 <= result.momentum_score <= 1.0

    @pytest.mark.parametrize("rt,expected", [(8000, 0.0), (3000, 1.0), (5500, 0.5), (12000, 0.0), (900, 1.0)])
    def test_speed_score(self, tracker, make_event, rt, expected):
        samples = [tracker.enrich(make_event(0, True, rt))]
        assert MomentumTracker.speed_score(samples) == pytest.approx(expected)

    def test_neutral_factors_without_evidence(self, tracker, make_event):
        samples = [tracker.enrich(make_event(i, True, 800)) for i in range(3)]
        assert MomentumTracker.difficulty_handling_score(samples) == 0.5
        assert MomentumTracker.recovery_score(samples) == 0.5

    def test_quick_recovery(self, tracker, make_event):
        samples = [
            tracker.enrich(make_event(0, False, 4000)),
            tracker.enrich(make_event(1, True, 2000)),
            tracker.enrich(make_event(2, False, 4000)),
            tracker.enrich(make_event(3, True, 7000)),
        ]
        assert MomentumTracker.recovery_score(samples) == pytest.approx(0.5)


class TestIdleDecay:
    def test_decay_relaxes_toward_window_confidence(self, tracker, event_stream):
        feed(tracker, event_stream(5, correct=True, rt=800))
        tracker.momentum_score = 0.9
        tracker.apply_idle_decay(600)
        assert tracker.momentum_score == pytest.approx(0.85 + 0.05 * math.exp(-2))

    def test_long_gap_triggers_decay(self, make_event):
        tracker = MomentumTracker(MomentumConfig(smoothing=0.0))
        feed(tracker, [make_event(i, True, 800) for i in range(5)])
        tracker.momentum_score = 0.2
        tracker.process(make_event(1000, True, 800))
        assert tracker.momentum_score > 0.2


class TestTrends:
    def test_no_trend_before_eight_responses(self, tracker, make_event):
        events = [make_event(i, False, 9000) for i in range(4)]
        events += [make_event(i, True, 800) for i in range(4, 7)]
        feed(tracker, events)
        assert tracker.trends.short_term == 0.0

    def test_improving_stream_has_positive_trend(self, tracker, make_event):
        events = [make_event(i, False, 5000) for i in range(4)]
        events += [make_event(i, True, 800) for i in range(4, 8)]
        feed(tracker, events)
        assert tracker.trends.short_term > 0
        assert tracker.trends.long_term == 0.0


class TestClassification:
    @pytest.mark.parametrize(
        "score,trend,expected",
        [
            (0.9, 0.5, MomentumType.PEAK_PERFORMANCE),
            (0.75, 0.2, MomentumType.CONFIDENCE_BUILDING),
            (0.2, -0.5, MomentumType.CONFIDENCE_CRISIS),
            (0.2, 0.3, MomentumType.RECOVERY_MODE),
            (0.35, -0.2, MomentumType.MINOR_SETBACK),
            (0.6, 0.0, MomentumType.STEADY_PROGRESS),
        ],
    )
    def test_detect_momentum_type(self, tracker, score, trend, expected):
        tracker.momentum_score = score
        tracker.trends.short_term = trend
        assert tracker.detect_momentum_type() == expected

    def test_crisis_recommendation_is_critical(self, tracker):
        tracker.current_momentum = MomentumType.CONFIDENCE_CRISIS
        recommendations = tracker.get_momentum_recommendations()
        assert recommendations[0]["priority"] == "critical"
        assert recommendations[0]["action"] == "switch_to_confidence_building"

    def test_frustration_adds_reassurance(self, tracker, event_stream):
        feed(tracker, event_stream(6, correct=False, rt=9000))
        types = [r["type"] for r in tracker.get_momentum_recommendations()]
        assert "reassure" in types


class TestEmotionalState:
    def test_flow_boosts_engagement(self, tracker, make_event):
        tracker.process(make_event(0, True, 800), flow_state=FlowState.DEEP_FLOW)
        assert tracker.emotional_state.engagement == pytest.approx(0.8)

    def test_frustration_lowers_engagement(self, tracker, make_event):
        tracker.process(make_event(0, False, 9000), flow_state=FlowState.FRUSTRATED)
        assert tracker.emotional_state.engagement == pytest.approx(0.2)

    def test_fatigue_grows_with_session_time(self, tracker, make_event):
        feed(tracker, [make_event(0, True, 2500), make_event(1, True, 2500, spacing=900)])
        assert tracker.emotional_state.fatigue == pytest.approx(0.5)


class TestStats:
    def test_stats_shape(self, tracker, event_stream):
        feed(tracker, event_stream(5, correct=True, rt=800))
        stats = tracker.get_momentum_stats()
        assert stats["total_responses"] == 5
        assert stats["session_duration"] == 20.0
        assert set(stats["emotional_state"]) == {"confidence", "frustration", "engagement", "fatigue"}
        assert 0 <= stats["momentum_score"] <= 100

    def test_reset(self, tracker, event_stream):
        feed(tracker, event_stream(5, correct=False, rt=9000))
        tracker.reset()
        assert tracker.momentum_score == 0.5
        assert len(tracker.samples) == 0
        assert tracker.current_momentum == MomentumType.STEADY_PROGRESS

    def test_momentum_history_is_trimmed(self, make_event):
        tracker = MomentumTracker(MomentumConfig(max_history=4, trimmed_history=2))
        kinds = [MomentumType.MINOR_SETBACK, MomentumType.STEADY_PROGRESS] * 3
        for i, kind in enumerate(kinds):
            tracker._change_momentum(kind, tracker.enrich(make_event(i, True, 2000)))
        assert len(tracker.momentum_history) <= 4
        assert tracker.momentum_history[-1]["new_momentum"] == MomentumType.STEADY_PROGRESS.value
        assert tracker.get_momentum_stats()["momentum_changes"] == 6
