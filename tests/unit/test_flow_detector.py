"""
Unit tests for FlowStateDetector.

Tests:
- Per-response confidence and complexity derivation
- Classification priority order
- Hysteresis (dwell time + corroboration)
- Flow metrics and scheduling recommendations
"""

from datetime import timedelta

import pytest

from cadence.adaptive.flow_detector import FlowConfig, FlowStateDetector, estimate_complexity
from cadence.core.models import FlowState, Item


@pytest.fixture
def detector():
    return FlowStateDetector()


def feed(detector, events):
    return [detector.process(e) for e in events]


class TestResponseAnalysis:
    @pytest.mark.parametrize(
        "correct,rt,expected",
        [
            (True, 800, 0.9),
            (False, 800, 0.3),
            (True, 9000, 0.6),
            (False, 9000, 0.2),
            (True, 5000, 0.7),
            (False, 5000, 0.4),
        ],
    )
    def test_confidence_proxy(self, detector, correct, rt, expected):
        assert detector.calculate_confidence(correct, rt) == expected

    def test_complexity(self):
        assert estimate_complexity(Item(mood="indicative", tense="pres")) == pytest.approx(0.3)
        assert estimate_complexity(Item(mood="subjunctive", tense="subjPres")) == pytest.approx(0.6)
        assert estimate_complexity(Item(mood="indicative", tense="pretPerf")) == pytest.approx(0.5)
        hardest = Item(mood="subjunctive", tense="subjImpf", verb_type="irregular")
        assert estimate_complexity(hardest) == 1.0

    def test_streaks(self, detector, make_event):
        feed(detector, [make_event(0, True, 800), make_event(1, True, 800), make_event(2, False, 9000)])
        assert detector.streaks.correct == 0
        assert detector.streaks.fast == 0
        assert detector.streaks.errors == 1


class TestClassification:
    def test_fewer_than_three_responses_is_neutral(self, detector, event_stream):
        results = feed(detector, event_stream(2, correct=True, rt=800))
        assert results[-1].state == FlowState.NEUTRAL
        assert detector.detect_flow_state() == FlowState.NEUTRAL

    def test_fast_accurate_stream_reaches_deep_flow(self, detector, event_stream):
        feed(detector, event_stream(15, correct=True, rt=800))
        assert detector.current_state == FlowState.DEEP_FLOW
        assert detector.deep_flow_sessions == 1

    def test_light_flow_before_streak_of_five(self, detector, event_stream):
        results = feed(detector, event_stream(3, correct=True, rt=800))
        assert results[-1].state == FlowState.LIGHT_FLOW
        assert results[-1].state_changed

    def test_errors_lead_to_frustration(self, detector, event_stream):
        feed(detector, event_stream(15, correct=False, rt=5000))
        assert detector.current_state == FlowState.FRUSTRATED

    def test_slow_correct_answers_are_struggling(self, detector, event_stream):
        feed(detector, event_stream(6, correct=True, rt=9000))
        assert detector.current_state == FlowState.STRUGGLING

    def test_moderate_stream_is_neutral(self, detector, event_stream):
        feed(detector, event_stream(8, correct=True, rt=5000))
        assert detector.current_state == FlowState.NEUTRAL


class TestHysteresis:
    def test_first_change_is_unrestricted(self, detector, event_stream):
        results = feed(detector, event_stream(3, correct=True, rt=800, spacing=1))
        assert results[-1].state_changed

    def test_change_blocked_within_dwell_time(self, detector, make_event):
        # LIGHT_FLOW committed at t=2s; errors then arrive every second
        events = [make_event(i, True, 800, spacing=1) for i in range(3)]
        events += [make_event(i, False, 9000, spacing=1) for i in range(3, 14)]
        results = feed(detector, events)

        assert all(r.state == FlowState.LIGHT_FLOW for r in results[2:12])
        assert results[12].state == FlowState.FRUSTRATED
        first, second = detector.state_history
        assert second.timestamp - first.timestamp >= timedelta(seconds=10)

    def test_extreme_states_need_corroboration(self, detector, make_event):
        detector.process(make_event(0, True, 800))
        detector.process(make_event(1, True, 800))
        detector.process(make_event(2, False, 9000))
        recent = list(detector.history)
        assert detector.count_supporting(recent, FlowState.DEEP_FLOW) == 2
        assert detector.count_supporting(recent, FlowState.FRUSTRATED) == 1

    def test_custom_dwell_time(self, make_event):
        detector = FlowStateDetector(FlowConfig(hysteresis_seconds=0))
        events = [make_event(i, True, 800, spacing=1) for i in range(3)]
        events += [make_event(i, False, 9000, spacing=1) for i in range(3, 6)]
        feed(detector, events)
        assert detector.current_state == FlowState.FRUSTRATED


class TestMetrics:
    def test_metrics_shape(self, detector, event_stream):
        result = feed(detector, event_stream(10, correct=True, rt=800))[-1]
        m = result.metrics
        assert m["current_state"] == "deep_flow"
        assert m["session_duration"] == 45.0
        assert m["current_streak"]["correct"] == 10
        assert m["average_response_time"] == 800
        assert m["consistency_score"] == 100
        assert 0 < m["flow_percentage"] <= 100

    def test_recovery_counted_when_leaving_frustration(self, detector, event_stream):
        feed(detector, event_stream(5, correct=False, rt=5000))
        assert detector.current_state == FlowState.FRUSTRATED
        feed(detector, event_stream(10, correct=True, rt=800, start=5))
        assert detector.current_state != FlowState.FRUSTRATED
        assert detector.recovery_count == 1

    @pytest.mark.parametrize(
        "state,multiplier,delay",
        [
            (FlowState.DEEP_FLOW, 1.2, False),
            (FlowState.LIGHT_FLOW, 1.1, False),
            (FlowState.NEUTRAL, 1.0, False),
            (FlowState.STRUGGLING, 0.9, False),
            (FlowState.FRUSTRATED, 0.8, True),
        ],
    )
    def test_srs_recommendations(self, detector, state, multiplier, delay):
        detector.current_state = state
        advice = detector.get_srs_scheduling_recommendations()
        assert advice["scheduling_multiplier"] == multiplier
        assert advice["should_delay"] is delay
        assert advice["flow_state"] == state.value

    def test_reset(self, detector, event_stream):
        feed(detector, event_stream(10, correct=True, rt=800))
        detector.reset()
        assert detector.current_state == FlowState.NEUTRAL
        assert len(detector.history) == 0
        assert detector.state_history == []

    def test_state_history_is_trimmed(self, base_time):
        detector = FlowStateDetector(FlowConfig(max_state_changes=4, trimmed_state_changes=2))
        states = [FlowState.LIGHT_FLOW, FlowState.NEUTRAL] * 3
        for i, state in enumerate(states):
            detector._change_state(state, base_time + timedelta(seconds=i))
        assert len(detector.state_history) <= 4
        assert detector.state_history[-1].new_state == FlowState.NEUTRAL
        assert detector.get_flow_metrics()["state_changes"] == 6
