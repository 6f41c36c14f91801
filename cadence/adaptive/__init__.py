"""
Adaptive signals inferred from recent practice.

Components:
- FlowStateDetector: moment-to-moment engagement from a sliding window
- MomentumTracker: emotional streaks and score trends
- ConfidenceEngine: per-category confidence profiles and calibration
- TemporalIntelligence: circadian profile and cognitive load
- GoalTracker: adaptive micro-goals
"""
from cadence.adaptive.confidence_engine import (
    ConfidenceConfig,
    ConfidenceEngine,
    ConfidenceProfile,
    generate_recommendations,
    get_confidence_level,
)
from cadence.adaptive.flow_detector import FlowConfig, FlowResult, FlowStateDetector, estimate_complexity
from cadence.adaptive.goals import Goal, GoalsConfig, GoalTracker, GoalType
from cadence.adaptive.momentum_tracker import MomentumConfig, MomentumResult, MomentumTracker
from cadence.adaptive.temporal_intelligence import TemporalConfig, TemporalIntelligence, TemporalResult

__all__ = [
    # Components
    "FlowStateDetector",
    "MomentumTracker",
    "ConfidenceEngine",
    "TemporalIntelligence",
    "GoalTracker",
    # Configuration
    "FlowConfig",
    "MomentumConfig",
    "ConfidenceConfig",
    "TemporalConfig",
    "GoalsConfig",
    # Results and records
    "FlowResult",
    "MomentumResult",
    "TemporalResult",
    "ConfidenceProfile",
    "Goal",
    "GoalType",
    # Helpers
    "estimate_complexity",
    "get_confidence_level",
    "generate_recommendations",
]
