"""
Core - settings, feature flags, domain models and shared utilities.
"""

from cadence.core.config import Settings, get_settings
from cadence.core.errors import (
    CadenceError,
    ComputationError,
    ConfigurationError,
    PersistenceError,
    SchedulingError,
)
from cadence.core.feature_flags import FeatureFlags
from cadence.core.models import (
    AttemptEvent,
    CardState,
    ConfidenceLevel,
    FlowState,
    Item,
    MomentumType,
    Rating,
    ResponseRecord,
    ScheduleCard,
    SchedulingAdjustment,
    SessionSummary,
    SessionType,
)
from cadence.core.telemetry import InMemoryMetrics, MetricsSink, NullMetrics

__all__ = [
    "Settings",
    "get_settings",
    "FeatureFlags",
    "CadenceError",
    "ComputationError",
    "ConfigurationError",
    "PersistenceError",
    "SchedulingError",
    "AttemptEvent",
    "CardState",
    "ConfidenceLevel",
    "FlowState",
    "Item",
    "MomentumType",
    "Rating",
    "ResponseRecord",
    "ScheduleCard",
    "SchedulingAdjustment",
    "SessionSummary",
    "SessionType",
    "InMemoryMetrics",
    "MetricsSink",
    "NullMetrics",
]
