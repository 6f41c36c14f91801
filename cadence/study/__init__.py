"""
Spaced-repetition scheduling.

Provides:
- FSRSScheduler: stability/difficulty memory model
- FallbackScheduler: fixed-table scheduler used when the adaptive path is off or fails
- AdaptiveScheduler: FSRS conditioned on flow, confidence and timing
"""

from cadence.study.adaptive_scheduler import AdaptiveScheduler, ScheduleResult, SchedulingContext
from cadence.study.fallback import INTERVAL_TABLE, FallbackConfig, FallbackScheduler
from cadence.study.fsrs import FSRS_PARAMS, FSRSParams, FSRSScheduler

__all__ = [
    "AdaptiveScheduler",
    "ScheduleResult",
    "SchedulingContext",
    "FallbackScheduler",
    "FallbackConfig",
    "INTERVAL_TABLE",
    "FSRSScheduler",
    "FSRSParams",
    "FSRS_PARAMS",
]
