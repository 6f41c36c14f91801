"""
Feature Flags - scheduling integrations that can be switched off at runtime.

Each flag can be overridden with CADENCE_<FLAG>=0/1 in the environment.
"""
from dataclasses import dataclass
import os


@dataclass
class FeatureFlags:
    # Off = every review goes through the fixed-table fallback
    ADAPTIVE_SCHEDULING: bool = True
    # Flow/confidence shift ratings and interval multipliers
    EMOTIONAL_SRS_INTEGRATION: bool = True
    # Circadian profile and fatigue shift due dates
    TEMPORAL_SCHEDULING: bool = True

    def __post_init__(self):
        for flag_name in self.__dataclass_fields__:
            env_key = f"CADENCE_{flag_name}"
            env_val = os.environ.get(env_key)
            if env_val is not None:
                setattr(self, flag_name, env_val.lower() in ("1", "true", "yes", "on"))

    def is_enabled(self, flag_name: str) -> bool:
        return getattr(self, flag_name, False)
