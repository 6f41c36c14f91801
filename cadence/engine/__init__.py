"""Composition root: per-user orchestrator and the multi-user registry."""

from cadence.engine.orchestrator import AttemptResult, Orchestrator
from cadence.engine.registry import EngineRegistry

__all__ = ["AttemptResult", "EngineRegistry", "Orchestrator"]
