"""
Metrics sink injected into the engine.

Components never reach a global debug object; the Orchestrator hands them
a MetricsSink and they report counters and gauges through it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsSink(Protocol):
    """Minimal counter/gauge interface."""

    def increment(self, name: str, value: int = 1) -> None: ...

    def gauge(self, name: str, value: float) -> None: ...


class NullMetrics:
    """Discards everything."""

    def increment(self, name: str, value: int = 1) -> None:
        pass

    def gauge(self, name: str, value: float) -> None:
        pass


class InMemoryMetrics:
    """Keeps counters and last gauge values in dicts; handy for tests and the CLI."""

    def __init__(self):
        self.counters: dict[str, int] = {}
        self.gauges: dict[str, float] = {}

    def increment(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + value

    def gauge(self, name: str, value: float) -> None:
        self.gauges[name] = value

    def snapshot(self) -> dict:
        return {"counters": dict(self.counters), "gauges": dict(self.gauges)}
