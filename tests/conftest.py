"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
from datetime import datetime, timedelta

import pytest

from cadence.core.config import Settings
from cadence.core.feature_flags import FeatureFlags
from cadence.core.models import AttemptEvent


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Scenario tests across components")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(autouse=True)
def _clean_flag_env(monkeypatch):
    """Feature flags read CADENCE_* overrides; tests start from defaults."""
    for name in FeatureFlags.__dataclass_fields__:
        monkeypatch.delenv(f"CADENCE_{name}", raising=False)


@pytest.fixture
def base_time():
    """A fixed Monday morning, so hour-of-day logic is reproducible."""
    return datetime(2024, 3, 4, 10, 0, 0)


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def make_event(base_time):
    """
    Build AttemptEvents spaced `spacing` seconds apart from base_time.

    Usage:
        make_event(0, correct=True, rt=800)
    """

    def _make(index=0, correct=True, rt=2500.0, spacing=5, **kwargs):
        item = kwargs.pop(
            "item",
            {"verb": "hablar", "mood": "indicative", "tense": "pres", "person": "1s"},
        )
        return AttemptEvent(
            correct=correct,
            response_time_ms=rt,
            item=item,
            timestamp=base_time + timedelta(seconds=index * spacing),
            **kwargs,
        )

    return _make


@pytest.fixture
def event_stream(make_event):
    """n events with the same outcome and response time."""

    def _stream(n, correct=True, rt=2500.0, spacing=5, start=0):
        return [make_event(start + i, correct=correct, rt=rt, spacing=spacing) for i in range(n)]

    return _stream
