"""
Error taxonomy for the scheduling core.

None of these cross a public component boundary under normal operation:

- ComputationError: malformed attempt data. Fields are defaulted instead.
- PersistenceError: checkpoint load/save failed. Logged, in-memory state wins.
- SchedulingError: adaptive path produced garbage. Fallback table is used.
- ConfigurationError: invalid level or threshold. Safe default substituted.
"""

from __future__ import annotations


class CadenceError(Exception):
    """Base class for all cadence errors."""


class ComputationError(CadenceError):
    """Attempt or session data could not be interpreted."""


class PersistenceError(CadenceError):
    """A Store failed to load or save a blob."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{key}: {message}")


class SchedulingError(CadenceError):
    """The adaptive scheduling path failed or produced a non-finite value."""


class ConfigurationError(CadenceError):
    """A configuration value or level name was not recognised."""
