"""Persistence: the Store contract, its implementations and write-behind checkpointing."""

from cadence.db.checkpoint import Checkpointer
from cadence.db.store import (
    JsonFileStore,
    MemoryStore,
    SqlStore,
    Store,
    card_key,
    confidence_key,
    create_store,
    goals_key,
    temporal_key,
)

__all__ = [
    "Checkpointer",
    "JsonFileStore",
    "MemoryStore",
    "SqlStore",
    "Store",
    "card_key",
    "confidence_key",
    "create_store",
    "goals_key",
    "temporal_key",
]
