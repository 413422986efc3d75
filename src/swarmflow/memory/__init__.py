"""Agent memory: store contract, reference store and replicated manager."""

from .base import (
    MemoryEntry,
    MemoryEntryType,
    MemoryRole,
    MemoryStore,
    QueryOptions,
    SearchResult,
    StoreConfig,
    adjust_score,
)
from .manager import ConsistencyReport, MemoryManager, ReplicaDrift
from .simple import InMemoryStore

__all__ = [
    "MemoryEntry",
    "MemoryEntryType",
    "MemoryRole",
    "MemoryStore",
    "QueryOptions",
    "SearchResult",
    "StoreConfig",
    "adjust_score",
    "ConsistencyReport",
    "MemoryManager",
    "ReplicaDrift",
    "InMemoryStore",
]
