"""In-process memory store used as the default backend."""

from __future__ import annotations

import copy
import math
import re
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .base import (
    MemoryEntry,
    MemoryStore,
    QueryOptions,
    SearchResult,
    adjust_score,
    rank,
    validate_entry,
)

_WORD = re.compile(r"\w+")


def _tokens(text: str) -> set[str]:
    return {token.lower() for token in _WORD.findall(text)}


def _detached(entry: MemoryEntry) -> MemoryEntry:
    return copy.deepcopy(entry)


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right) or not left:
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


class InMemoryStore(MemoryStore):
    """Keeps entries in a dict; keyword search scores by query-term overlap."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._items: Dict[str, MemoryEntry] = {}
        self._connected = False
        self._ops: Counter[str] = Counter()

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def add(self, entry: MemoryEntry) -> str:
        validate_entry(entry)
        self._ops["add"] += 1
        self._items[entry.id] = _detached(entry)
        return entry.id

    async def add_many(self, entries: Sequence[MemoryEntry]) -> List[str]:
        for entry in entries:
            validate_entry(entry)
        return [await self.add(entry) for entry in entries]

    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        self._ops["get"] += 1
        entry = self._items.get(entry_id)
        return _detached(entry) if entry is not None else None

    async def update(self, entry_id: str, changes: Mapping[str, Any]) -> None:
        self._ops["update"] += 1
        current = self._items.get(entry_id)
        if current is None:
            raise KeyError(f"Memory entry {entry_id} not found")
        self._items[entry_id] = _detached(current.with_changes(changes))

    async def delete(self, entry_id: str) -> None:
        self._ops["delete"] += 1
        self._items.pop(entry_id, None)

    async def clear(self) -> None:
        self._items.clear()

    async def search(self, query: str, options: Optional[QueryOptions] = None) -> List[SearchResult]:
        self._ops["search"] += 1
        opts = options or QueryOptions()
        wanted = _tokens(query)
        candidates: List[SearchResult] = []
        for entry in self._items.values():
            if not opts.matches(entry):
                continue
            if wanted:
                found = wanted & (_tokens(entry.content) | {tag.lower() for tag in entry.tags})
                base = len(found) / len(wanted)
            else:
                base = 1.0
            if base > 0:
                candidates.append(SearchResult(entry=_detached(entry), score=adjust_score(base, entry)))
        return rank(candidates, opts)

    async def similarity_search(
        self, embedding: Sequence[float], options: Optional[QueryOptions] = None
    ) -> List[SearchResult]:
        self._ops["similarity_search"] += 1
        opts = options or QueryOptions()
        candidates = [
            SearchResult(
                entry=_detached(entry),
                score=adjust_score(cosine_similarity(embedding, entry.embedding), entry),
            )
            for entry in self._items.values()
            if entry.embedding and opts.matches(entry)
        ]
        return rank(candidates, opts)

    async def count(self) -> int:
        return len(self._items)

    async def get_metrics(self) -> Dict[str, Any]:
        return {
            "entries": len(self._items),
            "connected": self._connected,
            "operations": dict(self._ops),
        }

    async def health_check(self) -> bool:
        return self._connected
