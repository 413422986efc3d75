"""Memory store contract implemented by every storage backend."""

from __future__ import annotations

import abc
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from ..errors import MemoryValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MemoryEntryType(str, Enum):
    MESSAGE = "message"
    TASK = "task"
    RESULT = "result"
    ERROR = "error"
    SYSTEM = "system"
    TOOL = "tool"
    CONVERSATION = "conversation"


class MemoryRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // 4)


@dataclass
class MemoryEntry:
    id: str
    content: str
    type: MemoryEntryType
    role: Optional[MemoryRole] = None
    timestamp: float = field(default_factory=time.time)
    token_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    tags: List[str] = field(default_factory=list)
    importance: float = 0.5
    is_consolidated: bool = False
    consolidation_score: float = 0.0
    is_archived: bool = False
    archive_reason: Optional[str] = None

    @classmethod
    def create(
        cls,
        content: str,
        type: MemoryEntryType | str = MemoryEntryType.MESSAGE,
        role: MemoryRole | str | None = None,
        **kwargs: Any,
    ) -> "MemoryEntry":
        """Build an entry with a fresh id, timestamp and token estimate."""

        kwargs.setdefault("token_count", estimate_tokens(content))
        return cls(
            id=kwargs.pop("id", None) or uuid.uuid4().hex,
            content=content,
            type=MemoryEntryType(type),
            role=MemoryRole(role) if role is not None else None,
            **kwargs,
        )

    def with_changes(self, changes: Mapping[str, Any]) -> "MemoryEntry":
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise MemoryValidationError(f"Unknown entry fields: {', '.join(sorted(unknown))}")
        if "id" in changes and changes["id"] != self.id:
            raise MemoryValidationError("Entry id cannot be changed")
        updated = replace(self, **dict(changes))
        validate_entry(updated)
        return updated


def validate_entry(entry: MemoryEntry) -> None:
    if not entry.id:
        raise MemoryValidationError("Entry must have an id")
    if not entry.content:
        raise MemoryValidationError("Entry must have content")
    try:
        entry.type = MemoryEntryType(entry.type)
    except ValueError as exc:
        raise MemoryValidationError(f"Invalid entry type: {entry.type}") from exc
    if entry.role is not None:
        try:
            entry.role = MemoryRole(entry.role)
        except ValueError as exc:
            raise MemoryValidationError(f"Invalid entry role: {entry.role}") from exc
    if not 0.0 <= entry.importance <= 1.0:
        raise MemoryValidationError("Entry importance must be within [0, 1]")
    if entry.token_count <= 0:
        entry.token_count = estimate_tokens(entry.content)


def adjust_score(base_score: float, entry: MemoryEntry) -> float:
    """Weight a raw relevance score by importance, consolidation and archival."""

    consolidation = 1.0 + entry.consolidation_score if entry.is_consolidated else 1.0
    archived = 0.5 if entry.is_archived else 1.0
    return base_score * (1.0 + entry.importance) * consolidation * archived


@dataclass
class QueryOptions:
    limit: int = 10
    offset: int = 0
    filter: Dict[str, Any] = field(default_factory=dict)
    min_score: Optional[float] = None

    def matches(self, entry: MemoryEntry) -> bool:
        for key, expected in self.filter.items():
            if hasattr(entry, key):
                actual = getattr(entry, key)
            else:
                actual = entry.metadata.get(key)
            if isinstance(actual, Enum):
                actual = actual.value
            if isinstance(expected, Enum):
                expected = expected.value
            if actual != expected:
                return False
        return True


@dataclass
class SearchResult:
    entry: MemoryEntry
    score: float


def rank(candidates: Sequence[SearchResult], options: Optional[QueryOptions]) -> List[SearchResult]:
    """Apply min-score, ordering and paging shared by store implementations."""

    opts = options or QueryOptions()
    ranked = [item for item in candidates if opts.min_score is None or item.score >= opts.min_score]
    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked[opts.offset : opts.offset + opts.limit]


@dataclass
class StoreConfig:
    namespace: str = "default"
    connection_timeout: float = 5.0
    query_timeout: float = 10.0
    retry_attempts: int = 3
    retry_delay: float = 1.0


class MemoryStore(abc.ABC):
    """Abstract persistence interface for agent memory."""

    def __init__(self, config: Optional[StoreConfig] = None, **kwargs: Any) -> None:
        self.config = config or StoreConfig(**kwargs)

    @property
    def name(self) -> str:
        return f"{type(self).__name__}[{self.config.namespace}]"

    @abc.abstractmethod
    async def connect(self) -> None: ...

    @abc.abstractmethod
    async def disconnect(self) -> None: ...

    @abc.abstractmethod
    def is_connected(self) -> bool: ...

    @abc.abstractmethod
    async def add(self, entry: MemoryEntry) -> str: ...

    @abc.abstractmethod
    async def add_many(self, entries: Sequence[MemoryEntry]) -> List[str]: ...

    @abc.abstractmethod
    async def get(self, entry_id: str) -> Optional[MemoryEntry]: ...

    @abc.abstractmethod
    async def update(self, entry_id: str, changes: Mapping[str, Any]) -> None: ...

    @abc.abstractmethod
    async def delete(self, entry_id: str) -> None: ...

    @abc.abstractmethod
    async def clear(self) -> None: ...

    @abc.abstractmethod
    async def search(self, query: str, options: Optional[QueryOptions] = None) -> List[SearchResult]: ...

    @abc.abstractmethod
    async def similarity_search(
        self, embedding: Sequence[float], options: Optional[QueryOptions] = None
    ) -> List[SearchResult]: ...

    @abc.abstractmethod
    async def count(self) -> int: ...

    @abc.abstractmethod
    async def get_metrics(self) -> Dict[str, Any]: ...

    @abc.abstractmethod
    async def health_check(self) -> bool: ...

    async def retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` up to ``retry_attempts`` times with a fixed delay."""

        attempts = max(1, self.config.retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if attempt == attempts:
                    raise
                logger.debug("%s attempt %d/%d failed: %s", self.name, attempt, attempts, exc)
                await asyncio.sleep(self.config.retry_delay)
        raise AssertionError("unreachable")  # pragma: no cover
