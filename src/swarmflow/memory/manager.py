"""Replicated storage facade: primary store, ordered fallbacks, replicas."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from ..errors import StoreUnavailableError, SwarmflowError
from .base import MemoryEntry, MemoryStore, QueryOptions, SearchResult

DUPLICATE_SCAN_LIMIT = 20

logger = logging.getLogger(__name__)

T = TypeVar("T")
StoreCall = Callable[[MemoryStore], Awaitable[T]]


@dataclass
class ReplicaDrift:
    index: int
    store: str
    count: int
    difference: int


@dataclass
class ConsistencyReport:
    primary_count: int
    inconsistencies: List[ReplicaDrift] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def consistent(self) -> bool:
        return not self.inconsistencies and not self.errors


def merge_results(results: Sequence[SearchResult]) -> List[SearchResult]:
    """Deduplicate by entry id keeping the best score, highest first."""

    best: Dict[str, SearchResult] = {}
    for result in results:
        current = best.get(result.entry.id)
        if current is None or current.score < result.score:
            best[result.entry.id] = result
    return sorted(best.values(), key=lambda item: item.score, reverse=True)


class MemoryManager:
    """Fault-tolerant memory composed of several :class:`MemoryStore` backends.

    Writes go to the primary store and fall back to each fallback store in
    order. With replication enabled every write is also sent to all replicas;
    replica failures are logged and counted but never fail the caller.
    Divergence between primary and replicas is only detected, by the periodic
    consistency audit, never repaired automatically.

    With ``deduplicate`` an entry whose type and content match one stored
    within ``dedup_window`` seconds is not written again. With ``max_entries``
    the least important half of the live entries is archived once the live
    count reaches ``archive_threshold`` of that capacity. Archiving only flags
    entries; nothing is ever deleted implicitly.
    """

    def __init__(
        self,
        primary: MemoryStore,
        fallbacks: Sequence[MemoryStore] = (),
        replicas: Sequence[MemoryStore] = (),
        *,
        replication_enabled: bool = False,
        consistency_check: bool = False,
        consistency_check_interval: float = 60.0,
        on_inconsistency: Optional[Callable[[ConsistencyReport], None]] = None,
        deduplicate: bool = False,
        dedup_window: float = 300.0,
        max_entries: Optional[int] = None,
        archive_threshold: float = 0.8,
    ) -> None:
        self.primary = primary
        self.fallbacks = list(fallbacks)
        self.replicas = list(replicas)
        self.replication_enabled = replication_enabled
        self.consistency_check = consistency_check
        self.consistency_check_interval = consistency_check_interval
        self.on_inconsistency = on_inconsistency
        self.deduplicate = deduplicate
        self.dedup_window = dedup_window
        self.max_entries = max_entries
        self.archive_threshold = archive_threshold
        self.replica_failures = 0
        self.last_report: Optional[ConsistencyReport] = None
        self._initialized = False
        self._audit_task: Optional[asyncio.Task[None]] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        stores = [self.primary, *self.fallbacks, *self.replicas]
        try:
            await asyncio.gather(*(store.connect() for store in stores))
        except Exception as exc:
            raise SwarmflowError(f"Failed to initialize memory manager: {exc}") from exc
        self._initialized = True
        if self.consistency_check and self._replicating:
            self._audit_task = asyncio.create_task(self._audit_loop())

    async def close(self) -> None:
        if self._audit_task is not None:
            self._audit_task.cancel()
            try:
                await self._audit_task
            except asyncio.CancelledError:
                pass
            self._audit_task = None
        stores = [self.primary, *self.fallbacks, *self.replicas]
        results = await asyncio.gather(*(store.disconnect() for store in stores), return_exceptions=True)
        self._initialized = False
        errors = [str(item) for item in results if isinstance(item, BaseException)]
        if errors:
            raise SwarmflowError(f"Failed to cleanup all stores: {', '.join(errors)}")

    async def add(self, entry: MemoryEntry) -> str:
        self._ensure_initialized()
        if self.deduplicate:
            existing = await self._find_duplicate(entry)
            if existing is not None:
                logger.debug("Skipping duplicate %s entry, already stored as %s", entry.type, existing)
                return existing
        try:
            entry_id = await self._with_fallbacks("add", lambda store: store.add(entry))
        finally:
            await self._replicate("add", lambda store: store.add(entry))
        await self._archive_if_full()
        return entry_id

    async def add_many(self, entries: Sequence[MemoryEntry]) -> List[str]:
        self._ensure_initialized()
        batch = list(entries)
        try:
            return await self._with_fallbacks("add_many", lambda store: store.add_many(batch))
        finally:
            await self._replicate("add_many", lambda store: store.add_many(batch))

    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        self._ensure_initialized()
        for store in [self.primary, *self.fallbacks, *self.replicas]:
            try:
                entry = await store.get(entry_id)
            except Exception as exc:
                logger.warning("get(%s) failed on %s: %s", entry_id, store.name, exc)
                continue
            if entry is not None:
                return entry
        return None

    async def search(self, query: str, options: Optional[QueryOptions] = None) -> List[SearchResult]:
        self._ensure_initialized()
        return await self._search("search", lambda store: store.search(query, options))

    async def similarity_search(
        self, embedding: Sequence[float], options: Optional[QueryOptions] = None
    ) -> List[SearchResult]:
        self._ensure_initialized()
        vector = list(embedding)
        return await self._search("similarity_search", lambda store: store.similarity_search(vector, options))

    async def update(self, entry_id: str, changes: Mapping[str, Any]) -> None:
        self._ensure_initialized()
        await self._with_fallbacks("update", lambda store: store.update(entry_id, changes))
        await self._replicate("update", lambda store: store.update(entry_id, changes))

    async def delete(self, entry_id: str) -> None:
        self._ensure_initialized()
        await self._with_fallbacks("delete", lambda store: store.delete(entry_id))
        await self._replicate("delete", lambda store: store.delete(entry_id))

    async def clear(self) -> None:
        self._ensure_initialized()
        stores = [self.primary, *self.fallbacks]
        if self.replication_enabled:
            stores.extend(self.replicas)
        results = await asyncio.gather(*(store.clear() for store in stores), return_exceptions=True)
        errors = [str(item) for item in results if isinstance(item, BaseException)]
        if errors:
            raise StoreUnavailableError(f"Failed to clear all stores: {', '.join(errors)}")

    async def count(self) -> int:
        self._ensure_initialized()
        return await self._with_fallbacks("count", lambda store: store.count())

    async def archive(self, fraction: float = 0.5, *, reason: str = "low importance") -> List[str]:
        """Flag the least important live entries as archived; oldest first on ties.

        Returns the archived ids. Flags are written through :meth:`update`, so
        replicas receive them too.
        """

        if not 0.0 < fraction <= 1.0:
            raise ValueError("fraction must be within (0, 1]")
        self._ensure_initialized()
        return await self._archive_entries(await self._live_entries(), fraction, reason)

    async def _live_entries(self) -> List[MemoryEntry]:
        total = await self.count()
        options = QueryOptions(limit=max(1, total), filter={"is_archived": False})
        return [result.entry for result in await self.search("", options)]

    async def _archive_entries(self, live: Sequence[MemoryEntry], fraction: float, reason: str) -> List[str]:
        ordered = sorted(live, key=lambda entry: (entry.importance, entry.timestamp))
        chosen = ordered[: int(len(ordered) * fraction)]
        for entry in chosen:
            await self.update(entry.id, {"is_archived": True, "archive_reason": reason})
        if chosen:
            logger.info("Archived %d of %d live memory entries (%s)", len(chosen), len(ordered), reason)
        return [entry.id for entry in chosen]

    async def _archive_if_full(self) -> None:
        if self.max_entries is None:
            return
        try:
            live = await self._live_entries()
            if len(live) >= self.max_entries * self.archive_threshold:
                await self._archive_entries(live, 0.5, "capacity")
        except StoreUnavailableError as exc:
            logger.warning("Automatic archiving skipped: %s", exc)

    async def _find_duplicate(self, entry: MemoryEntry) -> Optional[str]:
        options = QueryOptions(limit=DUPLICATE_SCAN_LIMIT, filter={"type": entry.type})
        try:
            recent = await self.search(entry.content, options)
        except StoreUnavailableError as exc:
            logger.warning("Duplicate check skipped: %s", exc)
            return None
        for result in recent:
            stored = result.entry
            if stored.content == entry.content and abs(entry.timestamp - stored.timestamp) <= self.dedup_window:
                return stored.id
        return None

    async def health_check(self) -> Dict[str, Any]:
        self._ensure_initialized()
        labelled: List[tuple[str, MemoryStore]] = [("primary", self.primary)]
        labelled += [(f"fallback_{i}", store) for i, store in enumerate(self.fallbacks)]
        labelled += [(f"distributed_{i}", store) for i, store in enumerate(self.replicas)]
        probes = await asyncio.gather(*(probe_store(store) for _, store in labelled))
        stores = {label: probe for (label, _), probe in zip(labelled, probes)}
        return {
            "healthy": all(item["healthy"] for item in stores.values()),
            "stores": stores,
        }

    async def run_consistency_check(self) -> Optional[ConsistencyReport]:
        """Compare entry counts of the primary against every replica."""

        if not self._replicating:
            return None
        primary_count = await self.primary.count()
        counts = await asyncio.gather(*(store.count() for store in self.replicas), return_exceptions=True)
        report = ConsistencyReport(primary_count=primary_count)
        for index, (store, count) in enumerate(zip(self.replicas, counts)):
            if isinstance(count, BaseException):
                report.errors[index] = str(count) or type(count).__name__
                continue
            difference = abs(count - primary_count)
            if difference:
                report.inconsistencies.append(
                    ReplicaDrift(index=index, store=store.name, count=count, difference=difference)
                )
        self.last_report = report
        if not report.consistent:
            logger.warning(
                "Inconsistency detected in distributed stores: primary=%d drift=%s errors=%s",
                primary_count,
                [(d.store, d.count) for d in report.inconsistencies],
                report.errors,
            )
            if self.on_inconsistency is not None:
                self.on_inconsistency(report)
        return report

    @property
    def _replicating(self) -> bool:
        return self.replication_enabled and bool(self.replicas)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise SwarmflowError("Memory manager is not initialized")

    async def _with_fallbacks(self, operation: str, call: StoreCall[T]) -> T:
        last_error: Optional[BaseException] = None
        for store in [self.primary, *self.fallbacks]:
            try:
                return await call(store)
            except Exception as exc:
                logger.warning("%s failed on %s: %s", operation, store.name, exc)
                last_error = exc
        raise StoreUnavailableError(f"{operation} failed on primary and all fallback stores: {last_error}") from last_error

    async def _search(self, operation: str, call: StoreCall[List[SearchResult]]) -> List[SearchResult]:
        try:
            return await self._with_fallbacks(operation, call)
        except StoreUnavailableError:
            if not self.replicas:
                raise
        results = await asyncio.gather(*(call(store) for store in self.replicas), return_exceptions=True)
        merged: List[SearchResult] = []
        for store, result in zip(self.replicas, results):
            if isinstance(result, BaseException):
                logger.warning("%s failed on replica %s: %s", operation, store.name, result)
                continue
            merged.extend(result)
        return merge_results(merged)

    async def _replicate(self, operation: str, call: StoreCall[Any]) -> None:
        if not self._replicating:
            return
        results = await asyncio.gather(*(call(store) for store in self.replicas), return_exceptions=True)
        for store, result in zip(self.replicas, results):
            if isinstance(result, BaseException):
                self.replica_failures += 1
                logger.warning("Replica %s %s failed: %s", store.name, operation, result)

    async def _audit_loop(self) -> None:
        while True:
            await asyncio.sleep(self.consistency_check_interval)
            try:
                await self.run_consistency_check()
            except Exception:
                logger.exception("Consistency check failed")


async def probe_store(store: MemoryStore) -> Dict[str, Any]:
    """Health probe returning ``healthy`` plus metrics or an error message."""

    try:
        healthy = await store.health_check()
        if not healthy:
            return {"healthy": False, "error": "Health check failed"}
        return {"healthy": True, "metrics": await store.get_metrics()}
    except Exception as exc:
        return {"healthy": False, "error": str(exc) or type(exc).__name__}
