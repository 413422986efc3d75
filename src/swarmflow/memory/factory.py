"""Builds and probes memory stores from configuration."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List

from ..config import ConfigError, MemorySpec, StoreSpec, instantiate_from_path
from .base import MemoryStore
from .manager import MemoryManager, probe_store


class MemoryFactory:
    """Turns :class:`StoreSpec` entries into stores and managers."""

    @staticmethod
    def build(spec: StoreSpec) -> MemoryStore:
        store = instantiate_from_path(spec.type, **spec.params)
        if not isinstance(store, MemoryStore):
            raise ConfigError(f"Store '{spec.type}' must inherit MemoryStore")
        return store

    @classmethod
    async def create(cls, spec: StoreSpec) -> MemoryStore:
        store = cls.build(spec)
        await store.connect()
        return store

    @classmethod
    async def create_distributed(cls, specs: Iterable[StoreSpec]) -> List[MemoryStore]:
        return list(await asyncio.gather(*(cls.create(spec) for spec in specs)))

    @classmethod
    def manager_from_spec(cls, spec: MemorySpec) -> MemoryManager:
        """Unconnected manager; call ``initialize`` before use."""

        return MemoryManager(
            primary=cls.build(spec.primary),
            fallbacks=[cls.build(item) for item in spec.fallbacks],
            replicas=[cls.build(item) for item in spec.replicas],
            replication_enabled=spec.replication_enabled,
            consistency_check=spec.consistency_check,
            consistency_check_interval=spec.consistency_check_interval,
            deduplicate=spec.deduplicate,
            dedup_window=spec.dedup_window,
            max_entries=spec.max_entries,
            archive_threshold=spec.archive_threshold,
        )

    @staticmethod
    async def health_check(store: MemoryStore) -> Dict[str, Any]:
        return await probe_store(store)
