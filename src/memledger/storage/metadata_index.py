"""Local metadata index — an ordered list of ``MemoryRecord``.

The whole list lives as one JSON document under ``metadata_index``,
newest record first.  Read-modify-write cycles are serialized by an
``asyncio.Lock`` per instance; two instances sharing one store namespace
need an external lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pydantic import TypeAdapter
from pydantic import ValidationError

from memledger.models.records import MemoryRecord
from memledger.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

METADATA_INDEX_KEY = "metadata_index"

_RECORDS = TypeAdapter(list[MemoryRecord])


class LocalMetadataIndex:
    """Persisted, ordered list of memory records."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    # -- write --

    async def upsert(self, record: MemoryRecord) -> None:
        """Replace the record with the same id in place, or prepend it."""
        async with self._lock:
            records = await self._load()
            for position, existing in enumerate(records):
                if existing.id == record.id:
                    records[position] = record
                    break
            else:
                records.insert(0, record)
            await self._save(records)
        logger.debug("Metadata index upsert %s (%d records)", record.id, len(records))

    async def remove(self, memory_id: str) -> bool:
        """Delete a record. Returns whether anything was removed."""
        async with self._lock:
            records = await self._load()
            remaining = [record for record in records if record.id != memory_id]
            if len(remaining) == len(records):
                return False
            await self._save(remaining)
        return True

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(METADATA_INDEX_KEY)

    # -- read --

    async def list(self) -> list[MemoryRecord]:
        """All records, most recently added first."""
        return await self._load()

    async def get(self, memory_id: str) -> MemoryRecord | None:
        for record in await self._load():
            if record.id == memory_id:
                return record
        return None

    async def filter(self, predicate: Callable[[MemoryRecord], bool]) -> list[MemoryRecord]:
        return [record for record in await self._load() if predicate(record)]

    async def count(self) -> int:
        return len(await self._load())

    async def total_size(self) -> int:
        return sum(record.metadata.size for record in await self._load())

    # -- internal --

    async def _load(self) -> list[MemoryRecord]:
        raw = await self._store.get(METADATA_INDEX_KEY)
        if not raw:
            return []
        try:
            return _RECORDS.validate_json(raw)
        except ValidationError:
            logger.warning("Metadata index is unreadable; treating it as empty")
            return []

    async def _save(self, records: list[MemoryRecord]) -> None:
        await self._store.set(METADATA_INDEX_KEY, _RECORDS.dump_json(records).decode("utf-8"))
