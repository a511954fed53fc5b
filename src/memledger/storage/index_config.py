"""Index side tables.

``IndexConfigTable`` maps memory id -> ``IndexConfigEntry`` and records
where each memory stands in the indexing lifecycle.

``StorageIdMap`` is the explicit join between tiers: the ledger knows a
memory by content hash and storage id, the local tiers by memory id.
Both directions hang off the storage id.  Identical plaintext stored on a
content-addressed backend yields one storage id for several memories, so
a link keeps every memory joined to it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from pydantic import BaseModel
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import ValidationError

from memledger.errors import StorageIdConflict
from memledger.models.records import IndexConfigEntry
from memledger.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

INDEX_CONFIG_KEY = "index_config"
STORAGE_MAP_KEY = "storage_map"


class StorageLink(BaseModel):
    memory_ids: list[str] = Field(default_factory=list)
    content_hash: str | None = None

    @property
    def memory_id(self) -> str | None:
        """The most recently joined memory."""
        return self.memory_ids[-1] if self.memory_ids else None


_CONFIG = TypeAdapter(dict[str, IndexConfigEntry])
_LINKS = TypeAdapter(dict[str, StorageLink])


class IndexConfigTable:
    """Per-memory index status, persisted as one JSON map."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def get(self, memory_id: str) -> IndexConfigEntry | None:
        return (await self._load()).get(memory_id)

    async def all(self) -> dict[str, IndexConfigEntry]:
        return await self._load()

    async def update(self, memory_id: str, **changes: Any) -> IndexConfigEntry:
        """Merge *changes* into the entry for *memory_id* and persist it."""
        async with self._lock:
            table = await self._load()
            current = table.get(memory_id) or IndexConfigEntry()
            merged = current.model_copy(update={**changes, "updated_at": time.time()})
            # Round-trip through validation so enum strings are coerced
            table[memory_id] = IndexConfigEntry.model_validate(merged.model_dump())
            await self._save(table)
            return table[memory_id]

    async def remove(self, memory_id: str) -> None:
        async with self._lock:
            table = await self._load()
            if table.pop(memory_id, None) is not None:
                await self._save(table)

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(INDEX_CONFIG_KEY)

    async def _load(self) -> dict[str, IndexConfigEntry]:
        raw = await self._store.get(INDEX_CONFIG_KEY)
        if not raw:
            return {}
        try:
            return _CONFIG.validate_json(raw)
        except ValidationError:
            logger.warning("Index config table is unreadable; treating it as empty")
            return {}

    async def _save(self, table: dict[str, IndexConfigEntry]) -> None:
        await self._store.set(INDEX_CONFIG_KEY, _CONFIG.dump_json(table).decode("utf-8"))


class StorageIdMap:
    """Persisted ``storage_id -> (memory_id, content_hash)`` join table."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def link(
        self,
        storage_id: str,
        *,
        memory_id: str,
        content_hash: str | None = None,
    ) -> StorageLink:
        """Join *storage_id* to a memory and, optionally, its content hash.

        Raises ``StorageIdConflict`` when the storage id is already joined
        to a different content hash; the existing mapping is kept.
        """
        async with self._lock:
            links = await self._load()
            existing = links.get(storage_id)
            if (
                existing is not None
                and content_hash is not None
                and existing.content_hash is not None
                and existing.content_hash != content_hash
            ):
                raise StorageIdConflict(
                    f"storage id {storage_id} already maps to {existing.content_hash}",
                    details={
                        "storage_id": storage_id,
                        "existing_hash": existing.content_hash,
                        "new_hash": content_hash,
                    },
                )
            joined = [mid for mid in (existing.memory_ids if existing else []) if mid != memory_id]
            link = StorageLink(
                memory_ids=[*joined, memory_id],
                content_hash=content_hash
                or (existing.content_hash if existing is not None else None),
            )
            links[storage_id] = link
            await self._save(links)
            return link

    async def check(self, storage_id: str, content_hash: str) -> None:
        """Raise ``StorageIdConflict`` if linking would overwrite another hash."""
        existing = (await self._load()).get(storage_id)
        if (
            existing is not None
            and existing.content_hash is not None
            and existing.content_hash != content_hash
        ):
            raise StorageIdConflict(
                f"storage id {storage_id} already maps to {existing.content_hash}",
                details={"storage_id": storage_id, "existing_hash": existing.content_hash},
            )

    async def memory_id_for(self, storage_id: str) -> str | None:
        link = (await self._load()).get(storage_id)
        return link.memory_id if link else None

    async def hash_for(self, storage_id: str) -> str | None:
        link = (await self._load()).get(storage_id)
        return link.content_hash if link else None

    async def all(self) -> dict[str, StorageLink]:
        return await self._load()

    async def unlink_memory(self, memory_id: str) -> int:
        """Detach *memory_id* from every storage id it is joined to.

        A storage id is dropped only once no memory is joined to it.
        Returns the number of links *memory_id* was removed from.
        """
        async with self._lock:
            links = await self._load()
            removed = 0
            kept: dict[str, StorageLink] = {}
            for sid, link in links.items():
                if memory_id in link.memory_ids:
                    removed += 1
                    link = link.model_copy(
                        update={"memory_ids": [m for m in link.memory_ids if m != memory_id]}
                    )
                if link.memory_ids:
                    kept[sid] = link
            if removed:
                await self._save(kept)
            return removed

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(STORAGE_MAP_KEY)

    async def _load(self) -> dict[str, StorageLink]:
        raw = await self._store.get(STORAGE_MAP_KEY)
        if not raw:
            return {}
        try:
            return _LINKS.validate_json(raw)
        except ValidationError:
            logger.warning("Storage id map is unreadable; treating it as empty")
            return {}

    async def _save(self, links: dict[str, StorageLink]) -> None:
        await self._store.set(STORAGE_MAP_KEY, _LINKS.dump_json(links).decode("utf-8"))
