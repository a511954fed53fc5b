"""Local vector index with brute-force cosine similarity.

Search is a full scan followed by a sort: O(n·D) per query.  That is
fine for the expected corpus (hundreds to low thousands of entries) and
is the scaling limit of this index; there is no approximate structure.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence

from pydantic import TypeAdapter
from pydantic import ValidationError

from memledger.models.records import ScoredVector
from memledger.models.records import VectorEntry
from memledger.models.records import VectorSummary
from memledger.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

VECTOR_INDEX_KEY = "vector_index"

_ENTRIES = TypeAdapter(list[VectorEntry])


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)``.

    Vectors of different length, empty vectors, and zero-norm vectors
    are non-comparable and score 0.0.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Clamp float drift so identical vectors never exceed 1.0
    return max(-1.0, min(1.0, similarity))


class LocalVectorIndex:
    """Persisted list of ``(id, vector, summary)`` entries."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def upsert(
        self,
        memory_id: str,
        vector: Sequence[float],
        summary: VectorSummary | None = None,
    ) -> None:
        entry = VectorEntry(
            id=memory_id,
            vector=list(vector),
            summary=summary or VectorSummary(),
        )
        async with self._lock:
            entries = await self._load()
            for position, existing in enumerate(entries):
                if existing.id == memory_id:
                    entries[position] = entry
                    break
            else:
                entries.append(entry)
            await self._save(entries)
        logger.debug("Vector index upsert %s (%d vectors)", memory_id, len(entries))

    async def remove(self, memory_id: str) -> bool:
        async with self._lock:
            entries = await self._load()
            remaining = [entry for entry in entries if entry.id != memory_id]
            if len(remaining) == len(entries):
                return False
            await self._save(remaining)
        return True

    async def clear(self) -> None:
        async with self._lock:
            await self._store.delete(VECTOR_INDEX_KEY)

    async def get(self, memory_id: str) -> VectorEntry | None:
        for entry in await self._load():
            if entry.id == memory_id:
                return entry
        return None

    async def list(self) -> list[VectorEntry]:
        return await self._load()

    async def count(self) -> int:
        return len(await self._load())

    async def search_by_similarity(
        self,
        query: Sequence[float],
        top_k: int = 10,
    ) -> list[ScoredVector]:
        """Rank every entry against *query* and return the best *top_k*."""
        if top_k <= 0:
            return []
        entries = await self._load()
        if not entries:
            logger.debug("Vector search on an empty index")
            return []

        scored = [
            ScoredVector(
                id=entry.id,
                similarity=cosine_similarity(query, entry.vector),
                summary=entry.summary,
            )
            for entry in entries
        ]
        # Stable sort keeps insertion order among equal scores
        scored.sort(key=lambda hit: hit.similarity, reverse=True)
        return scored[:top_k]

    async def _load(self) -> list[VectorEntry]:
        raw = await self._store.get(VECTOR_INDEX_KEY)
        if not raw:
            return []
        try:
            return _ENTRIES.validate_json(raw)
        except ValidationError:
            logger.warning("Vector index is unreadable; treating it as empty")
            return []

    async def _save(self, entries: list[VectorEntry]) -> None:
        await self._store.set(VECTOR_INDEX_KEY, _ENTRIES.dump_json(entries).decode("utf-8"))
