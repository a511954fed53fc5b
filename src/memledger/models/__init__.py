"""Models domain — shared data models."""

from __future__ import annotations

from memledger.models.records import AccessPolicy
from memledger.models.records import IndexConfigEntry
from memledger.models.records import IndexingResult
from memledger.models.records import IndexStats
from memledger.models.records import IndexStatus
from memledger.models.records import LocalStats
from memledger.models.records import MemoryRecord
from memledger.models.records import new_memory_id
from memledger.models.records import normalize_tags
from memledger.models.records import OnChainMemoryHash
from memledger.models.records import OnChainStats
from memledger.models.records import QueryCriteria
from memledger.models.records import RecordMetadata
from memledger.models.records import ScoredVector
from memledger.models.records import VectorEntry
from memledger.models.records import VectorSummary

__all__ = [
    "AccessPolicy",
    "IndexConfigEntry",
    "IndexStats",
    "IndexStatus",
    "IndexingResult",
    "LocalStats",
    "MemoryRecord",
    "OnChainMemoryHash",
    "OnChainStats",
    "QueryCriteria",
    "RecordMetadata",
    "ScoredVector",
    "VectorEntry",
    "VectorSummary",
    "new_memory_id",
    "normalize_tags",
]
