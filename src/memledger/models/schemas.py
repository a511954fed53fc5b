"""Pydantic models for the MCP tool interface.

Input models validate tool arguments; output models shape responses.
Every result carries ``status`` ("ok" or "error") and, on error, the
``error_code`` of the ``MemLedgerError`` that caused it.
"""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field

from memledger.models.records import IndexConfigEntry
from memledger.models.records import IndexingResult
from memledger.models.records import IndexStats
from memledger.models.records import MemoryRecord

# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class StoreMemoryInput(BaseModel):
    """Input for store_memory."""

    content: str = Field(min_length=1, description="Memory text.")
    agent_id: str = Field(
        default="unknown",
        min_length=1,
        description="Identifier of the calling agent; recorded as owner.",
    )
    type: str = Field(default="text", description="Content classification.")
    category: str = Field(default="general")
    tags: list[str] = Field(default_factory=list)
    content_ref: str | None = Field(
        default=None,
        min_length=1,
        description="Content-addressed reference (e.g. an IPFS CID) already holding the content.",
    )


class QueryMemoriesInput(BaseModel):
    """Input for query_memories."""

    tag: str | None = Field(default=None, description="Case-insensitive tag substring.")
    content_type: str | None = Field(default=None, description="Exact content type.")
    agent: str | None = Field(default=None, description="Exact owner id.")
    on_chain_only: bool = Field(
        default=False,
        description="Only return memories whose storage id is known on-chain.",
    )
    limit: int = Field(default=50, ge=1, le=1000)


class SearchMemoriesInput(BaseModel):
    """Input for search_memories."""

    query: str = Field(min_length=1, description="Natural language query.")
    top_k: int = Field(default=10, ge=1, le=100)


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    status: str = Field(default="ok", description="'ok' or 'error'.")
    error_code: str | None = None
    message: str | None = None


class MemorySummary(BaseModel):
    """Agent-facing view of a memory record."""

    id: str
    content: str
    type: str
    category: str
    tags: list[str] = Field(default_factory=list)
    owner: str
    created_at: float
    updated_at: float
    blob_id: str | None = None
    storage_provider: str | None = None
    transaction_hash: str | None = None
    explorer_url: str | None = None

    @classmethod
    def from_record(cls, record: MemoryRecord) -> MemorySummary:
        return cls(
            id=record.id,
            content=record.content,
            type=record.type,
            category=record.category,
            tags=list(record.tags),
            owner=record.owner,
            created_at=record.created_at,
            updated_at=record.updated_at,
            blob_id=record.metadata.blob_id,
            storage_provider=record.metadata.storage_provider,
            transaction_hash=record.transaction_hash,
            explorer_url=record.explorer_url,
        )


class StoreMemoryResult(ToolResult):
    memory_id: str = ""
    checksum: str | None = None
    blob_id: str | None = None
    storage_provider: str | None = None


class QueryMemoriesResult(ToolResult):
    count: int = 0
    memories: list[MemorySummary] = Field(default_factory=list)


class ScoredMemory(BaseModel):
    memory: MemorySummary
    similarity: float


class SearchMemoriesResult(ToolResult):
    results: list[ScoredMemory] = Field(default_factory=list)


class VerifyMemoryResult(ToolResult):
    memory_id: str
    verified: bool = False


class RevokeMemoryResult(ToolResult):
    memory_id: str
    ledger_status: str | None = Field(
        default=None,
        description="committed, duplicate, degraded, failed or forbidden.",
    )
    transaction_hash: str | None = None


class RetrieveMemoryResult(ToolResult):
    memory_id: str
    content: str | None = None
    checksum: str | None = None


class IndexStatsResult(ToolResult):
    stats: IndexStats | None = None
    tier_outcomes: dict[str, dict[str, dict[str, int]]] = Field(
        default_factory=dict,
        description="Per-tier, per-backend ok/failed counters.",
    )


class BatchIndexResult(ToolResult):
    total: int = 0
    succeeded: int = 0
    results: list[IndexingResult] = Field(default_factory=list)


class TagsResult(ToolResult):
    tags: list[str] = Field(default_factory=list)


class IndexStatusResult(ToolResult):
    memory_id: str
    entry: IndexConfigEntry | None = None
