"""Memory domain data models.

``MemoryRecord`` is the unit every tier agrees on.  The local indices
persist it as JSON; the ledger only ever sees its content hash, storage
id, and a small metadata blob.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

_KNOWN_CONTENT_TYPES = {"conversation", "document", "image", "preference", "text"}


def new_memory_id() -> str:
    return f"mem_{uuid.uuid4().hex}"


def normalize_tags(tags: list[str] | set[str] | tuple[str, ...] | None) -> list[str]:
    """De-duplicate stripped, non-empty tags, keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or ():
        cleaned = str(tag).strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


class IndexStatus(str, Enum):
    """Indexing lifecycle of one memory across tiers."""

    local_only = "local_only"
    blob_uploaded = "blob_uploaded"
    onchain_pending = "onchain_pending"
    onchain_committed = "onchain_committed"
    verified = "verified"
    onchain_failed = "onchain_failed"


class AccessPolicy(BaseModel):
    """Coarse ownership tag; not an enforcement mechanism."""

    owner: str = Field(
        default="unknown",
        description="Identifier of the agent that created the memory.",
    )


class RecordMetadata(BaseModel):
    """Integrity and storage bookkeeping for a memory."""

    size: int = Field(default=0, description="UTF-8 byte length of the content.")
    checksum: str = Field(default="", description="SHA-256 hex of the content.")
    blob_id: str | None = Field(
        default=None,
        description="Identifier returned by the blob backend that stored the content.",
    )
    storage_provider: str | None = Field(
        default=None,
        description="Name of the blob backend that produced blob_id.",
    )
    provider_ref: str | None = Field(
        default=None,
        description="Secondary ledger reference from the blob backend (e.g. an object id).",
    )
    content_ref: str | None = Field(
        default=None,
        description="Secondary content-addressed reference, accepted as a join key.",
    )


class MemoryRecord(BaseModel):
    """A single memory as seen by the local tiers."""

    id: str = Field(default_factory=new_memory_id)
    content: str
    type: str = Field(default="text", description="Content classification.")
    category: str = Field(default="general")
    tags: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    access_policy: AccessPolicy = Field(default_factory=AccessPolicy)
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)
    encrypted: bool = False
    explorer_url: str | None = None
    transaction_hash: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return normalize_tags([value])
        return normalize_tags(list(value))  # type: ignore[arg-type]

    @property
    def owner(self) -> str:
        return self.access_policy.owner

    @property
    def storage_id(self) -> str | None:
        """The blob id, unless it is only the local placeholder id."""
        blob_id = self.metadata.blob_id
        if not blob_id or blob_id == self.id:
            return None
        return blob_id

    @property
    def join_keys(self) -> set[str]:
        """All identifiers under which the ledger may know this record."""
        keys = {self.metadata.blob_id, self.metadata.content_ref}
        return {key for key in keys if key and key != self.id}

    @property
    def content_type(self) -> str:
        """Registry content type derived from ``type``."""
        normalized = (self.type or "").strip().lower()
        return normalized if normalized in _KNOWN_CONTENT_TYPES else "text"


class VectorSummary(BaseModel):
    """Denormalised record summary stored next to each vector."""

    content: str = ""
    tags: list[str] = Field(default_factory=list)
    category: str = "general"
    created_at: float = 0.0
    storage_id: str | None = None

    @classmethod
    def from_record(cls, record: MemoryRecord) -> VectorSummary:
        return cls(
            content=record.content,
            tags=list(record.tags),
            category=record.category,
            created_at=record.created_at,
            storage_id=record.metadata.blob_id or record.metadata.content_ref,
        )


class VectorEntry(BaseModel):
    id: str
    vector: list[float]
    summary: VectorSummary = Field(default_factory=VectorSummary)


class ScoredVector(BaseModel):
    """One similarity search hit."""

    id: str
    similarity: float
    summary: VectorSummary


class OnChainMemoryHash(BaseModel):
    """A registry record. Owned by the ledger and read-only here."""

    hash: str
    metadata: str = ""
    agent: str = ""
    timestamp: int = 0
    is_active: bool = True
    storage_id: str = ""
    content_type: str = "text"
    size: int = 0
    tags: list[str] = Field(default_factory=list)


class IndexConfigEntry(BaseModel):
    """Status table row for one memory."""

    status: IndexStatus = IndexStatus.local_only
    on_chain: bool = False
    transaction_hash: str | None = None
    contract_hash: str | None = None
    storage_id: str | None = None
    indexed_at: float | None = None
    verified: bool = False
    verified_at: float | None = None
    error: str | None = None
    updated_at: float = Field(default_factory=time.time)


class IndexingResult(BaseModel):
    """Outcome of indexing one memory on-chain."""

    memory_id: str
    success: bool
    status: IndexStatus
    transaction_hash: str | None = None
    contract_hash: str | None = None
    storage_id: str | None = None
    already_indexed: bool = False
    error: str | None = None


class QueryCriteria(BaseModel):
    tag: str | None = None
    content_type: str | None = None
    agent: str | None = None
    on_chain_only: bool = False


class LocalStats(BaseModel):
    metadata_count: int = 0
    vector_count: int = 0
    total_size: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)


class OnChainStats(BaseModel):
    total_memories: int = 0
    active_memories: int = 0
    verified_memories: int = 0
    total_tags: int = 0
    total_size: int = 0


class IndexStats(BaseModel):
    """Merged local and on-chain statistics.

    ``on_chain`` is ``None`` when the registry is unreachable, so callers
    can tell "zero memories" from "stats unavailable".
    """

    local: LocalStats
    on_chain: OnChainStats | None = None
    last_updated: float = Field(default_factory=time.time)
