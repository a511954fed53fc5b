"""Ledger backend protocol.

A backend speaks the registry contract's fixed interface and nothing
else: no validation, no degraded-mode logic.  ``RegistryClient`` wraps it.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel
from pydantic import Field

from memledger.models.records import OnChainMemoryHash
from memledger.models.records import OnChainStats


class LedgerCommit(BaseModel):
    """Arguments of one ``commitMemoryHash`` call."""

    hash: str = Field(description="0x-prefixed bytes32 content hash.")
    metadata: str = Field(default="{}", description="JSON metadata blob.")
    storage_id: str = Field(description="Blob id joining this hash to local records.")
    content_type: str = "text"
    size: int = 0
    tags: list[str] = Field(default_factory=list)


class LedgerBackend(Protocol):
    @property
    def agent(self) -> str:
        """Address that signs writes."""

    async def connect(self) -> None: ...

    async def commit(self, entry: LedgerCommit) -> str:
        """Commit one hash; returns the transaction hash.

        Raises ``DuplicateOnChain`` when the hash already exists.
        """

    async def batch_commit(self, entries: list[LedgerCommit]) -> str: ...

    async def verify(self, content_hash: str) -> str: ...

    async def revoke(self, content_hash: str) -> str: ...

    async def get_memory(self, content_hash: str) -> OnChainMemoryHash | None: ...

    async def hashes_by_tag(self, tag: str) -> list[str]: ...

    async def hashes_by_content_type(self, content_type: str) -> list[str]: ...

    async def hashes_by_agent(self, agent: str) -> list[str]: ...

    async def hash_by_storage_id(self, storage_id: str) -> str | None: ...

    async def is_verified(self, content_hash: str) -> bool: ...

    async def all_tags(self) -> list[str]: ...

    async def stats(self) -> OnChainStats: ...

    async def close(self) -> None: ...
