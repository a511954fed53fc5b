"""Blob backend protocol and shared result type."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel
from pydantic import Field


class BlobUploadResult(BaseModel):
    """What a backend hands back after persisting a blob."""

    blob_id: str = Field(description="Content-addressed identifier used for retrieval.")
    size_bytes: int
    provider: str = Field(description="Name of the backend that stored the blob.")
    provider_ref: str | None = Field(
        default=None,
        description="Secondary ledger reference (object id or transaction hash).",
    )
    explorer_url: str | None = None


class BlobBackend(Protocol):
    """One decentralized storage network."""

    @property
    def name(self) -> str: ...

    async def initialize(self) -> None: ...

    async def upload(self, data: bytes) -> BlobUploadResult: ...

    async def download(self, blob_id: str) -> bytes: ...

    async def exists(self, blob_id: str) -> bool: ...
