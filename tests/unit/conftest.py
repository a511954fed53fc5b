"""Unit test fixtures — in-process store, indexer, service and MCP client.

Fakes for the blob, embedding and ledger tiers live in the root conftest.
Nothing here touches the network or Docker.
"""

from __future__ import annotations

import pytest

from memledger.config import IndexerConfig
from memledger.engine import EmbeddingGenerator
from memledger.engine import MemoryIndexer
from memledger.engine import MemoryService
from memledger.storage import InMemoryKeyValueStore

DIMENSIONS = 16


@pytest.fixture()
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
async def indexer(store, registry, blob_store):
    idx = MemoryIndexer(
        store,
        registry,
        blobs=blob_store,
        config=IndexerConfig(vector_size=DIMENSIONS),
    )
    yield idx
    await idx.wait_for_background()


@pytest.fixture()
async def service(indexer, embedding_provider, blob_store) -> MemoryService:
    return MemoryService(
        indexer,
        EmbeddingGenerator(embedding_provider, dimensions=DIMENSIONS),
        blobs=blob_store,
    )


@pytest.fixture()
async def mcp_client(tmp_path, ledger_backend, blob_store, embedding_provider):
    """Yield a FastMCP Client wired to an in-memory memledger server."""
    from fastmcp import Client

    from memledger.config import AuditConfig
    from memledger.server import configure
    from memledger.server import mcp
    from memledger.server import shutdown

    await configure(
        redis_url=None,
        embedding_provider=embedding_provider,
        blob_store=blob_store,
        ledger_backend=ledger_backend,
        indexer_config=IndexerConfig(vector_size=DIMENSIONS),
        audit_config=AuditConfig(file_path=str(tmp_path / "audit.jsonl")),
    )
    async with Client(mcp) as client:
        yield client
    await shutdown()
