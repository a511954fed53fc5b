"""MCP protocol-level integration tests against a real Redis.

Blob, embedding and ledger tiers are the in-process fakes from the root
conftest; the local indices live in the Redis testcontainer.
"""

from __future__ import annotations

import json

import pytest
from fastmcp import Client

from memledger.config import AuditConfig
from memledger.config import IndexerConfig
from memledger.server import _get_indexer
from memledger.server import configure
from memledger.server import mcp
from memledger.server import shutdown

DIMENSIONS = 16


def _parse(result) -> dict:
    return json.loads(result.content[0].text)


@pytest.fixture()
async def configured(tmp_path, redis_container, ledger_backend, blob_store, embedding_provider):
    async def _configure() -> None:
        await configure(
            redis_container,
            namespace="mcp",
            embedding_provider=embedding_provider,
            blob_store=blob_store,
            ledger_backend=ledger_backend,
            indexer_config=IndexerConfig(vector_size=DIMENSIONS),
            audit_config=AuditConfig(file_path=str(tmp_path / "audit.jsonl")),
        )

    await _configure()
    yield _configure
    await shutdown()


class TestMcpProtocol:
    async def test_store_query_retrieve_roundtrip(self, configured):
        async with Client(mcp) as client:
            stored = _parse(
                await client.call_tool(
                    "store_memory",
                    {"content": "Redis keeps the indices", "tags": ["infra"]},
                )
            )
            assert stored["status"] == "ok"
            memory_id = stored["memory_id"]
            await _get_indexer().wait_for_background()

            queried = _parse(await client.call_tool("query_memories", {"tag": "infra"}))
            assert [m["id"] for m in queried["memories"]] == [memory_id]

            retrieved = _parse(
                await client.call_tool("retrieve_memory", {"memory_id": memory_id})
            )
            assert retrieved["content"] == "Redis keeps the indices"

            verified = _parse(await client.call_tool("verify_memory", {"memory_id": memory_id}))
            assert verified["verified"] is True

    async def test_memories_survive_reconfigure(self, configured):
        async with Client(mcp) as client:
            stored = _parse(
                await client.call_tool("store_memory", {"content": "still here after restart"})
            )
            await _get_indexer().wait_for_background()

        await shutdown()
        await configured()

        async with Client(mcp) as client:
            status = _parse(
                await client.call_tool("get_index_status", {"memory_id": stored["memory_id"]})
            )
            assert status["entry"]["status"] == "onchain_committed"

            found = _parse(
                await client.call_tool(
                    "search_memories", {"query": "still here after restart", "top_k": 1}
                )
            )
            assert found["results"][0]["memory"]["id"] == stored["memory_id"]
