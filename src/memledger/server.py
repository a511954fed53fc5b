"""memledger — FastMCP server exposing the memory indexer to agents.

Tools delegate to ``MemoryService`` / ``MemoryIndexer``.  Call
``configure(...)`` before using the server; components can be injected
for tests and embedding hosts.
"""

from __future__ import annotations

from time import perf_counter

from fastmcp import FastMCP
from pydantic import ValidationError

from memledger.audit import AuditLogger
from memledger.blobs import BlobStoreAdapter
from memledger.blobs import build_blob_store
from memledger.config import AuditConfig
from memledger.config import BlobStoreConfig
from memledger.config import EmbeddingConfig
from memledger.config import IndexerConfig
from memledger.config import LedgerConfig
from memledger.crypto import Cipher
from memledger.engine import build_embedding_provider
from memledger.engine import EmbeddingGenerator
from memledger.engine import EmbeddingProvider
from memledger.engine import MemoryIndexer
from memledger.engine import MemoryService
from memledger.errors import MemLedgerError
from memledger.ledger import build_registry_client
from memledger.ledger import LedgerBackend
from memledger.ledger import RegistryClient
from memledger.models.records import IndexingResult
from memledger.models.records import IndexStatus
from memledger.models.records import MemoryRecord
from memledger.models.records import QueryCriteria
from memledger.models.schemas import BatchIndexResult
from memledger.models.schemas import IndexStatsResult
from memledger.models.schemas import IndexStatusResult
from memledger.models.schemas import MemorySummary
from memledger.models.schemas import QueryMemoriesInput
from memledger.models.schemas import QueryMemoriesResult
from memledger.models.schemas import RetrieveMemoryResult
from memledger.models.schemas import RevokeMemoryResult
from memledger.models.schemas import ScoredMemory
from memledger.models.schemas import SearchMemoriesInput
from memledger.models.schemas import SearchMemoriesResult
from memledger.models.schemas import StoreMemoryInput
from memledger.models.schemas import StoreMemoryResult
from memledger.models.schemas import TagsResult
from memledger.models.schemas import VerifyMemoryResult
from memledger.observability import record_latency
from memledger.observability import tier_outcomes_snapshot
from memledger.storage import InMemoryKeyValueStore
from memledger.storage import KeyValueStore
from memledger.storage import RedisKeyValueStore

mcp = FastMCP("memledger")

# ---------------------------------------------------------------------------
# Service instances (set via configure())
# ---------------------------------------------------------------------------

_store: KeyValueStore | None = None
_indexer: MemoryIndexer | None = None
_service: MemoryService | None = None
_audit_logger: AuditLogger | None = None


async def configure(
    redis_url: str | None = "redis://localhost:6379",
    *,
    namespace: str = "default",
    store: KeyValueStore | None = None,
    embedding_config: EmbeddingConfig | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    blob_config: BlobStoreConfig | None = None,
    blob_store: BlobStoreAdapter | None = None,
    ledger_config: LedgerConfig | None = None,
    ledger_backend: LedgerBackend | None = None,
    cipher: Cipher | None = None,
    indexer_config: IndexerConfig | None = None,
    audit_config: AuditConfig | None = None,
) -> None:
    """Build the service graph.

    Must be called before the MCP tools can function.  With
    ``redis_url=None`` and no ``store`` the indices live in process memory.
    """
    global _store, _indexer, _service, _audit_logger
    if _indexer is not None or _store is not None:
        await shutdown()

    embedding_cfg = embedding_config or EmbeddingConfig()
    indexer_cfg = indexer_config or IndexerConfig()

    if store is not None:
        _store = store
    elif redis_url is not None:
        _store = RedisKeyValueStore.from_url(redis_url, namespace=namespace)
    else:
        _store = InMemoryKeyValueStore()

    _audit_logger = AuditLogger(audit_config or AuditConfig())
    provider = embedding_provider or build_embedding_provider(embedding_cfg)
    blobs = blob_store or build_blob_store(blob_config)
    if ledger_backend is not None:
        registry = RegistryClient(ledger_backend, ledger_config)
    else:
        registry = build_registry_client(ledger_config)

    _indexer = MemoryIndexer(
        _store,
        registry,
        blobs=blobs,
        cipher=cipher,
        audit=_audit_logger,
        config=indexer_cfg,
    )
    _service = MemoryService(
        _indexer,
        EmbeddingGenerator(provider, dimensions=indexer_cfg.vector_size),
        blobs=blobs,
        cipher=cipher,
        audit=_audit_logger,
    )


async def shutdown() -> None:
    """Drain background indexing and release backend clients."""
    global _store, _indexer, _service, _audit_logger
    if _indexer is not None:
        await _indexer.close()
        _indexer = None
    if _store is not None:
        await _store.close()
        _store = None
    _service = None
    _audit_logger = None


def _get_service() -> MemoryService:
    """Return the memory service or raise."""
    if _service is None:
        raise RuntimeError("memledger not configured. Call configure() first.")
    return _service


def _get_indexer() -> MemoryIndexer:
    if _indexer is None:
        raise RuntimeError("memledger not configured. Call configure() first.")
    return _indexer


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


def _latency(operation: str, start: float, ok: bool) -> None:
    record_latency(
        operation=f"mcp.{operation}",
        duration_ms=(perf_counter() - start) * 1000,
        ok=ok,
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def store_memory(
    content: str,
    agent_id: str = "unknown",
    type: str = "text",
    category: str = "general",
    tags: list[str] | None = None,
    content_ref: str | None = None,
) -> StoreMemoryResult:
    """Store a memory: embed, hash, upload to blob storage and index.

    The memory is queryable as soon as this returns; on-chain anchoring
    continues in the background.

    Args:
        content: Memory text.
        agent_id: Identifier of the calling agent.
        type: Content type (conversation, document, image, preference, text).
        category: Free-form category.
        tags: Labels used for filtering.
        content_ref: Content-addressed reference for the content, used as
            the on-chain storage id when no blob can be uploaded.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = StoreMemoryInput.model_validate(
                {
                    "content": content,
                    "agent_id": agent_id,
                    "type": type,
                    "category": category,
                    "tags": tags or [],
                    "content_ref": content_ref,
                }
            )
        except ValidationError as exc:
            return StoreMemoryResult(
                status="error",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        try:
            record = await service.create_memory(
                validated.content,
                owner=validated.agent_id,
                type=validated.type,
                category=validated.category,
                tags=validated.tags,
                content_ref=validated.content_ref,
            )
        except MemLedgerError as exc:
            return StoreMemoryResult(status="error", error_code=exc.error_code, message=exc.message)
        ok = True
        return StoreMemoryResult(
            memory_id=record.id,
            checksum=record.metadata.checksum,
            blob_id=record.metadata.blob_id,
            storage_provider=record.metadata.storage_provider,
        )
    finally:
        _latency("store_memory", start, ok)


@mcp.tool
async def query_memories(
    tag: str | None = None,
    content_type: str | None = None,
    agent: str | None = None,
    on_chain_only: bool = False,
    limit: int = 50,
) -> QueryMemoriesResult:
    """Filter memories by tag, content type and owner.

    Args:
        tag: Case-insensitive tag substring.
        content_type: Exact content type.
        agent: Exact owner id.
        on_chain_only: Restrict to memories anchored on-chain.
        limit: Maximum number of memories returned.
    """
    start = perf_counter()
    ok = False
    try:
        indexer = _get_indexer()
        try:
            validated = QueryMemoriesInput.model_validate(
                {
                    "tag": tag,
                    "content_type": content_type,
                    "agent": agent,
                    "on_chain_only": on_chain_only,
                    "limit": limit,
                }
            )
        except ValidationError as exc:
            return QueryMemoriesResult(
                status="error",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        records = await indexer.query_memories(
            QueryCriteria(
                tag=validated.tag,
                content_type=validated.content_type,
                agent=validated.agent,
                on_chain_only=validated.on_chain_only,
            )
        )
        memories = [MemorySummary.from_record(record) for record in records[: validated.limit]]
        ok = True
        return QueryMemoriesResult(count=len(records), memories=memories)
    finally:
        _latency("query_memories", start, ok)


@mcp.tool
async def search_memories(query: str, top_k: int = 10) -> SearchMemoriesResult:
    """Rank memories by embedding similarity to *query*.

    Args:
        query: Natural language query.
        top_k: Number of results.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = SearchMemoriesInput.model_validate({"query": query, "top_k": top_k})
        except ValidationError as exc:
            return SearchMemoriesResult(
                status="error",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        try:
            hits = await service.search_similar(validated.query, validated.top_k)
        except MemLedgerError as exc:
            return SearchMemoriesResult(status="error", error_code=exc.error_code, message=exc.message)
        ok = True
        return SearchMemoriesResult(
            results=[
                ScoredMemory(memory=MemorySummary.from_record(record), similarity=score)
                for record, score in hits
            ]
        )
    finally:
        _latency("search_memories", start, ok)


@mcp.tool
async def verify_memory(memory_id: str) -> VerifyMemoryResult:
    """Verify a memory's on-chain hash.  Returns verified=false when it has none yet."""
    start = perf_counter()
    ok = False
    try:
        indexer = _get_indexer()
        try:
            verified = await indexer.verify_memory(memory_id)
        except MemLedgerError as exc:
            return VerifyMemoryResult(
                memory_id=memory_id,
                status="error",
                error_code=exc.error_code,
                message=exc.message,
            )
        ok = True
        return VerifyMemoryResult(memory_id=memory_id, verified=verified)
    finally:
        _latency("verify_memory", start, ok)


@mcp.tool
async def revoke_memory(memory_id: str) -> RevokeMemoryResult:
    """Deactivate a memory's on-chain record.  Only the committing agent may revoke."""
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            outcome = await service.revoke_memory(memory_id)
        except MemLedgerError as exc:
            return RevokeMemoryResult(
                memory_id=memory_id,
                status="error",
                error_code=exc.error_code,
                message=exc.message,
            )
        ok = outcome.ok
        return RevokeMemoryResult(
            memory_id=memory_id,
            status="ok" if outcome.ok else "error",
            error_code=None if outcome.ok else f"ledger_{outcome.status.value}",
            message=outcome.error,
            ledger_status=outcome.status.value,
            transaction_hash=outcome.transaction_hash,
        )
    finally:
        _latency("revoke_memory", start, ok)


@mcp.tool
async def retrieve_memory(memory_id: str) -> RetrieveMemoryResult:
    """Fetch a memory's content from blob storage and check its integrity."""
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            content = await service.retrieve_content(memory_id)
            record = await service.get_memory(memory_id)
        except MemLedgerError as exc:
            return RetrieveMemoryResult(
                memory_id=memory_id,
                status="error",
                error_code=exc.error_code,
                message=exc.message,
            )
        ok = True
        return RetrieveMemoryResult(
            memory_id=memory_id,
            content=content,
            checksum=record.metadata.checksum,
        )
    finally:
        _latency("retrieve_memory", start, ok)


@mcp.tool
async def get_index_stats() -> IndexStatsResult:
    """Local index counts, on-chain stats when reachable, and tier outcomes."""
    start = perf_counter()
    ok = False
    try:
        stats = await _get_indexer().get_index_stats()
        ok = True
        return IndexStatsResult(stats=stats, tier_outcomes=tier_outcomes_snapshot())
    finally:
        _latency("get_index_stats", start, ok)


@mcp.tool
async def batch_index_on_chain(memory_ids: list[str]) -> BatchIndexResult:
    """Commit the given memories on-chain in batches.  Already-anchored ones count as indexed."""
    start = perf_counter()
    ok = False
    try:
        indexer = _get_indexer()
        found: list[MemoryRecord] = []
        missing: dict[str, IndexingResult] = {}
        for memory_id in memory_ids:
            record = await indexer.get_record(memory_id)
            if record is None:
                missing[memory_id] = IndexingResult(
                    memory_id=memory_id,
                    success=False,
                    status=IndexStatus.local_only,
                    error="memory not found",
                )
            else:
                found.append(record)
        indexed = {result.memory_id: result for result in await indexer.batch_index_on_chain(found)}
        results = [indexed.get(memory_id) or missing[memory_id] for memory_id in memory_ids]
        ok = True
        return _batch_result(results)
    finally:
        _latency("batch_index_on_chain", start, ok)


@mcp.tool
async def reindex_memories(memory_ids: list[str] | None = None) -> BatchIndexResult:
    """Retry on-chain indexing for failed or local-only memories (or the given ids)."""
    start = perf_counter()
    ok = False
    try:
        results = await _get_indexer().reindex(memory_ids)
        ok = True
        return _batch_result(results)
    finally:
        _latency("reindex_memories", start, ok)


@mcp.tool
async def get_all_tags() -> TagsResult:
    """Sorted union of local and on-chain tags."""
    start = perf_counter()
    ok = False
    try:
        tags = await _get_indexer().get_all_tags()
        ok = True
        return TagsResult(tags=tags)
    finally:
        _latency("get_all_tags", start, ok)


@mcp.tool
async def get_index_status(memory_id: str) -> IndexStatusResult:
    """Where a memory stands in the indexing lifecycle."""
    start = perf_counter()
    ok = False
    try:
        entry = await _get_indexer().get_index_entry(memory_id)
        if entry is None:
            return IndexStatusResult(
                memory_id=memory_id,
                status="error",
                error_code="not_found",
                message=f"memory not found: {memory_id}",
            )
        ok = True
        return IndexStatusResult(memory_id=memory_id, entry=entry)
    finally:
        _latency("get_index_status", start, ok)


def _batch_result(results: list[IndexingResult]) -> BatchIndexResult:
    return BatchIndexResult(
        total=len(results),
        succeeded=sum(1 for result in results if result.success),
        results=results,
    )
