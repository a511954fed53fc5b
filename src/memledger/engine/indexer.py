"""Memory indexer: keeps the local, blob and ledger tiers in one view.

Local first, chain eventually.  ``add_to_index`` makes a record
queryable before it returns; the on-chain commit runs detached in a
``BackgroundTaskRunner`` and only ever adds corroborating metadata
(transaction hash, explorer link, status).  A query issued right after
``add_to_index`` sees the local copy but may not yet see the commit.

Status per memory lives in ``IndexConfigTable``::

    local_only -> blob_uploaded -> onchain_pending -> onchain_committed -> verified
                                   onchain_pending -> onchain_failed

``onchain_failed`` is sticky; ``reindex`` and ``batch_index_on_chain``
are the explicit retries.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence

from memledger.audit import AuditEventType
from memledger.audit import AuditLogger
from memledger.blobs import BlobStoreAdapter
from memledger.config import IndexerConfig
from memledger.crypto import Cipher
from memledger.crypto import PlaintextCipher
from memledger.errors import BackendUnavailable
from memledger.errors import MemLedgerError
from memledger.hashing import ledger_key
from memledger.ledger.base import LedgerCommit
from memledger.ledger.client import LedgerWriteStatus
from memledger.ledger.client import RegistryClient
from memledger.models.records import IndexConfigEntry
from memledger.models.records import IndexingResult
from memledger.models.records import IndexStats
from memledger.models.records import IndexStatus
from memledger.models.records import LocalStats
from memledger.models.records import MemoryRecord
from memledger.models.records import OnChainMemoryHash
from memledger.models.records import QueryCriteria
from memledger.models.records import VectorEntry
from memledger.models.records import VectorSummary
from memledger.storage import IndexConfigTable
from memledger.storage import KeyValueStore
from memledger.storage import LocalMetadataIndex
from memledger.storage import LocalVectorIndex
from memledger.storage import StorageIdMap
from memledger.tasks import BackgroundTaskRunner

logger = logging.getLogger(__name__)

_RETRYABLE = {IndexStatus.local_only, IndexStatus.onchain_failed}
_INDEXED = {IndexStatus.onchain_committed, IndexStatus.verified}


class MemoryIndexer:
    """Orchestrates the local indices, blob store and registry."""

    def __init__(
        self,
        store: KeyValueStore,
        registry: RegistryClient,
        *,
        blobs: BlobStoreAdapter | None = None,
        cipher: Cipher | None = None,
        audit: AuditLogger | None = None,
        config: IndexerConfig | None = None,
    ) -> None:
        self._config = config or IndexerConfig()
        self._store = store
        self._registry = registry
        self._blobs = blobs
        self._cipher = cipher or PlaintextCipher()
        self._audit = audit
        self._metadata = LocalMetadataIndex(store)
        self._vectors = LocalVectorIndex(store)
        self._status = IndexConfigTable(store)
        self._storage_map = StorageIdMap(store)
        self._runner = BackgroundTaskRunner(self._config.max_background_tasks)
        # Derived from the metadata index; rebuilt lazily
        self._tag_index: dict[str, set[str]] = {}
        self._type_index: dict[str, set[str]] = {}
        self._side_ready = False

    @property
    def registry(self) -> RegistryClient:
        return self._registry

    @property
    def storage_map(self) -> StorageIdMap:
        return self._storage_map

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def add_to_index(
        self,
        record: MemoryRecord,
        vector: Sequence[float] | None = None,
    ) -> MemoryRecord:
        """Index *record* locally, then launch the on-chain commit detached.

        Local store failures propagate; the ledger phase never does.
        """
        await self._ensure_side_indices()
        await self._metadata.upsert(record)
        if vector is not None:
            await self._vectors.upsert(record.id, vector, VectorSummary.from_record(record))
        self._index_side(record)

        storage_id = record.storage_id
        if storage_id is not None:
            await self._storage_map.link(storage_id, memory_id=record.id)
        await self._status.update(
            record.id,
            status=IndexStatus.blob_uploaded if storage_id else IndexStatus.local_only,
            on_chain=False,
            storage_id=storage_id,
            transaction_hash=None,
            contract_hash=None,
            indexed_at=None,
            verified=False,
            verified_at=None,
            error=None,
        )
        await self._status.update(record.id, status=IndexStatus.onchain_pending)

        self._runner.spawn(self._index_detached(record, vector), name=f"index-{record.id}")
        logger.debug("Indexed %s locally; on-chain commit launched", record.id)
        return record

    async def refresh_record(
        self,
        record: MemoryRecord,
        vector: Sequence[float] | None = None,
    ) -> MemoryRecord:
        """Rewrite a record whose content is unchanged.

        Tags, category and type are refreshed in the local indices.  The
        status entry and its on-chain fields stay as they are, and no
        commit is launched: the anchored hash still covers the content.
        """
        await self._ensure_side_indices()
        await self._metadata.upsert(record)
        if vector is not None:
            await self._vectors.upsert(record.id, vector, VectorSummary.from_record(record))
        self._index_side(record)
        logger.debug("Refreshed %s locally; index status kept", record.id)
        return record

    async def _index_detached(
        self,
        record: MemoryRecord,
        vector: Sequence[float] | None,
    ) -> None:
        try:
            await self.index_on_chain(record, vector)
        except Exception as exc:
            logger.exception("On-chain indexing of %s crashed", record.id)
            await self._status.update(
                record.id,
                status=IndexStatus.onchain_failed,
                on_chain=False,
                error=str(exc),
            )

    async def index_on_chain(
        self,
        record: MemoryRecord,
        vector: Sequence[float] | None = None,
    ) -> IndexingResult:
        """Upload if needed, then commit the content hash.

        Never raises for tier failures: degraded ledgers, blob outages and
        storage id conflicts come back as unsuccessful results and are
        recorded in the status table.
        """
        if vector is not None and await self._metadata.get(record.id) is not None:
            await self._vectors.upsert(record.id, vector, VectorSummary.from_record(record))
        try:
            commit = await self._prepare_commit(record)
        except MemLedgerError as exc:
            return await self._record_failure(record, str(exc), storage_id=record.storage_id)

        outcome = await self._registry.commit(commit)
        if outcome.ok:
            return await self._record_success(
                record,
                commit,
                transaction_hash=outcome.transaction_hash,
                already_indexed=outcome.status == LedgerWriteStatus.duplicate,
            )
        error = outcome.error or f"ledger {outcome.status.value}"
        return await self._record_failure(record, error, storage_id=commit.storage_id)

    async def batch_index_on_chain(self, records: Sequence[MemoryRecord]) -> list[IndexingResult]:
        """Commit many records, in chunks of the registry batch limit.

        Hashes already on-chain count as indexed.  Every failure is a
        per-record result; nothing is raised.
        """
        results: dict[int, IndexingResult] = {}
        prepared: list[tuple[int, MemoryRecord, LedgerCommit]] = []
        for position, record in enumerate(records):
            try:
                commit = await self._prepare_commit(record)
            except MemLedgerError as exc:
                results[position] = await self._record_failure(
                    record, str(exc), storage_id=record.storage_id
                )
                continue
            prepared.append((position, record, commit))

        limit = max(self._registry.max_batch_size, 1)
        for start in range(0, len(prepared), limit):
            chunk = prepared[start : start + limit]
            try:
                outcome = await self._registry.batch_commit([commit for _, _, commit in chunk])
            except MemLedgerError as exc:
                for position, record, commit in chunk:
                    results[position] = await self._record_failure(
                        record, str(exc), storage_id=commit.storage_id
                    )
                continue

            committed = set(outcome.committed)
            duplicates = set(outcome.duplicates)
            for position, record, commit in chunk:
                if commit.hash in committed:
                    results[position] = await self._record_success(
                        record, commit, transaction_hash=outcome.transaction_hash
                    )
                elif commit.hash in duplicates:
                    results[position] = await self._record_success(
                        record, commit, transaction_hash=None, already_indexed=True
                    )
                else:
                    error = outcome.error or f"ledger {outcome.status.value}"
                    results[position] = await self._record_failure(
                        record, error, storage_id=commit.storage_id
                    )

        ordered = [results[position] for position in range(len(records))]
        await self._log_audit(
            AuditEventType.BATCH_INDEXED,
            total=len(ordered),
            succeeded=sum(1 for result in ordered if result.success),
            already_indexed=sum(1 for result in ordered if result.already_indexed),
        )
        return ordered

    async def reindex(self, memory_ids: Sequence[str] | None = None) -> list[IndexingResult]:
        """Retry on-chain indexing.

        Without ids, every ``local_only`` or ``onchain_failed`` record is
        retried.  With ids, records already committed are reported as
        indexed without another ledger call.
        """
        statuses = await self._status.all()
        records = await self._metadata.list()
        if memory_ids is None:
            targets = [
                record
                for record in records
                if record.id not in statuses or statuses[record.id].status in _RETRYABLE
            ]
            return await self.batch_index_on_chain(targets)

        by_id = {record.id: record for record in records}
        results: list[IndexingResult] = []
        pending: list[MemoryRecord] = []
        for memory_id in memory_ids:
            entry = statuses.get(memory_id)
            if memory_id not in by_id:
                results.append(
                    IndexingResult(
                        memory_id=memory_id,
                        success=False,
                        status=entry.status if entry else IndexStatus.local_only,
                        error="memory not found",
                    )
                )
            elif entry is not None and entry.status in _INDEXED:
                results.append(
                    IndexingResult(
                        memory_id=memory_id,
                        success=True,
                        status=entry.status,
                        transaction_hash=entry.transaction_hash,
                        contract_hash=entry.contract_hash,
                        storage_id=entry.storage_id,
                        already_indexed=True,
                    )
                )
            else:
                pending.append(by_id[memory_id])
        if pending:
            results.extend(await self.batch_index_on_chain(pending))
        return results

    async def _prepare_commit(self, record: MemoryRecord) -> LedgerCommit:
        storage_id = await self._ensure_blob(record)
        commit = LedgerCommit(
            hash=ledger_key(record.content),
            metadata=json.dumps(
                {
                    "memoryId": record.id,
                    "category": record.category,
                    "agentId": record.owner,
                    "createdAt": record.created_at,
                    "encrypted": record.encrypted,
                },
                sort_keys=True,
            ),
            storage_id=storage_id,
            content_type=record.content_type,
            size=record.metadata.size or len(record.content.encode("utf-8")),
            tags=list(record.tags),
        )
        await self._storage_map.check(storage_id, commit.hash)
        return commit

    async def _ensure_blob(self, record: MemoryRecord) -> str:
        """Return the record's storage id, uploading the content first if needed.

        Without a blob, the record's content reference stands in as the
        storage id once an upload is impossible.
        """
        if record.storage_id is not None:
            return record.storage_id
        content_ref = record.metadata.content_ref
        if self._blobs is None:
            if content_ref:
                return content_ref
            raise BackendUnavailable("blob_store", "no blob store configured")

        try:
            upload = await self._blobs.upload(self._cipher.encrypt(record.content))
        except MemLedgerError as exc:
            if not content_ref:
                raise
            logger.warning(
                "Blob upload for %s failed, committing content ref %s: %s",
                record.id,
                content_ref,
                exc,
            )
            return content_ref
        record.metadata.blob_id = upload.blob_id
        record.metadata.storage_provider = upload.provider
        record.metadata.provider_ref = upload.provider_ref
        record.encrypted = self._cipher.encrypts

        current = await self._metadata.get(record.id)
        if current is not None and current.content == record.content:
            current.metadata = record.metadata.model_copy()
            current.encrypted = record.encrypted
            await self._metadata.upsert(current)
            await self._storage_map.link(upload.blob_id, memory_id=record.id)
            await self._status.update(record.id, storage_id=upload.blob_id)
        return upload.blob_id

    async def _record_success(
        self,
        record: MemoryRecord,
        commit: LedgerCommit,
        *,
        transaction_hash: str | None,
        already_indexed: bool = False,
    ) -> IndexingResult:
        await self._storage_map.link(
            commit.storage_id, memory_id=record.id, content_hash=commit.hash
        )
        entry = await self._status.get(record.id)
        changes: dict[str, object] = {
            "on_chain": True,
            "contract_hash": commit.hash,
            "storage_id": commit.storage_id,
            "indexed_at": time.time(),
            "error": None,
        }
        if entry is None or entry.status != IndexStatus.verified:
            changes["status"] = IndexStatus.onchain_committed
        if transaction_hash:
            changes["transaction_hash"] = transaction_hash
        entry = await self._status.update(record.id, **changes)

        if transaction_hash:
            await self._patch_record(record, commit.hash, transaction_hash)
        await self._log_audit(
            AuditEventType.ONCHAIN_COMMITTED,
            memory_id=record.id,
            contract_hash=commit.hash,
            transaction_hash=transaction_hash,
            already_indexed=already_indexed,
        )
        return IndexingResult(
            memory_id=record.id,
            success=True,
            status=entry.status,
            transaction_hash=entry.transaction_hash,
            contract_hash=commit.hash,
            storage_id=commit.storage_id,
            already_indexed=already_indexed,
        )

    async def _record_failure(
        self,
        record: MemoryRecord,
        error: str,
        *,
        storage_id: str | None,
    ) -> IndexingResult:
        logger.warning("On-chain indexing of %s failed: %s", record.id, error)
        await self._status.update(
            record.id,
            status=IndexStatus.onchain_failed,
            on_chain=False,
            error=error,
        )
        await self._log_audit(AuditEventType.ONCHAIN_FAILED, memory_id=record.id, error=error)
        return IndexingResult(
            memory_id=record.id,
            success=False,
            status=IndexStatus.onchain_failed,
            storage_id=storage_id,
            error=error,
        )

    async def _patch_record(self, record: MemoryRecord, content_hash: str, tx_hash: str) -> None:
        """Attach the commit to the stored record, unless it changed meanwhile."""
        explorer_url = self._registry.explorer_url(tx_hash)
        record.transaction_hash = tx_hash
        record.explorer_url = explorer_url
        current = await self._metadata.get(record.id)
        if current is None or ledger_key(current.content) != content_hash:
            return
        current.transaction_hash = tx_hash
        current.explorer_url = explorer_url
        await self._metadata.upsert(current)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query_memories(self, criteria: QueryCriteria | None = None) -> list[MemoryRecord]:
        """Filter locally, then consult the ledger when it can help.

        With ``on_chain_only`` the local results are restricted to records
        whose storage id (blob id or content ref) the ledger knows.  Ledger
        errors are logged and the local results returned.
        """
        criteria = criteria or QueryCriteria()
        local = await self._local_matches(criteria)

        if not criteria.on_chain_only and not self._registry.healthy:
            return local
        try:
            if criteria.on_chain_only and not await self._registry.initialize():
                logger.info("Ledger degraded; on-chain-only query returns no records")
                return []
            on_chain_ids = await self._on_chain_storage_ids(criteria, local)
        except MemLedgerError as exc:
            logger.warning("Ledger query failed, returning local results: %s", exc)
            return local

        if on_chain_ids:
            await self._reconcile(local, on_chain_ids)
        if criteria.on_chain_only:
            return [record for record in local if record.join_keys & on_chain_ids.keys()]
        return local

    async def _local_matches(self, criteria: QueryCriteria) -> list[MemoryRecord]:
        await self._ensure_side_indices()
        records = await self._metadata.list()
        if criteria.tag:
            needle = criteria.tag.strip().lower()
            matching: set[str] = set()
            for tag, ids in self._tag_index.items():
                if needle in tag:
                    matching |= ids
            records = [record for record in records if record.id in matching]
        if criteria.content_type:
            ids = self._type_index.get(criteria.content_type.strip().lower(), set())
            records = [record for record in records if record.id in ids]
        if criteria.agent:
            records = [record for record in records if record.owner == criteria.agent]
        return records

    async def _on_chain_storage_ids(
        self,
        criteria: QueryCriteria,
        local: list[MemoryRecord],
    ) -> dict[str, OnChainMemoryHash]:
        if criteria.tag or criteria.content_type or criteria.agent:
            found = await self._registry.query(
                tag=criteria.tag,
                content_type=criteria.content_type,
                agent=criteria.agent,
            )
        elif criteria.on_chain_only:
            found = []
            for record in local:
                for key in sorted(record.join_keys):
                    found.extend(await self._registry.query(storage_id=key))
        else:
            found = []
        return {item.storage_id: item for item in found if item.storage_id}

    async def _reconcile(
        self,
        records: list[MemoryRecord],
        on_chain: dict[str, OnChainMemoryHash],
    ) -> None:
        """Mark locally-pending records the ledger already knows as committed."""
        statuses = await self._status.all()
        for record in records:
            entry = statuses.get(record.id)
            if entry is not None and entry.on_chain:
                continue
            for key in sorted(record.join_keys):
                item = on_chain.get(key)
                if item is None or item.hash.lower() != ledger_key(record.content):
                    continue
                await self._status.update(
                    record.id,
                    status=IndexStatus.onchain_committed,
                    on_chain=True,
                    contract_hash=item.hash.lower(),
                    storage_id=key,
                    indexed_at=entry.indexed_at if entry and entry.indexed_at else time.time(),
                    error=None,
                )
                logger.info("Reconciled %s with on-chain hash %s", record.id, item.hash)
                break

    async def search_by_vector(
        self,
        vector: Sequence[float],
        top_k: int | None = None,
    ) -> list[tuple[MemoryRecord, float]]:
        """Records in similarity order, paired with their cosine score."""
        hits = await self._vectors.search_by_similarity(
            vector, top_k if top_k is not None else self._config.default_top_k
        )
        results: list[tuple[MemoryRecord, float]] = []
        for hit in hits:
            record = await self._metadata.get(hit.id)
            if record is not None:
                results.append((record, hit.similarity))
        return results

    async def get_all_tags(self) -> list[str]:
        tags = {tag for record in await self._metadata.list() for tag in record.tags}
        try:
            tags.update(await self._registry.all_tags())
        except MemLedgerError as exc:
            logger.warning("Could not read on-chain tags: %s", exc)
        return sorted(tags)

    # ------------------------------------------------------------------
    # Verification and stats
    # ------------------------------------------------------------------

    async def verify_memory(self, memory_id: str) -> bool:
        """Verify a committed memory on the ledger.

        Returns False without any ledger call when no contract hash is
        recorded for *memory_id*.
        """
        entry = await self._status.get(memory_id)
        if entry is None or not entry.contract_hash:
            logger.info("Memory %s has no contract hash; not verifiable", memory_id)
            return False

        outcome = await self._registry.verify(entry.contract_hash)
        if outcome.status != LedgerWriteStatus.committed:
            logger.warning("Verification of %s did not succeed: %s", memory_id, outcome.status.value)
            return False
        await self._status.update(
            memory_id,
            status=IndexStatus.verified,
            verified=True,
            verified_at=time.time(),
        )
        await self._log_audit(
            AuditEventType.MEMORY_VERIFIED,
            memory_id=memory_id,
            contract_hash=entry.contract_hash,
            transaction_hash=outcome.transaction_hash,
        )
        return True

    async def get_index_stats(self) -> IndexStats:
        statuses = await self._status.all()
        counts: dict[str, int] = {}
        for entry in statuses.values():
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        local = LocalStats(
            metadata_count=await self._metadata.count(),
            vector_count=await self._vectors.count(),
            total_size=await self._metadata.total_size(),
            status_counts=counts,
        )
        try:
            on_chain = await self._registry.stats()
        except MemLedgerError as exc:
            logger.warning("On-chain stats unavailable: %s", exc)
            on_chain = None
        return IndexStats(local=local, on_chain=on_chain)

    async def get_index_entry(self, memory_id: str) -> IndexConfigEntry | None:
        return await self._status.get(memory_id)

    async def index_entries(self) -> dict[str, IndexConfigEntry]:
        return await self._status.all()

    # ------------------------------------------------------------------
    # Removal and raw access
    # ------------------------------------------------------------------

    async def get_record(self, memory_id: str) -> MemoryRecord | None:
        return await self._metadata.get(memory_id)

    async def get_vector(self, memory_id: str) -> VectorEntry | None:
        return await self._vectors.get(memory_id)

    async def remove_from_index(self, memory_id: str) -> bool:
        """Delete *memory_id* from every local table.  The ledger keeps its copy."""
        await self._ensure_side_indices()
        removed_record = await self._metadata.remove(memory_id)
        removed_vector = await self._vectors.remove(memory_id)
        await self._status.remove(memory_id)
        await self._storage_map.unlink_memory(memory_id)
        self._unindex_side(memory_id)
        return removed_record or removed_vector

    async def metadata_entries(self) -> list[MemoryRecord]:
        return await self._metadata.list()

    async def vector_entries(self) -> list[VectorEntry]:
        return await self._vectors.list()

    async def rebuild_side_indices(self) -> None:
        self._tag_index = {}
        self._type_index = {}
        for record in await self._metadata.list():
            self._index_side(record)
        self._side_ready = True

    async def _ensure_side_indices(self) -> None:
        if not self._side_ready:
            await self.rebuild_side_indices()

    def _index_side(self, record: MemoryRecord) -> None:
        self._unindex_side(record.id)
        for tag in record.tags:
            self._tag_index.setdefault(tag.lower(), set()).add(record.id)
        self._type_index.setdefault((record.type or "").strip().lower(), set()).add(record.id)

    def _unindex_side(self, memory_id: str) -> None:
        for index in (self._tag_index, self._type_index):
            for key in [key for key, ids in index.items() if memory_id in ids]:
                index[key].discard(memory_id)
                if not index[key]:
                    del index[key]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_for_background(self) -> None:
        """Block until every detached on-chain task has finished."""
        await self._runner.drain()

    async def close(self) -> None:
        await self._runner.drain()
        await self._registry.close()

    async def _log_audit(
        self,
        event_type: AuditEventType,
        *,
        memory_id: str | None = None,
        **payload: object,
    ) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.record(event_type, memory_id=memory_id, **payload)
        except OSError:
            logger.exception("Failed to write audit event %s", event_type.value)
