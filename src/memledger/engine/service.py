"""Memory service: the create/update/retrieve pipeline around the indexer."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from memledger.audit import AuditEventType
from memledger.audit import AuditLogger
from memledger.blobs import BlobStoreAdapter
from memledger.crypto import Cipher
from memledger.crypto import PlaintextCipher
from memledger.engine.embedding import EmbeddingGenerator
from memledger.engine.indexer import MemoryIndexer
from memledger.errors import MemLedgerError
from memledger.errors import MemoryNotFound
from memledger.errors import ValidationFailure
from memledger.hashing import content_hash
from memledger.hashing import ensure_integrity
from memledger.ledger.client import LedgerWriteResult
from memledger.models.records import AccessPolicy
from memledger.models.records import MemoryRecord
from memledger.models.records import RecordMetadata

logger = logging.getLogger(__name__)


class MemoryService:
    """Embed, hash, encrypt, upload and index memories.

    A blob upload failure does not abort creation: the record is indexed
    local-only and the indexer uploads it when it commits on-chain.
    Embedding failures do abort, since a record without a vector would be
    invisible to similarity search.
    """

    def __init__(
        self,
        indexer: MemoryIndexer,
        embeddings: EmbeddingGenerator,
        *,
        blobs: BlobStoreAdapter | None = None,
        cipher: Cipher | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self._indexer = indexer
        self._embeddings = embeddings
        self._blobs = blobs
        self._cipher = cipher or PlaintextCipher()
        self._audit = audit

    @property
    def indexer(self) -> MemoryIndexer:
        return self._indexer

    async def create_memory(
        self,
        content: str,
        *,
        owner: str = "unknown",
        type: str = "text",
        category: str = "general",
        tags: Sequence[str] | None = None,
        content_ref: str | None = None,
    ) -> MemoryRecord:
        """Embed, hash, upload and index a new memory.

        *content_ref* is an existing content-addressed reference for the
        content.  It joins the memory to ledger entries made under that
        reference and is committed as the storage id when no blob exists.
        """
        if not content or not content.strip():
            raise ValidationFailure("content must be a non-empty string")
        vector = await self._embeddings.embed(content)
        record = MemoryRecord(
            content=content,
            type=type,
            category=category,
            tags=list(tags or []),
            access_policy=AccessPolicy(owner=owner),
            metadata=RecordMetadata(
                size=len(content.encode("utf-8")),
                checksum=content_hash(content),
                content_ref=content_ref,
            ),
        )
        await self._upload(record)
        await self._indexer.add_to_index(record, vector)
        await self._log_audit(
            AuditEventType.MEMORY_STORED,
            memory_id=record.id,
            owner=owner,
            checksum=record.metadata.checksum,
            blob_id=record.metadata.blob_id,
        )
        return record

    async def update_memory(
        self,
        memory_id: str,
        *,
        content: str | None = None,
        tags: Sequence[str] | None = None,
        category: str | None = None,
        type: str | None = None,
    ) -> MemoryRecord:
        """Update in place; ``id`` and ``created_at`` are kept.

        Only a content change restarts indexing.  Tag, category and type
        edits keep the recorded on-chain state.
        """
        current = await self.get_memory(memory_id)
        changes: dict[str, object] = {"updated_at": time.time()}
        if tags is not None:
            changes["tags"] = list(tags)
        if category is not None:
            changes["category"] = category
        if type is not None:
            changes["type"] = type

        content_changed = content is not None and content != current.content
        if content_changed:
            assert content is not None
            if not content.strip():
                raise ValidationFailure("content must be a non-empty string")
            vector = await self._embeddings.embed(content)
            changes.update(
                content=content,
                metadata=RecordMetadata(
                    size=len(content.encode("utf-8")),
                    checksum=content_hash(content),
                ),
                encrypted=False,
                transaction_hash=None,
                explorer_url=None,
            )
        else:
            existing = await self._indexer.get_vector(memory_id)
            vector = existing.vector if existing is not None else None

        updated = MemoryRecord.model_validate({**current.model_dump(), **_dump(changes)})
        if content_changed:
            await self._upload(updated)
            await self._indexer.add_to_index(updated, vector)
        else:
            await self._indexer.refresh_record(updated, vector)
        await self._log_audit(
            AuditEventType.MEMORY_UPDATED,
            memory_id=memory_id,
            content_changed=content_changed,
        )
        return updated

    async def delete_memory(self, memory_id: str) -> bool:
        """Remove from the local tiers.  On-chain records need ``revoke_memory``."""
        removed = await self._indexer.remove_from_index(memory_id)
        if removed:
            await self._log_audit(AuditEventType.MEMORY_REMOVED, memory_id=memory_id)
        return removed

    async def get_memory(self, memory_id: str) -> MemoryRecord:
        record = await self._indexer.get_record(memory_id)
        if record is None:
            raise MemoryNotFound(memory_id)
        return record

    async def list_memories(self) -> list[MemoryRecord]:
        return await self._indexer.metadata_entries()

    async def retrieve_content(self, memory_id: str) -> str:
        """Download from the backend that stored the blob and check its hash.

        Raises ``IntegrityFailure`` when the decrypted content does not hash
        to the recorded checksum.
        """
        record = await self.get_memory(memory_id)
        blob_id = record.storage_id
        if blob_id is None:
            raise ValidationFailure(
                f"memory {memory_id} has not been uploaded to a blob store",
                details={"memory_id": memory_id},
            )
        if self._blobs is None:
            raise ValidationFailure("no blob store configured")

        data = await self._blobs.download(blob_id, provider=record.metadata.storage_provider)
        content = self._cipher.decrypt(data) if record.encrypted else data.decode("utf-8")
        ensure_integrity(content, record.metadata.checksum or content_hash(record.content))
        return content

    async def search_similar(
        self,
        text: str,
        top_k: int | None = None,
    ) -> list[tuple[MemoryRecord, float]]:
        vector = await self._embeddings.embed(text)
        return await self._indexer.search_by_vector(vector, top_k)

    async def revoke_memory(self, memory_id: str) -> LedgerWriteResult:
        entry = await self._indexer.get_index_entry(memory_id)
        if entry is None or not entry.contract_hash:
            raise ValidationFailure(
                f"memory {memory_id} has no on-chain hash to revoke",
                details={"memory_id": memory_id},
            )
        result = await self._indexer.registry.revoke(entry.contract_hash)
        if result.ok:
            await self._log_audit(
                AuditEventType.MEMORY_REVOKED,
                memory_id=memory_id,
                contract_hash=entry.contract_hash,
                transaction_hash=result.transaction_hash,
            )
        return result

    async def _upload(self, record: MemoryRecord) -> None:
        if self._blobs is None:
            return
        try:
            upload = await self._blobs.upload(self._cipher.encrypt(record.content))
        except MemLedgerError as exc:
            logger.warning("Blob upload for %s failed, keeping it local-only: %s", record.id, exc)
            return
        record.metadata.blob_id = upload.blob_id
        record.metadata.storage_provider = upload.provider
        record.metadata.provider_ref = upload.provider_ref
        record.encrypted = self._cipher.encrypts

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


def _dump(changes: dict[str, object]) -> dict[str, object]:
    return {
        key: value.model_dump() if isinstance(value, RecordMetadata) else value
        for key, value in changes.items()
    }
