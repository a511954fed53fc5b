"""Registry client with degraded mode.

``RegistryClient`` validates every request before it reaches the
backend, memoizes a single connection attempt, and degrades to a no-op
ledger when the backend is missing or unreachable.  Degraded mode is
sticky until ``reinitialize()``.

Writes never raise for ledger-side problems; they return a
``LedgerWriteResult`` whose ``status`` says what happened.  Reads raise
``BackendUnavailable`` when a healthy ledger fails, and return empty
results while degraded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from pydantic import BaseModel
from pydantic import Field

from memledger.config import LedgerConfig
from memledger.errors import BackendUnavailable
from memledger.errors import DuplicateOnChain
from memledger.errors import ValidationFailure
from memledger.hashing import normalize_hash
from memledger.ledger.base import LedgerBackend
from memledger.ledger.base import LedgerCommit
from memledger.models.records import OnChainMemoryHash
from memledger.models.records import OnChainStats
from memledger.observability import record_tier_outcome
from memledger.tasks import AsyncInitializer

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIER = "ledger"


class LedgerWriteStatus(str, Enum):
    committed = "committed"
    duplicate = "duplicate"
    degraded = "degraded"
    failed = "failed"
    forbidden = "forbidden"


class LedgerWriteResult(BaseModel):
    status: LedgerWriteStatus
    content_hash: str
    transaction_hash: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Committed, or already present on the ledger."""
        return self.status in (LedgerWriteStatus.committed, LedgerWriteStatus.duplicate)


class BatchCommitResult(BaseModel):
    """Outcome of one batch.

    ``status`` describes the transaction for ``committed`` hashes;
    ``duplicates`` were already on-chain and were not resent.
    """

    status: LedgerWriteStatus
    transaction_hash: str | None = None
    committed: list[str] = Field(default_factory=list)
    duplicates: list[str] = Field(default_factory=list)
    error: str | None = None


class RegistryClient:
    def __init__(
        self,
        backend: LedgerBackend | None,
        config: LedgerConfig | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or LedgerConfig()
        self._initializer: AsyncInitializer[bool] = AsyncInitializer(self._connect)

    @property
    def backend(self) -> LedgerBackend | None:
        return self._backend

    @property
    def max_batch_size(self) -> int:
        return self._config.max_batch_size

    @property
    def degraded(self) -> bool:
        """True once an initialization attempt has finished without a ledger."""
        if self._backend is None:
            return True
        return self._initializer.done and not self._initializer.peek()

    @property
    def healthy(self) -> bool:
        """True once an initialization attempt has connected."""
        return bool(self._initializer.peek())

    async def initialize(self) -> bool:
        """Connect once; concurrent callers share the attempt.  Returns health."""
        return await self._initializer.get()

    async def reinitialize(self) -> bool:
        """Drop the memoized attempt (healthy or degraded) and connect again."""
        self._initializer.reset()
        return await self.initialize()

    async def is_available(self) -> bool:
        return await self.initialize()

    async def _connect(self) -> bool:
        if self._backend is None:
            logger.warning("No ledger backend configured; registry running in degraded mode")
            return False
        try:
            await asyncio.wait_for(
                self._backend.connect(),
                timeout=self._config.connect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Ledger connection timed out after %.1fs; registry running in degraded mode",
                self._config.connect_timeout_seconds,
            )
            record_tier_outcome(tier=_TIER, backend="connect", ok=False)
            return False
        except Exception as exc:
            logger.warning("Ledger connection failed (%s); registry running in degraded mode", exc)
            record_tier_outcome(tier=_TIER, backend="connect", ok=False)
            return False
        record_tier_outcome(tier=_TIER, backend="connect", ok=True)
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def commit(self, entry: LedgerCommit) -> LedgerWriteResult:
        entry = self._validate_entry(entry)
        if not await self.initialize():
            return LedgerWriteResult(status=LedgerWriteStatus.degraded, content_hash=entry.hash)
        assert self._backend is not None
        try:
            tx_hash = await self._backend.commit(entry)
        except DuplicateOnChain:
            logger.info("Memory hash %s already on-chain", entry.hash)
            return LedgerWriteResult(status=LedgerWriteStatus.duplicate, content_hash=entry.hash)
        except Exception as exc:
            record_tier_outcome(tier=_TIER, backend="commit", ok=False)
            logger.warning("Ledger commit of %s failed: %s", entry.hash, exc)
            return LedgerWriteResult(
                status=LedgerWriteStatus.failed,
                content_hash=entry.hash,
                error=str(exc),
            )
        record_tier_outcome(tier=_TIER, backend="commit", ok=True)
        return LedgerWriteResult(
            status=LedgerWriteStatus.committed,
            content_hash=entry.hash,
            transaction_hash=tx_hash,
        )

    async def batch_commit(self, entries: list[LedgerCommit]) -> BatchCommitResult:
        """Commit up to ``max_batch_size`` entries in one transaction.

        Hashes already on-chain, or repeated within the batch, are reported
        as duplicates instead of failing the whole transaction.
        """
        if len(entries) > self._config.max_batch_size:
            raise ValidationFailure(
                f"batch of {len(entries)} exceeds limit of {self._config.max_batch_size}",
                details={"size": len(entries), "limit": self._config.max_batch_size},
            )
        validated = [self._validate_entry(entry) for entry in entries]
        if not validated:
            return BatchCommitResult(status=LedgerWriteStatus.committed)
        if not await self.initialize():
            return BatchCommitResult(status=LedgerWriteStatus.degraded)
        assert self._backend is not None

        pending: list[LedgerCommit] = []
        duplicates: list[str] = []
        seen: set[str] = set()
        try:
            for entry in validated:
                if entry.hash in seen or await self._backend.get_memory(entry.hash) is not None:
                    duplicates.append(entry.hash)
                    continue
                seen.add(entry.hash)
                pending.append(entry)
        except Exception as exc:
            logger.warning("Duplicate pre-check failed: %s", exc)
            return BatchCommitResult(status=LedgerWriteStatus.failed, error=str(exc))

        if not pending:
            return BatchCommitResult(status=LedgerWriteStatus.duplicate, duplicates=duplicates)
        try:
            tx_hash = await self._backend.batch_commit(pending)
        except Exception as exc:
            record_tier_outcome(tier=_TIER, backend="batch_commit", ok=False)
            logger.warning("Batch commit of %d entries failed: %s", len(pending), exc)
            return BatchCommitResult(
                status=LedgerWriteStatus.failed,
                duplicates=duplicates,
                error=str(exc),
            )
        record_tier_outcome(tier=_TIER, backend="batch_commit", ok=True)
        return BatchCommitResult(
            status=LedgerWriteStatus.committed,
            transaction_hash=tx_hash,
            committed=[entry.hash for entry in pending],
            duplicates=duplicates,
        )

    async def verify(self, content_hash: str) -> LedgerWriteResult:
        key = normalize_hash(content_hash)
        if not await self.initialize():
            return LedgerWriteResult(status=LedgerWriteStatus.degraded, content_hash=key)
        assert self._backend is not None
        try:
            tx_hash = await self._backend.verify(key)
        except Exception as exc:
            logger.warning("Ledger verify of %s failed: %s", key, exc)
            return LedgerWriteResult(status=LedgerWriteStatus.failed, content_hash=key, error=str(exc))
        return LedgerWriteResult(
            status=LedgerWriteStatus.committed,
            content_hash=key,
            transaction_hash=tx_hash,
        )

    async def revoke(self, content_hash: str) -> LedgerWriteResult:
        """Deactivate a hash.  Only the committing agent may revoke."""
        key = normalize_hash(content_hash)
        if not await self.initialize():
            return LedgerWriteResult(status=LedgerWriteStatus.degraded, content_hash=key)
        assert self._backend is not None
        try:
            record = await self._backend.get_memory(key)
        except Exception as exc:
            return LedgerWriteResult(status=LedgerWriteStatus.failed, content_hash=key, error=str(exc))
        if record is None:
            return LedgerWriteResult(
                status=LedgerWriteStatus.failed,
                content_hash=key,
                error="memory hash not found on-chain",
            )
        if record.agent.lower() != self._backend.agent.lower():
            return LedgerWriteResult(
                status=LedgerWriteStatus.forbidden,
                content_hash=key,
                error=f"committed by {record.agent}, not {self._backend.agent}",
            )
        try:
            tx_hash = await self._backend.revoke(key)
        except Exception as exc:
            logger.warning("Ledger revoke of %s failed: %s", key, exc)
            return LedgerWriteResult(status=LedgerWriteStatus.failed, content_hash=key, error=str(exc))
        return LedgerWriteResult(
            status=LedgerWriteStatus.committed,
            content_hash=key,
            transaction_hash=tx_hash,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def query_by_tag(self, tag: str) -> list[str]:
        tag = self._require_text(tag, "tag")
        return await self._read("hashes_by_tag", lambda b: b.hashes_by_tag(tag), [])

    async def query_by_content_type(self, content_type: str) -> list[str]:
        content_type = self._require_text(content_type, "content_type")
        return await self._read(
            "hashes_by_content_type",
            lambda b: b.hashes_by_content_type(content_type),
            [],
        )

    async def query_by_agent(self, agent: str) -> list[str]:
        agent = self._require_text(agent, "agent")
        return await self._read("hashes_by_agent", lambda b: b.hashes_by_agent(agent), [])

    async def query_by_storage_id(self, storage_id: str) -> str | None:
        storage_id = self._require_text(storage_id, "storage_id")
        return await self._read(
            "hash_by_storage_id",
            lambda b: b.hash_by_storage_id(storage_id),
            None,
        )

    async def get_memory(self, content_hash: str) -> OnChainMemoryHash | None:
        key = normalize_hash(content_hash)
        return await self._read("get_memory", lambda b: b.get_memory(key), None)

    async def is_verified(self, content_hash: str) -> bool:
        key = normalize_hash(content_hash)
        return await self._read("is_verified", lambda b: b.is_verified(key), False)

    async def query(
        self,
        *,
        tag: str | None = None,
        content_type: str | None = None,
        agent: str | None = None,
        storage_id: str | None = None,
    ) -> list[OnChainMemoryHash]:
        """Detailed records for the first criterion given (tag, type, agent, storage id)."""
        if tag:
            hashes = await self.query_by_tag(tag)
        elif content_type:
            hashes = await self.query_by_content_type(content_type)
        elif agent:
            hashes = await self.query_by_agent(agent)
        elif storage_id:
            found = await self.query_by_storage_id(storage_id)
            hashes = [found] if found else []
        else:
            return []
        records: list[OnChainMemoryHash] = []
        for content_hash in hashes:
            record = await self.get_memory(content_hash)
            if record is not None:
                records.append(record)
        return records

    async def all_tags(self) -> list[str]:
        return await self._read("all_tags", lambda b: b.all_tags(), [])

    async def stats(self) -> OnChainStats | None:
        return await self._read("stats", lambda b: b.stats(), None)

    def explorer_url(self, transaction_hash: str) -> str:
        return f"{self._config.explorer_url.rstrip('/')}/tx/{transaction_hash}"

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.close()

    # ------------------------------------------------------------------

    async def _read(
        self,
        operation: str,
        call: Callable[[LedgerBackend], Awaitable[T]],
        default: T,
    ) -> T:
        if not await self.initialize():
            return default
        assert self._backend is not None
        try:
            result = await call(self._backend)
        except BackendUnavailable:
            record_tier_outcome(tier=_TIER, backend=operation, ok=False)
            raise
        except Exception as exc:
            record_tier_outcome(tier=_TIER, backend=operation, ok=False)
            raise BackendUnavailable("ledger", f"{operation} failed: {exc}") from exc
        return result

    @staticmethod
    def _require_text(value: str, field_name: str) -> str:
        if not value or not value.strip():
            raise ValidationFailure(f"{field_name} must be a non-empty string")
        return value.strip()

    @staticmethod
    def _validate_entry(entry: LedgerCommit) -> LedgerCommit:
        if not entry.storage_id or not entry.storage_id.strip():
            raise ValidationFailure("storage_id must be a non-empty string")
        if entry.size < 0:
            raise ValidationFailure("size must be >= 0")
        return entry.model_copy(update={"hash": normalize_hash(entry.hash)})
