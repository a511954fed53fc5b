"""In-process registry with the contract's semantics.

Append-only: records are never deleted, revocation only clears
``is_active``.  Used for local development and throughout the tests.
"""

from __future__ import annotations

import hashlib
import time
from collections import Counter

from memledger.errors import BackendUnavailable
from memledger.errors import DuplicateOnChain
from memledger.errors import LedgerWriteFailed
from memledger.ledger.base import LedgerCommit
from memledger.models.records import OnChainMemoryHash
from memledger.models.records import OnChainStats


class InMemoryLedgerBackend:
    def __init__(
        self,
        agent: str = "0x00000000000000000000000000000000000a9e17",
        *,
        fail_connect: bool = False,
        fail_reads: bool = False,
        fail_writes: bool = False,
    ) -> None:
        self._agent = agent
        self.fail_connect = fail_connect
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.connected = False
        self.calls: Counter[str] = Counter()
        self._records: dict[str, OnChainMemoryHash] = {}
        self._verified: set[str] = set()
        self._tx_counter = 0

    @property
    def agent(self) -> str:
        return self._agent

    @property
    def records(self) -> dict[str, OnChainMemoryHash]:
        return dict(self._records)

    def seed(self, record: OnChainMemoryHash) -> None:
        """Insert a record as if another agent had committed it."""
        self._records[record.hash.lower()] = record

    async def connect(self) -> None:
        self.calls["connect"] += 1
        if self.fail_connect:
            raise BackendUnavailable("ledger", "connection refused")
        self.connected = True

    async def commit(self, entry: LedgerCommit) -> str:
        self._write("commit")
        self._insert(entry)
        return self._next_tx()

    async def batch_commit(self, entries: list[LedgerCommit]) -> str:
        self._write("batch_commit")
        # The contract reverts the whole batch when any hash exists
        for entry in entries:
            if entry.hash.lower() in self._records:
                raise DuplicateOnChain(entry.hash)
        for entry in entries:
            self._insert(entry)
        return self._next_tx()

    async def verify(self, content_hash: str) -> str:
        self._write("verify")
        if content_hash.lower() not in self._records:
            raise LedgerWriteFailed(f"memory hash does not exist: {content_hash}")
        self._verified.add(content_hash.lower())
        return self._next_tx()

    async def revoke(self, content_hash: str) -> str:
        self._write("revoke")
        record = self._records.get(content_hash.lower())
        if record is None:
            raise LedgerWriteFailed(f"memory hash does not exist: {content_hash}")
        if record.agent.lower() != self._agent.lower():
            raise LedgerWriteFailed("only the committing agent can revoke")
        self._records[content_hash.lower()] = record.model_copy(update={"is_active": False})
        return self._next_tx()

    async def get_memory(self, content_hash: str) -> OnChainMemoryHash | None:
        self._read("get_memory")
        return self._records.get(content_hash.lower())

    async def hashes_by_tag(self, tag: str) -> list[str]:
        self._read("hashes_by_tag")
        return [h for h, record in self._records.items() if tag in record.tags]

    async def hashes_by_content_type(self, content_type: str) -> list[str]:
        self._read("hashes_by_content_type")
        return [h for h, record in self._records.items() if record.content_type == content_type]

    async def hashes_by_agent(self, agent: str) -> list[str]:
        self._read("hashes_by_agent")
        return [h for h, record in self._records.items() if record.agent.lower() == agent.lower()]

    async def hash_by_storage_id(self, storage_id: str) -> str | None:
        self._read("hash_by_storage_id")
        for content_hash, record in self._records.items():
            if record.storage_id == storage_id:
                return content_hash
        return None

    async def is_verified(self, content_hash: str) -> bool:
        self._read("is_verified")
        return content_hash.lower() in self._verified

    async def all_tags(self) -> list[str]:
        self._read("all_tags")
        seen: dict[str, None] = {}
        for record in self._records.values():
            for tag in record.tags:
                seen.setdefault(tag, None)
        return list(seen)

    async def stats(self) -> OnChainStats:
        self._read("stats")
        records = list(self._records.values())
        return OnChainStats(
            total_memories=len(records),
            active_memories=sum(1 for record in records if record.is_active),
            verified_memories=len(self._verified),
            total_tags=len({tag for record in records for tag in record.tags}),
            total_size=sum(record.size for record in records),
        )

    async def close(self) -> None:
        self.connected = False

    # ------------------------------------------------------------------

    def _write(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.fail_writes:
            raise LedgerWriteFailed(f"{operation} rejected by test ledger")

    def _read(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.fail_reads:
            raise BackendUnavailable("ledger", f"{operation} unavailable")

    def _insert(self, entry: LedgerCommit) -> None:
        key = entry.hash.lower()
        if key in self._records:
            raise DuplicateOnChain(entry.hash)
        self._records[key] = OnChainMemoryHash(
            hash=key,
            metadata=entry.metadata,
            agent=self._agent,
            timestamp=int(time.time()),
            is_active=True,
            storage_id=entry.storage_id,
            content_type=entry.content_type,
            size=entry.size,
            tags=list(entry.tags),
        )

    def _next_tx(self) -> str:
        self._tx_counter += 1
        return "0x" + hashlib.sha256(f"tx-{self._tx_counter}".encode()).hexdigest()
