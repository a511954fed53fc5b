"""Unit tests for the registry client and its degraded mode."""

from __future__ import annotations

import asyncio

import pytest

from memledger.config import LedgerConfig
from memledger.errors import BackendUnavailable
from memledger.errors import ValidationFailure
from memledger.hashing import ledger_key
from memledger.ledger import InMemoryLedgerBackend
from memledger.ledger import LedgerCommit
from memledger.ledger import LedgerWriteStatus
from memledger.ledger import RegistryClient
from memledger.ledger import build_registry_client
from memledger.models.records import OnChainMemoryHash
from memledger.observability import tier_outcomes_snapshot


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_commit(content: str, *, storage_id: str | None = None, **kwargs) -> LedgerCommit:
    return LedgerCommit(
        hash=ledger_key(content),
        storage_id=storage_id or f"blob-{content}",
        size=len(content),
        **kwargs,
    )


class _SlowLedger(InMemoryLedgerBackend):
    async def connect(self) -> None:
        self.calls["connect"] += 1
        await asyncio.sleep(5)


# ---------------------------------------------------------------------------
# Initialization and degraded mode
# ---------------------------------------------------------------------------


class TestInitialization:
    async def test_connects_once(self, registry, ledger_backend):
        assert await registry.initialize() is True
        assert await registry.initialize() is True
        assert ledger_backend.calls["connect"] == 1
        assert registry.healthy
        assert not registry.degraded

    async def test_concurrent_initialization_shares_the_attempt(self, registry, ledger_backend):
        await asyncio.gather(*(registry.initialize() for _ in range(5)))
        assert ledger_backend.calls["connect"] == 1

    async def test_missing_backend_is_degraded(self, degraded_registry):
        assert await degraded_registry.initialize() is False
        assert degraded_registry.degraded
        assert not degraded_registry.healthy

    async def test_connect_failure_is_sticky(self):
        backend = InMemoryLedgerBackend(fail_connect=True)
        client = RegistryClient(backend, LedgerConfig())
        assert await client.initialize() is False

        backend.fail_connect = False
        assert await client.is_available() is False
        assert backend.calls["connect"] == 1
        assert tier_outcomes_snapshot()["ledger"]["connect"] == {"ok": 0, "failed": 1}

    async def test_reinitialize_retries(self):
        backend = InMemoryLedgerBackend(fail_connect=True)
        client = RegistryClient(backend, LedgerConfig())
        assert await client.initialize() is False
        backend.fail_connect = False
        assert await client.reinitialize() is True
        assert client.healthy

    async def test_connect_timeout_degrades(self):
        backend = _SlowLedger()
        client = RegistryClient(backend, LedgerConfig(connect_timeout_seconds=0.05))
        assert await client.initialize() is False
        assert client.degraded

    async def test_degraded_writes_report_status_without_raising(self, degraded_registry):
        commit = _make_commit("a")
        result = await degraded_registry.commit(commit)
        assert result.status is LedgerWriteStatus.degraded
        assert not result.ok
        batch = await degraded_registry.batch_commit([commit])
        assert batch.status is LedgerWriteStatus.degraded
        assert (await degraded_registry.verify(commit.hash)).status is LedgerWriteStatus.degraded
        assert (await degraded_registry.revoke(commit.hash)).status is LedgerWriteStatus.degraded

    async def test_degraded_reads_return_empty(self, degraded_registry):
        assert await degraded_registry.query_by_tag("x") == []
        assert await degraded_registry.query_by_storage_id("blob") is None
        assert await degraded_registry.get_memory(ledger_key("a")) is None
        assert await degraded_registry.is_verified(ledger_key("a")) is False
        assert await degraded_registry.all_tags() == []
        assert await degraded_registry.stats() is None

    def test_build_without_contract_is_degraded(self):
        client = build_registry_client(LedgerConfig(contract_address=None))
        assert client.backend is None
        assert client.degraded


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestCommit:
    async def test_commit_returns_transaction(self, registry, ledger_backend):
        commit = _make_commit("hello", tags=["a"])
        result = await registry.commit(commit)
        assert result.status is LedgerWriteStatus.committed
        assert result.transaction_hash.startswith("0x")
        assert ledger_backend.records[commit.hash].storage_id == "blob-hello"

    async def test_hash_is_normalized(self, registry, ledger_backend):
        commit = _make_commit("hello")
        upper = commit.model_copy(update={"hash": commit.hash[2:].upper()})
        result = await registry.commit(upper)
        assert result.content_hash == commit.hash
        assert commit.hash in ledger_backend.records

    async def test_duplicate(self, registry):
        commit = _make_commit("hello")
        await registry.commit(commit)
        result = await registry.commit(commit)
        assert result.status is LedgerWriteStatus.duplicate
        assert result.ok

    async def test_write_failure_is_reported(self, registry, ledger_backend):
        ledger_backend.fail_writes = True
        result = await registry.commit(_make_commit("hello"))
        assert result.status is LedgerWriteStatus.failed
        assert "rejected" in result.error

    @pytest.mark.parametrize(
        "changes",
        [{"storage_id": ""}, {"storage_id": "   "}, {"size": -1}, {"hash": "0x12"}],
        ids=["empty-storage-id", "blank-storage-id", "negative-size", "short-hash"],
    )
    async def test_invalid_input_never_reaches_the_ledger(self, registry, ledger_backend, changes):
        commit = _make_commit("hello").model_copy(update=changes)
        with pytest.raises(ValidationFailure):
            await registry.commit(commit)
        assert ledger_backend.calls["commit"] == 0


class TestBatchCommit:
    async def test_over_limit_is_rejected_before_any_call(self, registry, ledger_backend):
        commits = [_make_commit(f"m{i}") for i in range(51)]
        with pytest.raises(ValidationFailure):
            await registry.batch_commit(commits)
        assert sum(ledger_backend.calls.values()) == 0

    async def test_limit_is_accepted(self, registry, ledger_backend):
        commits = [_make_commit(f"m{i}") for i in range(50)]
        result = await registry.batch_commit(commits)
        assert result.status is LedgerWriteStatus.committed
        assert len(result.committed) == 50
        assert ledger_backend.calls["batch_commit"] == 1

    async def test_empty_batch(self, registry, ledger_backend):
        result = await registry.batch_commit([])
        assert result.status is LedgerWriteStatus.committed
        assert ledger_backend.calls["connect"] == 0

    async def test_existing_hashes_are_duplicates_not_failures(self, registry, ledger_backend):
        existing = _make_commit("A")
        await registry.commit(existing)
        fresh = _make_commit("B")

        result = await registry.batch_commit([existing, fresh])

        assert result.status is LedgerWriteStatus.committed
        assert result.committed == [fresh.hash]
        assert result.duplicates == [existing.hash]
        assert fresh.hash in ledger_backend.records

    async def test_repeats_within_a_batch(self, registry):
        commit = _make_commit("A")
        result = await registry.batch_commit([commit, commit])
        assert result.committed == [commit.hash]
        assert result.duplicates == [commit.hash]

    async def test_all_duplicates(self, registry):
        commit = _make_commit("A")
        await registry.commit(commit)
        result = await registry.batch_commit([commit])
        assert result.status is LedgerWriteStatus.duplicate
        assert result.transaction_hash is None


class TestVerifyAndRevoke:
    async def test_verify(self, registry):
        commit = _make_commit("A")
        await registry.commit(commit)
        result = await registry.verify(commit.hash)
        assert result.status is LedgerWriteStatus.committed
        assert await registry.is_verified(commit.hash)

    async def test_verify_unknown_hash_fails(self, registry):
        result = await registry.verify(ledger_key("never committed"))
        assert result.status is LedgerWriteStatus.failed

    async def test_revoke_by_committing_agent(self, registry, ledger_backend):
        commit = _make_commit("A")
        await registry.commit(commit)
        result = await registry.revoke(commit.hash)
        assert result.status is LedgerWriteStatus.committed
        assert ledger_backend.records[commit.hash].is_active is False

    async def test_revoke_by_another_agent_is_forbidden(self, registry, ledger_backend):
        key = ledger_key("foreign")
        ledger_backend.seed(
            OnChainMemoryHash(hash=key, agent="0x000000000000000000000000000000000000beef", storage_id="s")
        )
        result = await registry.revoke(key)
        assert result.status is LedgerWriteStatus.forbidden
        assert ledger_backend.calls["revoke"] == 0
        assert ledger_backend.records[key].is_active is True

    async def test_revoke_unknown_hash(self, registry):
        result = await registry.revoke(ledger_key("missing"))
        assert result.status is LedgerWriteStatus.failed


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    async def test_queries(self, registry):
        a = _make_commit("A", tags=["work"], content_type="document")
        b = _make_commit("B", tags=["home"])
        await registry.commit(a)
        await registry.commit(b)

        assert await registry.query_by_tag("work") == [a.hash]
        assert await registry.query_by_content_type("document") == [a.hash]
        assert set(await registry.query_by_agent(registry.backend.agent)) == {a.hash, b.hash}
        assert await registry.query_by_storage_id("blob-B") == b.hash
        assert (await registry.get_memory(a.hash)).tags == ["work"]

    async def test_query_uses_first_criterion(self, registry):
        a = _make_commit("A", tags=["work"], content_type="document")
        b = _make_commit("B", tags=["home"], content_type="document")
        await registry.commit(a)
        await registry.commit(b)

        by_tag = await registry.query(tag="home", content_type="document")
        assert [record.hash for record in by_tag] == [b.hash]
        by_storage = await registry.query(storage_id="blob-A")
        assert [record.hash for record in by_storage] == [a.hash]
        assert await registry.query() == []

    async def test_blank_criteria_are_rejected(self, registry):
        with pytest.raises(ValidationFailure):
            await registry.query_by_tag("  ")

    async def test_read_failure_raises_backend_unavailable(self, registry, ledger_backend):
        await registry.initialize()
        ledger_backend.fail_reads = True
        with pytest.raises(BackendUnavailable):
            await registry.all_tags()
        assert tier_outcomes_snapshot()["ledger"]["all_tags"]["failed"] == 1

    async def test_stats(self, registry):
        await registry.commit(_make_commit("A", tags=["x", "y"]))
        await registry.commit(_make_commit("BB", tags=["y"]))
        stats = await registry.stats()
        assert stats.total_memories == 2
        assert stats.active_memories == 2
        assert stats.total_tags == 2
        assert stats.total_size == 3

    def test_explorer_url(self):
        client = RegistryClient(None, LedgerConfig(explorer_url="https://scan.test/"))
        assert client.explorer_url("0xabc") == "https://scan.test/tx/0xabc"
