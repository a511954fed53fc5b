"""Root conftest — suite markers, optional .env loading, and shared fakes.

The fakes stand in for the external tiers (blob networks, embedding
model, ledger) in both unit and integration suites.
"""

from __future__ import annotations

import hashlib
from collections import Counter
from pathlib import Path

import pytest
from dotenv import load_dotenv

from memledger.blobs import BlobStoreAdapter
from memledger.blobs import BlobUploadResult
from memledger.config import LedgerConfig
from memledger.errors import BackendUnavailable
from memledger.errors import EmbeddingFailure
from memledger.ledger import InMemoryLedgerBackend
from memledger.ledger import RegistryClient
from memledger.observability import reset_metrics

# Load repository-root .env for test opt-ins (existing env vars stay authoritative).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env", override=False)

DIMENSIONS = 16


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Attach suite markers from test path.

    - `tests/unit/*` -> `unit`
    - `tests/integration/*` -> `integration`
    """
    root = Path(__file__).resolve().parents[1]
    for item in items:
        item_path = Path(str(item.fspath)).resolve()
        try:
            rel = item_path.relative_to(root)
        except ValueError:
            continue

        parts = rel.parts
        if len(parts) < 2 or parts[0] != "tests":
            continue
        if parts[1] == "unit":
            item.add_marker(pytest.mark.unit)
        elif parts[1] == "integration":
            item.add_marker(pytest.mark.integration)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedBlobBackend:
    """Blob backend that keeps blobs in a dict and fails on request."""

    def __init__(self, name: str, *, fail_upload: bool = False, fail_init: bool = False) -> None:
        self._name = name
        self.fail_upload = fail_upload
        self.fail_init = fail_init
        self.blobs: dict[str, bytes] = {}
        self.calls: Counter[str] = Counter()

    @property
    def name(self) -> str:
        return self._name

    async def initialize(self) -> None:
        self.calls["initialize"] += 1
        if self.fail_init:
            raise BackendUnavailable(self._name, "probe failed")

    async def upload(self, data: bytes) -> BlobUploadResult:
        self.calls["upload"] += 1
        if self.fail_upload:
            raise BackendUnavailable(self._name, "upload rejected")
        blob_id = f"{self._name}-{hashlib.sha256(data).hexdigest()[:32]}"
        self.blobs[blob_id] = data
        return BlobUploadResult(
            blob_id=blob_id,
            size_bytes=len(data),
            provider=self._name,
            provider_ref=f"0xref-{blob_id[-8:]}",
        )

    async def download(self, blob_id: str) -> bytes:
        self.calls["download"] += 1
        if blob_id not in self.blobs:
            raise BackendUnavailable(self._name, f"no blob {blob_id}")
        return self.blobs[blob_id]

    async def exists(self, blob_id: str) -> bool:
        self.calls["exists"] += 1
        return blob_id in self.blobs


class BagOfWordsEmbeddingProvider:
    """Deterministic embedding: each word bumps one hashed dimension."""

    def __init__(self, dimensions: int = DIMENSIONS, *, fail: bool = False) -> None:
        self._dimensions = dimensions
        self.fail = fail
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise EmbeddingFailure("provider offline")
        vector = [0.0] * self._dimensions
        for word in text.lower().split():
            slot = hashlib.sha256(word.encode("utf-8")).digest()[0] % self._dimensions
            vector[slot] += 1.0
        return vector


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_observability():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def make_blob_backend():
    return ScriptedBlobBackend


@pytest.fixture()
def make_embedding_provider():
    return BagOfWordsEmbeddingProvider


@pytest.fixture()
def ledger_backend() -> InMemoryLedgerBackend:
    return InMemoryLedgerBackend()


@pytest.fixture()
def registry(ledger_backend: InMemoryLedgerBackend) -> RegistryClient:
    return RegistryClient(ledger_backend, LedgerConfig(connect_timeout_seconds=1.0))


@pytest.fixture()
def degraded_registry() -> RegistryClient:
    return RegistryClient(None, LedgerConfig())


@pytest.fixture()
def primary_blobs() -> ScriptedBlobBackend:
    return ScriptedBlobBackend("walrus")


@pytest.fixture()
def fallback_blobs() -> ScriptedBlobBackend:
    return ScriptedBlobBackend("chain_storage")


@pytest.fixture()
def blob_store(primary_blobs, fallback_blobs) -> BlobStoreAdapter:
    return BlobStoreAdapter(primary_blobs, fallback_blobs)


@pytest.fixture()
def embedding_provider() -> BagOfWordsEmbeddingProvider:
    return BagOfWordsEmbeddingProvider()
