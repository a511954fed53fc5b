"""Unit tests for the blob backends and the primary/fallback adapter."""

from __future__ import annotations

import json

import pytest

from memledger.blobs import BlobStoreAdapter
from memledger.blobs import ChainStorageBlobBackend
from memledger.blobs import WalrusBlobBackend
from memledger.blobs import build_blob_store
from memledger.blobs.http import HttpResponse
from memledger.blobs.http import HttpStatusError
from memledger.config import BlobStoreConfig
from memledger.config import ChainStorageConfig
from memledger.config import WalrusConfig
from memledger.errors import BackendUnavailable
from memledger.errors import ValidationFailure
from memledger.observability import tier_outcomes_snapshot


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _RecordingSend:
    """Stand-in for ``blobs.http.send`` returning scripted responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[tuple[str, str, bytes | None]] = []

    def __call__(self, method, url, *, backend, data=None, headers=None, timeout=30.0):
        self.requests.append((method, url, data))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _reachable(candidates, *, backend, timeout=5.0):
    return candidates[0].rstrip("/")


def _json(payload) -> HttpResponse:
    return HttpResponse(status=200, body=json.dumps(payload).encode("utf-8"))


# ---------------------------------------------------------------------------
# Walrus
# ---------------------------------------------------------------------------


class TestWalrusBlobBackend:
    @pytest.fixture()
    def backend(self, monkeypatch):
        monkeypatch.setattr("memledger.blobs.walrus.first_reachable", _reachable)
        return WalrusBlobBackend(
            WalrusConfig(
                publisher_url="https://pub.test",
                aggregator_url="https://agg.test",
                epochs=3,
                explorer_url="https://explorer.test/object",
            )
        )

    async def test_upload_newly_created(self, backend, monkeypatch):
        send = _RecordingSend(
            _json(
                {
                    "newlyCreated": {
                        "blobObject": {
                            "id": "0xsuiobject",
                            "blobId": "walrus-blob-1",
                            "storage": {"endEpoch": 42},
                        }
                    }
                }
            )
        )
        monkeypatch.setattr("memledger.blobs.walrus.send", send)

        result = await backend.upload(b"payload")

        assert send.requests == [("PUT", "https://pub.test/v1/blobs?epochs=3", b"payload")]
        assert result.blob_id == "walrus-blob-1"
        assert result.provider == "walrus"
        assert result.provider_ref == "0xsuiobject"
        assert result.size_bytes == 7
        assert result.explorer_url == "https://explorer.test/object/0xsuiobject"

    async def test_upload_already_certified(self, backend, monkeypatch):
        send = _RecordingSend(_json({"alreadyCertified": {"blobId": "walrus-blob-2", "endEpoch": 9}}))
        monkeypatch.setattr("memledger.blobs.walrus.send", send)
        result = await backend.upload(b"payload")
        assert result.blob_id == "walrus-blob-2"
        assert result.provider_ref is None
        assert result.explorer_url is None

    @pytest.mark.parametrize(
        "body",
        [b"not json", json.dumps({"unexpected": {}}).encode(), json.dumps({"newlyCreated": {}}).encode()],
        ids=["invalid-json", "unknown-shape", "no-blob-id"],
    )
    async def test_unusable_publisher_response(self, backend, monkeypatch, body):
        monkeypatch.setattr(
            "memledger.blobs.walrus.send",
            _RecordingSend(HttpResponse(status=200, body=body)),
        )
        with pytest.raises(BackendUnavailable):
            await backend.upload(b"payload")

    async def test_upload_http_error_is_backend_unavailable(self, backend, monkeypatch):
        monkeypatch.setattr(
            "memledger.blobs.walrus.send",
            _RecordingSend(HttpStatusError(500, b"oops")),
        )
        with pytest.raises(BackendUnavailable, match="HTTP 500"):
            await backend.upload(b"payload")

    async def test_download_reads_from_aggregator(self, backend, monkeypatch):
        send = _RecordingSend(HttpResponse(status=200, body=b"stored bytes"))
        monkeypatch.setattr("memledger.blobs.walrus.send", send)
        assert await backend.download("abc") == b"stored bytes"
        assert send.requests == [("GET", "https://agg.test/v1/blobs/abc", None)]

    async def test_exists(self, backend, monkeypatch):
        send = _RecordingSend(
            HttpResponse(status=200, body=b""),
            HttpStatusError(404, b""),
            HttpStatusError(503, b""),
        )
        monkeypatch.setattr("memledger.blobs.walrus.send", send)
        assert await backend.exists("abc") is True
        assert await backend.exists("missing") is False
        with pytest.raises(BackendUnavailable):
            await backend.exists("abc")

    async def test_initialize_probes_once(self, monkeypatch):
        probes: list[list[str]] = []

        def _probe(candidates, *, backend, timeout=5.0):
            probes.append(list(candidates))
            return candidates[-1]

        monkeypatch.setattr("memledger.blobs.walrus.first_reachable", _probe)
        backend = WalrusBlobBackend(
            WalrusConfig(
                publisher_url="https://pub.test",
                aggregator_url="https://agg.test",
                alternate_publishers=("https://pub2.test",),
            )
        )
        await backend.initialize()
        await backend.initialize()
        assert probes == [["https://pub.test", "https://pub2.test"], ["https://agg.test"]]


# ---------------------------------------------------------------------------
# Chain storage gateway
# ---------------------------------------------------------------------------


class TestChainStorageBlobBackend:
    @pytest.fixture()
    def backend(self, monkeypatch):
        monkeypatch.setattr("memledger.blobs.chain_storage.first_reachable", _reachable)
        return ChainStorageBlobBackend(
            ChainStorageConfig(gateway_url="https://gw.test", explorer_url="https://scan.test/tx")
        )

    async def test_upload_uses_root_hash_as_blob_id(self, backend, monkeypatch):
        send = _RecordingSend(_json({"rootHash": "0xroot", "txHash": "0xtx"}))
        monkeypatch.setattr("memledger.blobs.chain_storage.send", send)

        result = await backend.upload(b"data")

        assert send.requests == [("POST", "https://gw.test/file", b"data")]
        assert result.blob_id == "0xroot"
        assert result.provider == "chain_storage"
        assert result.provider_ref == "0xtx"
        assert result.explorer_url == "https://scan.test/tx/0xtx"

    async def test_missing_root_hash(self, backend, monkeypatch):
        monkeypatch.setattr(
            "memledger.blobs.chain_storage.send",
            _RecordingSend(_json({"txHash": "0xtx"})),
        )
        with pytest.raises(BackendUnavailable, match="rootHash"):
            await backend.upload(b"data")

    async def test_download_quotes_the_root(self, backend, monkeypatch):
        send = _RecordingSend(HttpResponse(status=200, body=b"data"))
        monkeypatch.setattr("memledger.blobs.chain_storage.send", send)
        assert await backend.download("a/b") == b"data"
        assert send.requests[0][1] == "https://gw.test/file?root=a%2Fb"

    async def test_exists_404_is_false(self, backend, monkeypatch):
        monkeypatch.setattr(
            "memledger.blobs.chain_storage.send",
            _RecordingSend(HttpStatusError(404, b"")),
        )
        assert await backend.exists("0xroot") is False


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class TestBlobStoreAdapter:
    async def test_upload_prefers_primary(self, blob_store, primary_blobs, fallback_blobs):
        result = await blob_store.upload(b"hello")
        assert result.provider == "walrus"
        assert fallback_blobs.calls["upload"] == 0
        assert tier_outcomes_snapshot()["blob"]["walrus"] == {"ok": 1, "failed": 0}

    async def test_upload_falls_back_when_primary_fails(
        self, blob_store, primary_blobs, fallback_blobs
    ):
        primary_blobs.fail_upload = True
        result = await blob_store.upload(b"hello")
        assert result.provider == "chain_storage"
        assert result.blob_id in fallback_blobs.blobs
        outcomes = tier_outcomes_snapshot()["blob"]
        assert outcomes["walrus"] == {"ok": 0, "failed": 1}
        assert outcomes["chain_storage"] == {"ok": 1, "failed": 0}

    async def test_upload_falls_back_when_primary_probe_fails(
        self, blob_store, primary_blobs, fallback_blobs
    ):
        primary_blobs.fail_init = True
        result = await blob_store.upload(b"hello")
        assert result.provider == "chain_storage"
        assert primary_blobs.calls["upload"] == 0

    async def test_upload_raises_when_every_backend_fails(
        self, blob_store, primary_blobs, fallback_blobs
    ):
        primary_blobs.fail_upload = True
        fallback_blobs.fail_upload = True
        with pytest.raises(BackendUnavailable) as exc_info:
            await blob_store.upload(b"hello")
        assert exc_info.value.backend == "blob_store"

    async def test_download_routes_to_the_storing_backend(
        self, blob_store, primary_blobs, fallback_blobs
    ):
        primary_blobs.fail_upload = True
        result = await blob_store.upload(b"hello")
        assert await blob_store.download(result.blob_id, provider=result.provider) == b"hello"
        assert primary_blobs.calls["download"] == 0

    async def test_download_never_crosses_backends(self, blob_store, primary_blobs, fallback_blobs):
        result = await blob_store.upload(b"hello")
        del primary_blobs.blobs[result.blob_id]
        fallback_blobs.blobs[result.blob_id] = b"hello"
        with pytest.raises(BackendUnavailable):
            await blob_store.download(result.blob_id, provider="walrus")
        assert fallback_blobs.calls["download"] == 0

    async def test_unknown_provider(self, blob_store):
        with pytest.raises(ValidationFailure):
            await blob_store.download("x", provider="ipfs")

    async def test_exists(self, blob_store):
        result = await blob_store.upload(b"hello")
        assert await blob_store.exists(result.blob_id, provider="walrus") is True
        assert await blob_store.exists("nope") is False

    async def test_primary_only(self, make_blob_backend):
        adapter = BlobStoreAdapter(make_blob_backend("walrus", fail_upload=True))
        assert adapter.fallback is None
        with pytest.raises(BackendUnavailable):
            await adapter.upload(b"hello")


class TestBuildBlobStore:
    def test_walrus_primary_chain_storage_fallback(self):
        adapter = build_blob_store(BlobStoreConfig())
        assert isinstance(adapter.primary, WalrusBlobBackend)
        assert isinstance(adapter.fallback, ChainStorageBlobBackend)
