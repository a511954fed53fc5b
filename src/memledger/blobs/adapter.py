"""Primary/fallback blob store.

Uploads may land on either backend; the result names the one that
served so later reads go back to it.  Reads never cross backends: a blob
id from one network is meaningless on the other.
"""

from __future__ import annotations

import logging

from memledger.blobs.base import BlobBackend
from memledger.blobs.base import BlobUploadResult
from memledger.blobs.chain_storage import ChainStorageBlobBackend
from memledger.blobs.walrus import WalrusBlobBackend
from memledger.config import BlobStoreConfig
from memledger.errors import BackendUnavailable
from memledger.errors import ValidationFailure
from memledger.observability import record_tier_outcome

logger = logging.getLogger(__name__)

_TIER = "blob"


class BlobStoreAdapter:
    def __init__(self, primary: BlobBackend, fallback: BlobBackend | None = None) -> None:
        self._primary = primary
        self._fallback = fallback

    @property
    def primary(self) -> BlobBackend:
        return self._primary

    @property
    def fallback(self) -> BlobBackend | None:
        return self._fallback

    async def upload(self, data: bytes) -> BlobUploadResult:
        """Store *data* on the primary backend, falling back on any failure."""
        failures: list[str] = []
        for backend in self._candidates():
            try:
                await backend.initialize()
                result = await backend.upload(data)
            except Exception as exc:
                record_tier_outcome(tier=_TIER, backend=backend.name, ok=False)
                logger.warning("Blob upload via %s failed: %s", backend.name, exc)
                failures.append(f"{backend.name}: {exc}")
                continue
            record_tier_outcome(tier=_TIER, backend=backend.name, ok=True)
            logger.info("Blob %s stored via %s", result.blob_id, backend.name)
            return result
        raise BackendUnavailable("blob_store", "; ".join(failures) or "no backend configured")

    async def download(self, blob_id: str, *, provider: str | None = None) -> bytes:
        backend = self._backend_for(provider)
        await backend.initialize()
        try:
            data = await backend.download(blob_id)
        except Exception:
            record_tier_outcome(tier=_TIER, backend=backend.name, ok=False)
            raise
        record_tier_outcome(tier=_TIER, backend=backend.name, ok=True)
        return data

    async def exists(self, blob_id: str, *, provider: str | None = None) -> bool:
        backend = self._backend_for(provider)
        await backend.initialize()
        return await backend.exists(blob_id)

    def _candidates(self) -> list[BlobBackend]:
        if self._fallback is None:
            return [self._primary]
        return [self._primary, self._fallback]

    def _backend_for(self, provider: str | None) -> BlobBackend:
        if provider is None or provider == self._primary.name:
            return self._primary
        if self._fallback is not None and provider == self._fallback.name:
            return self._fallback
        raise ValidationFailure(
            f"unknown storage provider: {provider}",
            details={"provider": provider},
        )


def build_blob_store(config: BlobStoreConfig | None = None) -> BlobStoreAdapter:
    """Walrus as primary, the chain storage gateway as fallback."""
    config = config or BlobStoreConfig()
    return BlobStoreAdapter(
        primary=WalrusBlobBackend(
            config.walrus,
            probe_timeout_seconds=config.probe_timeout_seconds,
            request_timeout_seconds=config.request_timeout_seconds,
        ),
        fallback=ChainStorageBlobBackend(
            config.chain_storage,
            probe_timeout_seconds=config.probe_timeout_seconds,
            request_timeout_seconds=config.request_timeout_seconds,
        ),
    )
