"""Primary blob backend: a Walrus publisher/aggregator pair."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from memledger.blobs.base import BlobUploadResult
from memledger.blobs.http import first_reachable
from memledger.blobs.http import HttpStatusError
from memledger.blobs.http import send
from memledger.config import WalrusConfig
from memledger.errors import BackendUnavailable

logger = logging.getLogger(__name__)


class WalrusBlobBackend:
    """Erasure-coded blob network reached over its HTTP API.

    Uploads go to the publisher (``PUT /v1/blobs?epochs=N``), reads to the
    aggregator (``GET /v1/blobs/{id}``).  Endpoints are probed once and the
    first reachable candidate is kept.
    """

    def __init__(
        self,
        config: WalrusConfig | None = None,
        *,
        probe_timeout_seconds: float = 5.0,
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._config = config or WalrusConfig()
        self._probe_timeout = probe_timeout_seconds
        self._request_timeout = request_timeout_seconds
        self._publisher: str | None = None
        self._aggregator: str | None = None
        self._init_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "walrus"

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._publisher is not None and self._aggregator is not None:
                return
            publishers = [self._config.publisher_url, *self._config.alternate_publishers]
            aggregators = [self._config.aggregator_url, *self._config.alternate_aggregators]
            self._publisher = await asyncio.to_thread(
                first_reachable, publishers, backend=self.name, timeout=self._probe_timeout
            )
            self._aggregator = await asyncio.to_thread(
                first_reachable, aggregators, backend=self.name, timeout=self._probe_timeout
            )
            logger.info(
                "Walrus backend ready (publisher=%s, aggregator=%s)",
                self._publisher,
                self._aggregator,
            )

    async def upload(self, data: bytes) -> BlobUploadResult:
        await self.initialize()
        url = f"{self._publisher}/v1/blobs?epochs={self._config.epochs}"
        try:
            response = await asyncio.to_thread(
                send,
                "PUT",
                url,
                backend=self.name,
                data=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self._request_timeout,
            )
        except HttpStatusError as exc:
            raise BackendUnavailable(self.name, f"upload rejected with HTTP {exc.status}") from exc
        return self._parse_store_response(response.body, size=len(data))

    async def download(self, blob_id: str) -> bytes:
        await self.initialize()
        try:
            response = await asyncio.to_thread(
                send,
                "GET",
                f"{self._aggregator}/v1/blobs/{blob_id}",
                backend=self.name,
                timeout=self._request_timeout,
            )
        except HttpStatusError as exc:
            raise BackendUnavailable(
                self.name, f"download of {blob_id} failed with HTTP {exc.status}"
            ) from exc
        return response.body

    async def exists(self, blob_id: str) -> bool:
        await self.initialize()
        try:
            await asyncio.to_thread(
                send,
                "HEAD",
                f"{self._aggregator}/v1/blobs/{blob_id}",
                backend=self.name,
                timeout=self._request_timeout,
            )
        except HttpStatusError as exc:
            if exc.status == 404:
                return False
            raise BackendUnavailable(self.name, f"exists check failed with HTTP {exc.status}") from exc
        return True

    def _parse_store_response(self, body: bytes, *, size: int) -> BlobUploadResult:
        try:
            payload: dict[str, Any] = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise BackendUnavailable(self.name, "publisher returned invalid JSON") from exc

        info = payload.get("newlyCreated") or payload.get("alreadyCertified")
        if not isinstance(info, dict):
            raise BackendUnavailable(self.name, "unexpected publisher response format")

        blob_object = info.get("blobObject") or {}
        sui_ref = blob_object.get("id")
        blob_id = info.get("blobId") or blob_object.get("blobId") or sui_ref
        if not blob_id:
            raise BackendUnavailable(self.name, "publisher response carries no blob id")

        end_epoch = (blob_object.get("storage") or {}).get("endEpoch") or info.get("endEpoch")
        logger.debug("Stored blob %s (sui_ref=%s, end_epoch=%s)", blob_id, sui_ref, end_epoch)
        return BlobUploadResult(
            blob_id=blob_id,
            size_bytes=size,
            provider=self.name,
            provider_ref=sui_ref,
            explorer_url=f"{self._config.explorer_url}/{sui_ref}" if sui_ref else None,
        )
