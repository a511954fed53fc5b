"""Fallback blob backend: a chain-oriented storage gateway.

The gateway accepts a raw body on ``POST /file`` and answers with the
Merkle root of the stored file plus the transaction that anchored it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from urllib.parse import quote

from memledger.blobs.base import BlobUploadResult
from memledger.blobs.http import first_reachable
from memledger.blobs.http import HttpStatusError
from memledger.blobs.http import send
from memledger.config import ChainStorageConfig
from memledger.errors import BackendUnavailable

logger = logging.getLogger(__name__)


class ChainStorageBlobBackend:
    def __init__(
        self,
        config: ChainStorageConfig | None = None,
        *,
        probe_timeout_seconds: float = 5.0,
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._config = config or ChainStorageConfig()
        self._probe_timeout = probe_timeout_seconds
        self._request_timeout = request_timeout_seconds
        self._gateway: str | None = None
        self._init_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "chain_storage"

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._gateway is not None:
                return
            candidates = [self._config.gateway_url, *self._config.alternate_gateways]
            self._gateway = await asyncio.to_thread(
                first_reachable, candidates, backend=self.name, timeout=self._probe_timeout
            )
            logger.info("Chain storage backend ready (gateway=%s)", self._gateway)

    async def upload(self, data: bytes) -> BlobUploadResult:
        await self.initialize()
        try:
            response = await asyncio.to_thread(
                send,
                "POST",
                f"{self._gateway}/file",
                backend=self.name,
                data=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self._request_timeout,
            )
        except HttpStatusError as exc:
            raise BackendUnavailable(self.name, f"upload rejected with HTTP {exc.status}") from exc

        try:
            payload = json.loads(response.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise BackendUnavailable(self.name, "gateway returned invalid JSON") from exc
        root_hash = payload.get("rootHash") if isinstance(payload, dict) else None
        if not root_hash:
            raise BackendUnavailable(self.name, "gateway response carries no rootHash")
        tx_hash = payload.get("txHash")
        return BlobUploadResult(
            blob_id=root_hash,
            size_bytes=len(data),
            provider=self.name,
            provider_ref=tx_hash,
            explorer_url=f"{self._config.explorer_url}/{tx_hash}" if tx_hash else None,
        )

    async def download(self, blob_id: str) -> bytes:
        await self.initialize()
        try:
            response = await asyncio.to_thread(
                send,
                "GET",
                self._file_url(blob_id),
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
                self._file_url(blob_id),
                backend=self.name,
                timeout=self._request_timeout,
            )
        except HttpStatusError as exc:
            if exc.status == 404:
                return False
            raise BackendUnavailable(self.name, f"exists check failed with HTTP {exc.status}") from exc
        return True

    def _file_url(self, blob_id: str) -> str:
        return f"{self._gateway}/file?root={quote(blob_id, safe='')}"
