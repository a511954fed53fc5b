"""Blobs domain — decentralized content storage."""

from memledger.blobs.adapter import BlobStoreAdapter
from memledger.blobs.adapter import build_blob_store
from memledger.blobs.base import BlobBackend
from memledger.blobs.base import BlobUploadResult
from memledger.blobs.chain_storage import ChainStorageBlobBackend
from memledger.blobs.walrus import WalrusBlobBackend

__all__ = [
    "BlobBackend",
    "BlobStoreAdapter",
    "BlobUploadResult",
    "ChainStorageBlobBackend",
    "WalrusBlobBackend",
    "build_blob_store",
]
