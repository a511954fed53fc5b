"""Storage domain — local persistence tiers."""

from memledger.storage.index_config import IndexConfigTable
from memledger.storage.index_config import StorageIdMap
from memledger.storage.index_config import StorageLink
from memledger.storage.kv import InMemoryKeyValueStore
from memledger.storage.kv import KeyValueStore
from memledger.storage.kv import NullKeyValueStore
from memledger.storage.kv import RedisKeyValueStore
from memledger.storage.metadata_index import LocalMetadataIndex
from memledger.storage.vector_index import cosine_similarity
from memledger.storage.vector_index import LocalVectorIndex

__all__ = [
    "IndexConfigTable",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "LocalMetadataIndex",
    "LocalVectorIndex",
    "NullKeyValueStore",
    "RedisKeyValueStore",
    "StorageIdMap",
    "StorageLink",
    "cosine_similarity",
]
