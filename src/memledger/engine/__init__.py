"""Engine domain — embedding, indexing orchestration and the memory service."""

from memledger.engine.embedding import build_embedding_provider
from memledger.engine.embedding import EmbeddingGenerator
from memledger.engine.embedding import EmbeddingProvider
from memledger.engine.embedding import OpenAICompatibleEmbeddingProvider
from memledger.engine.indexer import MemoryIndexer
from memledger.engine.service import MemoryService

__all__ = [
    "EmbeddingGenerator",
    "EmbeddingProvider",
    "MemoryIndexer",
    "MemoryService",
    "OpenAICompatibleEmbeddingProvider",
    "build_embedding_provider",
]
