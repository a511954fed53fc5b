"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing — just plain defaults that can
be overridden at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding provider settings."""

    provider: str = "openai"
    model: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    dimensions: int = 1536
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class WalrusConfig:
    """Primary blob network (publisher/aggregator pair)."""

    publisher_url: str = "https://publisher.walrus-testnet.walrus.space"
    aggregator_url: str = "https://aggregator.walrus-testnet.walrus.space"
    # Tried in order when the configured endpoint fails the reachability probe
    alternate_publishers: tuple[str, ...] = ()
    alternate_aggregators: tuple[str, ...] = ()
    epochs: int = 5
    explorer_url: str = "https://suiscan.xyz/testnet/object"


@dataclass(frozen=True)
class ChainStorageConfig:
    """Fallback blob network reached through a storage gateway."""

    gateway_url: str = "https://storage.galileo.0g.ai"
    alternate_gateways: tuple[str, ...] = ()
    explorer_url: str = "https://chainscan-galileo.0g.ai/tx"


@dataclass(frozen=True)
class BlobStoreConfig:
    """Settings shared by both blob backends."""

    walrus: WalrusConfig = field(default_factory=WalrusConfig)
    chain_storage: ChainStorageConfig = field(default_factory=ChainStorageConfig)
    probe_timeout_seconds: float = 5.0
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class LedgerConfig:
    """Registry contract and JSON-RPC settings."""

    rpc_url: str = "https://evmrpc-testnet.0g.ai"
    chain_id: int = 16602
    contract_address: str | None = None
    private_key: str | None = None
    explorer_url: str = "https://chainscan-galileo.0g.ai"
    connect_timeout_seconds: float = 10.0
    receipt_timeout_seconds: float = 120.0
    max_batch_size: int = 50

    @property
    def is_complete(self) -> bool:
        """Whether enough is configured to reach a real contract."""
        return bool(self.contract_address and self.private_key and self.rpc_url)


@dataclass(frozen=True)
class IndexerConfig:
    """Local index and orchestration settings."""

    namespace: str = "default"
    vector_size: int = 1536
    max_background_tasks: int = 8
    default_top_k: int = 10


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "memledger_audit.jsonl"
    enabled: bool = True
