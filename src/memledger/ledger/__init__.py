"""Ledger domain — on-chain hash registry."""

from __future__ import annotations

from memledger.config import LedgerConfig
from memledger.ledger.base import LedgerBackend
from memledger.ledger.base import LedgerCommit
from memledger.ledger.client import BatchCommitResult
from memledger.ledger.client import LedgerWriteResult
from memledger.ledger.client import LedgerWriteStatus
from memledger.ledger.client import RegistryClient
from memledger.ledger.memory import InMemoryLedgerBackend


def build_registry_client(config: LedgerConfig | None = None) -> RegistryClient:
    """Web3-backed client when the config is complete, degraded otherwise."""
    config = config or LedgerConfig()
    if not config.is_complete:
        return RegistryClient(None, config)
    from memledger.ledger.web3_backend import Web3LedgerBackend

    return RegistryClient(Web3LedgerBackend(config), config)


__all__ = [
    "BatchCommitResult",
    "InMemoryLedgerBackend",
    "LedgerBackend",
    "LedgerCommit",
    "LedgerWriteResult",
    "LedgerWriteStatus",
    "RegistryClient",
    "build_registry_client",
]
