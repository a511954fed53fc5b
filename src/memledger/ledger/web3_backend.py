"""MemoryRegistry backend over EVM JSON-RPC (web3.py).

Transactions are built, signed locally with an ``eth_account`` key, sent
raw, and awaited until mined.  Writes are serialized so the pending
nonce stays consistent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account import Account
from web3 import AsyncHTTPProvider
from web3 import AsyncWeb3
from web3 import Web3
from web3.exceptions import ContractLogicError
from web3.exceptions import TimeExhausted
from web3.exceptions import Web3Exception

from memledger.config import LedgerConfig
from memledger.errors import BackendUnavailable
from memledger.errors import DuplicateOnChain
from memledger.errors import LedgerWriteFailed
from memledger.ledger.abi import MEMORY_REGISTRY_ABI
from memledger.ledger.abi import ZERO_HASH
from memledger.ledger.base import LedgerCommit
from memledger.models.records import OnChainMemoryHash
from memledger.models.records import OnChainStats

logger = logging.getLogger(__name__)


def _bytes32(content_hash: str) -> bytes:
    return bytes.fromhex(content_hash.removeprefix("0x"))


def _hex(value: Any) -> str:
    return Web3.to_hex(value) if isinstance(value, (bytes, bytearray)) else str(value)


class Web3LedgerBackend:
    def __init__(self, config: LedgerConfig) -> None:
        if not config.is_complete:
            raise ValueError("ledger config needs rpc_url, contract_address and private_key")
        self._config = config
        self._w3 = AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self._account = Account.from_key(config.private_key)
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(config.contract_address),
            abi=MEMORY_REGISTRY_ABI,
        )
        self._chain_id: int | None = None
        self._write_lock = asyncio.Lock()

    @property
    def agent(self) -> str:
        return self._account.address

    async def connect(self) -> None:
        try:
            chain_id = await self._w3.eth.chain_id
        except (Web3Exception, OSError) as exc:
            raise BackendUnavailable("ledger", f"RPC unreachable: {exc}") from exc
        if chain_id != self._config.chain_id:
            logger.warning(
                "RPC reports chain id %d, configured %d",
                chain_id,
                self._config.chain_id,
            )
        self._chain_id = chain_id
        logger.info(
            "Connected to registry %s as %s (chain %d)",
            self._contract.address,
            self.agent,
            chain_id,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def commit(self, entry: LedgerCommit) -> str:
        call = self._contract.functions.commitMemoryHash(
            _bytes32(entry.hash),
            entry.metadata,
            entry.storage_id,
            entry.content_type,
            entry.size,
            entry.tags,
        )
        return await self._transact(call, duplicate_hash=entry.hash)

    async def batch_commit(self, entries: list[LedgerCommit]) -> str:
        call = self._contract.functions.batchCommitMemoryHashes(
            [_bytes32(entry.hash) for entry in entries],
            [entry.metadata for entry in entries],
            [entry.storage_id for entry in entries],
            [entry.content_type for entry in entries],
            [entry.size for entry in entries],
            [entry.tags for entry in entries],
        )
        return await self._transact(call, duplicate_hash=entries[0].hash if entries else None)

    async def verify(self, content_hash: str) -> str:
        return await self._transact(self._contract.functions.verifyMemoryHash(_bytes32(content_hash)))

    async def revoke(self, content_hash: str) -> str:
        return await self._transact(self._contract.functions.revokeMemoryHash(_bytes32(content_hash)))

    async def _transact(self, call: Any, *, duplicate_hash: str | None = None) -> str:
        async with self._write_lock:
            try:
                nonce = await self._w3.eth.get_transaction_count(self.agent, "pending")
                tx = await call.build_transaction(
                    {
                        "from": self.agent,
                        "nonce": nonce,
                        "chainId": self._chain_id or self._config.chain_id,
                    }
                )
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
                receipt = await self._w3.eth.wait_for_transaction_receipt(
                    tx_hash,
                    timeout=self._config.receipt_timeout_seconds,
                )
            except ContractLogicError as exc:
                if duplicate_hash is not None and "already exists" in str(exc).lower():
                    raise DuplicateOnChain(duplicate_hash) from exc
                raise LedgerWriteFailed(f"transaction reverted: {exc}") from exc
            except TimeExhausted as exc:
                raise LedgerWriteFailed(f"receipt not available in time: {exc}") from exc
            except (Web3Exception, OSError, ValueError) as exc:
                raise LedgerWriteFailed(f"transaction failed: {exc}") from exc

        if receipt["status"] != 1:
            raise LedgerWriteFailed(f"transaction {_hex(tx_hash)} reverted")
        return _hex(tx_hash)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_memory(self, content_hash: str) -> OnChainMemoryHash | None:
        try:
            raw = await self._contract.functions.getMemoryHash(_bytes32(content_hash)).call()
        except ContractLogicError:
            return None
        record = self._to_record(raw)
        return None if record.hash == ZERO_HASH else record

    async def hashes_by_tag(self, tag: str) -> list[str]:
        hashes = await self._contract.functions.getMemoryHashesByTag(tag).call()
        return [_hex(value) for value in hashes]

    async def hashes_by_content_type(self, content_type: str) -> list[str]:
        hashes = await self._contract.functions.getMemoryHashesByContentType(content_type).call()
        return [_hex(value) for value in hashes]

    async def hashes_by_agent(self, agent: str) -> list[str]:
        hashes = await self._contract.functions.getAgentMemories(
            Web3.to_checksum_address(agent)
        ).call()
        return [_hex(value) for value in hashes]

    async def hash_by_storage_id(self, storage_id: str) -> str | None:
        value = _hex(await self._contract.functions.getMemoryHashByZGStorageId(storage_id).call())
        return None if value == ZERO_HASH else value

    async def is_verified(self, content_hash: str) -> bool:
        return bool(
            await self._contract.functions.isMemoryHashVerified(_bytes32(content_hash)).call()
        )

    async def all_tags(self) -> list[str]:
        return list(await self._contract.functions.getAllTags().call())

    async def stats(self) -> OnChainStats:
        total, active, verified, tags, size = await self._contract.functions.getMemoryStats().call()
        return OnChainStats(
            total_memories=int(total),
            active_memories=int(active),
            verified_memories=int(verified),
            total_tags=int(tags),
            total_size=int(size),
        )

    async def close(self) -> None:
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    @staticmethod
    def _to_record(raw: Any) -> OnChainMemoryHash:
        (
            content_hash,
            metadata,
            agent,
            timestamp,
            is_active,
            storage_id,
            content_type,
            size,
            tags,
        ) = raw
        return OnChainMemoryHash(
            hash=_hex(content_hash),
            metadata=metadata,
            agent=agent,
            timestamp=int(timestamp),
            is_active=bool(is_active),
            storage_id=storage_id,
            content_type=content_type,
            size=int(size),
            tags=list(tags),
        )
