"""ABI of the deployed MemoryRegistry contract (the subset we call)."""

from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[dict[str, Any]] | None = None,
    *,
    view: bool = False,
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "outputs": outputs or [],
        "stateMutability": "view" if view else "nonpayable",
    }


def _out(kind: str, name: str = "") -> dict[str, Any]:
    return {"name": name, "type": kind}


MEMORY_HASH_STRUCT: dict[str, Any] = {
    "name": "",
    "type": "tuple",
    "internalType": "struct MemoryRegistry.MemoryHash",
    "components": [
        _out("bytes32", "hash"),
        _out("string", "metadata"),
        _out("address", "agent"),
        _out("uint256", "timestamp"),
        _out("bool", "isActive"),
        _out("string", "zgStorageId"),
        _out("string", "contentType"),
        _out("uint256", "size"),
        _out("string[]", "tags"),
    ],
}

MEMORY_REGISTRY_ABI: list[dict[str, Any]] = [
    _fn(
        "commitMemoryHash",
        [
            ("_hash", "bytes32"),
            ("_metadata", "string"),
            ("_zgStorageId", "string"),
            ("_contentType", "string"),
            ("_size", "uint256"),
            ("_tags", "string[]"),
        ],
    ),
    _fn(
        "batchCommitMemoryHashes",
        [
            ("_hashes", "bytes32[]"),
            ("_metadatas", "string[]"),
            ("_zgStorageIds", "string[]"),
            ("_contentTypes", "string[]"),
            ("_sizes", "uint256[]"),
            ("_tags", "string[][]"),
        ],
    ),
    _fn("verifyMemoryHash", [("_hash", "bytes32")]),
    _fn("revokeMemoryHash", [("_hash", "bytes32")]),
    _fn("getMemoryHash", [("_hash", "bytes32")], [MEMORY_HASH_STRUCT], view=True),
    _fn("isMemoryHashVerified", [("_hash", "bytes32")], [_out("bool")], view=True),
    _fn("getMemoryHashesByTag", [("_tag", "string")], [_out("bytes32[]")], view=True),
    _fn(
        "getMemoryHashesByContentType",
        [("_contentType", "string")],
        [_out("bytes32[]")],
        view=True,
    ),
    _fn("getAgentMemories", [("_agent", "address")], [_out("bytes32[]")], view=True),
    _fn(
        "getMemoryHashByZGStorageId",
        [("_zgStorageId", "string")],
        [_out("bytes32")],
        view=True,
    ),
    _fn(
        "getMemoryStats",
        [],
        [
            _out("uint256", "totalMemories"),
            _out("uint256", "activeMemories"),
            _out("uint256", "verifiedMemories"),
            _out("uint256", "totalTags"),
            _out("uint256", "totalSize"),
        ],
        view=True,
    ),
    _fn("getAllTags", [], [_out("string[]")], view=True),
]

ZERO_HASH = "0x" + "00" * 32
