"""Exception taxonomy shared by every tier.

Each error carries a stable ``error_code`` that the MCP tools surface
to callers verbatim.
"""

from __future__ import annotations

from typing import Any


class MemLedgerError(Exception):
    """Base class for all memledger errors."""

    error_code = "internal_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailure(MemLedgerError):
    """Malformed input, rejected before any network call."""

    error_code = "validation_error"


class StorageIdConflict(ValidationFailure):
    """A storage id is already joined to a different content hash."""

    error_code = "storage_id_conflict"


class IntegrityFailure(MemLedgerError):
    """Computed content hash does not match the stored checksum."""

    error_code = "integrity_failure"

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"content hash mismatch: expected {expected}, got {actual}",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class BackendUnavailable(MemLedgerError):
    """A blob backend or the ledger could not be reached in time."""

    error_code = "backend_unavailable"

    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"{backend}: {message}", details={"backend": backend})
        self.backend = backend


class DuplicateOnChain(MemLedgerError):
    """The content hash is already committed on the ledger."""

    error_code = "duplicate_on_chain"

    def __init__(self, content_hash: str) -> None:
        super().__init__(
            f"memory hash already exists: {content_hash}",
            details={"hash": content_hash},
        )
        self.content_hash = content_hash


class LedgerWriteFailed(MemLedgerError):
    """A ledger transaction reverted or could not be submitted."""

    error_code = "ledger_write_failed"


class EmbeddingFailure(MemLedgerError):
    """The embedding provider failed or returned malformed output."""

    error_code = "embedding_failure"


class MemoryNotFound(MemLedgerError):
    """No local record exists for the requested memory id."""

    error_code = "not_found"

    def __init__(self, memory_id: str) -> None:
        super().__init__(f"memory not found: {memory_id}", details={"memory_id": memory_id})
        self.memory_id = memory_id
