"""Deterministic content hashing.

The same SHA-256 digest serves as the local checksum and, formatted as
a ``0x``-prefixed bytes32, as the registry key for a memory.
"""

from __future__ import annotations

import hashlib
import re

from memledger.errors import IntegrityFailure
from memledger.errors import ValidationFailure

_HEX_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def _as_bytes(content: str | bytes) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


def content_hash(content: str | bytes) -> str:
    """Return the lowercase hex SHA-256 of *content* (UTF-8 for text)."""
    return hashlib.sha256(_as_bytes(content)).hexdigest()


def ledger_key(content: str | bytes) -> str:
    """Return the registry key for *content*: ``0x`` + SHA-256 hex."""
    return "0x" + content_hash(content)


def normalize_hash(value: str) -> str:
    """Normalize a digest to ``0x``-prefixed lowercase hex.

    Raises ``ValidationFailure`` when *value* is empty or not 32 bytes
    of hex.
    """
    if not value or not value.strip():
        raise ValidationFailure("hash must be a non-empty string")
    raw = value.strip().lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not _HEX_DIGEST_RE.match(raw):
        raise ValidationFailure(f"hash must be 32 bytes of hex: {value!r}")
    return "0x" + raw


def verify_content(content: str | bytes, expected: str) -> bool:
    """Return whether *content* hashes to *expected* (with or without ``0x``)."""
    return normalize_hash(content_hash(content)) == normalize_hash(expected)


def ensure_integrity(content: str | bytes, expected: str) -> str:
    """Return the digest of *content*, raising ``IntegrityFailure`` on mismatch."""
    actual = content_hash(content)
    if normalize_hash(actual) != normalize_hash(expected):
        raise IntegrityFailure(expected=expected, actual=actual)
    return actual
