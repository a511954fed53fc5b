"""Audit event types and the event record."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Lifecycle transitions worth keeping a trail of."""

    MEMORY_STORED = "MEMORY_STORED"
    MEMORY_UPDATED = "MEMORY_UPDATED"
    MEMORY_REMOVED = "MEMORY_REMOVED"
    ONCHAIN_COMMITTED = "ONCHAIN_COMMITTED"
    ONCHAIN_FAILED = "ONCHAIN_FAILED"
    MEMORY_VERIFIED = "MEMORY_VERIFIED"
    MEMORY_REVOKED = "MEMORY_REVOKED"
    BATCH_INDEXED = "BATCH_INDEXED"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    memory_id: str | None = Field(
        default=None,
        description="Local memory id the event concerns, when there is one.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data (hashes, transaction ids, errors).",
    )
