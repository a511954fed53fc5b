"""Audit subsystem — async JSONL trail of index lifecycle events."""

from memledger.audit.logger import AuditLogger
from memledger.audit.schemas import AuditEvent
from memledger.audit.schemas import AuditEventType

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
