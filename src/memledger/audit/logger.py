"""Memory lifecycle audit trail, one JSON object per line."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from memledger.audit.schemas import AuditEvent
from memledger.audit.schemas import AuditEventType
from memledger.config import AuditConfig

logger = logging.getLogger(__name__)


class AuditLogger:
    """Records what happened to each memory across the local, blob and
    ledger tiers.

    Appends and reads share one ``asyncio.Lock``; the file work itself is
    pushed to a worker thread.  A disabled logger drops events silently.
    """

    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self._path = Path(config.file_path)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def log(self, event: AuditEvent) -> None:
        if not self.config.enabled:
            return
        async with self._lock:
            await asyncio.to_thread(self._append_line, event.model_dump_json())

    async def record(
        self,
        event_type: AuditEventType,
        *,
        memory_id: str | None = None,
        **payload: object,
    ) -> None:
        """Build the event from keyword payload and log it."""
        await self.log(AuditEvent(event_type=event_type, memory_id=memory_id, payload=payload))

    def _append_line(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read_events(
        self,
        *,
        event_type: AuditEventType | None = None,
        memory_id: str | None = None,
        since: float | None = None,
        until: float | None = None,
    ) -> list[AuditEvent]:
        """Events in write order.

        *since* and *until* bound the event timestamp inclusively.  Lines
        that do not parse are logged and skipped.
        """
        async with self._lock:
            lines = await asyncio.to_thread(self._read_lines)
        events = []
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                event = AuditEvent.model_validate_json(line)
            except ValidationError:
                logger.warning("Unreadable audit entry at %s:%d", self._path, line_no)
                continue
            if _matches(event, event_type, memory_id, since, until):
                events.append(event)
        return events

    def _read_lines(self) -> list[str]:
        if not self._path.exists():
            return []
        return self._path.read_text(encoding="utf-8").splitlines()


def _matches(
    event: AuditEvent,
    event_type: AuditEventType | None,
    memory_id: str | None,
    since: float | None,
    until: float | None,
) -> bool:
    if event_type is not None and event.event_type != event_type:
        return False
    if memory_id is not None and event.memory_id != memory_id:
        return False
    if since is not None and event.timestamp < since:
        return False
    return until is None or event.timestamp <= until
