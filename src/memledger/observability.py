"""Lightweight in-process observability helpers.

Two aggregates are kept: per-operation latency, and per-tier outcome
counters that show which blob backend or ledger actually served calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class LatencySummary:
    """Aggregated latency metrics for one operation."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0


@dataclass
class TierOutcome:
    ok: int = 0
    failed: int = 0


class _Recorder:
    def __init__(self) -> None:
        self._lock = Lock()
        self._latency: dict[str, LatencySummary] = {}
        self._tiers: dict[tuple[str, str], TierOutcome] = {}

    def record_latency(self, *, operation: str, duration_ms: float, ok: bool) -> None:
        normalized = max(float(duration_ms), 0.0)
        with self._lock:
            summary = self._latency.setdefault(operation, LatencySummary())
            summary.count += 1
            if not ok:
                summary.error_count += 1
            summary.total_ms += normalized
            summary.last_ms = normalized
            if summary.count == 1:
                summary.min_ms = summary.max_ms = normalized
            else:
                summary.min_ms = min(summary.min_ms, normalized)
                summary.max_ms = max(summary.max_ms, normalized)

        logger.debug(
            "latency operation=%s duration_ms=%.3f ok=%s",
            operation,
            normalized,
            ok,
        )

    def record_tier(self, *, tier: str, backend: str, ok: bool) -> None:
        with self._lock:
            outcome = self._tiers.setdefault((tier, backend), TierOutcome())
            if ok:
                outcome.ok += 1
            else:
                outcome.failed += 1

    def latency_snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {
                operation: {
                    "count": summary.count,
                    "error_count": summary.error_count,
                    "total_ms": round(summary.total_ms, 3),
                    "avg_ms": round(
                        summary.total_ms / summary.count if summary.count else 0.0,
                        3,
                    ),
                    "min_ms": round(summary.min_ms, 3),
                    "max_ms": round(summary.max_ms, 3),
                    "last_ms": round(summary.last_ms, 3),
                }
                for operation, summary in sorted(self._latency.items())
            }

    def tier_snapshot(self) -> dict[str, dict[str, dict[str, int]]]:
        with self._lock:
            snapshot: dict[str, dict[str, dict[str, int]]] = {}
            for (tier, backend), outcome in sorted(self._tiers.items()):
                snapshot.setdefault(tier, {})[backend] = {
                    "ok": outcome.ok,
                    "failed": outcome.failed,
                }
            return snapshot

    def reset(self) -> None:
        with self._lock:
            self._latency.clear()
            self._tiers.clear()


_RECORDER = _Recorder()


def record_latency(*, operation: str, duration_ms: float, ok: bool = True) -> None:
    """Record one latency sample."""
    _RECORDER.record_latency(operation=operation, duration_ms=duration_ms, ok=ok)


def record_tier_outcome(*, tier: str, backend: str, ok: bool) -> None:
    """Count one call served (or failed) by *backend* in *tier*."""
    _RECORDER.record_tier(tier=tier, backend=backend, ok=ok)


def latency_metrics_snapshot() -> dict[str, dict[str, float | int]]:
    """Return current in-process latency aggregates."""
    return _RECORDER.latency_snapshot()


def tier_outcomes_snapshot() -> dict[str, dict[str, dict[str, int]]]:
    """Return ``{tier: {backend: {ok, failed}}}``."""
    return _RECORDER.tier_snapshot()


def reset_metrics() -> None:
    """Clear all aggregates (test helper)."""
    _RECORDER.reset()
