"""Blocking HTTP helpers shared by the blob backends.

Backends call these through ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from memledger.errors import BackendUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes


class HttpStatusError(Exception):
    """Non-2xx response; keeps the status so callers can treat 404 specially."""

    def __init__(self, status: int, body: bytes) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status
        self.body = body


def send(
    method: str,
    url: str,
    *,
    backend: str,
    data: bytes | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 30.0,
) -> HttpResponse:
    """Perform one request.

    Raises ``HttpStatusError`` for HTTP error statuses and
    ``BackendUnavailable`` when the endpoint cannot be reached at all.
    """
    request = Request(url=url, data=data, headers=headers or {}, method=method)
    try:
        with urlopen(request, timeout=timeout) as response:
            return HttpResponse(status=response.status, body=response.read())
    except HTTPError as exc:
        raise HttpStatusError(exc.code, exc.read()) from exc
    except URLError as exc:
        raise BackendUnavailable(backend, f"network error: {exc.reason}") from exc
    except OSError as exc:
        raise BackendUnavailable(backend, f"IO error: {exc}") from exc


def is_reachable(url: str, *, timeout: float = 5.0) -> bool:
    """HEAD probe: any HTTP answer, 404 included, means the host is up."""
    request = Request(url=url, method="HEAD")
    try:
        with urlopen(request, timeout=timeout):
            return True
    except HTTPError:
        return True
    except (URLError, OSError) as exc:
        logger.debug("Probe failed for %s: %s", url, exc)
        return False


def first_reachable(
    candidates: Sequence[str],
    *,
    backend: str,
    timeout: float = 5.0,
) -> str:
    """Return the first candidate endpoint that answers a probe."""
    for candidate in candidates:
        if is_reachable(candidate, timeout=timeout):
            return candidate.rstrip("/")
    raise BackendUnavailable(backend, f"no reachable endpoint among {list(candidates)}")
