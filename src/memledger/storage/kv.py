"""Key-value persistence for the local indices.

Each local index stores one JSON document under one key.  Three stores
are provided:

* ``RedisKeyValueStore`` — durable, keyed ``memledger:{namespace}:{key}``
  so several end-users or sessions can share one Redis.
* ``InMemoryKeyValueStore`` — process-local dict, for tests and scratch use.
* ``NullKeyValueStore`` — headless contexts with no session storage;
  writes vanish and reads are empty.
"""

from __future__ import annotations

import logging
from typing import Protocol

from redis.asyncio import Redis  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

_PREFIX = "memledger"
_CLEAR_BATCH_SIZE = 100


class KeyValueStore(Protocol):
    """Minimal async string store backing the local indices."""

    @property
    def durable(self) -> bool:
        """Whether writes survive the process."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...


class RedisKeyValueStore:
    """Redis-backed store scoped to one namespace."""

    def __init__(self, redis: Redis, *, namespace: str = "default") -> None:
        self._redis = redis
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, *, namespace: str = "default") -> RedisKeyValueStore:
        return cls(Redis.from_url(url), namespace=namespace)

    @property
    def durable(self) -> bool:
        return True

    def _key(self, key: str) -> str:
        return f"{_PREFIX}:{self._namespace}:{key}"

    async def get(self, key: str) -> str | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def clear(self) -> None:
        """Remove every key in this namespace, in batches."""
        batch: list = []
        async for key in self._redis.scan_iter(match=f"{_PREFIX}:{self._namespace}:*"):
            batch.append(key)
            if len(batch) >= _CLEAR_BATCH_SIZE:
                await self._redis.delete(*batch)
                batch.clear()
        if batch:
            await self._redis.delete(*batch)

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryKeyValueStore:
    """Dict-backed store that lives as long as the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    @property
    def durable(self) -> bool:
        return False

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def close(self) -> None:
        return None


class NullKeyValueStore:
    """Store for contexts without session storage: nothing persists."""

    @property
    def durable(self) -> bool:
        return False

    async def get(self, key: str) -> str | None:
        del key
        return None

    async def set(self, key: str, value: str) -> None:
        logger.debug("Null store: dropping write to %s (%d bytes)", key, len(value))

    async def delete(self, key: str) -> None:
        del key

    async def clear(self) -> None:
        return None

    async def close(self) -> None:
        return None
