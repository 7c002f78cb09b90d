"""Process-scoped TTL caches keyed by normalized repository path."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_key(path: str) -> str:
    """Strip trailing separators so ``/repo`` and ``/repo/`` share an entry."""

    stripped = str(path).rstrip("/")
    return stripped or "/"


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Time-to-live cache whose entries are checked against the clock on every read.

    Failed computations are never stored. The clock is injectable so tests can
    advance time deterministically.
    """

    def __init__(
        self,
        name: str,
        ttl: float,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.name = name
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> T | None:
        entry = self._entries.get(normalize_key(key))
        if entry is not None and self._clock() < entry.expires_at:
            return entry.value
        return None

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        lifetime = self.ttl if ttl is None else ttl
        self._entries[normalize_key(key)] = CacheEntry(value=value, expires_at=self._clock() + lifetime)

    async def get_cached(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
    ) -> T:
        """Return the live entry for ``key`` or compute, store and return a fresh one."""

        normalized = normalize_key(key)
        entry = self._entries.get(normalized)
        if entry is not None and self._clock() < entry.expires_at:
            logger.debug("Cache hit", extra={"cache": self.name, "key": normalized})
            return entry.value

        logger.debug("Cache miss", extra={"cache": self.name, "key": normalized})
        value = await compute()
        self.set(normalized, value, ttl)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(normalize_key(key), None)

    def invalidate_all(self) -> None:
        """Drop every entry regardless of key."""

        if self._entries:
            logger.debug("Cache flushed", extra={"cache": self.name, "entries": len(self._entries)})
        self._entries.clear()


__all__ = ["CacheEntry", "TTLCache", "normalize_key"]
