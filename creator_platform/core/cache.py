"""
Process-local TTL cache for listing and aggregate reads.

Entries hold (value, inserted_at, ttl) and expire lazily on read. There is
no size bound: the key space is a handful of filter/sort/page
combinations. Ledger write paths never consult it.
"""
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog

from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

_MISSING = object()


class TTLCache:
    """
    In-memory cache with per-entry time-to-live.

    Constructed explicitly (one per application, or one per test) and
    passed to the services that use it.

    Args:
        default_ttl: Seconds an entry lives when ``set`` gets no ttl
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float, float]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key``, evicting it if expired."""
        entry = self._entries.get(key)
        if entry is not None:
            value, inserted_at, ttl = entry
            if self._clock() - inserted_at < ttl:
                self._hits += 1
                metrics.record_cache_lookup(hit=True)
                return value
            del self._entries[key]

        self._misses += 1
        metrics.record_cache_lookup(hit=False)
        return default

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._entries[key] = (value, self._clock(), ttl)

    def invalidate(self, prefix: Optional[str] = None) -> int:
        """
        Drop entries whose key starts with ``prefix`` (all entries if None).

        Returns:
            int: Number of entries removed
        """
        if prefix is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            removed = len(keys)

        if removed:
            logger.debug("cache_invalidated", prefix=prefix, removed=removed)
        return removed

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Read-through lookup.

        A cached falsy value (``0``, ``[]``, ``None``) counts as a hit.
        Concurrent misses on the same key may each call the fetcher.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        value = await fetcher()
        self.set(key, value, ttl)
        return value

    def stats(self) -> Dict[str, int]:
        """Entry count (including not-yet-evicted expired ones), hits and misses."""
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Join the non-None parts of a key with ``:``."""
        return ":".join(str(part) for part in parts if part is not None)
