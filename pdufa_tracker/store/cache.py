"""PDUFA Tracker — In-process TTL Cache.

Advisory read cache in front of the store. Entries expire after the TTL
and the whole cache is dropped after every successful scrape cycle.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pdufa_tracker.config import settings
from pdufa_tracker.core.logging import get_logger

logger = get_logger("cache")

MISS = object()


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._generation = 0

    def get(self, key: str) -> Any:
        """Return the cached value, or ``MISS`` if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return MISS
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                return MISS
            self._hits += 1
            return entry.value

    @property
    def generation(self) -> int:
        """Bumped by every ``clear()``."""
        with self._lock:
            return self._generation

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store ``value``. With ``generation``, the write is dropped if the
        cache was cleared since that generation was read."""
        ttl = self.ttl if ttl is None else ttl
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1
        logger.info(f"Cache cleared ({count} entries)")
        return count

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttlSeconds": self.ttl,
            }
