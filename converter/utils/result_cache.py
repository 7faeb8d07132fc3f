"""
In-process cache of conversion results keyed by input content hash.

Eviction removes the entry with the oldest insertion time once the cache is
full. Reads never refresh an entry, so this is insertion-order (FIFO)
eviction rather than LRU.
"""

import hashlib
import threading
import time
from typing import Callable, Dict, Optional

from ..config import DEFAULT_CACHE_SIZE
from .logging_config import get_logger

logger = get_logger(__name__)


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw upload bytes."""
    return hashlib.sha256(data).hexdigest()


class CacheEntry:
    """A cached result and the time it was stored."""

    __slots__ = ("data", "created_at")

    def __init__(self, data: bytes, created_at: float):
        self.data = data
        self.created_at = created_at

    def __repr__(self):
        return f"CacheEntry(size={len(self.data)}, created_at={self.created_at})"


class ResultCache:
    """
    Bounded mapping from content hash to result bytes.

    The size check, eviction and insert run under one lock so the bound
    holds when handlers run on worker threads.
    """

    def __init__(self, max_entries: int = DEFAULT_CACHE_SIZE,
                 clock: Callable[[], float] = time.time,
                 name: str = "results"):
        """
        Args:
            max_entries: Maximum number of entries kept
            clock: Source of insertion timestamps
            name: Label used in log messages
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        """Return the cached bytes for key, or None on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        logger.debug(f"{self.name} cache hit: {key[:12]}")
        return entry.data

    def put(self, key: str, data: bytes) -> None:
        """Store data under key, evicting the oldest entry when full."""
        with self._lock:
            # Replacing a present key keeps the size unchanged, so nothing is evicted
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_oldest()
            self._entries[key] = CacheEntry(data, self._clock())

    def _evict_oldest(self) -> None:
        # min() keeps the first of equal timestamps, i.e. the earliest inserted
        oldest_key = min(self._entries, key=lambda k: self._entries[k].created_at)
        del self._entries[oldest_key]
        logger.debug(f"{self.name} cache evicted: {oldest_key[:12]}")

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self):
        return list(self._entries)
