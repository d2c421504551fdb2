"""In-memory LRU cache for decrypted thumbnail bytes.

Two limits are enforced on every insertion: aggregate byte size and item
count. Recency is tracked by insertion/promotion order of an OrderedDict,
so promotion and eviction are both O(1) and never depend on clock
resolution. Not safe for concurrent mutation from multiple threads; keep
each instance on the event loop that owns it.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    """A cached payload plus its last access time (diagnostics only)."""

    key: str
    data: bytes
    accessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class LRUByteCache:
    """Capacity-bounded key -> bytes store with least-recently-used eviction."""

    __slots__ = ("max_size_bytes", "max_items", "_entries", "_current_size_bytes")

    def __init__(self, max_size_bytes: int, max_items: int) -> None:
        if max_size_bytes <= 0 or max_items <= 0:
            raise ValueError("Cache limits must be positive")
        self.max_size_bytes = max_size_bytes
        self.max_items = max_items
        # Oldest first; the last item is the most recently used
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._current_size_bytes = 0

    @property
    def current_size_bytes(self) -> int:
        return self._current_size_bytes

    @property
    def item_count(self) -> int:
        return len(self._entries)

    @property
    def is_empty(self) -> bool:
        return not self._entries

    @property
    def is_full(self) -> bool:
        return (
            self._current_size_bytes >= self.max_size_bytes
            or len(self._entries) >= self.max_items
        )

    @property
    def utilization_percent(self) -> float:
        return self._current_size_bytes / self.max_size_bytes * 100

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._entries)

    def contains(self, key: str) -> bool:
        """Membership check that does not touch recency."""
        return key in self._entries

    def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.accessed_at = datetime.now(timezone.utc)
        self._entries.move_to_end(key)
        return entry.data

    def put(self, key: str, data: bytes) -> None:
        """Insert *data* as most recently used, evicting LRU entries as needed.

        An existing entry for *key* is dropped first so the size accounting
        never counts it twice. Eviction stops once both limits hold or the
        store is empty, so a single payload larger than max_size_bytes is
        still stored on its own.
        """
        self._evict(key)

        while self._entries and (
            self._current_size_bytes + len(data) > self.max_size_bytes
            or len(self._entries) + 1 > self.max_items
        ):
            self._evict_oldest()

        self._entries[key] = CacheEntry(key=key, data=data)
        self._current_size_bytes += len(data)

    def remove(self, key: str) -> None:
        self._evict(key)

    def clear(self) -> None:
        self._entries.clear()
        self._current_size_bytes = 0

    def trim_to_size(self, target_size_bytes: int) -> None:
        """Evict LRU entries until the aggregate size is at most the target."""
        while self._entries and self._current_size_bytes > target_size_bytes:
            self._evict_oldest()

    def _evict(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._current_size_bytes -= entry.size_bytes

    def _evict_oldest(self) -> None:
        _, entry = self._entries.popitem(last=False)
        self._current_size_bytes -= entry.size_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"LRUByteCache(items={self.item_count}, "
            f"size={self._current_size_bytes / 1024 / 1024:.1f}MB/"
            f"{self.max_size_bytes / 1024 / 1024:.1f}MB)"
        )


class ThumbnailCache:
    """Decrypted thumbnail bytes keyed by document id, with hit/miss stats.

    All eviction is delegated to the wrapped LRUByteCache.
    """

    KEY_PREFIX = "thumb_"

    __slots__ = ("_cache", "_hits", "_misses")

    def __init__(self, max_size_bytes: int, max_items: int) -> None:
        self._cache = LRUByteCache(max_size_bytes=max_size_bytes, max_items=max_items)
        self._hits = 0
        self._misses = 0

    @classmethod
    def cache_key(cls, document_id: str) -> str:
        return f"{cls.KEY_PREFIX}{document_id}"

    @property
    def cache_hits(self) -> int:
        return self._hits

    @property
    def cache_misses(self) -> int:
        return self._misses

    @property
    def hit_rate(self) -> float:
        """Cumulative hit rate as a percentage (0-100); 0 before any lookup."""
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return self._hits / total * 100

    @property
    def current_size_bytes(self) -> int:
        return self._cache.current_size_bytes

    @property
    def item_count(self) -> int:
        return self._cache.item_count

    @property
    def is_empty(self) -> bool:
        return self._cache.is_empty

    @property
    def utilization_percent(self) -> float:
        return self._cache.utilization_percent

    def get_thumbnail(self, document_id: str) -> bytes | None:
        data = self._cache.get(self.cache_key(document_id))
        if data is None:
            self._misses += 1
        else:
            self._hits += 1
        return data

    def put_thumbnail(self, document_id: str, data: bytes) -> None:
        self._cache.put(self.cache_key(document_id), data)

    def remove_thumbnail(self, document_id: str) -> None:
        self._cache.remove(self.cache_key(document_id))

    def has_thumbnail(self, document_id: str) -> bool:
        return self._cache.contains(self.cache_key(document_id))

    def clear(self) -> None:
        """Drop every cached thumbnail and reset statistics."""
        self._cache.clear()
        self.reset_statistics()

    def trim_to_size(self, target_size_bytes: int) -> None:
        before = self._cache.current_size_bytes
        self._cache.trim_to_size(target_size_bytes)
        logger.debug(
            "Thumbnail cache trimmed from %d to %d bytes",
            before, self._cache.current_size_bytes,
        )

    def reset_statistics(self) -> None:
        self._hits = 0
        self._misses = 0

    def stats(self) -> dict:
        return {
            "items": self.item_count,
            "size_bytes": self.current_size_bytes,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self.hit_rate, 1),
        }

    def __repr__(self) -> str:
        return (
            f"ThumbnailCache(items={self.item_count}, "
            f"size={self.current_size_bytes / 1024 / 1024:.1f}MB, "
            f"hitRate={self.hit_rate:.1f}%)"
        )
