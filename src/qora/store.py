"""In-memory cache store with LRU eviction of inactive entries."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from qora.entry import CacheEntry
from qora.key import CanonicalKey
from qora.types import EvictCallback, NormalizedKey

logger = logging.getLogger(__name__)


class CacheStore:
    """Bounded mapping from normalized key to ``CacheEntry``.

    Entries are indexed by ``CanonicalKey``, so separately built keys with the
    same content share a slot. When the store is full, inserting a new key
    evicts the least recently accessed entry that has no subscribers; entries
    with subscribers are never evicted.
    """

    def __init__(
        self,
        max_size: int | None = None,
        on_evict: EvictCallback | None = None,
    ) -> None:
        self._entries: OrderedDict[CanonicalKey, CacheEntry[Any]] = OrderedDict()
        self._max_size = max_size
        self._on_evict = on_evict

    def get(self, key: NormalizedKey) -> CacheEntry[Any] | None:
        """Get an entry and mark it as recently accessed."""
        index = CanonicalKey(key)
        entry = self._entries.get(index)
        if entry is not None:
            self._entries.move_to_end(index)  # LRU touch
            entry.touch()
        return entry

    def peek(self, key: NormalizedKey) -> CacheEntry[Any] | None:
        """Get an entry without affecting its access recency."""
        return self._entries.get(CanonicalKey(key))

    def set(self, key: NormalizedKey, entry: CacheEntry[Any]) -> None:
        """Store an entry, evicting one inactive entry first if full."""
        index = CanonicalKey(key)
        existing = self._entries.get(index)
        if existing is None:
            if self._max_size is not None and len(self._entries) >= self._max_size:
                self._evict_one()
        elif existing is not entry:
            existing.dispose()
        self._entries[index] = entry
        self._entries.move_to_end(index)

    def remove(self, key: NormalizedKey) -> CacheEntry[Any] | None:
        """Dispose and remove an entry, notifying the eviction callback."""
        entry = self._entries.pop(CanonicalKey(key), None)
        if entry is None:
            return None
        entry.dispose()
        if self._on_evict is not None:
            self._on_evict(key)
        return entry

    def clear(self) -> None:
        """Dispose and drop every entry."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.dispose()

    def find_keys(
        self, predicate: Callable[[NormalizedKey], bool]
    ) -> list[NormalizedKey]:
        """Keys matching ``predicate``, collected before returning."""
        return [index.parts for index in self._entries if predicate(index.parts)]

    def keys(self) -> list[NormalizedKey]:
        return [index.parts for index in self._entries]

    def entries(self) -> list[tuple[NormalizedKey, CacheEntry[Any]]]:
        """Snapshot of (key, entry) pairs; does not touch recency."""
        return [(index.parts, entry) for index, entry in self._entries.items()]

    def debug_info(self) -> dict[str, int]:
        return {
            "total_queries": len(self._entries),
            "active_queries": sum(1 for e in self._entries.values() if e.is_active),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple):
            return False
        return CanonicalKey(key) in self._entries

    def _evict_one(self) -> None:
        inactive = [
            (index, entry)
            for index, entry in self._entries.items()
            if not entry.is_active
        ]
        if not inactive:
            logger.warning(
                "Cache is full (%d entries) and every entry has subscribers; "
                "growing past max_size",
                len(self._entries),
            )
            return
        # min() keeps the first of equal timestamps, i.e. the older LRU slot
        index, _ = min(inactive, key=lambda item: item[1].last_accessed_at)
        logger.debug("LRU evict: %s", index.parts)
        self.remove(index.parts)


__all__ = ["CacheStore"]
