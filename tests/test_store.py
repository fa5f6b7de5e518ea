"""Tests for the cache store."""

from qora import Initial, normalize_key
from qora.entry import CacheEntry
from qora.store import CacheStore


def key(*parts: object) -> tuple:
    return normalize_key(list(parts))


class TestCacheStore:
    """Tests for basic store operations."""

    def test_lookup_by_structural_key(self) -> None:
        store = CacheStore()
        entry: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("todos", {"page": 1, "done": True}), entry)

        assert store.get(key("todos", {"done": True, "page": 1})) is entry
        assert key("todos", {"done": True, "page": 1}) in store

    def test_remove_disposes_and_notifies(self) -> None:
        evicted: list[tuple] = []
        store = CacheStore(on_evict=evicted.append)
        entry: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("a"), entry)

        assert store.remove(key("a")) is entry
        assert entry.is_disposed
        assert evicted == [("a",)]
        assert store.remove(key("a")) is None

    def test_replacing_disposes_old_entry(self) -> None:
        store = CacheStore()
        old: CacheEntry[int] = CacheEntry(Initial())
        new: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("a"), old)
        store.set(key("a"), new)

        assert old.is_disposed
        assert store.peek(key("a")) is new
        assert len(store) == 1

    def test_clear_disposes_without_callback(self) -> None:
        evicted: list[tuple] = []
        store = CacheStore(on_evict=evicted.append)
        entry: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("a"), entry)

        store.clear()

        assert len(store) == 0
        assert entry.is_disposed
        assert evicted == []

    def test_find_keys(self) -> None:
        store = CacheStore()
        for parts in (("posts", 1), ("posts", 2), ("users", 1)):
            store.set(key(*parts), CacheEntry(Initial()))

        found = store.find_keys(lambda k: k[0] == "posts")
        assert found == [("posts", 1), ("posts", 2)]

    def test_debug_info(self) -> None:
        store = CacheStore()
        active: CacheEntry[int] = CacheEntry(Initial())
        active.add_subscriber()
        store.set(key("a"), active)
        store.set(key("b"), CacheEntry(Initial()))

        assert store.debug_info() == {"total_queries": 2, "active_queries": 1}


class TestLruEviction:
    """Tests for capacity-bounded eviction."""

    def test_evicts_least_recently_accessed_inactive_entry(self) -> None:
        evicted: list[tuple] = []
        store = CacheStore(max_size=2, on_evict=evicted.append)
        first: CacheEntry[int] = CacheEntry(Initial())
        second: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("first"), first)
        store.set(key("second"), second)
        first.last_accessed_at = 1
        second.last_accessed_at = 2

        store.set(key("third"), CacheEntry(Initial()))

        assert evicted == [("first",)]
        assert first.is_disposed
        assert len(store) == 2

    def test_active_entries_are_skipped(self) -> None:
        store = CacheStore(max_size=2)
        active: CacheEntry[int] = CacheEntry(Initial())
        active.add_subscriber()
        active.last_accessed_at = 1
        idle: CacheEntry[int] = CacheEntry(Initial())
        idle.last_accessed_at = 2
        store.set(key("active"), active)
        store.set(key("idle"), idle)

        store.set(key("new"), CacheEntry(Initial()))

        assert key("active") in store
        assert key("idle") not in store

    def test_grows_when_everything_is_active(self) -> None:
        store = CacheStore(max_size=1)
        active: CacheEntry[int] = CacheEntry(Initial())
        active.add_subscriber()
        store.set(key("active"), active)

        store.set(key("new"), CacheEntry(Initial()))

        assert len(store) == 2
        assert not active.is_disposed

    def test_peek_leaves_access_time_alone(self) -> None:
        store = CacheStore()
        entry: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("a"), entry)
        entry.last_accessed_at = 1

        assert store.peek(key("a")) is entry
        assert entry.last_accessed_at == 1

    def test_peeked_entry_is_still_evicted_first(self) -> None:
        evicted: list[tuple] = []
        store = CacheStore(max_size=2, on_evict=evicted.append)
        first: CacheEntry[int] = CacheEntry(Initial())
        second: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("first"), first)
        store.set(key("second"), second)
        first.last_accessed_at = 1
        second.last_accessed_at = 2

        store.peek(key("first"))
        store.set(key("third"), CacheEntry(Initial()))

        assert evicted == [("first",)]
        assert key("second") in store

    def test_get_protects_entry_from_eviction(self) -> None:
        evicted: list[tuple] = []
        store = CacheStore(max_size=2, on_evict=evicted.append)
        first: CacheEntry[int] = CacheEntry(Initial())
        second: CacheEntry[int] = CacheEntry(Initial())
        store.set(key("first"), first)
        store.set(key("second"), second)
        first.last_accessed_at = 1
        second.last_accessed_at = 2

        store.get(key("first"))
        store.set(key("third"), CacheEntry(Initial()))

        assert evicted == [("second",)]
