"""Query client: caching, deduplication, revalidation and subscriptions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType, TracebackType
from typing import Any, TypeVar, cast

from qora.channel import BroadcastChannel, Subscription
from qora.duration import now_ms, to_seconds
from qora.entry import CacheEntry
from qora.exceptions import DisabledQueryError, UseAfterDisposeError
from qora.key import CanonicalKey, normalize_key, stringify_key
from qora.mutation import MutationEvent
from qora.mutation_state import MutationState
from qora.options import ClientConfig, QueryOptions
from qora.retry import run_with_retry
from qora.state import Failure, Initial, Loading, QueryState, QueryStatus, Success
from qora.store import CacheStore
from qora.tracking.base import QueryTracker
from qora.tracking.noop import NoOpTracker
from qora.types import Fetcher, NormalizedKey

T = TypeVar("T")

logger = logging.getLogger(__name__)


class QueryClient:
    """Owns the query cache and every in-flight fetch.

    Usage:
        client = QueryClient(ClientConfig(default_options=QueryOptions(stale_time="5m")))

        user = await client.fetch_once(["users", 42], lambda: api.get_user(42))

        async with client.watch(["users", 42], lambda: api.get_user(42)) as states:
            async for state in states:
                render(state)

    Concurrent fetches of the same key share one underlying fetcher call.
    Cached data younger than ``stale_time`` is returned without fetching;
    older data is returned immediately and refreshed in the background.

    ``QueryClient`` also implements ``MutationTracker``: pass it as the
    ``tracker`` of a ``MutationController`` to see that controller in
    ``active_mutations`` and ``mutation_events()``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        tracker: QueryTracker | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._tracker: QueryTracker = tracker if tracker is not None else NoOpTracker()
        self._store = CacheStore(
            max_size=self._config.max_cache_size,
            on_evict=self._on_entry_removed,
        )
        # In-flight fetches by canonical key, for deduplication only.
        self._pending: dict[CanonicalKey, asyncio.Task[Any]] = {}
        # Pending mutations only; finished ones are purged on settle.
        self._active_mutations: dict[str, MutationEvent] = {}
        self._mutation_bus: BroadcastChannel[MutationEvent] = BroadcastChannel()
        self._sweeper: asyncio.Task[None] | None = None
        self._disposed = False

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def fetch_once(
        self,
        key: Any,
        fetcher: Fetcher[T],
        options: QueryOptions | None = None,
    ) -> T:
        """Fetch data once and return it.

        - Fresh cached data: returned without calling ``fetcher``
        - Stale cached data: returned immediately, refreshed in the background
        - No data: fetched (with retries) and awaited

        Raises:
            DisabledQueryError: ``options.enabled`` is False.
            Exception: the (mapped) error of the last attempt.
        """
        self._ensure_not_disposed()
        normalized = normalize_key(key)
        opts = self._config.default_options.merge(options)

        if not opts.is_enabled:
            raise DisabledQueryError(f"Query is disabled: {stringify_key(normalized)}")

        entry = self._get_or_create_entry(normalized, opts)
        state = entry.state

        if isinstance(state, Success):
            if not entry.is_stale(opts.stale_time_ms):
                logger.debug("Cache HIT (fresh): %s", normalized)
                entry.touch()
                return cast(T, state.data)

            logger.debug("Cache HIT (stale): %s, revalidating in background", normalized)
            self._do_fetch(normalized, entry, fetcher, opts)
            return cast(T, state.data)

        task = self._do_fetch(normalized, entry, fetcher, opts)
        # shield: a cancelled caller must not cancel the fetch other callers share
        return cast(T, await asyncio.shield(task))

    def watch(
        self,
        key: Any,
        fetcher: Fetcher[T],
        options: QueryOptions | None = None,
    ) -> Subscription[QueryState[T]]:
        """Subscribe to a query's state, fetching as needed.

        The subscription yields the current state first, then every change
        from any source. It fetches when the query has never been fetched,
        or when the data is stale and ``refetch_on_mount`` is on, and polls
        every ``refetch_interval`` while anyone is subscribed.

        Close the subscription (or leave its ``async with`` block) to
        unsubscribe; once no subscriber is left, the entry is removed after
        ``cache_time`` unless someone subscribes again.

        Must be called from a running event loop.
        """
        self._ensure_not_disposed()
        loop = asyncio.get_running_loop()
        normalized = normalize_key(key)
        opts = self._config.default_options.merge(options)
        entry = self._get_or_create_entry(normalized, opts)

        subscription = self._open_subscription(normalized, entry, loop)

        if opts.is_enabled:
            refetch_on_mount = (
                opts.refetch_on_mount
                if opts.refetch_on_mount is not None
                else self._config.refetch_on_mount
            )
            first_fetch = isinstance(entry.state, Initial)
            if first_fetch or (refetch_on_mount and entry.is_stale(opts.stale_time_ms)):
                self._do_fetch(normalized, entry, fetcher, opts)

            interval_ms = opts.refetch_interval_ms
            if interval_ms is not None:
                self._arm_polling(normalized, entry, fetcher, opts, interval_ms, loop)

        return subscription

    def watch_state_only(self, key: Any) -> Subscription[QueryState[Any]]:
        """Subscribe to a query's state without ever fetching it.

        Must be called from a running event loop.
        """
        self._ensure_not_disposed()
        loop = asyncio.get_running_loop()
        normalized = normalize_key(key)
        entry = self._get_or_create_entry(normalized)
        return self._open_subscription(normalized, entry, loop)

    async def prefetch(
        self,
        key: Any,
        fetcher: Fetcher[Any],
        options: QueryOptions | None = None,
    ) -> None:
        """Warm the cache; no-op when data is fresh or the query is disabled."""
        self._ensure_not_disposed()
        normalized = normalize_key(key)
        opts = self._config.default_options.merge(options)

        if not opts.is_enabled:
            logger.debug("Prefetch skipped (disabled): %s", normalized)
            return

        entry = self._get_or_create_entry(normalized, opts)
        if isinstance(entry.state, Success) and not entry.is_stale(opts.stale_time_ms):
            logger.debug("Prefetch skipped (fresh): %s", normalized)
            return

        logger.debug("Prefetching: %s", normalized)
        await asyncio.shield(self._do_fetch(normalized, entry, fetcher, opts))

    # -------------------------------------------------------------------------
    # Direct cache writes
    # -------------------------------------------------------------------------

    def set_query_data(self, key: Any, data: Any) -> None:
        """Write data as a Success state, notifying every subscriber.

        Usage (optimistic update):
            snapshot = client.get_query_data(["todos"])
            client.set_query_data(["todos"], [*snapshot, new_todo])
        """
        self._ensure_not_disposed()
        normalized = normalize_key(key)
        entry = self._get_or_create_entry(normalized)
        entry.update_state(Success(data=data, updated_at=now_ms()))
        self._tracker.on_optimistic_write(stringify_key(normalized), data)
        logger.debug("set_query_data: %s", normalized)

    def restore_query_data(self, key: Any, snapshot: Any | None) -> None:
        """Roll back to ``snapshot``, or remove the query if it is None."""
        self._ensure_not_disposed()
        if snapshot is None:
            self.remove_query(key)
        else:
            self.set_query_data(key, snapshot)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate(self, key: Any) -> None:
        """Mark a query as needing a fetch.

        Subscribers see ``Loading(previous_data)`` (or ``Initial`` when there
        is no data) and the next access starts a new fetch. A fetch already
        running is not cancelled; if it finishes later its result is still
        written to the cache.
        """
        self._ensure_not_disposed()
        normalized = normalize_key(key)
        entry = self._store.get(normalized)
        if entry is None:
            return

        logger.debug("Invalidating: %s", normalized)
        previous = entry.state.data_or_none
        entry.update_state(
            Loading(previous_data=previous) if previous is not None else Initial()
        )
        self._pending.pop(CanonicalKey(normalized), None)
        self._tracker.on_invalidated(stringify_key(normalized))

    def invalidate_where(self, predicate: Callable[[NormalizedKey], bool]) -> None:
        """Invalidate every cached query whose normalized key matches.

        Usage:
            client.invalidate_where(lambda key: key[:1] == ("posts",))
        """
        self._ensure_not_disposed()
        for key in self._store.find_keys(predicate):
            self.invalidate(key)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_query_data(self, key: Any) -> Any | None:
        """Cached data (including previous data while loading or failed)."""
        self._ensure_not_disposed()
        entry = self._store.get(normalize_key(key))
        return entry.state.data_or_none if entry is not None else None

    def get_query_state(self, key: Any) -> QueryState[Any]:
        """Full state of a query; ``Initial`` when it is not cached."""
        self._ensure_not_disposed()
        entry = self._store.get(normalize_key(key))
        return entry.state if entry is not None else Initial()

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def remove_query(self, key: Any) -> None:
        """Drop one query and forget its in-flight fetch."""
        self._ensure_not_disposed()
        normalized = normalize_key(key)
        self._store.remove(normalized)
        self._pending.pop(CanonicalKey(normalized), None)
        logger.debug("Removed: %s", normalized)

    def clear(self) -> None:
        """Drop every query and forget every in-flight fetch."""
        self._ensure_not_disposed()
        self._store.clear()
        self._pending.clear()
        self._tracker.on_cache_cleared()
        logger.debug("Cache cleared")

    # -------------------------------------------------------------------------
    # Mutation observability (MutationTracker)
    # -------------------------------------------------------------------------

    def mutation_events(self) -> Subscription[MutationEvent]:
        """Stream of every state transition of tracked mutation controllers."""
        self._ensure_not_disposed()
        return self._mutation_bus.subscribe()

    @property
    def active_mutations(self) -> Mapping[str, MutationEvent]:
        """Currently pending mutations by controller id."""
        return MappingProxyType(dict(self._active_mutations))

    def track_mutation(
        self,
        mutation_id: str,
        state: MutationState[Any, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        if self._disposed:
            return

        event = MutationEvent(
            mutation_id=mutation_id,
            status=state.status,
            data=state.data_or_none,
            error=state.error_or_none,
            variables=state.variables_or_none,
            metadata=metadata,
        )

        if state.is_pending:
            self._tracker.on_mutation_started(
                mutation_id, self._metadata_key(metadata), state.variables_or_none
            )
            self._active_mutations[mutation_id] = event
        else:
            # on_mutate failures settle without ever starting
            started = self._active_mutations.pop(mutation_id, None) is not None
            if event.is_finished and started:
                self._tracker.on_mutation_settled(
                    mutation_id,
                    state.is_success,
                    state.data_or_none if state.is_success else state.error_or_none,
                )

        self._mutation_bus.publish(event)
        logger.debug("Mutation [%s]: %s", mutation_id, type(state).__name__)

    def untrack_mutation(self, mutation_id: str) -> None:
        # Called on controller dispose: forget silently, no event.
        self._active_mutations.pop(mutation_id, None)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def cached_keys(self) -> list[NormalizedKey]:
        return self._store.keys()

    def debug_info(self) -> dict[str, int]:
        return {
            **self._store.debug_info(),
            "pending_requests": len(self._pending),
            "active_mutations": len(self._active_mutations),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def dispose(self) -> None:
        """Stop the sweep, dispose every entry and refuse further use."""
        if self._disposed:
            return
        self._disposed = True
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        self._store.clear()
        self._pending.clear()
        self._active_mutations.clear()
        self._mutation_bus.close()
        self._tracker.dispose()
        logger.debug("QueryClient disposed")

    async def __aenter__(self) -> QueryClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _do_fetch(
        self,
        key: NormalizedKey,
        entry: CacheEntry[Any],
        fetcher: Fetcher[Any],
        opts: QueryOptions,
    ) -> asyncio.Task[Any]:
        """Start a fetch for ``key``, or join the one already running."""
        index = CanonicalKey(key)

        pending = self._pending.get(index)
        if pending is not None:
            logger.debug("Deduplicating: %s", key)
            return pending

        previous = entry.state.data_or_none
        entry.update_state(Loading(previous_data=previous))

        string_key = stringify_key(key)
        task = asyncio.create_task(
            self._run_fetch(index, string_key, entry, fetcher, opts, previous),
            name=f"qora-fetch:{string_key}",
        )
        task.add_done_callback(_log_fetch_failure)
        self._pending[index] = task
        return task

    async def _run_fetch(
        self,
        index: CanonicalKey,
        string_key: str,
        entry: CacheEntry[Any],
        fetcher: Fetcher[Any],
        opts: QueryOptions,
        previous: Any,
    ) -> Any:
        try:
            data = await run_with_retry(
                fetcher,
                retry_count=opts.retry_count or 0,
                get_delay=opts.get_retry_delay,
                label=f"Fetch {string_key}",
            )
        except Exception as exc:
            mapped = self._map_error(exc)
            entry.update_state(
                Failure(error=mapped, trace=exc.__traceback__, previous_data=previous)
            )
            if not self._disposed:
                self._tracker.on_fetch_completed(string_key, mapped, QueryStatus.ERROR)
            if mapped is exc:
                raise
            raise mapped from exc
        finally:
            # invalidate() may have handed the slot to a newer fetch
            if self._pending.get(index) is asyncio.current_task():
                del self._pending[index]

        entry.update_state(Success(data=data, updated_at=now_ms()))
        if not self._disposed:
            self._tracker.on_fetch_completed(string_key, data, QueryStatus.SUCCESS)
        return data

    def _get_or_create_entry(
        self, key: NormalizedKey, opts: QueryOptions | None = None
    ) -> CacheEntry[Any]:
        """Return the live entry for ``key``, replacing an expired one."""
        self._ensure_sweeper()

        existing = self._store.peek(key)
        if existing is not None:
            if existing.should_evict():
                logger.debug("Lazy evict: %s", key)
                self._store.remove(key)
            else:
                self._store.get(key)
                if opts is not None:
                    existing.cache_time_ms = opts.cache_time_ms
                return existing

        logger.debug("Cache MISS: %s", key)
        resolved = opts or self._config.default_options
        entry: CacheEntry[Any] = CacheEntry(Initial(), cache_time_ms=resolved.cache_time_ms)
        self._store.set(key, entry)
        return entry

    def _open_subscription(
        self,
        key: NormalizedKey,
        entry: CacheEntry[Any],
        loop: asyncio.AbstractEventLoop,
    ) -> Subscription[QueryState[Any]]:
        entry.add_subscriber()
        entry.cancel_gc_timer()

        def on_close() -> None:
            entry.remove_subscriber()
            if not entry.is_active:
                entry.cancel_poll_timer()
                self._schedule_gc(key, entry, loop)

        return entry.subscribe(on_close)

    def _arm_polling(
        self,
        key: NormalizedKey,
        entry: CacheEntry[Any],
        fetcher: Fetcher[Any],
        opts: QueryOptions,
        interval_ms: int,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        def tick() -> None:
            if self._disposed or entry.is_disposed or not entry.is_active:
                return
            logger.debug("Polling: %s", key)
            self._do_fetch(key, entry, fetcher, opts)
            entry.set_poll_timer(loop.call_later(interval_ms / 1000, tick))

        entry.set_poll_timer(loop.call_later(interval_ms / 1000, tick))

    def _schedule_gc(
        self,
        key: NormalizedKey,
        entry: CacheEntry[Any],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        """Remove ``entry`` after its cache time unless it regains subscribers."""
        if self._disposed or entry.is_disposed or entry.is_active:
            return
        if self._store.peek(key) is not entry:
            return

        def collect() -> None:
            if not entry.is_active and self._store.peek(key) is entry:
                self._store.remove(key)
                logger.debug("GC removed: %s", key)

        entry.set_gc_timer(loop.call_later(entry.cache_time_ms / 1000, collect))

    def _ensure_sweeper(self) -> None:
        if self._sweeper is not None or self._disposed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sync use outside a loop; the first call made inside one starts it.
            return
        self._sweeper = loop.create_task(self._sweep_forever(), name="qora-sweeper")

    async def _sweep_forever(self) -> None:
        interval = to_seconds(self._config.sweep_interval)
        while not self._disposed:
            await asyncio.sleep(interval)
            self._evict_expired_entries()

    def _evict_expired_entries(self) -> int:
        """Remove every inactive entry idle for longer than its cache time."""
        expired = [key for key, entry in self._store.entries() if entry.should_evict()]
        for key in expired:
            self._store.remove(key)
            logger.debug("Evicted: %s", key)
        return len(expired)

    def _on_entry_removed(self, key: NormalizedKey) -> None:
        self._pending.pop(CanonicalKey(key), None)
        if self._config.on_cache_evict is not None:
            self._config.on_cache_evict(key)

    def _map_error(self, error: Exception) -> Exception:
        mapper = self._config.error_mapper
        if mapper is None:
            return error
        try:
            return mapper(error, error.__traceback__)
        except Exception as mapper_error:
            # the failing mapper's own error becomes the query's error
            logger.debug("error_mapper raised %r while mapping %r", mapper_error, error)
            return mapper_error

    @staticmethod
    def _metadata_key(metadata: Mapping[str, Any] | None) -> str:
        if not metadata or metadata.get("query_key") is None:
            return ""
        value = metadata["query_key"]
        if isinstance(value, str):
            return value
        return stringify_key(normalize_key(value))

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            raise UseAfterDisposeError("QueryClient has been disposed")


def _log_fetch_failure(task: asyncio.Task[Any]) -> None:
    """Retrieve a fetch task's error so background failures are not reported as unhandled."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("%s failed: %r", task.get_name(), error)


__all__ = ["QueryClient"]
