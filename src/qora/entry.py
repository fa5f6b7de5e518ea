"""Cache entry: the reactive state of one query key."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Generic, TypeVar

from qora.channel import BroadcastChannel, Subscription
from qora.duration import now_ms
from qora.state import QueryState

T = TypeVar("T")


class CacheEntry(Generic[T]):
    """Owns one key's state, subscriber count, timers and broadcast channel."""

    __slots__ = (
        "_channel",
        "_disposed",
        "_gc_timer",
        "_poll_timer",
        "_state",
        "_subscriber_count",
        "cache_time_ms",
        "created_at",
        "last_accessed_at",
    )

    def __init__(
        self,
        state: QueryState[T],
        *,
        cache_time_ms: int = 300_000,
        created_at: int | None = None,
    ) -> None:
        self._state = state
        self.created_at = created_at if created_at is not None else now_ms()
        self.last_accessed_at = self.created_at
        self.cache_time_ms = cache_time_ms
        self._subscriber_count = 0
        self._gc_timer: asyncio.TimerHandle | None = None
        self._poll_timer: asyncio.TimerHandle | None = None
        self._channel: BroadcastChannel[QueryState[T]] = BroadcastChannel()
        self._disposed = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> QueryState[T]:
        return self._state

    def update_state(self, new_state: QueryState[T]) -> None:
        """Replace the state and broadcast it. No-op once disposed."""
        if self._disposed:
            return
        self._state = new_state
        self.touch()
        self._channel.publish(new_state)

    def subscribe(
        self, on_close: Callable[[], None] | None = None
    ) -> Subscription[QueryState[T]]:
        """Subscribe; the current state is the first value delivered."""
        return self._channel.subscribe(self._state, on_close=on_close)

    # -------------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return self._subscriber_count

    @property
    def is_active(self) -> bool:
        return self._subscriber_count > 0

    def add_subscriber(self) -> None:
        self._subscriber_count += 1
        self.touch()

    def remove_subscriber(self) -> None:
        if self._subscriber_count > 0:
            self._subscriber_count -= 1
        self.touch()

    # -------------------------------------------------------------------------
    # Staleness & eviction
    # -------------------------------------------------------------------------

    def touch(self) -> None:
        self.last_accessed_at = now_ms()

    def is_stale(self, stale_time_ms: int) -> bool:
        """Stale unless a successful fetch finished less than ``stale_time_ms`` ago."""
        return self._state.is_stale(stale_time_ms)

    def should_evict(self, cache_time_ms: int | None = None) -> bool:
        """Inactive and idle for longer than the cache time."""
        if self.is_active:
            return False
        limit = self.cache_time_ms if cache_time_ms is None else cache_time_ms
        return now_ms() - self.last_accessed_at > limit

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def set_gc_timer(self, handle: asyncio.TimerHandle | None) -> None:
        if self._gc_timer is not None:
            self._gc_timer.cancel()
        self._gc_timer = handle

    def cancel_gc_timer(self) -> None:
        self.set_gc_timer(None)

    def set_poll_timer(self, handle: asyncio.TimerHandle | None) -> None:
        if self._poll_timer is not None:
            self._poll_timer.cancel()
        self._poll_timer = handle

    def cancel_poll_timer(self) -> None:
        self.set_poll_timer(None)

    @property
    def has_gc_timer(self) -> bool:
        return self._gc_timer is not None

    @property
    def has_poll_timer(self) -> bool:
        return self._poll_timer is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.cancel_gc_timer()
        self.cancel_poll_timer()
        self._channel.close()

    def __repr__(self) -> str:
        return (
            f"CacheEntry(state={type(self._state).__name__}, "
            f"subscribers={self._subscriber_count}, disposed={self._disposed})"
        )


__all__ = ["CacheEntry"]
