"""Broadcast channels with replay of the current value.

Every subscriber gets its own queue. When a subscription is created with a
current value, that value is queued synchronously before the subscription is
registered for broadcasts, so no update published afterwards can overtake it
and none can be lost between "subscribe" and the first ``await``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

_END = object()
_MISSING: Any = object()


class Subscription(Generic[T]):
    """An async iterator over the values published to one subscriber.

    Usage:
        async with entry.subscribe() as states:
            async for state in states:
                ...

    ``close()`` stops delivery. Values already queued are still yielded,
    then iteration ends. The ``on_close`` callback runs exactly once, whether
    the subscriber closed it or the channel was closed.
    """

    __slots__ = ("_channel", "_closed", "_done", "_on_close", "_queue")

    def __init__(
        self,
        channel: BroadcastChannel[T],
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._channel = channel
        self._on_close = on_close
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._done = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, value: T) -> None:
        if not self._closed:
            self._queue.put_nowait(value)

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)
        self._channel._discard(self)
        if self._on_close is not None:
            callback, self._on_close = self._on_close, None
            callback()

    async def aclose(self) -> None:
        self.close()

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        if self._done:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._done = True
            raise StopAsyncIteration
        return item  # type: ignore[no-any-return]

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class BroadcastChannel(Generic[T]):
    """Fan-out of published values to every open subscription."""

    __slots__ = ("_closed", "_subscribers")

    def __init__(self) -> None:
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        current: T = _MISSING,
        *,
        on_close: Callable[[], None] | None = None,
    ) -> Subscription[T]:
        """Open a subscription, queueing ``current`` first when given.

        Subscribing to a closed channel returns a subscription that is
        already finished.
        """
        subscription = Subscription(self, on_close)
        if self._closed:
            subscription.close()
            return subscription
        if current is not _MISSING:
            subscription._push(current)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, value: T) -> None:
        if self._closed:
            return
        for subscription in list(self._subscribers):
            subscription._push(value)

    def close(self) -> None:
        """Finish every subscription. Idempotent."""
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        logger.debug("Closing channel with %d subscriber(s)", len(subscribers))
        for subscription in subscribers:
            subscription.close()

    def _discard(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)


__all__ = ["BroadcastChannel", "Subscription"]
