"""Query state variants.

A query is always in exactly one of four states:

- ``Initial``: nothing fetched yet
- ``Loading``: a fetch is running, optionally carrying ``previous_data``
- ``Success``: data fetched at ``updated_at`` (Unix ms)
- ``Failure``: the last fetch failed, optionally carrying ``previous_data``

``previous_data`` threads the last good value through refreshes, so a
consumer never falls back to "no data" while a query revalidates.

Dispatch over the variants with ``fold`` (every branch required) or with
``isinstance``:

    text = state.fold(
        on_initial=lambda: "idle",
        on_loading=lambda previous: "loading",
        on_success=lambda data, updated_at: f"got {data}",
        on_error=lambda error, trace, previous: f"failed: {error}",
    )
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType
from typing import Any, Generic, TypeVar

from qora.duration import now_ms, parse_duration
from qora.types import Duration

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class QueryStatus(str, Enum):
    """Status tag of a query state."""

    INITIAL = "initial"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class QueryState(Generic[T]):
    """Base class of the closed set of query states."""

    __slots__ = ()

    @property
    def status(self) -> QueryStatus:
        return self.fold(
            on_initial=lambda: QueryStatus.INITIAL,
            on_loading=lambda _p: QueryStatus.LOADING,
            on_success=lambda _d, _u: QueryStatus.SUCCESS,
            on_error=lambda _e, _t, _p: QueryStatus.ERROR,
        )

    @property
    def is_initial(self) -> bool:
        return isinstance(self, Initial)

    @property
    def is_loading(self) -> bool:
        return isinstance(self, Loading)

    @property
    def is_success(self) -> bool:
        return isinstance(self, Success)

    @property
    def is_error(self) -> bool:
        return isinstance(self, Failure)

    @property
    def data_or_none(self) -> T | None:
        """Success data, or the previous data of Loading/Failure."""
        return None

    @property
    def has_data(self) -> bool:
        return self.data_or_none is not None

    @property
    def success_data_or_none(self) -> T | None:
        """Data only when in Success; ignores previous data."""
        return None

    @property
    def is_first_load(self) -> bool:
        return isinstance(self, Loading) and self.previous_data is None

    @property
    def is_refreshing(self) -> bool:
        return isinstance(self, Loading) and self.previous_data is not None

    def require_data(self) -> T:
        """Return ``data_or_none`` or raise ``ValueError`` if there is none."""
        data = self.data_or_none
        if data is None:
            raise ValueError(f"{type(self).__name__} state has no data")
        return data

    def is_stale(self, stale_time: Duration) -> bool:
        """Whether the state needs a fetch; only a recent Success is fresh."""
        return True

    def fold(
        self,
        *,
        on_initial: Callable[[], R],
        on_loading: Callable[[T | None], R],
        on_success: Callable[[T, int], R],
        on_error: Callable[[Exception, TracebackType | None, T | None], R],
    ) -> R:
        """Exhaustive dispatch: exactly one callback runs."""
        if isinstance(self, Initial):
            return on_initial()
        if isinstance(self, Loading):
            return on_loading(self.previous_data)
        if isinstance(self, Success):
            return on_success(self.data, self.updated_at)
        if isinstance(self, Failure):
            return on_error(self.error, self.trace, self.previous_data)
        raise TypeError(f"Unhandled query state: {type(self).__name__}")

    def when(
        self,
        *,
        on_initial: Callable[[], R] | None = None,
        on_loading: Callable[[T | None], R] | None = None,
        on_success: Callable[[T, int], R] | None = None,
        on_error: Callable[[Exception, TracebackType | None, T | None], R]
        | None = None,
    ) -> R | None:
        """Like ``fold`` but every callback is optional; returns None if unhandled."""
        return self.maybe_when(
            on_initial=on_initial,
            on_loading=on_loading,
            on_success=on_success,
            on_error=on_error,
            or_else=lambda: None,
        )

    def maybe_when(
        self,
        *,
        or_else: Callable[[], R],
        on_initial: Callable[[], R] | None = None,
        on_loading: Callable[[T | None], R] | None = None,
        on_success: Callable[[T, int], R] | None = None,
        on_error: Callable[[Exception, TracebackType | None, T | None], R]
        | None = None,
    ) -> R:
        return self.fold(
            on_initial=on_initial or or_else,
            on_loading=on_loading or (lambda _p: or_else()),
            on_success=on_success or (lambda _d, _u: or_else()),
            on_error=on_error or (lambda _e, _t, _p: or_else()),
        )

    def map(self, fn: Callable[[T], U]) -> QueryState[U]:
        """Transform the data (and previous data) keeping the variant."""

        def convert(value: T | None) -> U | None:
            return None if value is None else fn(value)

        return self.fold(
            on_initial=lambda: Initial(),
            on_loading=lambda p: Loading(previous_data=convert(p)),
            on_success=lambda d, u: Success(data=fn(d), updated_at=u),
            on_error=lambda e, t, p: Failure(
                error=e, trace=t, previous_data=convert(p)
            ),
        )

    def map_success(self, fn: Callable[[T], U]) -> QueryState[U]:
        """Transform Success data only; other variants lose previous data."""
        return self.fold(
            on_initial=lambda: Initial(),
            on_loading=lambda _p: Loading(),
            on_success=lambda d, u: Success(data=fn(d), updated_at=u),
            on_error=lambda e, t, _p: Failure(error=e, trace=t),
        )

    def combine(
        self, other: QueryState[U], fn: Callable[[T, U], R]
    ) -> QueryState[R]:
        """Merge two states; Failure wins over Loading, Loading over Initial."""
        return combine_list([self, other]).map(lambda pair: fn(pair[0], pair[1]))


@dataclass(frozen=True, slots=True)
class Initial(QueryState[T]):
    """No fetch has happened yet."""


@dataclass(frozen=True, slots=True)
class Loading(QueryState[T]):
    """A fetch is in progress."""

    previous_data: T | None = None

    @property
    def data_or_none(self) -> T | None:
        return self.previous_data


@dataclass(frozen=True, slots=True)
class Success(QueryState[T]):
    """Data fetched (or written) at ``updated_at``."""

    data: T
    updated_at: int = field(default_factory=now_ms)

    @classmethod
    def now(cls, data: T) -> Success[T]:
        return cls(data=data, updated_at=now_ms())

    @property
    def data_or_none(self) -> T | None:
        return self.data

    @property
    def success_data_or_none(self) -> T | None:
        return self.data

    @property
    def age_ms(self) -> int:
        return now_ms() - self.updated_at

    def is_stale(self, stale_time: Duration) -> bool:
        return self.age_ms >= parse_duration(stale_time)


@dataclass(frozen=True, slots=True)
class Failure(QueryState[T]):
    """The last fetch failed with ``error`` after all retries."""

    error: Exception
    trace: TracebackType | None = field(default=None, compare=False, repr=False)
    previous_data: T | None = None

    @property
    def data_or_none(self) -> T | None:
        return self.previous_data


def combine_list(states: Sequence[QueryState[Any]]) -> QueryState[list[Any]]:
    """Combine states into one state holding a list of all their data.

    The result is the first Failure if any, else Loading if any state is
    loading, else Initial if any state is initial, else Success with the
    oldest ``updated_at``.
    """
    for state in states:
        if isinstance(state, Failure):
            return Failure(error=state.error, trace=state.trace)
    if any(isinstance(s, Loading) for s in states):
        previous = [s.data_or_none for s in states]
        if any(p is None for p in previous):
            return Loading()
        return Loading(previous_data=previous)
    if any(isinstance(s, Initial) for s in states):
        return Initial()
    successes = [s for s in states if isinstance(s, Success)]
    updated_at = min((s.updated_at for s in successes), default=now_ms())
    return Success(data=[s.data for s in successes], updated_at=updated_at)


def combine_states(*states: QueryState[Any]) -> QueryState[tuple[Any, ...]]:
    """Tuple flavour of ``combine_list``: ``combine_states(a, b)`` holds ``(a, b)``."""
    return combine_list(states).map(tuple)


async def where_success(
    states: AsyncIterable[QueryState[T]],
) -> AsyncIterator[Success[T]]:
    """Yield only Success states."""
    async for state in states:
        if isinstance(state, Success):
            yield state


async def where_has_data(
    states: AsyncIterable[QueryState[T]],
) -> AsyncIterator[QueryState[T]]:
    """Yield only states that carry data (current or previous)."""
    async for state in states:
        if state.has_data:
            yield state


async def data_stream(states: AsyncIterable[QueryState[T]]) -> AsyncIterator[T]:
    """Yield the data of every state that has some."""
    async for state in states:
        data = state.data_or_none
        if data is not None:
            yield data


async def map_data(
    states: AsyncIterable[QueryState[T]], fn: Callable[[T], U]
) -> AsyncIterator[QueryState[U]]:
    """Apply ``QueryState.map`` to every state."""
    async for state in states:
        yield state.map(fn)


__all__ = [
    "Failure",
    "Initial",
    "Loading",
    "QueryState",
    "QueryStatus",
    "Success",
    "combine_list",
    "combine_states",
    "data_stream",
    "map_data",
    "where_has_data",
    "where_success",
]
