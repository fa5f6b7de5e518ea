"""Mutation state variants.

A mutation controller is always in one of:

- ``MutationIdle``: not started, or reset
- ``MutationPending(variables)``: the mutator is running
- ``MutationSuccess(data, variables)``
- ``MutationFailure(error, trace, variables)``
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType
from typing import Generic, TypeVar

D = TypeVar("D")
V = TypeVar("V")
R = TypeVar("R")


class MutationStatus(str, Enum):
    """Status tag of a mutation state."""

    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_finished(self) -> bool:
        return self in (MutationStatus.SUCCESS, MutationStatus.ERROR)


class MutationState(Generic[D, V]):
    """Base class of the closed set of mutation states."""

    __slots__ = ()

    @property
    def status(self) -> MutationStatus:
        return self.fold(
            on_idle=lambda: MutationStatus.IDLE,
            on_pending=lambda _v: MutationStatus.PENDING,
            on_success=lambda _d, _v: MutationStatus.SUCCESS,
            on_error=lambda _e, _t, _v: MutationStatus.ERROR,
        )

    @property
    def is_idle(self) -> bool:
        return isinstance(self, MutationIdle)

    @property
    def is_pending(self) -> bool:
        return isinstance(self, MutationPending)

    @property
    def is_success(self) -> bool:
        return isinstance(self, MutationSuccess)

    @property
    def is_error(self) -> bool:
        return isinstance(self, MutationFailure)

    @property
    def data_or_none(self) -> D | None:
        return self.data if isinstance(self, MutationSuccess) else None

    @property
    def error_or_none(self) -> Exception | None:
        return self.error if isinstance(self, MutationFailure) else None

    @property
    def variables_or_none(self) -> V | None:
        if isinstance(self, (MutationPending, MutationSuccess, MutationFailure)):
            return self.variables
        return None

    def fold(
        self,
        *,
        on_idle: Callable[[], R],
        on_pending: Callable[[V], R],
        on_success: Callable[[D, V], R],
        on_error: Callable[[Exception, TracebackType | None, V], R],
    ) -> R:
        """Exhaustive dispatch: exactly one callback runs."""
        if isinstance(self, MutationIdle):
            return on_idle()
        if isinstance(self, MutationPending):
            return on_pending(self.variables)
        if isinstance(self, MutationSuccess):
            return on_success(self.data, self.variables)
        if isinstance(self, MutationFailure):
            return on_error(self.error, self.trace, self.variables)
        raise TypeError(f"Unhandled mutation state: {type(self).__name__}")

    def when(
        self,
        *,
        on_idle: Callable[[], R] | None = None,
        on_pending: Callable[[V], R] | None = None,
        on_success: Callable[[D, V], R] | None = None,
        on_error: Callable[[Exception, TracebackType | None, V], R] | None = None,
    ) -> R | None:
        return self.maybe_when(
            on_idle=on_idle,
            on_pending=on_pending,
            on_success=on_success,
            on_error=on_error,
            or_else=lambda: None,
        )

    def maybe_when(
        self,
        *,
        or_else: Callable[[], R],
        on_idle: Callable[[], R] | None = None,
        on_pending: Callable[[V], R] | None = None,
        on_success: Callable[[D, V], R] | None = None,
        on_error: Callable[[Exception, TracebackType | None, V], R] | None = None,
    ) -> R:
        return self.fold(
            on_idle=on_idle or or_else,
            on_pending=on_pending or (lambda _v: or_else()),
            on_success=on_success or (lambda _d, _v: or_else()),
            on_error=on_error or (lambda _e, _t, _v: or_else()),
        )


@dataclass(frozen=True, slots=True)
class MutationIdle(MutationState[D, V]):
    """No mutation has run since creation or the last reset."""


@dataclass(frozen=True, slots=True)
class MutationPending(MutationState[D, V]):
    variables: V


@dataclass(frozen=True, slots=True)
class MutationSuccess(MutationState[D, V]):
    data: D
    variables: V


@dataclass(frozen=True, slots=True)
class MutationFailure(MutationState[D, V]):
    error: Exception
    variables: V
    trace: TracebackType | None = field(default=None, compare=False, repr=False)


async def where_mutation_success(
    states: AsyncIterable[MutationState[D, V]],
) -> AsyncIterator[MutationSuccess[D, V]]:
    async for state in states:
        if isinstance(state, MutationSuccess):
            yield state


async def where_mutation_error(
    states: AsyncIterable[MutationState[D, V]],
) -> AsyncIterator[MutationFailure[D, V]]:
    async for state in states:
        if isinstance(state, MutationFailure):
            yield state


__all__ = [
    "MutationFailure",
    "MutationIdle",
    "MutationPending",
    "MutationState",
    "MutationStatus",
    "MutationSuccess",
    "where_mutation_error",
    "where_mutation_success",
]
