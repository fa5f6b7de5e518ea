"""Mutation controller: lifecycle-tracked writes with retry and rollback hooks.

Usage:
    controller = MutationController(
        api.add_todo,
        options=MutationOptions(
            on_mutate=snapshot_and_apply,  # returns the rollback context
            on_error=lambda error, todo, previous: client.restore_query_data(
                ["todos"], previous
            ),
            on_settled=lambda *_: client.invalidate(["todos"]),
        ),
        tracker=client,
    )
    todo = await controller.mutate({"title": "write docs"})  # None on failure
"""

from __future__ import annotations

import inspect
import itertools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from qora.channel import BroadcastChannel, Subscription
from qora.duration import now_ms, parse_duration
from qora.exceptions import UseAfterDisposeError
from qora.mutation_state import (
    MutationFailure,
    MutationIdle,
    MutationPending,
    MutationState,
    MutationStatus,
    MutationSuccess,
)
from qora.retry import run_with_retry
from qora.tracking.base import MutationTracker
from qora.types import Duration, Mutator, RetryDelayFn

D = TypeVar("D")
V = TypeVar("V")
C = TypeVar("C")

logger = logging.getLogger(__name__)

_controller_ids = itertools.count(1)


@dataclass(frozen=True, slots=True)
class MutationOptions(Generic[D, V, C]):
    """Lifecycle hooks and retry settings of a mutation.

    Hooks may be plain functions or coroutine functions:

    - ``on_mutate(variables) -> context``: runs before the mutator; its
      return value (e.g. a rollback snapshot) is passed to the other hooks
    - ``on_success(data, variables, context)``
    - ``on_error(error, variables, context)``
    - ``on_settled(data, error, variables, context)``: after either outcome
    """

    on_mutate: Callable[[V], Any] | None = None
    on_success: Callable[[D, V, C | None], Any] | None = None
    on_error: Callable[[Exception, V, C | None], Any] | None = None
    on_settled: Callable[[D | None, Exception | None, V, C | None], Any] | None = None
    retry_count: int = 0
    retry_delay: Duration = "1s"
    retry_delay_fn: RetryDelayFn | None = None

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        parse_duration(self.retry_delay)

    def get_retry_delay(self, attempt_index: int) -> int:
        """Delay in ms before retry ``attempt_index`` (0 for the first retry)."""
        if self.retry_delay_fn is not None:
            return parse_duration(self.retry_delay_fn(attempt_index))
        return parse_duration(self.retry_delay) * 2**attempt_index


@dataclass(frozen=True, slots=True)
class MutationEvent:
    """A state transition of a tracked mutation controller."""

    mutation_id: str
    status: MutationStatus
    data: Any = None
    error: Exception | None = None
    variables: Any = None
    timestamp: int = field(default_factory=now_ms)
    metadata: Mapping[str, Any] | None = None

    @property
    def is_idle(self) -> bool:
        return self.status is MutationStatus.IDLE

    @property
    def is_pending(self) -> bool:
        return self.status is MutationStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self.status is MutationStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is MutationStatus.ERROR

    @property
    def is_finished(self) -> bool:
        return self.status.is_finished


class MutationController(Generic[D, V, C]):
    """Runs one kind of mutation and exposes its state machine.

    Idle -> Pending -> Success | Failure; ``reset()`` returns to Idle.
    ``mutate()`` never raises for mutator or hook failures: it returns
    ``None`` and the error is in the ``MutationFailure`` state.
    """

    def __init__(
        self,
        mutator: Mutator[V, D],
        *,
        options: MutationOptions[D, V, C] | None = None,
        tracker: MutationTracker | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self._id = f"mutation_{next(_controller_ids)}"
        self._mutator = mutator
        self._options: MutationOptions[D, V, C] = options or MutationOptions()
        self._tracker = tracker
        self._metadata = MappingProxyType(dict(metadata)) if metadata else None
        self._state: MutationState[D, V] = MutationIdle()
        self._channel: BroadcastChannel[MutationState[D, V]] = BroadcastChannel()
        self._disposed = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def state(self) -> MutationState[D, V]:
        return self._state

    @property
    def options(self) -> MutationOptions[D, V, C]:
        return self._options

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def subscribe(self) -> Subscription[MutationState[D, V]]:
        """Stream of states, starting with the current one."""
        return self._channel.subscribe(self._state)

    async def mutate(self, variables: V) -> D | None:
        """Run the mutation; returns the data, or None on failure.

        Raises:
            UseAfterDisposeError: the controller was disposed.
        """
        self._ensure_not_disposed()
        options = self._options

        context: C | None = None
        if options.on_mutate is not None:
            try:
                context = await _call_hook(options.on_mutate, variables)
            except Exception as exc:
                logger.debug("Mutation %s: on_mutate failed: %r", self._id, exc)
                self._set_state(
                    MutationFailure(error=exc, variables=variables, trace=exc.__traceback__)
                )
                return None

        self._set_state(MutationPending(variables=variables))

        try:
            data: D = await run_with_retry(
                lambda: self._mutator(variables),
                retry_count=options.retry_count,
                get_delay=options.get_retry_delay,
                label=f"Mutation {self._id}",
            )
        except Exception as exc:
            self._set_state(
                MutationFailure(error=exc, variables=variables, trace=exc.__traceback__)
            )
            await self._run_hook("on_error", options.on_error, exc, variables, context)
            await self._run_hook(
                "on_settled", options.on_settled, None, exc, variables, context
            )
            return None

        self._set_state(MutationSuccess(data=data, variables=variables))
        await self._run_hook("on_success", options.on_success, data, variables, context)
        await self._run_hook(
            "on_settled", options.on_settled, data, None, variables, context
        )
        return data

    def reset(self) -> None:
        """Return to Idle from any state."""
        self._ensure_not_disposed()
        self._set_state(MutationIdle())

    def dispose(self) -> None:
        """Stop tracking silently and close the state stream. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        if self._tracker is not None:
            self._tracker.untrack_mutation(self._id)
        self._channel.close()
        logger.debug("Mutation %s disposed", self._id)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _set_state(self, state: MutationState[D, V]) -> None:
        if self._disposed:
            return
        self._state = state
        self._channel.publish(state)
        if self._tracker is not None:
            self._tracker.track_mutation(self._id, state, self._metadata)

    async def _run_hook(
        self, name: str, hook: Callable[..., Any] | None, *args: Any
    ) -> None:
        """Run a post-settle hook; its failure cannot change the outcome."""
        if hook is None:
            return
        try:
            await _call_hook(hook, *args)
        except Exception:
            logger.exception("Mutation %s: %s hook failed", self._id, name)

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            raise UseAfterDisposeError(f"MutationController {self._id} has been disposed")

    def __repr__(self) -> str:
        return f"MutationController(id={self._id!r}, state={type(self._state).__name__})"


async def _call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


__all__ = ["MutationController", "MutationEvent", "MutationOptions"]
