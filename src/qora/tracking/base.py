"""Observer protocols for query and mutation lifecycle events."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from qora.mutation_state import MutationState
    from qora.state import QueryStatus


@runtime_checkable
class QueryTracker(Protocol):
    """Observability hooks called by the client and mutation controllers.

    Hooks run synchronously on the event loop and are expected not to raise;
    qora does not guard against exceptions from them.
    """

    def on_fetch_completed(self, key: str, data: Any, status: QueryStatus) -> None:
        """A fetch settled; ``data`` is the result or the final error."""
        ...

    def on_invalidated(self, key: str) -> None:
        """A query was invalidated."""
        ...

    def on_mutation_started(
        self, mutation_id: str, key: str, variables: Any
    ) -> None:
        """A mutation moved to pending."""
        ...

    def on_mutation_settled(
        self, mutation_id: str, success: bool, result: Any
    ) -> None:
        """A mutation finished; ``result`` is the data or the error."""
        ...

    def on_optimistic_write(self, key: str, data: Any) -> None:
        """Query data was written directly into the cache."""
        ...

    def on_cache_cleared(self) -> None:
        """The whole cache was cleared."""
        ...

    def dispose(self) -> None:
        """Release tracker resources; called once by ``QueryClient.dispose``."""
        ...


@runtime_checkable
class MutationTracker(Protocol):
    """Receiver of mutation controller state transitions."""

    def track_mutation(
        self,
        mutation_id: str,
        state: MutationState[Any, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record a state transition of a controller."""
        ...

    def untrack_mutation(self, mutation_id: str) -> None:
        """Forget a controller without emitting an event."""
        ...
