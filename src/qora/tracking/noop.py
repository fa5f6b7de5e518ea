"""Tracker that ignores every event."""

from __future__ import annotations

from typing import Any

from qora.state import QueryStatus


class NoOpTracker:
    """Default tracker: every hook does nothing."""

    __slots__ = ()

    def on_fetch_completed(self, key: str, data: Any, status: QueryStatus) -> None:
        pass

    def on_invalidated(self, key: str) -> None:
        pass

    def on_mutation_started(
        self, mutation_id: str, key: str, variables: Any
    ) -> None:
        pass

    def on_mutation_settled(
        self, mutation_id: str, success: bool, result: Any
    ) -> None:
        pass

    def on_optimistic_write(self, key: str, data: Any) -> None:
        pass

    def on_cache_cleared(self) -> None:
        pass

    def dispose(self) -> None:
        pass
