"""Tracker that writes lifecycle events to a logger."""

from __future__ import annotations

import logging
from typing import Any

from qora.state import QueryStatus

_DEFAULT_LOGGER = logging.getLogger("qora.events")


class LoggingTracker:
    """Log every query and mutation lifecycle event.

    Usage:
        client = QueryClient(tracker=LoggingTracker(level=logging.INFO))
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        level: int = logging.DEBUG,
    ) -> None:
        self._logger = logger or _DEFAULT_LOGGER
        self._level = level

    def on_fetch_completed(self, key: str, data: Any, status: QueryStatus) -> None:
        if status is QueryStatus.ERROR:
            self._logger.log(self._level, "fetch failed: %s (%r)", key, data)
        else:
            self._logger.log(self._level, "fetch completed: %s", key)

    def on_invalidated(self, key: str) -> None:
        self._logger.log(self._level, "invalidated: %s", key)

    def on_mutation_started(
        self, mutation_id: str, key: str, variables: Any
    ) -> None:
        self._logger.log(
            self._level, "mutation started: %s key=%s variables=%r",
            mutation_id, key, variables,
        )

    def on_mutation_settled(
        self, mutation_id: str, success: bool, result: Any
    ) -> None:
        outcome = "succeeded" if success else "failed"
        self._logger.log(
            self._level, "mutation %s: %s (%r)", outcome, mutation_id, result
        )

    def on_optimistic_write(self, key: str, data: Any) -> None:
        self._logger.log(self._level, "optimistic write: %s", key)

    def on_cache_cleared(self) -> None:
        self._logger.log(self._level, "cache cleared")

    def dispose(self) -> None:
        self._logger.log(self._level, "tracker disposed")
