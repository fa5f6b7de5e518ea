"""Lifecycle trackers for observability."""

from qora.tracking.base import MutationTracker, QueryTracker
from qora.tracking.logger import LoggingTracker
from qora.tracking.noop import NoOpTracker

__all__ = [
    "LoggingTracker",
    "MutationTracker",
    "NoOpTracker",
    "QueryTracker",
]
