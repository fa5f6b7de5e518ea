"""Core types for qora."""

from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, TypeAlias, TypeVar

T = TypeVar("T")
V = TypeVar("V")

# "30s", "5m", "2h", "1d" or milliseconds
Duration: TypeAlias = str | int

# A single segment of a query key before normalization.
KeyPart: TypeAlias = Any

# Canonical, immutable form of a query key (see qora.key.normalize_key).
NormalizedKey: TypeAlias = tuple[Any, ...]

Fetcher: TypeAlias = Callable[[], Awaitable[T]]
Mutator: TypeAlias = Callable[[V], Awaitable[T]]

ErrorMapper: TypeAlias = Callable[[Exception, TracebackType | None], Exception]
EvictCallback: TypeAlias = Callable[[NormalizedKey], None]
RetryDelayFn: TypeAlias = Callable[[int], Duration]
