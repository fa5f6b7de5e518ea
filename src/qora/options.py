"""Query options and client configuration."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

from qora.duration import parse_duration
from qora.types import Duration, ErrorMapper, EvictCallback, RetryDelayFn


@dataclass(frozen=True, slots=True)
class QueryOptions:
    """Per-query options.

    Every field left as ``None`` is unset and inherits from the client's
    ``default_options`` when merged:

        opts = config.default_options.merge(QueryOptions(stale_time="5m"))

    Durations accept "30s"/"5m"-style strings or milliseconds.
    """

    enabled: bool | None = None
    stale_time: Duration | None = None
    cache_time: Duration | None = None
    retry_count: int | None = None
    retry_delay: Duration | None = None
    retry_delay_fn: RetryDelayFn | None = None
    refetch_on_mount: bool | None = None
    refetch_interval: Duration | None = None

    def __post_init__(self) -> None:
        if self.retry_count is not None and self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        for name in ("stale_time", "cache_time", "retry_delay", "refetch_interval"):
            value = getattr(self, name)
            if value is not None:
                parse_duration(value)
        if self.refetch_interval is not None and parse_duration(self.refetch_interval) == 0:
            raise ValueError("refetch_interval must be positive")

    @classmethod
    def defaults(cls) -> QueryOptions:
        """Fully populated defaults used by ``ClientConfig``."""
        return cls(
            enabled=True,
            stale_time=0,
            cache_time="5m",
            retry_count=3,
            retry_delay="1s",
        )

    def merge(self, override: QueryOptions | None) -> QueryOptions:
        """Return a copy with every set field of ``override`` applied."""
        if override is None:
            return self
        changes: dict[str, Any] = {
            f.name: getattr(override, f.name)
            for f in fields(override)
            if getattr(override, f.name) is not None
        }
        return replace(self, **changes)

    @property
    def is_enabled(self) -> bool:
        return self.enabled is not False

    @property
    def stale_time_ms(self) -> int:
        return parse_duration(self.stale_time) if self.stale_time is not None else 0

    @property
    def cache_time_ms(self) -> int:
        return parse_duration(self.cache_time) if self.cache_time is not None else 300_000

    @property
    def refetch_interval_ms(self) -> int | None:
        if self.refetch_interval is None:
            return None
        return parse_duration(self.refetch_interval)

    def get_retry_delay(self, attempt_index: int) -> int:
        """Delay in ms before retry ``attempt_index`` (0 for the first retry)."""
        if self.retry_delay_fn is not None:
            return parse_duration(self.retry_delay_fn(attempt_index))
        base = parse_duration(self.retry_delay) if self.retry_delay is not None else 1000
        return base * 2**attempt_index


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Global configuration of a ``QueryClient``.

    Args:
        default_options: Options every query starts from
        error_mapper: Maps the final fetch error before it is stored and raised
        max_cache_size: Bound on cached entries (None for unbounded)
        on_cache_evict: Called with the normalized key of every removed entry
        refetch_on_mount: Whether ``watch`` refetches stale data on subscribe
        sweep_interval: Cadence of the background eviction sweep
    """

    default_options: QueryOptions = field(default_factory=QueryOptions.defaults)
    error_mapper: ErrorMapper | None = None
    max_cache_size: int | None = None
    on_cache_evict: EvictCallback | None = None
    refetch_on_mount: bool = True
    sweep_interval: Duration = "1m"

    def __post_init__(self) -> None:
        if self.max_cache_size is not None and self.max_cache_size <= 0:
            raise ValueError("max_cache_size must be positive")
        if parse_duration(self.sweep_interval) == 0:
            raise ValueError("sweep_interval must be positive")
        # Fill in anything the caller's defaults left unset.
        object.__setattr__(
            self, "default_options", QueryOptions.defaults().merge(self.default_options)
        )


__all__ = ["ClientConfig", "QueryOptions"]
