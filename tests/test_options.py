"""Tests for query options and client configuration."""

import pytest

from qora import ClientConfig, QueryOptions


class TestQueryOptions:
    """Tests for QueryOptions."""

    def test_defaults(self) -> None:
        opts = QueryOptions.defaults()
        assert opts.is_enabled
        assert opts.stale_time_ms == 0
        assert opts.cache_time_ms == 300_000
        assert opts.retry_count == 3

    def test_merge_applies_only_set_fields(self) -> None:
        merged = QueryOptions.defaults().merge(QueryOptions(stale_time="30s"))
        assert merged.stale_time_ms == 30_000
        assert merged.cache_time_ms == 300_000
        assert merged.retry_count == 3

    def test_merge_with_none_returns_self(self) -> None:
        opts = QueryOptions.defaults()
        assert opts.merge(None) is opts

    def test_exponential_retry_delay(self) -> None:
        opts = QueryOptions(retry_delay="1s")
        assert [opts.get_retry_delay(i) for i in range(3)] == [1000, 2000, 4000]

    def test_custom_retry_delay_fn(self) -> None:
        opts = QueryOptions(retry_delay_fn=lambda attempt: f"{attempt + 1}ms")
        assert opts.get_retry_delay(0) == 1
        assert opts.get_retry_delay(4) == 5

    def test_unset_enabled_counts_as_enabled(self) -> None:
        assert QueryOptions().is_enabled
        assert not QueryOptions(enabled=False).is_enabled

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"retry_count": -1},
            {"stale_time": "soon"},
            {"cache_time": -5},
            {"refetch_interval": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            QueryOptions(**kwargs)


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_partial_defaults_are_completed(self) -> None:
        config = ClientConfig(default_options=QueryOptions(stale_time="1m"))
        assert config.default_options.stale_time_ms == 60_000
        assert config.default_options.retry_count == 3
        assert config.default_options.is_enabled

    def test_rejects_non_positive_cache_size(self) -> None:
        with pytest.raises(ValueError, match="max_cache_size"):
            ClientConfig(max_cache_size=0)

    def test_rejects_zero_sweep_interval(self) -> None:
        with pytest.raises(ValueError, match="sweep_interval"):
            ClientConfig(sweep_interval=0)
