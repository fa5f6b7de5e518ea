"""Shared pytest fixtures."""

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

from qora import ClientConfig, QueryClient, QueryOptions


class Counter:
    """Async fetcher that counts its calls and returns a fixed value."""

    def __init__(self, value: object = "data", *, delay: float = 0) -> None:
        self.value = value
        self.delay = delay
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.value


@pytest.fixture
def fast_options() -> QueryOptions:
    """Options with no retries so failing fetches settle immediately."""
    return QueryOptions(retry_count=0, retry_delay=1)


@pytest.fixture
async def client(fast_options: QueryOptions) -> AsyncIterator[QueryClient]:
    """Create a fresh QueryClient for each test and dispose it afterwards."""
    query_client = QueryClient(ClientConfig(default_options=fast_options))
    yield query_client
    query_client.dispose()


@pytest.fixture
def make_counter() -> Callable[..., Counter]:
    """Factory for counting fetchers."""
    return Counter
