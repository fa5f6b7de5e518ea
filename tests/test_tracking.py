"""Tests for lifecycle trackers."""

import asyncio
import logging
from typing import Any

import pytest

from qora import (
    ClientConfig,
    LoggingTracker,
    MutationController,
    MutationOptions,
    MutationStatus,
    MutationTracker,
    NoOpTracker,
    QueryClient,
    QueryOptions,
    QueryStatus,
    QueryTracker,
)


class RecordingTracker:
    """Tracker that records every hook call."""

    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []

    def on_fetch_completed(self, key: str, data: Any, status: QueryStatus) -> None:
        self.events.append(("fetch", key, status))

    def on_invalidated(self, key: str) -> None:
        self.events.append(("invalidated", key))

    def on_mutation_started(self, mutation_id: str, key: str, variables: Any) -> None:
        self.events.append(("mutation_started", key, variables))

    def on_mutation_settled(self, mutation_id: str, success: bool, result: Any) -> None:
        self.events.append(("mutation_settled", success, result))

    def on_optimistic_write(self, key: str, data: Any) -> None:
        self.events.append(("write", key, data))

    def on_cache_cleared(self) -> None:
        self.events.append(("cleared",))

    def dispose(self) -> None:
        self.events.append(("disposed",))


@pytest.fixture
def tracker() -> RecordingTracker:
    return RecordingTracker()


@pytest.fixture
async def tracked_client(tracker: RecordingTracker):
    client = QueryClient(
        ClientConfig(default_options=QueryOptions(retry_count=0)), tracker=tracker
    )
    yield client
    client.dispose()


class TestProtocols:
    """Tests for structural protocol conformance."""

    def test_builtin_trackers_are_query_trackers(self) -> None:
        assert isinstance(NoOpTracker(), QueryTracker)
        assert isinstance(LoggingTracker(), QueryTracker)
        assert isinstance(RecordingTracker(), QueryTracker)

    def test_client_is_a_mutation_tracker(self) -> None:
        client = QueryClient()
        assert isinstance(client, MutationTracker)
        client.dispose()


class TestClientTracking:
    """Tests for tracker hooks fired by QueryClient."""

    async def test_fetch_success_and_error(
        self, tracked_client: QueryClient, tracker: RecordingTracker
    ) -> None:
        async def ok() -> int:
            return 1

        async def broken() -> int:
            raise ValueError("nope")

        await tracked_client.fetch_once(["a"], ok)
        with pytest.raises(ValueError):
            await tracked_client.fetch_once(["b"], broken)

        assert tracker.events == [
            ("fetch", '["a"]', QueryStatus.SUCCESS),
            ("fetch", '["b"]', QueryStatus.ERROR),
        ]

    async def test_cache_operations(
        self, tracked_client: QueryClient, tracker: RecordingTracker
    ) -> None:
        tracked_client.set_query_data(["a"], 1)
        tracked_client.invalidate(["a"])
        tracked_client.clear()

        assert tracker.events == [
            ("write", '["a"]', 1),
            ("invalidated", '["a"]'),
            ("cleared",),
        ]

    async def test_mutation_hooks(
        self, tracked_client: QueryClient, tracker: RecordingTracker
    ) -> None:
        async def save(value: int) -> int:
            return value * 2

        controller = MutationController(
            save, tracker=tracked_client, metadata={"query_key": ["totals"]}
        )
        await controller.mutate(21)

        assert tracker.events == [
            ("mutation_started", '["totals"]', 21),
            ("mutation_settled", True, 42),
        ]

    async def test_on_mutate_failure_is_not_reported_as_settled(
        self, tracked_client: QueryClient, tracker: RecordingTracker
    ) -> None:
        """A mutation rejected by on_mutate never started, so it never settles."""

        async def save(value: int) -> int:
            return value

        def on_mutate(value: int) -> None:
            raise ValueError("bad input")

        events = tracked_client.mutation_events()
        controller = MutationController(
            save, options=MutationOptions(on_mutate=on_mutate), tracker=tracked_client
        )
        await controller.mutate(1)
        events.close()

        assert tracker.events == []
        assert [e.status async for e in events] == [MutationStatus.ERROR]
        assert tracked_client.active_mutations == {}

    async def test_dispose_disposes_tracker(self, tracker: RecordingTracker) -> None:
        client = QueryClient(tracker=tracker)
        client.dispose()
        client.dispose()

        assert tracker.events == [("disposed",)]


class TestLoggingTracker:
    """Tests for LoggingTracker output."""

    async def test_logs_events(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="qora.events")

        async with QueryClient(tracker=LoggingTracker(level=logging.INFO)) as client:
            client.set_query_data(["a"], 1)
            client.invalidate(["a"])
            await asyncio.sleep(0)

        messages = [record.getMessage() for record in caplog.records]
        assert 'optimistic write: ["a"]' in messages
        assert 'invalidated: ["a"]' in messages
        assert "tracker disposed" in messages
