"""Exponential-backoff retry shared by queries and mutations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_count: int,
    get_delay: Callable[[int], int],
    label: str = "operation",
) -> T:
    """Run ``operation``, retrying up to ``retry_count`` extra times.

    Args:
        operation: Async callable to run
        retry_count: Additional attempts after the first one
        get_delay: Milliseconds to wait before retry N (0-based)
        label: Name used in log messages

    Returns:
        The first successful result

    Raises:
        The exception of the last attempt, unchanged.
    """

    def wait(retry_state: RetryCallState) -> float:
        return get_delay(retry_state.attempt_number - 1) / 1000

    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        logger.debug(
            "%s failed (attempt %d/%d): %r; retrying in %.3fs",
            label,
            retry_state.attempt_number,
            retry_count + 1,
            outcome.exception() if outcome is not None else None,
            retry_state.upcoming_sleep,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(retry_count + 1),
        wait=wait,
        retry=retry_if_exception_type(Exception),
        before_sleep=before_sleep,
        reraise=True,
    )
    return await retrying(operation)


__all__ = ["run_with_retry"]
