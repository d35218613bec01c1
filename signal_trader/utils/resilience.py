"""
Resilience Utils — reconnect backoff and fixed-delay retry.

Two retry shapes are used by the trader:

- The event-source reader reconnects with a linear backoff capped at 10 s
  (`reconnect_delay`).
- Market resolution retries forever on a fixed delay (`FixedDelayRetry`).
  The loop is built on tenacity with an injectable ``sleep`` so tests can
  drive it with a fake clock, and it stops as soon as the awaiting task is
  cancelled.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_never,
    wait_fixed,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

RECONNECT_STEP_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 10.0


def reconnect_delay(attempt: int) -> float:
    """Seconds to wait before reconnect attempt ``attempt`` (1-based)."""
    return min(max(attempt, 1) * RECONNECT_STEP_SECONDS, RECONNECT_MAX_SECONDS)


class FixedDelayRetry:
    """Retry an async operation forever, waiting ``delay`` seconds between tries.

    Usage:
        retry = FixedDelayRetry(delay=5.0)
        market = await retry.run(lambda: resolver.resolve(slug), operation="resolve")
    """

    def __init__(
        self,
        delay: float = 5.0,
        *,
        sleep: SleepFn = asyncio.sleep,
        retry_on: tuple[type[Exception], ...] = (Exception,),
    ):
        self.delay = delay
        self._sleep = sleep
        self._retry_on = retry_on

    async def run(
        self, func: Callable[[], Awaitable[T]], *, operation: str = "operation", **context
    ) -> T:
        """Await ``func()`` until it succeeds. Cancellation propagates immediately."""

        def _log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "retry_scheduled",
                operation=operation,
                attempt=state.attempt_number,
                wait_seconds=self.delay,
                error=str(error),
                **context,
            )

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_never,
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(self._retry_on),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await func()
        raise AssertionError("unreachable")  # pragma: no cover
