"""
StatusBoard — periodic one-line summary of feed, event source and trades.

Prints a BOOT line when started, then a STATUS line every interval. Stats
are pulled from each component's ``get_stats()``; the board holds no state
of its own.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Protocol

import structlog

logger = structlog.get_logger(__name__)

__all__ = ["StatusBoard", "age_text"]


class StatsSource(Protocol):
    def get_stats(self) -> dict: ...


def age_text(timestamp_ms: int | None, now_ms: int | None = None) -> str:
    """``12s ago`` / ``3m ago`` / ``2h ago`` / ``never``."""
    if not timestamp_ms:
        return "never"
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    seconds = max(0, (now_ms - timestamp_ms) // 1000)
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"


def _up(flag: bool) -> str:
    return "UP" if flag else "DOWN"


class StatusBoard:
    def __init__(
        self,
        *,
        feed: StatsSource,
        consumer: StatsSource,
        executor: StatsSource,
        interval_seconds: float = 20.0,
        clock: Callable[[], float] = time.time,
    ):
        self._feed = feed
        self._consumer = consumer
        self._executor = executor
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None

    def render(self, kind: str = "STATUS") -> str:
        now_ms = int(self._clock() * 1000)
        ws = self._feed.get_stats()
        redis = self._consumer.get_stats()
        trade = self._executor.get_stats()

        return " | ".join(
            [
                f"{kind} | WS={_up(ws['connected'])} "
                f"(market={ws['market_slug'] or 'n/a'}, "
                f"{age_text(ws['last_tick_at_ms'], now_ms)} {ws['last_tick_summary'] or ''})",
                f"REDIS={_up(redis['connected'])} "
                f"({redis['host']}:{redis['port']}, channel={redis['channel']}, "
                f"recv={redis['received']}, ok={redis['processed']}, "
                f"stale={redis['stale']}, fail={redis['failed']}, "
                f"last={age_text(redis['last_signal_at_ms'], now_ms)} "
                f"{redis['last_signal_summary'] or ''})",
                f"TRADES=(market={trade['market_slug'] or 'n/a'}, ok={trade['sent_count']}, "
                f"fail={trade['failed_count']}, skip={trade['skipped_count']}, "
                f"last={age_text(trade['last_trade_at_ms'], now_ms)} "
                f"{trade['last_trade_summary'] or ''}, order={trade['last_order_id'] or 'n/a'})",
            ]
        )

    def print_summary(self, kind: str = "STATUS") -> None:
        logger.info("status_board", line=self.render(kind))

    async def start(self) -> None:
        if self._task is not None:
            return
        self.print_summary("BOOT")
        self._task = asyncio.create_task(self._loop(), name="status-board")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.print_summary("STATUS")
