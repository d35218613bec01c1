"""
TraderRuntime — wires settings, connectors and the core pipeline together.

Boot order:
  1. Connectors (CLOB client, market WebSocket feed)
  2. Boot market from ``MARKET_SLUG``, if set
  3. Event consumer (connect, subscribe, start the worker)
  4. Status board

Shutdown runs in reverse. Both app.py (FastAPI lifespan) and
scripts/run_trader.py (headless) drive the trader through this class.
"""

from __future__ import annotations

import asyncio

import structlog

from signal_trader.config import TraderSettings
from signal_trader.connectors import (
    ConnectorRegistry,
    MarketPriceFeed,
    PolymarketConnector,
    RedisEventSource,
)
from signal_trader.core.consumer import SignalConsumer, SourceFactory
from signal_trader.core.coordinator import (
    ActiveMarketCoordinator,
    ActiveMarketState,
    MarketResolver,
)
from signal_trader.core.executor import AccountClient, TradeExecutor
from signal_trader.core.status import StatusBoard
from signal_trader.utils.resilience import FixedDelayRetry
from signal_trader.version import VERSION

logger = structlog.get_logger(__name__)

__all__ = ["TraderRuntime"]

STOP_DRAIN_TIMEOUT_SECONDS = 10.0


class TraderRuntime:
    """Owns every long-lived component of one trader process."""

    def __init__(
        self,
        settings: TraderSettings,
        *,
        resolver: MarketResolver | None = None,
        account: AccountClient | None = None,
        feed: MarketPriceFeed | None = None,
        source_factory: SourceFactory | None = None,
    ):
        self.settings = settings
        self.registry = ConnectorRegistry()

        if resolver is None or account is None:
            polymarket = PolymarketConnector.from_settings(settings)
            self.registry.register(polymarket)
            resolver = resolver or polymarket.resolver
            account = account or polymarket.account

        self.feed = feed or MarketPriceFeed(settings.clob_ws_url)
        self.registry.register(self.feed)

        self.state = ActiveMarketState()
        self.executor = TradeExecutor(
            account, self.state, shares_per_trade=settings.shares_per_trade
        )
        self.coordinator = ActiveMarketCoordinator(
            resolver,
            state=self.state,
            listeners=[self.executor, self.feed],
            retry=FixedDelayRetry(delay=settings.market_resolve_retry_seconds),
        )
        self.consumer = SignalConsumer(
            settings.event_source_target(),
            self.coordinator,
            self.executor,
            source_factory=source_factory or RedisEventSource,
            signal_max_age_ms=settings.signal_max_age_ms,
            queue_size=settings.event_queue_size,
        )
        self.status = StatusBoard(
            feed=self.feed,
            consumer=self.consumer,
            executor=self.executor,
            interval_seconds=settings.status_interval_seconds,
        )
        self._started = False

    async def start(self) -> None:
        target = self.consumer.target
        logger.info(
            "trader_starting",
            version=VERSION,
            order_mode="FOK only",
            shares_per_trade=self.settings.shares_per_trade,
            event_source=target.describe(),
            auth_enabled=bool(target.password),
        )
        await self.registry.setup_all()

        if self.settings.market_slug:
            await self.coordinator.bind(self.settings.market_slug, source="env")
        else:
            logger.info("trader_waiting_for_market", reason="no MARKET_SLUG configured")

        await self.consumer.start()
        await self.status.start()
        self._started = True
        logger.info("trader_ready", connectors=self.registry.names)

    async def stop(self) -> None:
        logger.info("trader_shutting_down")
        await self.status.stop()
        await self.consumer.stop(drain_timeout=STOP_DRAIN_TIMEOUT_SECONDS)
        await self.registry.teardown_all()
        self._started = False
        logger.info("trader_shutdown_complete")

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Start, wait for ``stop_event``, then stop."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    @property
    def started(self) -> bool:
        return self._started

    def get_stats(self) -> dict:
        market = self.state.current
        return {
            "version": VERSION,
            "market": market.model_dump() if market else None,
            "event_source": self.consumer.get_stats(),
            "executor": self.executor.get_stats(),
            "feed": self.feed.get_stats(),
        }
