"""
MarketPriceFeed — last-trade prices for the active market via CLOB WebSocket.

Subscribes to the public market channel for the bound market's UP and DOWN
tokens and records ``last_trade_price`` events. The feed is informational:
it powers the status board and never influences order sizing.

A market identity change closes the current socket; the loop reconnects and
subscribes to the new token pair. No API key needed.

Usage:
    feed = MarketPriceFeed()
    await feed.start()
    feed.update_market(market)
    stats = feed.get_stats()
    await feed.stop()
"""

import asyncio
import json
import time

import structlog
import websockets

from signal_trader.connectors.base_connector import BaseConnector
from signal_trader.models import ResolvedMarket

logger = structlog.get_logger(__name__)

CLOB_WS_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
PING_INTERVAL_SECONDS = 15.0
RECONNECT_DELAY_SECONDS = 2.0
TICK_LOG_INTERVAL_SECONDS = 15.0


class MarketPriceFeed(BaseConnector):
    """
    Real-time last-trade feed for the currently bound market.

    Keeps the latest price per outcome and a one-line summary of the last
    tick for the status board.
    """

    @property
    def name(self) -> str:
        return "market_feed"

    @property
    def icon(self) -> str:
        return "📈"

    @property
    def description(self) -> str:
        return "Polymarket CLOB market WebSocket (last trade prices)"

    def __init__(self, ws_url: str = CLOB_WS_URL, *, connect=websockets.connect):
        self._ws_url = ws_url
        self._connect = connect
        self._market: ResolvedMarket | None = None
        self._market_ready = asyncio.Event()
        self._ws = None
        self._closing: asyncio.Task | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._last_tick_log = 0.0

        self.connected = False
        self.last_tick_at_ms: int | None = None
        self.last_tick_summary: str | None = None
        self.last_prices: dict[str, float] = {}

    # ── Lifecycle ────────────────────────────────────────────────────

    async def setup(self) -> None:
        await self.start()

    async def teardown(self) -> None:
        await self.stop()

    async def health_check(self) -> bool:
        return self._market is None or self.connected

    async def start(self) -> None:
        """Start the background WebSocket loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._ws_loop(), name="market-feed")
        logger.info("market_feed_started", url=self._ws_url)

    async def stop(self) -> None:
        """Stop the WebSocket loop and close the socket."""
        self._running = False
        if self._ws is not None:
            await self._ws.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.connected = False
        logger.info("market_feed_stopped")

    # ── Market binding ───────────────────────────────────────────────

    def update_market(self, market: ResolvedMarket) -> None:
        """Follow ``market``. Same identity keeps the current subscription."""
        previous = self._market
        self._market = market
        self._market_ready.set()
        if previous is not None and previous.identity == market.identity:
            return

        self.last_prices = {}
        logger.info("market_feed_market_changed", market_slug=market.market_slug)
        if self._ws is not None:
            self._closing = asyncio.create_task(self._ws.close())

    # ── WebSocket loop ───────────────────────────────────────────────

    async def _ws_loop(self) -> None:
        """Main WebSocket loop with auto-reconnect."""
        while self._running:
            await self._market_ready.wait()
            market = self._market
            try:
                async with self._connect(
                    self._ws_url, ping_interval=PING_INTERVAL_SECONDS
                ) as ws:
                    self._ws = ws
                    await ws.send(json.dumps(self.subscription(market)))
                    self.connected = True
                    logger.info("market_ws_connected", market_slug=market.market_slug)
                    async for msg in ws:
                        if not self._running or self._market_changed(market):
                            break
                        self._process_message(msg, market)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("market_ws_error", error=str(e))
            finally:
                self._ws = None
                self.connected = False

            if self._running and not self._market_changed(market):
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    def _market_changed(self, market: ResolvedMarket) -> bool:
        return self._market is None or self._market.identity != market.identity

    @staticmethod
    def subscription(market: ResolvedMarket) -> dict:
        return {
            "type": "market",
            "assets_ids": [market.up_token_id, market.down_token_id],
        }

    def _process_message(self, raw: str | bytes, market: ResolvedMarket) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return
        events = data if isinstance(data, list) else [data]
        for event in events:
            if isinstance(event, dict) and event.get("event_type") == "last_trade_price":
                self._record_trade(event, market)

    def _record_trade(self, event: dict, market: ResolvedMarket) -> None:
        asset_id = str(event.get("asset_id", ""))
        if asset_id == market.up_token_id:
            outcome = "UP"
        elif asset_id == market.down_token_id:
            outcome = "DOWN"
        else:
            return
        try:
            price = float(event.get("price"))
        except (TypeError, ValueError):
            return

        self.last_prices[outcome] = price
        self.last_tick_at_ms = int(time.time() * 1000)
        self.last_tick_summary = f"{outcome} {price} ({event.get('side', '?')})"

        now = time.monotonic()
        if now - self._last_tick_log >= TICK_LOG_INTERVAL_SECONDS:
            self._last_tick_log = now
            logger.info(
                "market_last_trade",
                market_slug=market.market_slug,
                summary=self.last_tick_summary,
            )

    # ── Stats ────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        return {
            "connected": self.connected,
            "market_slug": self._market.market_slug if self._market else None,
            "last_tick_at_ms": self.last_tick_at_ms,
            "last_tick_summary": self.last_tick_summary,
            "last_prices": dict(self.last_prices),
        }
