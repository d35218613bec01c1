"""
Tests for MarketPriceFeed — CLOB market WebSocket follower.

The websockets connect function is replaced by an in-memory socket factory,
so these tests drive subscription, tick handling and market switches
without any network.
"""

import asyncio

import pytest

from signal_trader.connectors.market_feed import CLOB_WS_URL, MarketPriceFeed

NEXT_SLUG = "btc-updown-5m-1767225900"


def _tick(asset_id: str, price: str = "0.52", side: str = "BUY") -> dict:
    return {"event_type": "last_trade_price", "asset_id": asset_id, "price": price, "side": side}


@pytest.fixture
def feed(ws_connect):
    return MarketPriceFeed(connect=ws_connect)


class TestSubscription:
    @pytest.mark.asyncio
    async def test_waits_for_market_before_connecting(self, feed, ws_connect):
        await feed.start()
        try:
            await asyncio.sleep(0.02)
            assert ws_connect.calls == []
            assert await feed.health_check() is True
        finally:
            await feed.stop()

    @pytest.mark.asyncio
    async def test_subscribes_to_both_tokens(self, feed, ws_connect, market, eventually):
        await feed.start()
        try:
            feed.update_market(market)
            await eventually(lambda: feed.connected)

            url, kwargs = ws_connect.calls[0]
            assert url == CLOB_WS_URL
            assert kwargs["ping_interval"] == 15.0
            assert ws_connect.sockets[0].sent == [
                {"type": "market", "assets_ids": [market.up_token_id, market.down_token_id]}
            ]
            assert await feed.health_check() is True
        finally:
            await feed.stop()

    @pytest.mark.asyncio
    async def test_market_change_resubscribes(
        self, feed, ws_connect, market, market_factory, eventually
    ):
        await feed.start()
        try:
            feed.update_market(market)
            await eventually(lambda: feed.connected)
            ws_connect.sockets[0].push(_tick(market.up_token_id))
            await eventually(lambda: "UP" in feed.last_prices)

            next_market = market_factory(NEXT_SLUG)
            feed.update_market(next_market)
            assert feed.last_prices == {}
            await eventually(lambda: len(ws_connect.sockets) == 2 and feed.connected)

            assert ws_connect.sockets[0].closed
            assert ws_connect.sockets[1].sent[0]["assets_ids"] == [
                next_market.up_token_id,
                next_market.down_token_id,
            ]
            assert feed.get_stats()["market_slug"] == NEXT_SLUG
        finally:
            await feed.stop()

    @pytest.mark.asyncio
    async def test_same_identity_keeps_socket(self, feed, ws_connect, market, eventually):
        await feed.start()
        try:
            feed.update_market(market)
            await eventually(lambda: feed.connected)
            feed.update_market(market.model_copy(update={"market_question": "renamed"}))
            await asyncio.sleep(0.02)
            assert len(ws_connect.sockets) == 1
            assert not ws_connect.sockets[0].closed
        finally:
            await feed.stop()

    @pytest.mark.asyncio
    async def test_stop_closes_socket(self, feed, ws_connect, market, eventually):
        await feed.start()
        feed.update_market(market)
        await eventually(lambda: feed.connected)
        await feed.stop()
        assert ws_connect.sockets[0].closed
        assert feed.connected is False


class TestTicks:
    def test_records_last_trade(self, feed, market):
        feed._process_message(
            '[{"event_type": "last_trade_price", "asset_id": "%s", "price": "0.61", "side": "SELL"}]'
            % market.down_token_id,
            market,
        )
        assert feed.last_prices == {"DOWN": 0.61}
        assert feed.last_tick_summary == "DOWN 0.61 (SELL)"
        assert feed.get_stats()["last_tick_at_ms"] is not None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"event_type": "book", "asset_id": "x"}',
            '{"event_type": "last_trade_price", "asset_id": "unknown", "price": "0.5"}',
            '[1, 2]',
        ],
    )
    def test_ignores_other_messages(self, feed, market, raw):
        feed._process_message(raw, market)
        assert feed.last_prices == {}

    def test_ignores_unparseable_price(self, feed, market):
        feed._process_message(
            '{"event_type": "last_trade_price", "asset_id": "%s", "price": "n/a"}'
            % market.up_token_id,
            market,
        )
        assert feed.last_prices == {}

    def test_connector_info(self, feed):
        info = feed.get_info()
        assert info.name == "market_feed"
        assert info.healthy is True
