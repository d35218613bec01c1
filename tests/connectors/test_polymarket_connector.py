"""
Tests for PolymarketConnector — Gamma resolution and CLOB account access.

- Mock httpx.AsyncClient for Gamma lookups
- Mock the py-clob-client SDK object for balances and FOK orders
- Test parsing helpers for Gamma's loosely typed fields
- Test connector lifecycle (setup, teardown, health check)
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from py_clob_client.clob_types import OrderType

from signal_trader.connectors.polymarket_connector import (
    ClobAccountClient,
    GammaMarketResolver,
    PolymarketConnector,
    outcome_indices,
    parse_list,
    parse_share_balance,
)
from signal_trader.errors import (
    BalanceFetchError,
    ConnectorError,
    MarketResolutionError,
    OrderSubmissionError,
)
from signal_trader.models import Direction

SLUG = "btc-updown-5m-1767225600"


# ── Fixtures ─────────────────────────────────────────────────────────


def _make_response(
    json_data: dict | list | None = None,
    status_code: int = 200,
    text: str = "",
) -> httpx.Response:
    """Create a mock httpx.Response."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = json_data if json_data is not None else {}
    return resp


def _gamma_market(**overrides) -> dict:
    market = {
        "slug": SLUG,
        "question": "Bitcoin Up or Down - January 1, 12:00AM-12:05AM ET",
        "clobTokenIds": json.dumps(["111", "222"]),
        "outcomes": json.dumps(["Up", "Down"]),
        "active": True,
        "closed": False,
    }
    market.update(overrides)
    return market


def _gamma_event(*markets) -> dict:
    return {"slug": SLUG, "title": "Bitcoin Up or Down", "markets": list(markets)}


def _make_resolver(*responses) -> GammaMarketResolver:
    """Create a resolver whose HTTP client returns ``responses`` in order."""
    resolver = GammaMarketResolver("https://gamma.test/events")
    resolver._http = AsyncMock(spec=httpx.AsyncClient)
    resolver._http.get = AsyncMock(side_effect=list(responses))
    resolver._http.aclose = AsyncMock()
    return resolver


def _make_account() -> ClobAccountClient:
    account = ClobAccountClient(private_key="0x" + "11" * 32, funder="0x" + "ab" * 20)
    account._clob_client = MagicMock()
    return account


# ── Gamma resolution ─────────────────────────────────────────────────


class TestGammaResolver:
    @pytest.mark.asyncio
    async def test_resolves_from_events(self):
        resolver = _make_resolver(_make_response([_gamma_event(_gamma_market())]))

        market = await resolver.resolve(" BTC-UpDown-5m-1767225600 ")

        assert market.market_slug == SLUG
        assert market.up_token_id == "111"
        assert market.down_token_id == "222"
        assert market.event_slug == SLUG
        assert market.source_text == SLUG
        call = resolver._http.get.call_args
        assert call.args[0] == "https://gamma.test/events"
        assert call.kwargs["params"] == {"slug": SLUG}

    @pytest.mark.asyncio
    async def test_outcome_order_follows_labels(self):
        market = _gamma_market(outcomes=["Down", "Up"])
        resolver = _make_resolver(_make_response([_gamma_event(market)]))

        resolved = await resolver.resolve(SLUG)

        assert resolved.up_token_id == "222"
        assert resolved.down_token_id == "111"

    @pytest.mark.asyncio
    async def test_prefers_tradeable_market(self):
        closed = _gamma_market(closed=True, clobTokenIds='["1", "2"]')
        live = _gamma_market(clobTokenIds='["3", "4"]')
        resolver = _make_resolver(_make_response([_gamma_event(closed, live)]))

        resolved = await resolver.resolve(SLUG)

        assert resolved.up_token_id == "3"

    @pytest.mark.asyncio
    async def test_falls_back_to_markets_endpoint(self):
        resolver = _make_resolver(
            _make_response([]),
            _make_response([_gamma_market(eventSlug="btc-updown-parent")]),
        )

        resolved = await resolver.resolve(SLUG)

        assert resolved.event_slug == "btc-updown-parent"
        assert resolver._http.get.call_args_list[1].args[0] == "https://gamma.test/markets"

    @pytest.mark.asyncio
    async def test_event_without_markets_falls_back(self):
        resolver = _make_resolver(
            _make_response([{"slug": SLUG, "markets": []}]),
            _make_response([_gamma_market()]),
        )
        assert (await resolver.resolve(SLUG)).up_token_id == "111"

    @pytest.mark.asyncio
    async def test_not_found(self):
        resolver = _make_resolver(_make_response([]), _make_response([]))
        with pytest.raises(MarketResolutionError) as exc:
            await resolver.resolve(SLUG)
        assert exc.value.slug == SLUG
        assert exc.value.retryable

    @pytest.mark.asyncio
    async def test_single_token_is_unusable(self):
        market = _gamma_market(clobTokenIds='["111"]')
        resolver = _make_resolver(_make_response([_gamma_event(market)]))
        with pytest.raises(MarketResolutionError, match="token ids"):
            await resolver.resolve(SLUG)

    @pytest.mark.asyncio
    async def test_http_error(self):
        resolver = _make_resolver(_make_response(status_code=500, text="boom"))
        with pytest.raises(MarketResolutionError) as exc:
            await resolver.resolve(SLUG)
        assert exc.value.detail == "500"

    @pytest.mark.asyncio
    async def test_timeout(self):
        resolver = _make_resolver(httpx.ReadTimeout("slow"))
        with pytest.raises(MarketResolutionError, match="timed out"):
            await resolver.resolve(SLUG)

    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_surfaced(self, monkeypatch):
        monkeypatch.setattr(GammaMarketResolver._get.retry, "sleep", AsyncMock())
        resolver = _make_resolver(*[_make_response(status_code=429)] * 3)

        with pytest.raises(MarketResolutionError):
            await resolver.resolve(SLUG)
        assert resolver._http.get.call_count == 3

    @pytest.mark.asyncio
    async def test_close(self):
        resolver = _make_resolver()
        await resolver.close()
        resolver._http.aclose.assert_awaited_once()

    def test_markets_url_derivation(self):
        assert GammaMarketResolver._markets_url("https://x/events") == "https://x/markets"
        assert GammaMarketResolver._markets_url("https://x/api") == "https://x/api/markets"


# ── Parsing helpers ──────────────────────────────────────────────────


class TestParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ('["1", "2"]', ["1", "2"]),
            (["1", 2], ["1", "2"]),
            ("1, 2", ["1", "2"]),
            ("", []),
            (None, []),
            ("[broken", ["[broken"]),
        ],
    )
    def test_parse_list(self, value, expected):
        assert parse_list(value) == expected

    @pytest.mark.parametrize(
        "outcomes,expected",
        [
            (["Up", "Down"], (0, 1)),
            (["Down", "Up"], (1, 0)),
            (["Yes", "No"], (0, 1)),
            (["No", "Yes"], (1, 0)),
            (["Red", "Blue"], (0, 1)),
            ([], (0, 1)),
        ],
    )
    def test_outcome_indices(self, outcomes, expected):
        assert outcome_indices(outcomes, 2) == expected

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("3200000", 3.2),
            (5_000_000, 5.0),
            ("3.2", 3.2),
            ("100000.0", 100000.0),
            (" '250000' ", 0.25),
            ("inf", 0.0),
            (12, 12.0),
            ("99999", 99999.0),
            (None, 0.0),
            ("garbage", 0.0),
            ("nan", 0.0),
        ],
    )
    def test_parse_share_balance(self, raw, expected):
        assert parse_share_balance(raw) == expected


# ── CLOB account ─────────────────────────────────────────────────────


class TestClobAccount:
    @pytest.mark.asyncio
    async def test_get_balance(self):
        account = _make_account()
        account._clob_client.get_balance_allowance.return_value = {"balance": "3200000"}

        balance = await account.get_balance("111")

        assert balance == 3.2
        params = account._clob_client.update_balance_allowance.call_args.args[0]
        assert params.token_id == "111"

    @pytest.mark.asyncio
    async def test_get_balance_failure(self):
        account = _make_account()
        account._clob_client.get_balance_allowance.side_effect = RuntimeError("down")
        with pytest.raises(BalanceFetchError) as exc:
            await account.get_balance("111")
        assert exc.value.token_id == "111"

    @pytest.mark.asyncio
    async def test_submit_fok_order(self):
        account = _make_account()
        client = account._clob_client
        client.create_order.return_value = "signed"
        client.post_order.return_value = {"success": True, "orderID": "0xabc", "status": "matched"}

        order_id = await account.submit_order("111", Direction.BUY, 0.47, 10)

        assert order_id == "0xabc"
        args = client.create_order.call_args.args[0]
        assert (args.token_id, args.price, args.size, args.side) == ("111", 0.47, 10, "BUY")
        client.post_order.assert_called_once_with("signed", OrderType.FOK)

    @pytest.mark.asyncio
    async def test_submit_sell_side(self):
        account = _make_account()
        account._clob_client.post_order.return_value = {"success": True}

        assert await account.submit_order("222", Direction.SELL, 0.6, 2.7) == "n/a"
        assert account._clob_client.create_order.call_args.args[0].side == "SELL"

    @pytest.mark.asyncio
    async def test_rejected_order(self):
        account = _make_account()
        account._clob_client.post_order.return_value = {
            "success": False,
            "errorMsg": "order couldn't be fully filled",
        }
        with pytest.raises(OrderSubmissionError, match="fully filled"):
            await account.submit_order("111", Direction.BUY, 0.47, 10)

    @pytest.mark.asyncio
    async def test_post_failure(self):
        account = _make_account()
        account._clob_client.post_order.side_effect = RuntimeError("503")
        with pytest.raises(OrderSubmissionError):
            await account.submit_order("111", Direction.BUY, 0.47, 10)

    @pytest.mark.asyncio
    async def test_init_failure(self):
        account = ClobAccountClient(private_key="0xkey", funder="0x" + "ab" * 20)
        account._build_client = MagicMock(side_effect=RuntimeError("bad key"))
        with pytest.raises(ConnectorError, match="initialization failed"):
            await account.connect()
        assert account.initialized is False

    @pytest.mark.asyncio
    async def test_uses_configured_l2_creds(self):
        account = ClobAccountClient(
            private_key="0xkey",
            funder="0xfunder",
            api_key="k",
            api_secret="s",
            passphrase="p",
        )
        with patch("signal_trader.connectors.polymarket_connector.ClobClient") as sdk:
            await account.connect()

        sdk.assert_called_once()
        creds = sdk.call_args.kwargs["creds"]
        assert (creds.api_key, creds.api_secret, creds.api_passphrase) == ("k", "s", "p")
        assert sdk.call_args.kwargs["funder"] == "0xfunder"
        assert account.initialized

    @pytest.mark.asyncio
    async def test_derives_l2_creds(self):
        account = ClobAccountClient(private_key="0xkey", funder="0xfunder")
        with patch("signal_trader.connectors.polymarket_connector.ClobClient") as sdk:
            sdk.return_value.create_or_derive_api_creds.return_value = "derived"
            await account.connect()
            await account.connect()

        assert sdk.call_count == 2
        assert sdk.call_args.kwargs["creds"] == "derived"


# ── Connector lifecycle ──────────────────────────────────────────────


class TestPolymarketConnector:
    def test_from_settings(self, settings_factory):
        settings = settings_factory(gamma_events_url="https://gamma.test/events")
        connector = PolymarketConnector.from_settings(settings)
        assert connector.name == "polymarket"
        assert connector.resolver.events_url == "https://gamma.test/events"
        assert connector.account._funder == settings.wallet_address

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        resolver = _make_resolver()
        account = MagicMock(spec=ClobAccountClient)
        account.connect = AsyncMock()
        account.initialized = False
        connector = PolymarketConnector(resolver, account)

        assert await connector.health_check() is False
        await connector.setup()
        account.connect.assert_awaited_once()
        await connector.teardown()
        resolver._http.aclose.assert_awaited_once()
