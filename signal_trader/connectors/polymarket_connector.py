"""
PolymarketConnector — Gamma market resolution + CLOB account access.

Two clients live here:

- `GammaMarketResolver` resolves a market slug to its UP/DOWN token ids via
  the public Gamma API (``/events?slug=`` first, ``/markets?slug=`` as a
  fallback). Async httpx with HTTP/2 and pooling.
- `ClobAccountClient` reads conditional-token balances and posts FOK orders
  through py-clob-client. The SDK is synchronous, so every call runs in
  ``asyncio.to_thread``.

Usage:
    connector = PolymarketConnector.from_settings(settings)
    market = await connector.resolver.resolve("btc-updown-5m-1767225600")
    order_id = await connector.account.submit_order(market.up_token_id, Direction.BUY, 0.47, 10)
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any

import httpx
import structlog
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OrderArgs,
    OrderType,
)
from py_clob_client.order_builder.constants import BUY, SELL
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from signal_trader.config import TraderSettings
from signal_trader.connectors.base_connector import BaseConnector
from signal_trader.errors import (
    BalanceFetchError,
    ConnectorError,
    MarketResolutionError,
    OrderSubmissionError,
)
from signal_trader.models import Direction, ResolvedMarket

logger = structlog.get_logger(__name__)

__all__ = [
    "ClobAccountClient",
    "GammaMarketResolver",
    "GammaRateLimitError",
    "PolymarketConnector",
]

GAMMA_EVENTS_URL = "https://gamma-api.polymarket.com/events"
CLOB_API_URL = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137

# Balances at or above this magnitude are fixed-6 integers (micro-shares).
_FIXED6_THRESHOLD = 100_000


class GammaRateLimitError(ConnectorError):
    """Gamma answered 429; retried by tenacity before surfacing."""

    retryable = True
    error_code = "GAMMA_RATE_LIMIT"
    http_status = 429


# ── Field parsing ────────────────────────────────────────────────────


def parse_list(value: Any) -> list[str]:
    """Gamma returns lists as JSON strings, real lists or comma lists."""
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if not isinstance(value, str) or not value.strip():
        return []
    text = value.strip()
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return [str(v).strip() for v in decoded if str(v).strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


def outcome_indices(outcomes: list[str], token_count: int) -> tuple[int, int]:
    """(up_index, down_index) from outcome labels, defaulting to (0, 1)."""
    up_index = down_index = -1
    for i, label in enumerate(o.strip().lower() for o in outcomes):
        if up_index < 0 and (label == "yes" or "up" in label):
            up_index = i
        if down_index < 0 and (label == "no" or "down" in label):
            down_index = i
    if up_index < 0 or down_index < 0 or up_index == down_index:
        return 0, min(1, token_count - 1)
    return up_index, down_index


def parse_share_balance(value: Any) -> float:
    """Conditional balances arrive either as shares or as fixed-6 integers.

    Only integer text is treated as fixed-6; anything with a decimal point
    is already in shares.
    """
    if value is None:
        return 0.0
    text = str(value).strip().strip("'\"")
    try:
        amount = float(text)
    except ValueError:
        return 0.0
    if not math.isfinite(amount):
        return 0.0
    if "." not in text and abs(amount) >= _FIXED6_THRESHOLD:
        return amount / 1e6
    return amount


def _is_tradeable(market: dict) -> bool:
    return (
        market.get("active") is not False
        and not market.get("closed")
        and not market.get("archived")
    )


# ── Gamma resolver ───────────────────────────────────────────────────


class GammaMarketResolver:
    """Resolves slugs against the public Gamma API. No auth."""

    def __init__(self, events_url: str = GAMMA_EVENTS_URL, *, timeout: float = 15.0):
        self.events_url = events_url.rstrip("/")
        self.markets_url = self._markets_url(self.events_url)
        self._http = httpx.AsyncClient(
            http2=True,
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout, connect=5.0),
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=5,
                keepalive_expiry=30.0,
            ),
        )

    @staticmethod
    def _markets_url(events_url: str) -> str:
        if events_url.endswith("/events"):
            return events_url[: -len("/events")] + "/markets"
        return events_url + "/markets"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(GammaRateLimitError),
        reraise=True,
    )
    async def _get(self, url: str, slug: str) -> Any:
        start = time.monotonic()
        try:
            resp = await self._http.get(url, params={"slug": slug})
        except httpx.TimeoutException as e:
            raise MarketResolutionError(f"Gamma request timed out: {e}", slug=slug) from e
        except httpx.HTTPError as e:
            raise MarketResolutionError(f"Gamma request failed: {e}", slug=slug) from e

        if resp.status_code == 429:
            logger.warning("gamma_rate_limited", url=url, slug=slug)
            raise GammaRateLimitError("Gamma rate limit exceeded", connector_name="gamma")
        if resp.status_code >= 400:
            raise MarketResolutionError(
                f"Gamma error {resp.status_code}: {resp.text[:200]}",
                slug=slug,
                detail=str(resp.status_code),
            )

        logger.debug(
            "gamma_request",
            url=url,
            slug=slug,
            status=resp.status_code,
            latency_ms=round((time.monotonic() - start) * 1000),
        )
        try:
            return resp.json()
        except ValueError as e:
            raise MarketResolutionError("Gamma returned invalid JSON", slug=slug) from e

    async def resolve(self, slug: str) -> ResolvedMarket:
        """Resolve ``slug`` to a tradeable market with two token ids.

        Raises:
            MarketResolutionError: Lookup failed or the market is unusable.
        """
        requested = slug.strip().lower()
        try:
            event, market = await self._from_events(requested)
            if market is None:
                event, market = None, await self._from_markets(requested)
        except GammaRateLimitError as e:
            raise MarketResolutionError(str(e), slug=requested) from e

        if market is None:
            raise MarketResolutionError(f"No market found for slug {requested}", slug=requested)
        return self._to_resolved(requested, event, market)

    async def _from_events(self, slug: str) -> tuple[dict | None, dict | None]:
        data = await self._get(self.events_url, slug)
        events = data if isinstance(data, list) else [data] if isinstance(data, dict) else []
        if not events or not isinstance(events[0], dict):
            return None, None
        event = events[0]
        markets = [m for m in event.get("markets") or [] if isinstance(m, dict)]
        if not markets:
            return event, None
        chosen = next((m for m in markets if _is_tradeable(m)), markets[0])
        return event, chosen

    async def _from_markets(self, slug: str) -> dict | None:
        data = await self._get(self.markets_url, slug)
        markets = data if isinstance(data, list) else [data] if isinstance(data, dict) else []
        return markets[0] if markets and isinstance(markets[0], dict) else None

    @staticmethod
    def _to_resolved(requested: str, event: dict | None, market: dict) -> ResolvedMarket:
        token_ids = parse_list(market.get("clobTokenIds"))
        if len(token_ids) < 2:
            raise MarketResolutionError(
                f"Market {requested} has {len(token_ids)} token ids, need 2",
                slug=requested,
            )
        up_index, down_index = outcome_indices(
            parse_list(market.get("outcomes")), len(token_ids)
        )

        event = event or {}
        market_slug = str(market.get("slug") or requested).strip().lower()
        event_slug = str(event.get("slug") or market.get("eventSlug") or market_slug)
        question = str(
            market.get("question") or event.get("title") or market.get("title") or market_slug
        )
        resolved = ResolvedMarket(
            market_slug=market_slug,
            market_question=question,
            event_slug=event_slug,
            up_token_id=token_ids[up_index],
            down_token_id=token_ids[down_index],
            source_text=requested,
        )
        logger.info(
            "gamma_market_resolved",
            requested=requested,
            market_slug=resolved.market_slug,
            event_slug=resolved.event_slug,
        )
        return resolved

    async def close(self) -> None:
        await self._http.aclose()


# ── CLOB account ─────────────────────────────────────────────────────


class ClobAccountClient:
    """Balance reads and FOK order posting for one wallet.

    Supports two auth modes:
    1. Pre-derived L2 creds (api_key + api_secret + passphrase)
    2. Private key only, L2 creds derived on first use
    """

    def __init__(
        self,
        *,
        private_key: str,
        funder: str,
        host: str = CLOB_API_URL,
        chain_id: int = POLYGON_CHAIN_ID,
        signature_type: int = 2,
        api_key: str | None = None,
        api_secret: str | None = None,
        passphrase: str | None = None,
    ):
        self._private_key = private_key
        self._funder = funder
        self._host = host
        self._chain_id = chain_id
        self._signature_type = signature_type
        self._api_key = api_key
        self._api_secret = api_secret
        self._passphrase = passphrase
        self._clob_client: ClobClient | None = None
        self._init_lock = asyncio.Lock()

    def _build_client(self) -> ClobClient:
        if self._api_key and self._api_secret and self._passphrase:
            creds = ApiCreds(
                api_key=self._api_key,
                api_secret=self._api_secret,
                api_passphrase=self._passphrase,
            )
            logger.info("clob_l2_creds_loaded_from_env")
        else:
            bootstrap = ClobClient(
                host=self._host, key=self._private_key, chain_id=self._chain_id
            )
            creds = bootstrap.create_or_derive_api_creds()
            logger.info("clob_l2_creds_derived")

        client = ClobClient(
            host=self._host,
            key=self._private_key,
            chain_id=self._chain_id,
            creds=creds,
            signature_type=self._signature_type,
            funder=self._funder,
        )
        logger.info(
            "clob_client_initialized",
            funder=self._funder,
            signature_type=self._signature_type,
        )
        return client

    async def _client(self) -> ClobClient:
        """Lazy-initialize the SDK client once, off the event loop."""
        async with self._init_lock:
            if self._clob_client is None:
                try:
                    self._clob_client = await asyncio.to_thread(self._build_client)
                except Exception as e:
                    raise ConnectorError(
                        f"CLOB client initialization failed: {e}", connector_name="clob"
                    ) from e
            return self._clob_client

    async def connect(self) -> None:
        await self._client()

    async def get_balance(self, token_id: str) -> float:
        """Authoritative conditional-token balance, in shares.

        Raises:
            BalanceFetchError: The account could not be queried.
        """
        params = BalanceAllowanceParams(asset_type=AssetType.CONDITIONAL, token_id=token_id)
        try:
            client = await self._client()
            await asyncio.to_thread(client.update_balance_allowance, params)
            data = await asyncio.to_thread(client.get_balance_allowance, params)
        except Exception as e:
            raise BalanceFetchError(f"Balance lookup failed: {e}", token_id=token_id) from e

        raw = data.get("balance") if isinstance(data, dict) else None
        balance = parse_share_balance(raw)
        logger.debug("clob_balance", token_id=token_id[:20], raw=raw, shares=balance)
        return balance

    async def submit_order(
        self, token_id: str, side: Direction, price: float, size: float
    ) -> str:
        """Sign and post a fill-or-kill limit order. Returns the order id.

        Raises:
            OrderSubmissionError: Signing or posting failed, or the order was rejected.
        """
        args = OrderArgs(
            token_id=token_id,
            price=price,
            size=size,
            side=BUY if side is Direction.BUY else SELL,
        )
        logger.info(
            "clob_placing_fok_order",
            token_id=token_id[:20] + "...",
            side=side.value,
            price=price,
            size=size,
        )
        try:
            client = await self._client()
            signed = await asyncio.to_thread(client.create_order, args)
            resp = await asyncio.to_thread(client.post_order, signed, OrderType.FOK)
        except Exception as e:
            raise OrderSubmissionError(f"FOK order failed: {e}") from e

        if isinstance(resp, dict) and resp.get("success") is False:
            raise OrderSubmissionError(
                f"FOK order rejected: {resp.get('errorMsg') or 'unknown reason'}",
                detail=json.dumps(resp, default=str)[:500],
            )

        order_id = resp.get("orderID") if isinstance(resp, dict) else None
        order_id = str(order_id or "n/a")
        logger.info(
            "clob_order_posted",
            order_id=order_id,
            status=resp.get("status", "unknown") if isinstance(resp, dict) else "unknown",
        )
        return order_id

    @property
    def initialized(self) -> bool:
        return self._clob_client is not None


# ── Connector ────────────────────────────────────────────────────────


class PolymarketConnector(BaseConnector):
    """
    Polymarket integration block for the trader.

    Exposes `resolver` (Gamma, public) and `account` (CLOB, authenticated).
    """

    @property
    def name(self) -> str:
        return "polymarket"

    @property
    def icon(self) -> str:
        return "🔮"

    @property
    def description(self) -> str:
        return "Polymarket Gamma market resolution and CLOB FOK trading"

    def __init__(self, resolver: GammaMarketResolver, account: ClobAccountClient):
        self.resolver = resolver
        self.account = account

    @classmethod
    def from_settings(cls, settings: TraderSettings) -> PolymarketConnector:
        return cls(
            GammaMarketResolver(settings.gamma_events_url, timeout=settings.http_timeout),
            ClobAccountClient(
                private_key=settings.private_key,
                funder=settings.wallet_address,
                host=settings.clob_http_url,
                chain_id=settings.chain_id,
                signature_type=settings.signature_type,
                api_key=settings.clob_api_key,
                api_secret=settings.clob_api_secret,
                passphrase=settings.clob_api_passphrase,
            ),
        )

    async def setup(self) -> None:
        """Initialize the CLOB client up front so the first order is not delayed."""
        await self.account.connect()

    async def teardown(self) -> None:
        await self.resolver.close()

    async def health_check(self) -> bool:
        return self.account.initialized
