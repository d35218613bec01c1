"""
ActiveMarketCoordinator — the single writer of the active market.

Every market-binding request (a MARKET message, a trading signal for a new
slug, or the boot-time ``MARKET_SLUG``) goes through `bind()`. The
coordinator resolves the slug, retrying forever on a fixed delay, then swaps
`ActiveMarketState` wholesale and notifies its listeners (the executor and
the price feed), which apply their own identity-based change detection.

Readers hold the `ActiveMarketState` handle and always see a complete
`ResolvedMarket` or None; the coordinator never mutates one in place.
"""

from __future__ import annotations

from typing import Literal, Protocol

import structlog

from signal_trader.models import ResolvedMarket
from signal_trader.observability import MARKET_BINDS
from signal_trader.utils.resilience import FixedDelayRetry

logger = structlog.get_logger(__name__)

__all__ = [
    "ActiveMarketCoordinator",
    "ActiveMarketState",
    "BindSource",
    "MarketListener",
    "MarketResolver",
]

BindSource = Literal["signal", "market", "env", "api"]


class MarketResolver(Protocol):
    async def resolve(self, slug: str) -> ResolvedMarket: ...


class MarketListener(Protocol):
    def update_market(self, market: ResolvedMarket) -> None: ...


class ActiveMarketState:
    """Handle to the currently bound market. Only the coordinator replaces it."""

    def __init__(self, initial: ResolvedMarket | None = None):
        self._current = initial

    @property
    def current(self) -> ResolvedMarket | None:
        return self._current

    @property
    def slug(self) -> str | None:
        return self._current.market_slug if self._current else None

    def _replace(self, market: ResolvedMarket) -> None:
        self._current = market


class ActiveMarketCoordinator:
    """Resolves slugs and fans market changes out to listeners."""

    def __init__(
        self,
        resolver: MarketResolver,
        *,
        state: ActiveMarketState | None = None,
        listeners: list[MarketListener] | None = None,
        retry: FixedDelayRetry | None = None,
    ):
        self._resolver = resolver
        self.state = state or ActiveMarketState()
        self._listeners: list[MarketListener] = list(listeners or [])
        self._retry = retry or FixedDelayRetry(delay=5.0)

    def add_listener(self, listener: MarketListener) -> None:
        self._listeners.append(listener)

    async def bind(
        self, candidate_slug: str | None, source: BindSource = "signal"
    ) -> ResolvedMarket | None:
        """Make ``candidate_slug`` the active market.

        Returns the newly bound market, or None when the request was a no-op
        (empty slug, or the slug already bound). Blocks until resolution
        succeeds; cancelling the awaiting task abandons the attempt.
        """
        slug = (candidate_slug or "").strip().lower()
        if not slug or slug == self.state.slug:
            return None

        market = await self._retry.run(
            lambda: self._resolver.resolve(slug),
            operation="market_resolve",
            slug=slug,
            source=source,
        )

        previous = self.state.current
        self.state._replace(market)
        MARKET_BINDS.labels(source=source).inc()

        for listener in self._listeners:
            listener.update_market(market)

        logger.info(
            "market_bound",
            source=source,
            requested=slug,
            market_slug=market.market_slug,
            event_slug=market.event_slug,
            question=market.market_question,
            identity_changed=previous is None or previous.identity != market.identity,
        )
        return market
