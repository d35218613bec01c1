"""
TradeExecutor — turns a validated signal into one fill-or-kill order.

Steps for every signal:

1. Precondition: a market is bound and the signal targets it.
2. Sizing: BUY uses the configured shares per trade. SELL reconciles the
   ledger with the account balance, then sells
   ``floor_1dp(min(shares_per_trade, balance) - 0.5)``; a non-positive
   size is a skip, not an error.
3. Pricing: clamp to [0.01, 0.99], round to cents.
4. Submission: FOK only, never retried here. The ledger is updated
   optimistically after a successful post.
"""

from __future__ import annotations

import time
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Protocol

import structlog

from signal_trader.core.coordinator import ActiveMarketState
from signal_trader.core.ledger import PositionLedger
from signal_trader.errors import (
    MarketMismatchError,
    NoActiveMarketError,
    OrderSubmissionError,
)
from signal_trader.models import Direction, Outcome, ResolvedMarket, TradingSignal
from signal_trader.observability import ORDERS

logger = structlog.get_logger(__name__)

__all__ = ["AccountClient", "TradeExecutor", "SELL_SAFETY_BUFFER_SHARES"]

SELL_SAFETY_BUFFER_SHARES = 0.5
SELL_SIZE_DECIMALS = 1
MIN_ORDER_PRICE = 0.01
MAX_ORDER_PRICE = 0.99
MIN_NOTIONAL_USD = 1.0


class AccountClient(Protocol):
    async def get_balance(self, token_id: str) -> float: ...

    async def submit_order(
        self, token_id: str, side: Direction, price: float, size: float
    ) -> str: ...


def floor_to(value: float, decimals: int) -> float:
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_FLOOR))


def clamp_price(price: float) -> float:
    clamped = min(MAX_ORDER_PRICE, max(MIN_ORDER_PRICE, price))
    return float(Decimal(str(clamped)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class TradeExecutor:
    """Sizes and submits FOK orders for the bound market. Owns the ledger."""

    def __init__(
        self,
        account: AccountClient,
        state: ActiveMarketState,
        *,
        shares_per_trade: float,
    ):
        if shares_per_trade <= 0:
            raise ValueError("shares_per_trade must be positive")
        self._account = account
        self._state = state
        self.shares_per_trade = shares_per_trade
        self.ledger = PositionLedger()

        self._ledger_identity: tuple[str, str, str] | None = None
        self.sent_count = 0
        self.failed_count = 0
        self.skipped_count = 0
        self.last_trade_at_ms: int | None = None
        self.last_order_id: str | None = None
        self.last_trade_summary: str | None = None

    # ── Market binding ───────────────────────────────────────────────

    def update_market(self, market: ResolvedMarket) -> None:
        """Reset the ledger when the bound market's identity changes."""
        if market.identity == self._ledger_identity:
            return
        self._ledger_identity = market.identity
        self.ledger.reset()
        logger.info(
            "executor_market_changed",
            market_slug=market.market_slug,
            up_token=market.up_token_id,
            down_token=market.down_token_id,
        )

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self, signal: TradingSignal) -> None:
        """Size, price and submit one FOK order for ``signal``.

        Raises:
            NoActiveMarketError: No market is bound.
            MarketMismatchError: The signal targets another market.
            OrderSubmissionError: The order could not be signed or posted.
        """
        market = self._state.current
        if market is None:
            raise NoActiveMarketError("No active market; cannot execute signal")
        if signal.market_slug != market.market_slug:
            raise MarketMismatchError(
                f"Signal market {signal.market_slug} != active {market.market_slug}",
                active_slug=market.market_slug,
                signal_slug=signal.market_slug,
            )

        token_id = market.token_id_for(signal.outcome)
        size = await self._order_size(signal, token_id)
        price = clamp_price(signal.limit_price)

        if size <= 0:
            self.skipped_count += 1
            self.last_trade_at_ms = int(time.time() * 1000)
            self.last_trade_summary = (
                f"SKIPPED {signal.direction.value} {signal.outcome.value} "
                f"(insufficient shares after -{SELL_SAFETY_BUFFER_SHARES} buffer)"
            )
            ORDERS.labels(side=signal.direction.value, status="skipped").inc()
            logger.warning(
                "trade_skipped",
                market_slug=market.market_slug,
                outcome=signal.outcome.value,
                cached_shares=self.ledger.get(signal.outcome),
                summary=self.last_trade_summary,
            )
            return

        notional = size * price
        if notional < MIN_NOTIONAL_USD:
            logger.warning(
                "order_below_min_notional",
                notional=round(notional, 4),
                size=size,
                price=price,
            )

        summary = f"{signal.direction.value} {signal.outcome.value} @ {price} x {size}"
        try:
            order_id = await self._account.submit_order(
                token_id, signal.direction, price, size
            )
        except Exception as e:
            self.failed_count += 1
            self.last_trade_at_ms = int(time.time() * 1000)
            self.last_trade_summary = f"FAILED {summary}"
            ORDERS.labels(side=signal.direction.value, status="failed").inc()
            if isinstance(e, OrderSubmissionError):
                e.summary = summary
                raise
            raise OrderSubmissionError(
                f"Order submission failed: {e}", summary=summary
            ) from e

        self.sent_count += 1
        self.last_trade_at_ms = int(time.time() * 1000)
        self.last_order_id = order_id
        self.last_trade_summary = summary
        position = self.ledger.apply_fill(signal.outcome, signal.direction, size)
        ORDERS.labels(side=signal.direction.value, status="sent").inc()

        logger.info(
            "trade_sent",
            order_id=order_id,
            market_slug=market.market_slug,
            summary=summary,
            position=position,
        )

    async def _order_size(self, signal: TradingSignal, token_id: str) -> float:
        if signal.direction is Direction.BUY:
            return self.shares_per_trade

        balance = await self._refresh_balance(signal.outcome, token_id)
        sellable = min(self.shares_per_trade, balance) - SELL_SAFETY_BUFFER_SHARES
        return floor_to(sellable, SELL_SIZE_DECIMALS)

    async def _refresh_balance(self, outcome: Outcome, token_id: str) -> float:
        """The one reconciliation point between the ledger and the account."""
        try:
            balance = await self._account.get_balance(token_id)
        except Exception as e:
            cached = self.ledger.get(outcome)
            logger.warning(
                "balance_refresh_failed",
                stage="size",
                outcome=outcome.value,
                cached_shares=cached,
                error=str(e),
            )
            return cached
        return self.ledger.reconcile(outcome, balance)

    # ── Stats ────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        return {
            "market_slug": self._state.slug,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "last_trade_at_ms": self.last_trade_at_ms,
            "last_order_id": self.last_order_id,
            "last_trade_summary": self.last_trade_summary,
            "positions": self.ledger.snapshot(),
        }
