"""
Core — the ordered signal pipeline.

normalizer → consumer (queue + worker) → coordinator (active market)
→ executor (sizing, FOK submission, position ledger).
"""

from signal_trader.core.consumer import ConnectionState, SignalConsumer
from signal_trader.core.coordinator import ActiveMarketCoordinator, ActiveMarketState
from signal_trader.core.executor import TradeExecutor
from signal_trader.core.ledger import PositionLedger
from signal_trader.core.normalizer import normalize

__all__ = [
    "ActiveMarketCoordinator",
    "ActiveMarketState",
    "ConnectionState",
    "PositionLedger",
    "SignalConsumer",
    "TradeExecutor",
    "normalize",
]
