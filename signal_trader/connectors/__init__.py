"""
Connectors — integrations with Polymarket and the Redis event source.

Usage:
    from signal_trader.connectors import ConnectorRegistry, PolymarketConnector

    registry = ConnectorRegistry()
    registry.register(PolymarketConnector.from_settings(settings))
    await registry.setup_all()
"""

from signal_trader.connectors.base_connector import BaseConnector, ConnectorInfo
from signal_trader.connectors.event_source import RedisEventSource
from signal_trader.connectors.market_feed import MarketPriceFeed
from signal_trader.connectors.polymarket_connector import (
    ClobAccountClient,
    GammaMarketResolver,
    PolymarketConnector,
)
from signal_trader.connectors.registry import ConnectorRegistry

__all__ = [
    "BaseConnector",
    "ConnectorInfo",
    "ConnectorRegistry",
    "ClobAccountClient",
    "GammaMarketResolver",
    "MarketPriceFeed",
    "PolymarketConnector",
    "RedisEventSource",
]
