"""
signal-trader — Signal-driven fill-or-kill execution agent for Polymarket.

Consumes an ordered Redis pub/sub stream of market-binding and trading
events, keeps one active UP/DOWN market consistent across the executor and
the price feed, and turns each valid signal into a sized FOK order.
"""

from signal_trader.version import APP_NAME, VERSION

__all__ = ["APP_NAME", "VERSION"]
