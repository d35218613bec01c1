"""
Headless signal trader — the same runtime as app.py, without the HTTP API.

Loads an optional env file, starts the trader and runs until SIGINT/SIGTERM.

Usage:
    python scripts/run_trader.py
    python scripts/run_trader.py --env-file .env.production --market-slug btc-updown-5m-1767225600
"""

import argparse
import asyncio
import os
import signal
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
import structlog

from signal_trader.config import TraderSettings
from signal_trader.logging import setup_logging
from signal_trader.observability import setup_tracing
from signal_trader.runtime import TraderRuntime

logger = structlog.get_logger("run_trader")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the signal trader without the API")
    parser.add_argument("--env-file", help="Extra env file loaded before settings")
    parser.add_argument("--market-slug", help="Bind this market at boot (overrides MARKET_SLUG)")
    parser.add_argument("--shares", type=float, help="Shares per trade (overrides SHARES_PER_TRADE)")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if args.env_file:
        load_dotenv(args.env_file, override=False)

    overrides = {}
    if args.market_slug:
        overrides["market_slug"] = args.market_slug
    if args.shares is not None:
        overrides["shares_per_trade"] = args.shares
    settings = TraderSettings(**overrides)

    setup_logging(settings.log_level, json_output=settings.json_logs)
    if settings.tracing_enabled:
        setup_tracing()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    runtime = TraderRuntime(settings)
    try:
        await runtime.run_forever(stop_event)
    except Exception as e:
        logger.error("trader_startup_failed", error=str(e), exc_info=True)
        raise SystemExit(1) from e


if __name__ == "__main__":
    asyncio.run(main())
