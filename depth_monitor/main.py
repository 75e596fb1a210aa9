#!/usr/bin/env python3
"""
Depth Monitor - Real-time order book monitor for Binance spot pairs.

Usage:
    python -m depth_monitor.main BTC-USD
    python -m depth_monitor.main XRP-USD --headless --log-level DEBUG

Controls (TUI):
    1/2/3 - Switch pair
    q     - Quit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import INSTRUMENTS, WS_BASE, find_instrument
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = "logs/depth_monitor.log"


def describe_view(view) -> str:
    """One-line summary of a MarketView for headless mode."""
    book = view.book
    spread = view.spread_history[-1].spread if view.spread_history else 0.0
    return (
        f"{view.instrument.name} [{view.state.value}] "
        f"bid={book.best_bid:g} ask={book.best_ask:g} spread={spread:g} "
        f"imbalance={view.imbalance:+.2%} levels={len(book.bids)}/{len(book.asks)}"
    )


async def main(symbol: str, ws_base: str, headless: bool) -> None:
    """Main entry point - runs data feed and UI (or log output) concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.binance_client import BinanceDepthClient

    client = BinanceDepthClient(find_instrument(symbol), ws_base=ws_base)
    logger.info("Starting Depth Monitor for %s (%s)", symbol, ws_base)

    # Run data feed and UI concurrently
    async def run_feed() -> None:
        try:
            await client.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Feed stopped unexpectedly")

    feed_task = asyncio.create_task(run_feed())

    try:
        if headless:
            client.subscribe(lambda view: logger.info(describe_view(view)))
            await feed_task
        else:
            from .ui.book_view import run_ui

            # Run UI (blocks until quit)
            await run_ui(client)
    finally:
        await client.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass


def cli() -> None:
    """CLI entry point."""
    symbols = [instrument.symbol for instrument in INSTRUMENTS]

    parser = argparse.ArgumentParser(
        description="Depth Monitor - Real-time order book for Binance spot pairs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m depth_monitor.main BTC-USD
    python -m depth_monitor.main ETH-USD --headless
    python -m depth_monitor.main XRP-USD --log-file logs/xrp.log --log-level DEBUG
        """
    )

    parser.add_argument(
        "symbol",
        nargs="?",
        default=symbols[0],
        choices=symbols,
        help=f"Trading pair (default: {symbols[0]})"
    )

    parser.add_argument(
        "--ws-base",
        default=WS_BASE,
        help=f"Stream base address (default: {WS_BASE})"
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="Log each published update instead of running the TUI"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-file",
        default=None,
        help=f"Log file (default: stderr when headless, {DEFAULT_LOG_FILE} otherwise)"
    )

    args = parser.parse_args()

    log_file = args.log_file
    if log_file is None and not args.headless:
        log_file = DEFAULT_LOG_FILE
    setup_logging(args.log_level, log_file)

    # Run
    try:
        asyncio.run(main(args.symbol, args.ws_base, args.headless))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
