"""
Static configuration: instruments, stream endpoint and tuning constants.

Everything here is read once at import. Components take these as keyword
defaults so callers (and tests) can pass other values explicitly.
"""

from __future__ import annotations

import os

from .types import Instrument

# Binance spot partial-depth stream
WS_BASE = os.getenv("DEPTH_MONITOR_WS_BASE", "wss://stream.binance.com:9443/ws")
STREAM_SUFFIX = "@depth20@100ms"

INSTRUMENTS: tuple[Instrument, ...] = (
    Instrument(symbol="BTC-USD", name="BTC-USD", feed_symbol="btcusdt"),
    Instrument(symbol="ETH-USD", name="ETH-USD", feed_symbol="ethusdt"),
    Instrument(symbol="XRP-USD", name="XRP-USD", feed_symbol="xrpusdt"),
)

# Book shape
BOOK_DEPTH = 20
SPREAD_HISTORY_SIZE = 60
SPREAD_TREND_SAMPLES = 5      # Trend needs this many samples, all moving one way

# Publish throttle + flood guard
PUBLISH_INTERVAL_SEC = 0.5
FLOOD_MAX_MESSAGES = 100
FLOOD_WINDOW_SEC = 1.0
FLOOD_GRACE_SEC = 1.0

# Connection lifecycle
CONNECT_TIMEOUT_SEC = 5.0
RECONNECT_DELAY_SEC = 3.0      # Fixed, not exponential
HEARTBEAT_INTERVAL_SEC = 15.0
CLOSE_GUARD_SEC = 1.0

# Pair switching
SWITCH_SETTLE_SEC = 0.5

PING_PAYLOAD = {"method": "ping"}

# symbol -> (threshold, divisor). The XRP stream has been seen sending prices
# scaled up by 40000; anything above the threshold is divided back down.
# Remove once the upstream scaling is fixed.
PRICE_SCALE_FIXES: dict[str, tuple[float, float]] = {
    "XRP-USD": (1000.0, 40000.0),
}


def find_instrument(symbol: str, instruments: tuple[Instrument, ...] = INSTRUMENTS) -> Instrument:
    """Look up a configured instrument by symbol. Raises KeyError if unknown."""
    for instrument in instruments:
        if instrument.symbol == symbol:
            return instrument
    raise KeyError(f"Unknown instrument: {symbol!r}")


def stream_url(instrument: Instrument, base: str = WS_BASE) -> str:
    """Build the depth stream address for an instrument."""
    return f"{base.rstrip('/')}/{instrument.feed_symbol.lower()}{STREAM_SUFFIX}"
