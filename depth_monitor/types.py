"""
Data types for Depth Monitor.

Notes:
- NamedTuple with tuple-valued sequences, so everything handed to the UI is immutable
- Prices and amounts are float64 after normalization
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Union


class Instrument(NamedTuple):
    """A tradable pair as known to the UI and to the stream."""
    symbol: str        # Selection key, e.g. "XRP-USD"
    name: str          # Display name
    feed_symbol: str   # Stream symbol, lowercase, e.g. "xrpusdt"


class PriceLevel(NamedTuple):
    """Single order book rung after parsing and normalization."""
    price: float
    amount: float


class AggregatedLevel(NamedTuple):
    """Price level with cumulative volume and change vs. the previous update."""
    price: float
    amount: float
    total: float    # Running sum of amount from the best price outward
    change: float   # amount - previous amount at the same rank (0 if none)


class OrderBookSnapshot(NamedTuple):
    """
    Top-N view of both sides of the book.

    Bids are sorted by price descending, asks ascending (best price first on both).
    """
    bids: tuple[AggregatedLevel, ...] = ()
    asks: tuple[AggregatedLevel, ...] = ()

    @property
    def best_bid(self) -> float:
        return self.bids[0].price if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        return self.asks[0].price if self.asks else 0.0

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks


EMPTY_BOOK = OrderBookSnapshot()


class SpreadSample(NamedTuple):
    time_ms: int
    spread: float


class SpreadTrend(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class SpreadStats(NamedTuple):
    """Summary of the spread history. All zero / NEUTRAL when there are no samples."""
    current: float = 0.0
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    trend: SpreadTrend = SpreadTrend.NEUTRAL


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class HeartbeatEvent(NamedTuple):
    """Server ping that must be echoed back."""
    epoch: int
    token: object


class DeltaEvent(NamedTuple):
    """Incremental depth update (raw [price, qty] string pairs)."""
    epoch: int
    bids: list
    asks: list


class SnapshotEvent(NamedTuple):
    """Partial book snapshot (raw [price, qty] string pairs)."""
    epoch: int
    bids: list
    asks: list


RoutedEvent = Union[HeartbeatEvent, DeltaEvent, SnapshotEvent]


class MarketView(NamedTuple):
    """
    Everything the display layer needs for one frame.

    Delivered to subscribers on each admitted update and on connection state changes.
    """
    instrument: Instrument
    state: ConnectionState
    book: OrderBookSnapshot
    spread_history: tuple[SpreadSample, ...]
    imbalance: float
    timestamp_ms: int
