"""
Derived views over a published book: spread history, spread stats and order
book imbalance.
"""

from __future__ import annotations

import math
from collections import deque
from typing import Iterable, Iterator

from ..config import SPREAD_HISTORY_SIZE, SPREAD_TREND_SAMPLES
from ..types import OrderBookSnapshot, SpreadSample, SpreadStats, SpreadTrend


class SpreadHistoryBuffer:
    """
    Fixed-capacity FIFO of spread samples, oldest first.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = ('_samples',)

    def __init__(self, capacity: int = SPREAD_HISTORY_SIZE) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        # deque evicts from the head once maxlen is reached
        self._samples: deque[SpreadSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def push(self, sample: SpreadSample) -> None:
        self._samples.append(sample)

    def samples(self) -> tuple[SpreadSample, ...]:
        """Immutable copy in insertion order."""
        return tuple(self._samples)

    @property
    def latest(self) -> SpreadSample | None:
        return self._samples[-1] if self._samples else None

    def stats(self) -> SpreadStats:
        return compute_spread_stats(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[SpreadSample]:
        return iter(tuple(self._samples))


def spread_trend(spreads: list[float], window: int = SPREAD_TREND_SAMPLES) -> SpreadTrend:
    """
    UP if the last `window` spreads never fall, DOWN if they never rise.

    A flat run counts as UP. Fewer than `window` spreads is NEUTRAL.
    """
    if len(spreads) < window:
        return SpreadTrend.NEUTRAL
    recent = spreads[-window:]
    pairs = list(zip(recent, recent[1:]))
    if all(b >= a for a, b in pairs):
        return SpreadTrend.UP
    if all(b <= a for a, b in pairs):
        return SpreadTrend.DOWN
    return SpreadTrend.NEUTRAL


def compute_spread_stats(samples: Iterable[SpreadSample]) -> SpreadStats:
    """Current/min/max/avg spread and short-term trend, oldest sample first."""
    spreads = [sample.spread for sample in samples]
    if not spreads:
        return SpreadStats()
    return SpreadStats(
        current=spreads[-1],
        min=min(spreads),
        max=max(spreads),
        avg=sum(spreads) / len(spreads),
        trend=spread_trend(spreads),
    )


def _volume(levels) -> float:
    return sum(level.amount for level in levels if math.isfinite(level.amount))


def compute_imbalance(book: OrderBookSnapshot) -> float:
    """
    Signed volume ratio in [-1, 1]. Positive = buy pressure.

    Defined as 0 for an empty book.
    """
    bid_volume = _volume(book.bids)
    ask_volume = _volume(book.asks)
    total = bid_volume + ask_volume
    if total <= 0:
        return 0.0
    return max(-1.0, min(1.0, (bid_volume - ask_volume) / total))


def compute_spread(book: OrderBookSnapshot) -> float:
    """Best ask minus best bid, floored at 0. A missing side counts as price 0."""
    return max(0.0, book.best_ask - book.best_bid)
