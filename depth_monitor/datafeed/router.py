"""
Classify raw stream frames.

Three shapes are recognized:
1. {"ping": token}, token truthy                    -> HeartbeatEvent
2. {"e": "depthUpdate", "s": sym, "b": [], "a": []} -> DeltaEvent
3. {"lastUpdateId": n, "bids": [], "asks": []}      -> SnapshotEvent

Shape 3 carries no symbol, so it is only accepted when the socket address
itself names the active instrument. Everything else is dropped: a public feed
will send junk now and then, and none of it may stop the pipeline.
"""

from __future__ import annotations

import logging
from collections import Counter

import orjson

from ..types import DeltaEvent, HeartbeatEvent, Instrument, RoutedEvent, SnapshotEvent

logger = logging.getLogger(__name__)


class MessageRouter:
    """
    Stateless apart from drop counters (reason -> count).

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = ('dropped',)

    def __init__(self) -> None:
        self.dropped: Counter[str] = Counter()

    def _drop(self, reason: str) -> None:
        self.dropped[reason] += 1
        logger.debug("Dropped frame: %s", reason)

    def route(
        self,
        raw: str | bytes,
        instrument: Instrument,
        *,
        epoch: int,
        url: str = "",
    ) -> RoutedEvent | None:
        """
        Parse and classify one frame for the active instrument.

        Args:
            raw: Frame payload as received
            instrument: Currently active instrument
            epoch: Epoch of the connection that received the frame
            url: Address of the currently active socket

        Returns None for anything that should not reach the book.
        """
        try:
            data = orjson.loads(raw)
        except (orjson.JSONDecodeError, TypeError):
            self._drop("unparseable")
            return None

        if not isinstance(data, dict) or not data:
            self._drop("not_an_object")
            return None

        if data.get("ping"):
            return HeartbeatEvent(epoch, data["ping"])

        feed_symbol = instrument.feed_symbol.lower()

        if data.get("e") == "depthUpdate":
            symbol = data.get("s")
            if symbol and str(symbol).lower() != feed_symbol:
                self._drop("foreign_symbol")
                return None
            bids, asks = data.get("b"), data.get("a")
            if isinstance(bids, list) and isinstance(asks, list):
                return DeltaEvent(epoch, bids, asks)
            self._drop("bad_delta")
            return None

        bids, asks = data.get("bids"), data.get("asks")
        if isinstance(bids, list) and isinstance(asks, list):
            if feed_symbol in url.lower():
                return SnapshotEvent(epoch, bids, asks)
            self._drop("foreign_snapshot")
            return None

        self._drop("unknown_shape")
        return None
