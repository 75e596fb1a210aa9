"""
Binance partial-depth client with async orchestration.

Handles:
1. One depth20@100ms stream at a time (ConnectionManager)
2. Frame routing + heartbeat replies (MessageRouter)
3. Flood guard and publish throttle (UpdateThrottle)
4. Level parsing, totals, per-rank change (levels + aggregator)
5. Spread history and imbalance for each published update
6. Serialized instrument switching (PairSwitchSequencer)

Subscribers get immutable MarketView values; nothing they receive is ever
mutated afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..config import (
    BOOK_DEPTH,
    FLOOD_GRACE_SEC,
    INSTRUMENTS,
    SPREAD_HISTORY_SIZE,
    WS_BASE,
    find_instrument,
)
from ..engine.aggregator import aggregate
from ..engine.metrics import SpreadHistoryBuffer, compute_imbalance, compute_spread
from ..engine.sequencer import PairSwitchSequencer
from ..engine.throttle import UpdateThrottle
from ..types import (
    EMPTY_BOOK,
    ConnectionState,
    HeartbeatEvent,
    Instrument,
    MarketView,
    OrderBookSnapshot,
    SpreadSample,
)
from .connection import ConnectionManager, Connector, connect_websocket
from .levels import process_levels
from .router import MessageRouter

logger = logging.getLogger(__name__)

Subscriber = Callable[[MarketView], None]


class BinanceDepthClient:
    """
    Async Binance depth client for one active instrument at a time.

    Usage:
        client = BinanceDepthClient(find_instrument("BTC-USD"))
        client.subscribe(lambda view: print(view.book.best_bid))
        await client.run()
    """

    def __init__(
        self,
        instrument: Instrument = INSTRUMENTS[0],
        *,
        instruments: tuple[Instrument, ...] = INSTRUMENTS,
        ws_base: str = WS_BASE,
        depth: int = BOOK_DEPTH,
        history_size: int = SPREAD_HISTORY_SIZE,
        flood_grace: float = FLOOD_GRACE_SEC,
        connector: Connector = connect_websocket,
        throttle: UpdateThrottle | None = None,
        clock: Callable[[], float] = time.monotonic,
        connection_options: dict | None = None,
        settle_delay: float | None = None,
    ) -> None:
        self.instruments = instruments
        self.depth = depth
        self.flood_grace = flood_grace
        self._clock = clock

        # Core components
        self.router = MessageRouter()
        self.throttle = throttle or UpdateThrottle()
        self.spread_history = SpreadHistoryBuffer(history_size)
        self.connection = ConnectionManager(
            self._handle_message,
            on_state=self._on_state,
            connector=connector,
            ws_base=ws_base,
            clock=clock,
            **(connection_options or {}),
        )
        sequencer_options = {} if settle_delay is None else {"settle_delay": settle_delay}
        self.sequencer = PairSwitchSequencer(
            self.connection,
            instrument,
            on_switch=self._reset_state,
            **sequencer_options,
        )

        # State
        self._book: OrderBookSnapshot = EMPTY_BOOK
        self._imbalance: float = 0.0
        self._book_epoch: int | None = None
        self._subscribers: list[Subscriber] = []
        self._latest: MarketView | None = None
        self._stopped = asyncio.Event()

        # Update rate tracking
        self.published_count: int = 0

    # ---------- display-facing surface ----------
    @property
    def current_instrument(self) -> Instrument:
        return self.sequencer.current

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def latest(self) -> MarketView:
        """Most recent published view (or an empty one before the first update)."""
        return self._latest or self._build_view()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a view callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def request_instrument_switch(self, instrument: Instrument | str) -> None:
        """Queue a switch by Instrument or by symbol. Unknown symbols raise KeyError."""
        if isinstance(instrument, str):
            instrument = find_instrument(instrument, self.instruments)
        self.sequencer.request_switch(instrument)

    # ---------- lifecycle ----------
    async def start(self) -> None:
        self._stopped.clear()
        await self.connection.open(self.current_instrument)

    async def stop(self) -> None:
        """Cancel pending switches and close the connection (no reconnect)."""
        await self.sequencer.cancel()
        await self.connection.close()
        self._stopped.set()

    async def run(self) -> None:
        """Start streaming and wait until stop() is called."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if self.connection.state is not ConnectionState.DISCONNECTED:
                await self.connection.close()

    # ---------- hot path ----------
    async def _handle_message(self, epoch: int, raw: str) -> None:
        """
        Handle one text frame from the connection.

        HOT PATH - called for every frame (~10 per second per stream).
        """
        if not self.connection.is_current(epoch):
            return

        if epoch != self._book_epoch:
            # New socket: previous levels belong to another connection
            self._book_epoch = epoch
            self._book = EMPTY_BOOK
            self.throttle.reset()

        now = self._clock()
        if self.throttle.observe(now):
            logger.warning("Flood detected on %s, forcing reconnect", self.connection.url)
            self.connection.schedule_restart(self.flood_grace)
            return

        instrument = self.current_instrument
        event = self.router.route(raw, instrument, epoch=epoch, url=self.connection.url)
        if event is None:
            return

        if isinstance(event, HeartbeatEvent):
            await self.connection.send({"pong": event.token})
            return

        if not self.throttle.admit(now):
            return

        bids = process_levels(event.bids, instrument, depth=self.depth)
        asks = process_levels(event.asks, instrument, ascending=True, depth=self.depth)
        if not bids and not asks:
            return

        book = OrderBookSnapshot(
            bids=aggregate(bids, self._book.bids),
            asks=aggregate(asks, self._book.asks),
        )

        # Only the active epoch may publish
        if not self.connection.is_current(event.epoch):
            return

        self._book = book
        self._imbalance = compute_imbalance(book)
        self.spread_history.push(SpreadSample(int(time.time() * 1000), compute_spread(book)))
        self.published_count += 1
        self._publish()

    # ---------- internals ----------
    def _reset_state(self, instrument: Instrument) -> None:
        """Clean slate for a new instrument."""
        self._book = EMPTY_BOOK
        self._book_epoch = None
        self._imbalance = 0.0
        self.spread_history.clear()
        self.throttle.reset()
        self._publish()

    def _on_state(self, state: ConnectionState) -> None:
        self._publish()

    def _build_view(self) -> MarketView:
        return MarketView(
            instrument=self.current_instrument,
            state=self.connection.state,
            book=self._book,
            spread_history=self.spread_history.samples(),
            imbalance=self._imbalance,
            timestamp_ms=int(time.time() * 1000),
        )

    def _publish(self) -> None:
        view = self._build_view()
        self._latest = view
        for callback in list(self._subscribers):
            try:
                callback(view)
            except Exception:
                logger.exception("Subscriber %r failed", callback)
