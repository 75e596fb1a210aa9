"""
Order book TUI using Textual.

Displays:
- Top: Status bar (pair, connection state, best bid/ask, spread)
- Left: Order book ladder (asks over bids) with cumulative depth bars
- Right: Spread sparkline + order book imbalance gauge

Performance notes:
- Views arrive at most every 500ms (publish throttle), so full re-renders are fine
- Drop-oldest queue between feed and UI; the UI never blocks the feed
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Sequence

from rich.console import Group, RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Static

from ..config import INSTRUMENTS
from ..engine.metrics import compute_spread_stats
from ..types import ConnectionState, SpreadTrend

if TYPE_CHECKING:
    from ..datafeed.binance_client import BinanceDepthClient
    from ..types import AggregatedLevel, MarketView

logger = logging.getLogger(__name__)

# Color scheme (dark theme)
BID_COLOR = "#10b981"      # Green
ASK_COLOR = "#f43f5e"      # Red
NEUTRAL_COLOR = "#f59e0b"  # Amber
SPREAD_COLOR = "#3b82f6"   # Blue
PRICE_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"
BAR_BG = "#1e293b"

STATE_STYLES = {
    ConnectionState.CONNECTED: ("Connected", BID_COLOR),
    ConnectionState.CONNECTING: ("Connecting...", NEUTRAL_COLOR),
    ConnectionState.DISCONNECTED: ("Disconnected", ASK_COLOR),
    ConnectionState.ERROR: ("Error", ASK_COLOR),
}

SPARK_CHARS = "▁▂▃▄▅▆▇█"

# Widening spread shows red
TREND_ARROWS = {
    SpreadTrend.UP: ("▲", ASK_COLOR),
    SpreadTrend.DOWN: ("▼", BID_COLOR),
    SpreadTrend.NEUTRAL: ("•", HEADER_COLOR),
}


def format_qty(qty: float) -> str:
    """Format quantity for display."""
    if qty >= 1000:
        return f"{qty/1000:.1f}K"
    elif qty >= 1:
        return f"{qty:.2f}"
    else:
        return f"{qty:.4f}"


def format_price(price: float) -> str:
    """Low-priced pairs (XRP) need more decimals."""
    if price >= 100:
        return f"{price:,.2f}"
    return f"{price:.5f}"


def make_bar(value: float, max_value: float, width: int, color: str) -> Text:
    """Create a horizontal bar using block characters."""
    if max_value <= 0:
        return Text(" " * width)

    fill_ratio = min(1.0, max(0.0, value / max_value))
    fill_width = int(fill_ratio * width)

    bar = "█" * fill_width + " " * (width - fill_width)
    return Text(bar, style=Style(color=color, bgcolor=BAR_BG))


def sparkline(values: Sequence[float], width: int = 60) -> str:
    """Render the last `width` values as a one-line sparkline."""
    values = list(values)[-width:]
    if not values:
        return ""
    low, high = min(values), max(values)
    span = high - low
    if span <= 0:
        return SPARK_CHARS[0] * len(values)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round((v - low) / span * top)] for v in values)


def imbalance_label(imbalance: float) -> str:
    """E.g. '42% Buy Pressure' / '17% Sell Pressure'."""
    pct = round(imbalance * 100)
    side = "Buy" if pct >= 0 else "Sell"
    return f"{abs(pct)}% {side} Pressure"


def imbalance_gauge(imbalance: float, width: int = 40) -> Text:
    """Centered gauge: fills right (green) for buy pressure, left (red) for sell."""
    half = width // 2
    fill = int(round(min(1.0, abs(imbalance)) * half))
    if imbalance >= 0:
        left = " " * half
        right = "█" * fill + " " * (half - fill)
        color = BID_COLOR if fill else NEUTRAL_COLOR
        return Text.assemble((left, Style(bgcolor=BAR_BG)), ("│", "dim"), (right, Style(color=color, bgcolor=BAR_BG)))
    left = " " * (half - fill) + "█" * fill
    right = " " * half
    return Text.assemble((left, Style(color=ASK_COLOR, bgcolor=BAR_BG)), ("│", "dim"), (right, Style(bgcolor=BAR_BG)))


def _change_text(change: float) -> Text:
    if change > 0:
        return Text(f"+{format_qty(change)}", style=BID_COLOR)
    elif change < 0:
        return Text(f"-{format_qty(-change)}", style=ASK_COLOR)
    return Text("")


class BookTable(Static):
    """Order book ladder: asks (highest first) above bids (highest first)."""

    DEFAULT_CSS = """
    BookTable {
        width: 2fr;
        height: 100%;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._view: MarketView | None = None

    def update_view(self, view: MarketView) -> None:
        self._view = view
        self.refresh()

    def render(self) -> RenderableType:
        if self._view is None or self._view.book.is_empty:
            return Text("Waiting for data...", style="dim")

        book = self._view.book
        max_total = max(
            (book.bids[-1].total if book.bids else 0.0),
            (book.asks[-1].total if book.asks else 0.0),
        )

        table = Table(
            show_header=True,
            header_style=HEADER_COLOR,
            box=None,
            padding=(0, 1),
            collapse_padding=True,
        )
        table.add_column("Price", justify="right", width=14)
        table.add_column("Amount", justify="right", width=10)
        table.add_column("Total", justify="right", width=10)
        table.add_column("Depth", justify="left", width=16, no_wrap=True)
        table.add_column("Change", justify="right", width=10)

        def add_level(level: AggregatedLevel, color: str) -> None:
            table.add_row(
                Text(format_price(level.price), style=color),
                Text(format_qty(level.amount), style=PRICE_COLOR),
                Text(format_qty(level.total), style=HEADER_COLOR),
                make_bar(level.total, max_total, 16, color),
                _change_text(level.change),
            )

        # Asks are stored best (lowest) first; show highest at the top
        for level in reversed(book.asks):
            add_level(level, ASK_COLOR)
        table.add_row(Text("─" * 14, style="dim"), *(Text("") for _ in range(4)))
        for level in book.bids:
            add_level(level, BID_COLOR)

        return table


class SpreadPanel(Static):
    """Spread history sparkline with summary stats and trend arrow."""

    DEFAULT_CSS = """
    SpreadPanel {
        height: 6;
        padding: 0 1;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._view: MarketView | None = None

    def update_view(self, view: MarketView) -> None:
        self._view = view
        self.refresh()

    def render(self) -> RenderableType:
        title = Text("Spread", style=f"bold {SPREAD_COLOR}")
        if self._view is None or not self._view.spread_history:
            return Group(title, Text("No samples yet", style="dim"))

        stats = compute_spread_stats(self._view.spread_history)
        arrow, arrow_color = TREND_ARROWS[stats.trend]
        summary = Text.assemble(
            ("Now: ", "dim"), (format_price(stats.current), SPREAD_COLOR),
            (f" {arrow}", arrow_color),
            ("  Avg: ", "dim"), (format_price(stats.avg), PRICE_COLOR),
            ("  Min: ", "dim"), (format_price(stats.min), PRICE_COLOR),
            ("  Max: ", "dim"), (format_price(stats.max), PRICE_COLOR),
            (f"  ({len(self._view.spread_history)} samples)", "dim"),
        )
        spreads = [sample.spread for sample in self._view.spread_history]
        return Group(title, Text(sparkline(spreads), style=SPREAD_COLOR), summary)


class ImbalancePanel(Static):
    """Order book imbalance gauge."""

    DEFAULT_CSS = """
    ImbalancePanel {
        height: 5;
        padding: 0 1;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._imbalance: float = 0.0

    def update_view(self, view: MarketView) -> None:
        self._imbalance = view.imbalance
        self.refresh()

    def render(self) -> RenderableType:
        imbalance = self._imbalance
        if imbalance > 0:
            color = BID_COLOR
        elif imbalance < 0:
            color = ASK_COLOR
        else:
            color = NEUTRAL_COLOR
        return Group(
            Text.assemble(("Imbalance  ", "bold"), (imbalance_label(imbalance), color)),
            imbalance_gauge(imbalance),
            Text("100% Sell" + " " * 11 + "Neutral" + " " * 11 + "100% Buy", style="dim"),
        )


class StatusBar(Static):
    """Status bar showing pair, connection state, and top of book."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._view: MarketView | None = None

    def update_view(self, view: MarketView) -> None:
        self._view = view
        self.refresh()

    def render(self) -> RenderableType:
        if self._view is None:
            return Text("Connecting...", style="dim")

        view = self._view
        label, color = STATE_STYLES[view.state]
        spread = view.spread_history[-1].spread if view.spread_history else 0.0

        parts = [
            Text(f" {view.instrument.name} ", style="bold white on #1e40af"),
            Text("  "),
            Text(f"● {label}", style=color),
            Text("  │  ", style="dim"),
            Text("Bid: ", style="dim"),
            Text(format_price(view.book.best_bid), style=BID_COLOR),
            Text("  Ask: ", style="dim"),
            Text(format_price(view.book.best_ask), style=ASK_COLOR),
            Text("  Spread: ", style="dim"),
            Text(format_price(spread), style=SPREAD_COLOR),
        ]

        result = Text()
        for p in parts:
            result.append(p)
        return result


class BookApp(App):
    """Main Depth Monitor application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 100%;
        padding: 1 2;
    }

    #side-panels {
        width: 1fr;
    }
    """

    BINDINGS = [("q", "quit", "Quit")] + [
        (str(i + 1), f"switch_pair({i})", instrument.name)
        for i, instrument in enumerate(INSTRUMENTS[:9])
    ]

    def __init__(self, client: BinanceDepthClient) -> None:
        super().__init__()
        self.client = client
        self.view_queue: asyncio.Queue[MarketView] = asyncio.Queue(maxsize=5)
        self._unsubscribe = None
        self._status_bar: StatusBar | None = None
        self._book_table: BookTable | None = None
        self._spread_panel: SpreadPanel | None = None
        self._imbalance_panel: ImbalancePanel | None = None

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar()
        self._book_table = BookTable()
        self._spread_panel = SpreadPanel()
        self._imbalance_panel = ImbalancePanel()

        yield self._status_bar
        yield Horizontal(
            self._book_table,
            Vertical(self._spread_panel, self._imbalance_panel, id="side-panels"),
            id="main-container",
        )
        yield Footer()

    def _enqueue(self, view: MarketView) -> None:
        """Subscriber callback. Non-blocking put, dropping the oldest view if full."""
        try:
            self.view_queue.put_nowait(view)
        except asyncio.QueueFull:
            self.view_queue.get_nowait()
            self.view_queue.put_nowait(view)

    async def on_mount(self) -> None:
        """Subscribe to the feed and start the view consumer task."""
        self._unsubscribe = self.client.subscribe(self._enqueue)
        self._enqueue(self.client.latest)
        self.run_worker(self._consume_views(), exclusive=True)

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()

    async def _consume_views(self) -> None:
        """Consume views from the queue and update UI."""
        while True:
            try:
                view = await asyncio.wait_for(self.view_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            for widget in (self._status_bar, self._book_table, self._spread_panel, self._imbalance_panel):
                if widget is not None:
                    widget.update_view(view)

    def action_switch_pair(self, index: int) -> None:
        """Switch instruments (bound to number keys)."""
        instruments = self.client.instruments
        if 0 <= index < len(instruments):
            self.client.request_instrument_switch(instruments[index])


async def run_ui(client: BinanceDepthClient) -> None:
    """Run the TUI application."""
    app = BookApp(client)
    await app.run_async()
