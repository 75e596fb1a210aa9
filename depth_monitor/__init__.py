"""
Depth Monitor - Real-time order book monitor for Binance spot partial-depth streams.

Architecture:
- datafeed/: WebSocket connection lifecycle, message routing, level parsing
- engine/: Aggregation, throttling, spread/imbalance metrics, pair switching
- ui/: Order book ladder + spread/imbalance panels (Textual TUI)
"""

__version__ = "0.2.0"
