"""
Publish throttle and flood guard.

Two independent gates, both driven by an injected monotonic clock value:
- admit(): at most one published update per `min_interval` seconds
- observe(): counts inbound frames and reports a flood once more than
  `flood_threshold` arrive with no gap longer than `flood_window`
"""

from __future__ import annotations

from ..config import FLOOD_MAX_MESSAGES, FLOOD_WINDOW_SEC, PUBLISH_INTERVAL_SEC


class UpdateThrottle:
    """
    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = (
        'min_interval', 'flood_threshold', 'flood_window',
        '_last_admit', '_last_message', '_message_count',
    )

    def __init__(
        self,
        min_interval: float = PUBLISH_INTERVAL_SEC,
        flood_threshold: int = FLOOD_MAX_MESSAGES,
        flood_window: float = FLOOD_WINDOW_SEC,
    ) -> None:
        self.min_interval = min_interval
        self.flood_threshold = flood_threshold
        self.flood_window = flood_window

        self._last_admit: float | None = None
        self._last_message: float | None = None
        self._message_count: int = 0

    def admit(self, now: float) -> bool:
        """Return True if an update may be published at `now`."""
        if self._last_admit is not None and now - self._last_admit < self.min_interval:
            return False
        self._last_admit = now
        return True

    def observe(self, now: float) -> bool:
        """
        Record one inbound frame. Returns True when the feed is flooding.

        The counter starts over whenever the gap since the previous frame is
        longer than `flood_window`, and after a flood has been reported.
        """
        if self._last_message is not None and now - self._last_message > self.flood_window:
            self._message_count = 0
        self._last_message = now
        self._message_count += 1

        if self._message_count > self.flood_threshold:
            self._message_count = 0
            return True
        return False

    @property
    def message_count(self) -> int:
        return self._message_count

    def reset(self) -> None:
        self._last_admit = None
        self._last_message = None
        self._message_count = 0
