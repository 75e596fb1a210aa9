"""
Serialized instrument switching.

Rapid key presses queue up instead of racing each other: a single drain task
applies one switch at a time, in request order, with a settle delay before
and between switches.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Callable

from ..config import SWITCH_SETTLE_SEC
from ..types import Instrument

if TYPE_CHECKING:
    from ..datafeed.connection import ConnectionManager

logger = logging.getLogger(__name__)


class PairSwitchSequencer:
    """
    FIFO of pending instruments with single-flight apply.

    Applying a switch:
        1. make it the current instrument and reset derived state (on_switch)
        2. close the old connection
        3. wait `settle_delay`, then open the new one
    """

    def __init__(
        self,
        connection: ConnectionManager,
        initial: Instrument,
        *,
        on_switch: Callable[[Instrument], None] | None = None,
        settle_delay: float = SWITCH_SETTLE_SEC,
    ) -> None:
        self._connection = connection
        self._on_switch = on_switch
        self.settle_delay = settle_delay
        self.current: Instrument = initial

        self._queue: deque[Instrument] = deque()
        self._drain_task: asyncio.Task | None = None

    @property
    def applying(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def pending(self) -> tuple[Instrument, ...]:
        return tuple(self._queue)

    def request_switch(self, instrument: Instrument) -> None:
        """Queue a switch. Requests for the instrument already targeted are ignored."""
        target = self._queue[-1] if self._queue else self.current
        if instrument == target:
            logger.debug("Ignoring switch to %s, already targeted", instrument.symbol)
            return

        self._queue.append(instrument)
        logger.info("Queued switch to %s (%d pending)", instrument.symbol, len(self._queue))

        if not self.applying:
            self._drain_task = asyncio.create_task(self._drain(), name="pair-switch")

    async def _drain(self) -> None:
        while self._queue:
            instrument = self._queue[0]
            try:
                await self._apply(instrument)
            finally:
                # cancel() may have emptied the queue already
                if self._queue and self._queue[0] is instrument:
                    self._queue.popleft()

            if self._queue:
                await asyncio.sleep(self.settle_delay)

    async def _apply(self, instrument: Instrument) -> None:
        logger.info("Switching %s -> %s", self.current.symbol, instrument.symbol)
        self.current = instrument
        if self._on_switch is not None:
            self._on_switch(instrument)

        # No frame from the old socket may reach the new instrument's state
        await self._connection.close()
        await asyncio.sleep(self.settle_delay)
        await self._connection.open(instrument)

    async def cancel(self) -> None:
        """Drop pending switches and stop the drain task."""
        self._queue.clear()
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
