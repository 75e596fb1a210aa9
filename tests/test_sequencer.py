import asyncio

import pytest

from depth_monitor.config import find_instrument
from depth_monitor.engine.sequencer import PairSwitchSequencer
from depth_monitor.types import Instrument

from tests.fakes import wait_until

BTC = find_instrument("BTC-USD")
ETH = find_instrument("ETH-USD")
XRP = find_instrument("XRP-USD")
SOL = Instrument("SOL-USD", "SOL-USD", "solusdt")


class RecordingConnection:
    """Records close/open calls and checks that switches never overlap."""

    def __init__(self):
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def close(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.calls.append("close")
        await asyncio.sleep(0.005)

    async def open(self, instrument):
        self.calls.append(f"open:{instrument.symbol}")
        await asyncio.sleep(0.005)
        self.in_flight -= 1
        return len(self.calls)


def _make(initial=BTC, settle_delay=0.01):
    connection = RecordingConnection()
    switched = []
    sequencer = PairSwitchSequencer(
        connection,
        initial,
        on_switch=lambda instrument: switched.append(instrument.symbol),
        settle_delay=settle_delay,
    )
    return sequencer, connection, switched


@pytest.mark.asyncio
async def test_rapid_requests_apply_in_order_without_overlap():
    sequencer, connection, switched = _make()

    sequencer.request_switch(ETH)
    sequencer.request_switch(XRP)
    sequencer.request_switch(SOL)
    assert sequencer.applying

    await wait_until(lambda: not sequencer.applying)

    assert switched == ["ETH-USD", "XRP-USD", "SOL-USD"]
    assert connection.calls == [
        "close", "open:ETH-USD",
        "close", "open:XRP-USD",
        "close", "open:SOL-USD",
    ]
    assert connection.max_in_flight == 1
    assert sequencer.current == SOL
    assert sequencer.pending == ()


@pytest.mark.asyncio
async def test_switch_to_active_instrument_is_ignored():
    sequencer, connection, switched = _make()

    sequencer.request_switch(BTC)

    assert not sequencer.applying
    assert sequencer.pending == ()
    await asyncio.sleep(0.03)
    assert connection.calls == []
    assert switched == []


@pytest.mark.asyncio
async def test_old_connection_closes_before_settle():
    sequencer, connection, switched = _make(settle_delay=0.1)

    sequencer.request_switch(ETH)
    await wait_until(lambda: switched)

    assert sequencer.current == ETH
    await wait_until(lambda: connection.calls == ["close"])
    await asyncio.sleep(0.03)
    # Still settling: nothing opened yet
    assert connection.calls == ["close"]

    await wait_until(lambda: not sequencer.applying)
    assert connection.calls == ["close", "open:ETH-USD"]


@pytest.mark.asyncio
async def test_request_after_drain_starts_new_drain():
    sequencer, connection, switched = _make()

    sequencer.request_switch(ETH)
    await wait_until(lambda: not sequencer.applying)
    sequencer.request_switch(BTC)
    await wait_until(lambda: not sequencer.applying)

    assert switched == ["ETH-USD", "BTC-USD"]
    assert connection.calls[-1] == "open:BTC-USD"


@pytest.mark.asyncio
async def test_cancel_drops_pending_switches():
    sequencer, connection, switched = _make()

    sequencer.request_switch(ETH)
    sequencer.request_switch(XRP)
    await sequencer.cancel()
    await asyncio.sleep(0.05)

    assert not sequencer.applying
    assert sequencer.pending == ()
    assert "open:XRP-USD" not in connection.calls


@pytest.mark.asyncio
async def test_switching_back_within_one_tick_is_queued():
    sequencer, connection, switched = _make()

    sequencer.request_switch(ETH)
    sequencer.request_switch(BTC)
    sequencer.request_switch(BTC)

    assert sequencer.pending == (ETH, BTC)
    await wait_until(lambda: not sequencer.applying)

    assert switched == ["ETH-USD", "BTC-USD"]
    assert sequencer.current == BTC


@pytest.mark.asyncio
async def test_repeat_of_last_queued_instrument_is_ignored():
    sequencer, connection, switched = _make()

    sequencer.request_switch(ETH)
    sequencer.request_switch(ETH)

    assert sequencer.pending == (ETH,)
    await wait_until(lambda: not sequencer.applying)
    assert switched == ["ETH-USD"]
