import asyncio

import orjson
import pytest

from depth_monitor.config import find_instrument
from depth_monitor.datafeed.binance_client import BinanceDepthClient
from depth_monitor.engine.throttle import UpdateThrottle
from depth_monitor.types import ConnectionState

from tests.fakes import FakeConnector, delta_frame, depth_frame, wait_until

BTC = find_instrument("BTC-USD")
ETH = find_instrument("ETH-USD")
XRP = find_instrument("XRP-USD")

BIDS = [["100", "2"], ["101", "1"], ["99", "1"]]
ASKS = [["103", "3"], ["102", "1"]]


class Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_client(instrument=BTC, *, throttle=None, clock=None, settle_delay=0.01, **kwargs):
    connector = FakeConnector()
    views = []
    client = BinanceDepthClient(
        instrument,
        ws_base="wss://example.test/ws",
        connector=connector,
        throttle=throttle or UpdateThrottle(min_interval=0.0),
        clock=clock or Clock(),
        connection_options={"connect_timeout": 0.5, "reconnect_delay": 0.02, "heartbeat_interval": 10.0},
        settle_delay=settle_delay,
        **kwargs,
    )
    client.subscribe(views.append)
    return client, connector, views


def published(views):
    return [view for view in views if not view.book.is_empty]


async def start_connected(client):
    await client.start()
    await wait_until(lambda: client.state is ConnectionState.CONNECTED)


async def drain(socket):
    """Frames are handled in order, so once a ping is answered everything before it is done."""
    token = len(socket.sent) + 1000
    socket.feed({"ping": token})
    await wait_until(lambda: any(orjson.loads(s) == {"pong": token} for s in socket.sent))


@pytest.mark.asyncio
async def test_publishes_aggregated_book():
    client, connector, views = make_client()
    await start_connected(client)

    connector.last.feed(depth_frame(BIDS, ASKS))
    await wait_until(lambda: published(views))

    view = published(views)[-1]
    assert view.instrument == BTC
    assert view.state is ConnectionState.CONNECTED
    assert [(l.price, l.total) for l in view.book.bids] == [(101.0, 1.0), (100.0, 3.0), (99.0, 4.0)]
    assert [(l.price, l.total) for l in view.book.asks] == [(102.0, 1.0), (103.0, 4.0)]
    assert view.spread_history[-1].spread == 1.0
    assert view.imbalance == 0.0
    assert client.latest == view

    await client.stop()


@pytest.mark.asyncio
async def test_change_tracks_previous_update():
    client, connector, views = make_client()
    await start_connected(client)

    connector.last.feed(depth_frame([["100", "1"]], [["101", "1"]]))
    connector.last.feed(depth_frame([["100", "1.5"]], [["101", "0.5"]]))
    await wait_until(lambda: len(published(views)) == 2)

    book = published(views)[-1].book
    assert book.bids[0].change == 0.5
    assert book.asks[0].change == -0.5
    assert len(published(views)[-1].spread_history) == 2

    await client.stop()


@pytest.mark.asyncio
async def test_replies_to_heartbeat_without_publishing():
    client, connector, views = make_client()
    await start_connected(client)

    connector.last.feed({"ping": 42})
    await wait_until(lambda: connector.last.sent)

    assert orjson.loads(connector.last.sent[0]) == {"pong": 42}
    assert published(views) == []

    await client.stop()


@pytest.mark.asyncio
async def test_malformed_and_foreign_frames_are_dropped():
    client, connector, views = make_client()
    await start_connected(client)
    socket = connector.last

    socket.feed("not json at all")
    socket.feed(delta_frame("ETHUSDT", BIDS, ASKS))
    socket.feed(depth_frame([["abc", "1"]], [["x", "y"]]))
    await drain(socket)
    assert published(views) == []

    socket.feed(delta_frame("BTCUSDT", BIDS, ASKS))
    await wait_until(lambda: published(views))
    assert client.state is ConnectionState.CONNECTED

    await client.stop()


@pytest.mark.asyncio
async def test_throttle_limits_publish_rate():
    clock = Clock()
    client, connector, views = make_client(throttle=UpdateThrottle(), clock=clock)
    await start_connected(client)
    socket = connector.last

    socket.feed(depth_frame(BIDS, ASKS))
    socket.feed(depth_frame(BIDS, ASKS))
    await drain(socket)
    assert len(published(views)) == 1

    clock.now += 0.5
    socket.feed(depth_frame(BIDS, ASKS))
    await wait_until(lambda: len(published(views)) == 2)

    await client.stop()


@pytest.mark.asyncio
async def test_xrp_prices_are_normalized():
    client, connector, views = make_client(XRP)
    await start_connected(client)

    connector.last.feed(depth_frame([["45000", "10"]], [["0.52", "5"]]))
    await wait_until(lambda: published(views))

    book = published(views)[-1].book
    assert book.bids[0].price == 1.125
    assert book.asks[0].price == 0.52

    await client.stop()


@pytest.mark.asyncio
async def test_stale_epoch_is_never_published():
    client, connector, views = make_client()
    await start_connected(client)
    old_epoch = client.connection.epoch

    client.request_instrument_switch("ETH-USD")
    await wait_until(lambda: len(connector.sockets) == 2 and client.state is ConnectionState.CONNECTED)
    new_socket = connector.last
    assert connector.sockets[0].closed

    new_socket.feed(depth_frame([["2000", "1"]], [["2001", "1"]]))
    await wait_until(lambda: published(views))
    before = client.latest

    # A frame from the superseded connection shows up late
    await client._handle_message(old_epoch, orjson.dumps(depth_frame([["50000", "9"]], [["50001", "9"]])).decode())

    assert client.latest == before
    assert all(view.book.bids[0].price == 2000.0 for view in published(views))
    assert client.current_instrument == ETH

    await client.stop()


@pytest.mark.asyncio
async def test_switch_resets_derived_state():
    client, connector, views = make_client()
    await start_connected(client)
    connector.last.feed(depth_frame(BIDS, ASKS))
    await wait_until(lambda: published(views))

    client.request_instrument_switch(ETH)
    await wait_until(lambda: client.current_instrument == ETH)

    view = client.latest
    assert view.instrument == ETH
    assert view.book.is_empty
    assert view.spread_history == ()
    assert view.imbalance == 0.0

    await wait_until(lambda: not client.sequencer.applying)
    assert connector.urls[-1].endswith("/ethusdt@depth20@100ms")

    await client.stop()


@pytest.mark.asyncio
async def test_old_socket_frames_during_switch_settle_are_ignored():
    client, connector, views = make_client(settle_delay=0.2)
    await start_connected(client)
    old_socket = connector.last

    client.request_instrument_switch(ETH)
    await wait_until(lambda: client.current_instrument == ETH)
    # A BTC frame with no symbol tag, still in flight on the old socket
    old_socket.feed({"e": "depthUpdate", "b": [["50000", "1"]], "a": [["50001", "1"]]})
    await asyncio.sleep(0.05)

    assert len(connector.sockets) == 1
    assert old_socket.closed
    assert client.state is ConnectionState.DISCONNECTED
    assert published(views) == []
    assert client.published_count == 0
    assert client.latest.spread_history == ()

    await wait_until(lambda: len(connector.sockets) == 2 and client.state is ConnectionState.CONNECTED)
    assert published(views) == []

    await client.stop()


@pytest.mark.asyncio
async def test_flood_forces_reconnect():
    client, connector, views = make_client(
        throttle=UpdateThrottle(min_interval=0.0, flood_threshold=3),
        flood_grace=0.01,
    )
    await start_connected(client)
    socket = connector.last

    for _ in range(5):
        socket.feed(depth_frame(BIDS, ASKS))

    await wait_until(lambda: len(connector.sockets) == 2 and client.state is ConnectionState.CONNECTED)
    assert socket.closed
    assert client.published_count == 3
    assert ConnectionState.ERROR in [view.state for view in views]

    await client.stop()


@pytest.mark.asyncio
async def test_subscriber_errors_are_isolated():
    client, connector, views = make_client()

    def broken(view):
        raise RuntimeError("display bug")

    client.subscribe(broken)
    await start_connected(client)
    connector.last.feed(depth_frame(BIDS, ASKS))

    await wait_until(lambda: published(views))
    await client.stop()


@pytest.mark.asyncio
async def test_unsubscribe_and_state_views():
    client, connector, views = make_client()
    extra = []
    unsubscribe = client.subscribe(extra.append)

    await start_connected(client)
    unsubscribe()
    await client.stop()

    assert [view.state for view in extra] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert views[-1].state is ConnectionState.DISCONNECTED


def test_unknown_symbol_raises():
    client, _, _ = make_client()
    with pytest.raises(KeyError):
        client.request_instrument_switch("DOGE-USD")


def test_latest_before_any_update():
    client, _, _ = make_client()
    view = client.latest
    assert view.instrument == BTC
    assert view.state is ConnectionState.DISCONNECTED
    assert view.book.is_empty
