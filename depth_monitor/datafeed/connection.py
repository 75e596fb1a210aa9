"""
WebSocket connection lifecycle for the depth stream.

Handles:
1. Bounded connect (timeout -> ERROR -> fixed-delay reconnect)
2. Keepalive ping while the socket is open
3. Error / remote close detection with automatic reconnect
4. Explicit close that never reconnects
5. Connection epochs: every frame is tagged with the epoch of the socket that
   received it, and frames from a superseded epoch never reach the handler

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> {DISCONNECTED | ERROR}
    ERROR / DISCONNECTED -> CONNECTING  (scheduled reconnect)
    CONNECTING -> DISCONNECTED          (explicit close only)

Thread-safety: NOT thread-safe. Everything runs on one event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Awaitable, Callable

import aiohttp
import orjson

from ..config import (
    CLOSE_GUARD_SEC,
    CONNECT_TIMEOUT_SEC,
    FLOOD_GRACE_SEC,
    HEARTBEAT_INTERVAL_SEC,
    PING_PAYLOAD,
    RECONNECT_DELAY_SEC,
    WS_BASE,
    stream_url,
)
from ..types import ConnectionState, Instrument

logger = logging.getLogger(__name__)

MessageHandler = Callable[[int, str], Awaitable[None]]
StateHandler = Callable[[ConnectionState], None]


class InvalidTransition(ValueError):
    """Raised for a state change the connection lifecycle does not allow."""


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.CONNECTED, ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED, ConnectionState.ERROR}),
    ConnectionState.ERROR: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}),
}


def transition(current: ConnectionState, target: ConnectionState) -> ConnectionState:
    """Validate one state change. A same-state transition is a no-op."""
    if target is current:
        return current
    if target not in _TRANSITIONS[current]:
        raise InvalidTransition(f"{current.value} -> {target.value}")
    return target


class FeedSocket:
    """An aiohttp websocket together with the session that owns it."""

    __slots__ = ('_session', '_ws')

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    @property
    def close_code(self) -> int | None:
        return self._ws.close_code

    async def send_str(self, data: str) -> None:
        await self._ws.send_str(data)

    async def close(self, *, code: int = aiohttp.WSCloseCode.OK) -> None:
        try:
            await self._ws.close(code=code)
        finally:
            await self._session.close()

    def __aiter__(self):
        return self._ws.__aiter__()


async def connect_websocket(url: str) -> FeedSocket:
    """Default connector: open a websocket on a fresh aiohttp session."""
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url, autoping=True)
    except BaseException:
        await session.close()
        raise
    return FeedSocket(session, ws)


Connector = Callable[[str], Awaitable[Any]]


def _pending(task: asyncio.Task | None) -> bool:
    return task is not None and not task.done()


class ConnectionManager:
    """
    Owns at most one live socket and its epoch.

    Usage:
        manager = ConnectionManager(on_message=handler, on_state=print)
        epoch = await manager.open(instrument)
        ...
        await manager.close()

    `on_message(epoch, raw)` is awaited for each text frame of the active epoch.
    `connector(url)` must return an object shaped like FeedSocket.
    """

    def __init__(
        self,
        on_message: MessageHandler,
        *,
        on_state: StateHandler | None = None,
        connector: Connector = connect_websocket,
        ws_base: str = WS_BASE,
        connect_timeout: float = CONNECT_TIMEOUT_SEC,
        reconnect_delay: float = RECONNECT_DELAY_SEC,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SEC,
        close_guard: float = CLOSE_GUARD_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_message = on_message
        self._on_state = on_state
        self._connector = connector
        self.ws_base = ws_base
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self.heartbeat_interval = heartbeat_interval
        self.close_guard = close_guard
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._epoch_counter: int = 0
        self._active_epoch: int | None = None
        self._instrument: Instrument | None = None
        self._url: str = ""

        self._socket: Any = None
        self._task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

        self._closing = False
        self._last_close_at: float | None = None

    # ---------- observers ----------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def epoch(self) -> int | None:
        """Epoch of the active connection attempt, None when detached."""
        return self._active_epoch

    @property
    def instrument(self) -> Instrument | None:
        return self._instrument

    @property
    def url(self) -> str:
        return self._url

    def is_current(self, epoch: int | None) -> bool:
        return epoch is not None and epoch == self._active_epoch

    def _set_state(self, target: ConnectionState) -> None:
        previous = self._state
        self._state = transition(previous, target)
        if self._state is not previous:
            logger.info("Connection state %s -> %s", previous.value, self._state.value)
            if self._on_state is not None:
                self._on_state(self._state)

    def _live(self) -> bool:
        return (
            self._socket is not None
            or _pending(self._task)
            or _pending(self._heartbeat_task)
            or _pending(self._reconnect_task)
        )

    # ---------- public API ----------
    async def open(self, instrument: Instrument) -> int:
        """Start connecting to `instrument`'s stream. Returns the new epoch."""
        await self._teardown()
        if self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

        self._instrument = instrument
        self._url = stream_url(instrument, self.ws_base)
        self._epoch_counter += 1
        epoch = self._epoch_counter
        self._active_epoch = epoch

        self._set_state(ConnectionState.CONNECTING)
        logger.info("Opening %s (epoch %d)", self._url, epoch)
        self._task = asyncio.create_task(self._run(epoch, self._url), name=f"depth-ws-{epoch}")
        return epoch

    async def close(self) -> None:
        """Explicit shutdown. Never reconnects; safe to call repeatedly."""
        if self._closing:
            return
        if (
            not self._live()
            and self._last_close_at is not None
            and self._clock() - self._last_close_at < self.close_guard
        ):
            return

        self._closing = True
        try:
            await self._teardown()
            self._set_state(ConnectionState.DISCONNECTED)
        finally:
            self._closing = False
            self._last_close_at = self._clock()

    def schedule_restart(self, delay: float = FLOOD_GRACE_SEC) -> None:
        """
        Drop the current connection and reopen the same instrument after `delay`.

        Frames stop reaching the handler immediately.
        """
        if self._closing or self._instrument is None:
            return
        logger.warning("Restarting connection to %s in %.1fs", self._url, delay)
        self._active_epoch = None
        if _pending(self._reconnect_task) and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = asyncio.create_task(self._restart(delay))

    async def send(self, payload: dict) -> bool:
        """Send a JSON payload on the live socket. Returns False if it could not be sent."""
        socket = self._socket
        if socket is None or socket.closed:
            return False
        try:
            await socket.send_str(orjson.dumps(payload).decode())
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("Send failed on %s: %s", self._url, exc)
            return False
        return True

    # ---------- internals ----------
    async def _teardown(self) -> None:
        """Detach first, then close the socket, then clear timers."""
        self._active_epoch = None
        current = asyncio.current_task()

        task = self._task
        if task is not None and task is not current:
            self._task = None
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        socket, self._socket = self._socket, None
        if socket is not None and not socket.closed:
            try:
                await socket.close()
            except (aiohttp.ClientError, OSError) as exc:
                logger.debug("Error closing socket: %s", exc)

        heartbeat = self._heartbeat_task
        if heartbeat is not None and heartbeat is not current:
            self._heartbeat_task = None
            heartbeat.cancel()

        reconnect = self._reconnect_task
        if reconnect is not None and reconnect is not current:
            self._reconnect_task = None
            reconnect.cancel()

    async def _release(self, socket: Any) -> None:
        """Stop the heartbeat and close a socket whose reader has finished."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        if self._socket is socket:
            self._socket = None
        if not socket.closed:
            with contextlib.suppress(aiohttp.ClientError, OSError):
                await socket.close()

    def _fail(self, epoch: int, state: ConnectionState) -> None:
        """Record a transport failure for `epoch` and schedule a reconnect."""
        if self._closing or not self.is_current(epoch):
            return
        self._active_epoch = None
        self._set_state(state)
        if _pending(self._reconnect_task):
            self._reconnect_task.cancel()
        self._reconnect_task = asyncio.create_task(self._reconnect_after(self.reconnect_delay))

    async def _reconnect_after(self, delay: float) -> None:
        logger.info("Reconnecting in %.1fs", delay)
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._instrument is not None:
            await self.open(self._instrument)

    async def _restart(self, delay: float) -> None:
        await self._teardown()
        if self._state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.ERROR)
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._instrument is not None:
            await self.open(self._instrument)

    async def _run(self, epoch: int, url: str) -> None:
        """Connect, then read until the socket ends or this task is cancelled."""
        try:
            socket = await asyncio.wait_for(self._connector(url), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            logger.warning("Connect to %s timed out after %.1fs", url, self.connect_timeout)
            self._fail(epoch, ConnectionState.ERROR)
            return
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("Connect to %s failed: %s", url, exc)
            self._fail(epoch, ConnectionState.ERROR)
            return

        if not self.is_current(epoch):
            # Superseded while the handshake was in flight
            with contextlib.suppress(aiohttp.ClientError, OSError):
                await socket.close()
            return

        self._socket = socket
        self._set_state(ConnectionState.CONNECTED)
        self._heartbeat_task = asyncio.create_task(self._heartbeat(socket, epoch))

        failed = False
        try:
            async for msg in socket:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    if self.is_current(epoch):
                        await self._on_message(epoch, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("WebSocket error on %s: %s", url, msg.data)
                    failed = True
                    break
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("Read failed on %s: %s", url, exc)
            failed = True

        if not self.is_current(epoch):
            return

        await self._release(socket)
        if failed:
            self._fail(epoch, ConnectionState.ERROR)
        else:
            logger.warning("Socket %s closed by remote (code %s)", url, socket.close_code)
            self._fail(epoch, ConnectionState.DISCONNECTED)

    async def _heartbeat(self, socket: Any, epoch: int) -> None:
        payload = orjson.dumps(PING_PAYLOAD).decode()
        while not socket.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if socket.closed or not self.is_current(epoch):
                return
            try:
                await socket.send_str(payload)
            except Exception as exc:
                # Any send failure means the transport is unusable
                logger.warning("Heartbeat failed, closing socket: %s", exc)
                with contextlib.suppress(aiohttp.ClientError, OSError):
                    await socket.close()
                return
