"""Persistent WebSocket connection to the rtcstats server.

One background task drives the connection through
``DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED``.  Every failed
connection attempt and every close schedules exactly one new attempt after
a fixed delay, forever.  Messages sent while not connected are dropped.

Uses :mod:`aiohttp` for the WebSocket transport; protocol-level pings keep
half-open connections from going unnoticed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import platform
import socket
from typing import Any, Callable

import aiohttp

from .messages import encode

logger = logging.getLogger(__name__)

PROTOCOL = "1.0_JICOFO"
RECONNECT_DELAY = 5.0
KEEPALIVE_INTERVAL = 20.0


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TransportEvent(enum.Enum):
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    CLOSED = "closed"


EventCallback = Callable[[TransportEvent], None]


class StatsTransport:
    """Outbound WebSocket to the rtcstats server.

    Parameters
    ----------
    url:
        rtcstats server address (e.g. ``ws://127.0.0.1:3000``).
    display_name:
        Sent as the ``Origin`` header; defaults to the host name.
    """

    def __init__(
        self,
        url: str,
        display_name: str | None = None,
        protocol: str = PROTOCOL,
        reconnect_delay: float = RECONNECT_DELAY,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
    ) -> None:
        self.url = url
        self.display_name = display_name or socket.gethostname()
        self.protocol = protocol
        self.reconnect_delay = reconnect_delay
        self.keepalive_interval = keepalive_interval

        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._session: aiohttp.ClientSession | None = None
        self._task: asyncio.Task | None = None
        self._callbacks: list[EventCallback] = []
        self.sent_count = 0
        self.dropped_count = 0

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Start the connection task; later calls are no-ops."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run_loop())

    async def send(self, message: dict[str, Any]) -> bool:
        """Send *message* as one text frame.

        Returns ``False`` if the message was dropped because the socket is
        not connected or the write failed.
        """
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None or ws.closed:
            self.dropped_count += 1
            logger.debug("Not connected, dropping %s message", message.get("type"))
            return False
        try:
            await ws.send_str(encode(message))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            self.dropped_count += 1
            logger.warning("Failed to send %s message: %s", message.get("type"), exc)
            return False
        self.sent_count += 1
        return True

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._running = False
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._ws = None
        self._state = ConnectionState.DISCONNECTED

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback invoked with every :class:`TransportEvent`."""
        self._callbacks.append(callback)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # ------------------------------------------------------------------ #
    # Internal loop
    # ------------------------------------------------------------------ #

    async def _run_loop(self) -> None:
        """Connect, and after every failure or close wait once and retry."""
        while self._running:
            self._state = ConnectionState.CONNECTING
            logger.info("Connecting websocket to %s", self.url)
            try:
                await self._connect_and_listen()
            except asyncio.CancelledError:
                self._state = ConnectionState.DISCONNECTED
                raise
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
                self._state = ConnectionState.DISCONNECTED
                logger.warning(
                    "Websocket connection failed: %s, will try to reconnect in %ss",
                    exc,
                    self.reconnect_delay,
                )
                self._emit(TransportEvent.CONNECT_FAILED)
            else:
                self._state = ConnectionState.DISCONNECTED
                if not self._running:
                    break
                logger.warning(
                    "Websocket closed, will try to reconnect in %ss",
                    self.reconnect_delay,
                )
                self._emit(TransportEvent.CLOSED)

            if not self._running:
                break
            await asyncio.sleep(self.reconnect_delay)

        self._state = ConnectionState.DISCONNECTED

    async def _connect_and_listen(self) -> None:
        """Single connection lifecycle: connect, then read until closed."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        async with self._session.ws_connect(
            self.url,
            protocols=(self.protocol,),
            headers=self._headers(),
            heartbeat=self.keepalive_interval,
        ) as ws:
            self._ws = ws
            self._state = ConnectionState.CONNECTED
            logger.info("Websocket connected")
            self._emit(TransportEvent.CONNECTED)
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        logger.error("Websocket error: %s", ws.exception())
                    else:
                        logger.debug("Ignoring %s frame from server", msg.type.name)
            finally:
                self._ws = None

    def _emit(self, event: TransportEvent) -> None:
        for cb in self._callbacks:
            try:
                cb(event)
            except Exception:  # noqa: BLE001
                logger.exception("Error in transport event callback")

    def _headers(self) -> dict[str, str]:
        return {
            "Origin": self.display_name,
            "User-Agent": f"Python/{platform.python_version()} aiohttp/{aiohttp.__version__}",
        }
