"""
WebSocket transport to the relay.

A thin adapter over a ``websockets`` client connection so the connection
manager only deals with three calls and a close code:

    transport = await WebSocketTransport.open(relay_url(base, room, "player"))
    await transport.send('{"type": "ping"}')
    while (raw := await transport.recv()) is not None:
        ...
    transport.close_code   # peer's close code, None for an abnormal drop
"""

import asyncio
import logging
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

logger = logging.getLogger(__name__)

OPEN_TIMEOUT = 10.0


class HandshakeRejected(Exception):
    """The relay refused the connection outright (bad URL, or HTTP status instead of 101)."""


def relay_url(base: str, room: str, role: str) -> str:
    """Relay endpoint for *room*: ``base?room=<room>&role=<player|remote>``."""
    return f"{base}?room={quote(room, safe='')}&role={role}"


class WebSocketTransport:
    """One open WebSocket to the relay."""

    def __init__(self, ws):
        self._ws = ws
        self.close_code: int | None = None
        self._closed = False

    @classmethod
    async def open(cls, url: str, open_timeout: float = OPEN_TIMEOUT) -> "WebSocketTransport":
        """Connect to *url*.

        Raises HandshakeRejected when retrying the same URL cannot help;
        OSError / asyncio.TimeoutError for ordinary network failures.
        """
        try:
            ws = await websockets.connect(url, open_timeout=open_timeout)
        except InvalidURI as e:
            raise HandshakeRejected(f"invalid relay URL: {e}") from e
        except InvalidStatus as e:
            raise HandshakeRejected(f"relay rejected handshake: {e}") from e
        except InvalidHandshake as e:
            # dropped mid-handshake, worth another try
            raise ConnectionError(f"relay handshake failed: {e}") from e
        return cls(ws)

    async def recv(self) -> str | bytes | None:
        """Next frame, or None once the connection has closed."""
        if self._closed:
            return None
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            self._closed = True
            self.close_code = e.rcvd.code if e.rcvd is not None else None
            logger.debug("Relay socket closed (code=%s)", self.close_code)
            return None

    async def send(self, text: str) -> bool:
        if self._closed:
            return False
        try:
            await self._ws.send(text)
            return True
        except ConnectionClosed as e:
            logger.warning("Relay send failed, socket closed: %s", e)
            return False

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close()
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Error closing relay socket: %s", e)
