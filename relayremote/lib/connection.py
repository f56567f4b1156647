# Relay Remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
ConnectionManager — owns the single connection to the relay.

States:

    disconnected ──connect()──▶ connecting ──socket open──▶ pairing
         ▲                          │                          │ pair_success
         │                          │                          ▼
         └──── close / error ◀──────┴─────────────────── connected

"pairing" means the socket is open but the relay has not yet confirmed
that the other side joined the room.  Only the relay's pair_success
(routed back in through set_connected() or transition_to_room()) moves
us to "connected".

Every socket gets a generation number.  disconnect() and
transition_to_room() bump the generation, so whatever the superseded
socket does afterwards (late messages, its close event) is ignored and
can never trigger a reconnect with a stale room.

Usage:
    conn = ConnectionManager(relay_base_url())
    conn.on_message(router.dispatch)
    conn.on_status_change(lambda s: log.info("relay %s", s))
    conn.on_fatal_error(lambda reason: store.remove())
    conn.connect(token)
"""

import asyncio
import inspect
import logging
from enum import Enum

from . import envelope
from .config import INVALID_SESSION_CLOSE_CODE, KEEPALIVE_INTERVAL, RECONNECT_DELAY
from .envelope import ClientIdentity
from .transport import HandshakeRejected, WebSocketTransport, relay_url

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PAIRING = "pairing"
    CONNECTED = "connected"

    def __str__(self):
        return self.value


class ConnectionManager:
    """State machine for the relay connection, reconnect and keepalive."""

    def __init__(self, base_url: str, role: str = "player", *,
                 identity: ClientIdentity | None = None,
                 transport_factory=None,
                 reconnect_delay: float = RECONNECT_DELAY,
                 keepalive_interval: float = KEEPALIVE_INTERVAL):
        self.base_url = base_url
        self.role = role
        self.identity = identity or ClientIdentity()
        self._open_transport = transport_factory or WebSocketTransport.open
        self._reconnect_delay = reconnect_delay
        self._keepalive_interval = keepalive_interval

        self._status = ConnectionState.DISCONNECTED
        self._room: str | None = None
        self._transport = None
        self._generation = 0
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

        self._message_listeners = []
        self._status_listeners = []
        self._fatal_listeners = []

    # ── Observers ──

    def on_message(self, callback):
        """Register a handler for inbound envelopes (self-echoes already removed)."""
        return self._subscribe(self._message_listeners, callback)

    def on_status_change(self, callback):
        return self._subscribe(self._status_listeners, callback)

    def on_fatal_error(self, callback):
        """Register a handler called with a reason when the session is unusable."""
        return self._subscribe(self._fatal_listeners, callback)

    @staticmethod
    def _subscribe(listeners: list, callback):
        listeners.append(callback)

        def unsubscribe():
            if callback in listeners:
                listeners.remove(callback)
        return unsubscribe

    # ── Public API ──

    @property
    def status(self) -> ConnectionState:
        return self._status

    @property
    def room(self) -> str | None:
        return self._room

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connect(self, room: str):
        """Start connecting to *room*.  Ignored unless currently disconnected."""
        if self._status is not ConnectionState.DISCONNECTED or self._transport is not None:
            logger.warning("Connect to %s ignored: already %s", room, self._status)
            return
        self._room = room
        self._do_connect()

    def disconnect(self):
        """User-initiated disconnect: forget the room, stop timers, drop the socket."""
        if self._room is not None or self._transport is not None:
            logger.info("Disconnecting from relay (user initiated)")
        self._room = None
        self._generation += 1
        self._cancel_reconnect()
        self._stop_keepalive()
        transport, self._transport = self._transport, None
        self._update_status(ConnectionState.DISCONNECTED)
        if transport is not None:
            self._spawn(transport.close())

    def transition_to_room(self, new_room: str) -> bool:
        """Swap the live connection over to *new_room* without passing through disconnected."""
        if self._status not in (ConnectionState.PAIRING, ConnectionState.CONNECTED):
            logger.warning("Room transition to %s refused while %s", new_room, self._status)
            return False
        logger.info("Switching relay room %s -> %s", self._room, new_room)
        self._stop_keepalive()
        # New generation first: the old socket's close must not schedule a reconnect
        self._generation += 1
        old, self._transport = self._transport, None
        self._room = new_room
        if old is not None:
            self._spawn(old.close())
        self._do_connect()
        return True

    def set_connected(self) -> bool:
        """Mark the handshake complete (relay confirmed the peer is in the room)."""
        if self._status not in (ConnectionState.PAIRING, ConnectionState.CONNECTED):
            logger.warning("Pair confirmation ignored while %s", self._status)
            return False
        self._update_status(ConnectionState.CONNECTED)
        return True

    async def send(self, message: dict) -> bool:
        """Send *message* stamped with our clientId.  False if there is no open socket."""
        transport = self._transport
        if transport is None:
            logger.warning("Not connected, message not sent: %s", message.get("type"))
            return False
        return await transport.send(envelope.encode(message, self.identity))

    async def aclose(self, timeout: float = 2.0):
        """Disconnect and wait for background work to finish (service shutdown)."""
        self.disconnect()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Connection lifecycle ──

    def _do_connect(self):
        if not self._room:
            logger.error("Cannot connect without a room")
            return
        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation
        self._update_status(ConnectionState.CONNECTING)
        url = relay_url(self.base_url, self._room, self.role)
        logger.info("Connecting to relay: %s", url)
        self._spawn(self._run(generation, url))

    async def _run(self, generation: int, url: str):
        try:
            transport = await self._open_transport(url)
        except HandshakeRejected as e:
            if generation == self._generation:
                self._fatal(str(e))
            return
        except (OSError, asyncio.TimeoutError) as e:
            if generation == self._generation:
                logger.warning("Relay unreachable: %s", e)
                self._handle_close(generation, None)
            return
        except Exception as e:
            if generation == self._generation:
                logger.exception("Relay transport could not be created")
                self._fatal(f"transport error: {e}")
            return

        if generation != self._generation:
            # disconnect() or a room switch happened while we were dialing
            await transport.close()
            return

        self._transport = transport
        logger.info("Relay socket open, waiting for peer")
        self._update_status(ConnectionState.PAIRING)
        if generation != self._generation:
            # a status listener disconnected or switched rooms
            return
        self._start_keepalive()
        await self.send({"type": envelope.IDENTIFY})

        while True:
            raw = await transport.recv()
            if raw is None or generation != self._generation:
                break
            await self._handle_frame(raw)

        self._handle_close(generation, transport.close_code)

    async def _handle_frame(self, raw):
        msg = envelope.decode(raw)
        if msg is None:
            return
        if self.identity.is_self(msg):
            logger.debug("Ignoring echo of our own %s", msg["type"])
            return
        for callback in list(self._message_listeners):
            try:
                result = callback(msg)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Message handler failed for %s", msg.get("type"))

    def _handle_close(self, generation: int, code: int | None):
        if generation != self._generation:
            logger.debug("Ignoring close of superseded relay socket")
            return
        self._transport = None
        self._stop_keepalive()

        if code == INVALID_SESSION_CLOSE_CODE:
            self._fatal("Invalid or expired session")
            return

        logger.info("Relay connection closed (code=%s)", code)
        self._update_status(ConnectionState.DISCONNECTED)
        if self._room is not None:
            self._schedule_reconnect()

    def _fatal(self, reason: str):
        logger.error("Relay session unusable: %s", reason)
        self._emit(self._fatal_listeners, reason)
        self.disconnect()

    # ── Timers ──

    def _schedule_reconnect(self):
        if self._room is None:
            return
        self._cancel_reconnect()
        logger.info("Reconnecting in %.1fs", self._reconnect_delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._reconnect)

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _reconnect(self):
        self._reconnect_handle = None
        if self._room is None or self._status is not ConnectionState.DISCONNECTED:
            return
        self._do_connect()

    def _start_keepalive(self):
        self._stop_keepalive()
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    def _stop_keepalive(self):
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

    async def _keepalive_loop(self):
        while True:
            await asyncio.sleep(self._keepalive_interval)
            logger.debug("Keepalive ping")
            await self.send({"type": envelope.PING})

    # ── Helpers ──

    def _update_status(self, new_status: ConnectionState):
        if self._status is new_status:
            return
        self._status = new_status
        logger.info("Relay status: %s", new_status)
        self._emit(self._status_listeners, new_status)

    def _emit(self, listeners: list, *args):
        for callback in list(listeners):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    self._spawn(result)
            except Exception:
                logger.exception("Listener %r failed", callback)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
