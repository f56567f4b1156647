# Relay Remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
CommandRouter — turns relay envelopes into player actions.

    toggle / mute      → MediaControl, then ack {"ok": bool, "action": ...}
    seek   {value}     → MediaControl.seek(value), then ack
    volume {value}     → MediaControl.set_volume(value), no ack (sliders are chatty)
    pair_success       → persist sessionToken + switch room, or just mark connected

Seek and volume without a numeric value are dropped without an ack.
Unknown types are logged and ignored.
"""

import logging
import math

from .lib import envelope
from .lib.connection import ConnectionManager
from .lib.player_control import MediaControl
from .lib.session_store import SessionStore

logger = logging.getLogger(__name__)

# Ack "action" names reported back to the remote
ACK_ACTIONS = {
    envelope.TOGGLE: "toggled",
    envelope.MUTE: "muted",
    envelope.SEEK: "seeked",
}


def _number(value) -> float | None:
    """*value* as a float if it is a real finite number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


class CommandRouter:
    def __init__(self, connection: ConnectionManager, media: MediaControl, store: SessionStore):
        self.connection = connection
        self.media = media
        self.store = store
        self._handlers = {
            envelope.TOGGLE: self._handle_toggle,
            envelope.MUTE: self._handle_mute,
            envelope.SEEK: self._handle_seek,
            envelope.VOLUME: self._handle_volume,
            envelope.PAIR_SUCCESS: self._handle_pair_success,
        }

    def attach(self):
        """Subscribe to the connection's inbound messages.  Returns the unsubscribe callable."""
        return self.connection.on_message(self.dispatch)

    async def dispatch(self, msg: dict):
        msg_type = msg.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            logger.info("Message type is not recognized: %s", msg_type)
            return
        logger.info("Relay command: %s", msg_type)
        await handler(msg)

    async def _ack(self, msg_type: str, ok: bool):
        await self.connection.send({
            "type": envelope.ACK,
            "ok": ok,
            "action": ACK_ACTIONS[msg_type],
        })

    # ── Handlers ──

    async def _handle_toggle(self, msg):
        await self._ack(envelope.TOGGLE, await self.media.toggle())

    async def _handle_mute(self, msg):
        await self._ack(envelope.MUTE, await self.media.mute())

    async def _handle_seek(self, msg):
        seconds = _number(msg.get("value"))
        if seconds is None:
            logger.warning("Ignoring seek without a numeric value: %r", msg.get("value"))
            return
        await self._ack(envelope.SEEK, await self.media.seek(seconds))

    async def _handle_volume(self, msg):
        level = _number(msg.get("value"))
        if level is None:
            logger.warning("Ignoring volume without a numeric value: %r", msg.get("value"))
            return
        ok = await self.media.set_volume(level)
        logger.debug("Volume %.2f -> %s", level, ok)

    async def _handle_pair_success(self, msg):
        token = msg.get("sessionToken")
        if token and isinstance(token, str):
            logger.info("Pairing successful, switching to session room")
            try:
                self.store.set(token)
            except OSError as e:
                logger.error("Could not save session token: %s", e)
            self.connection.transition_to_room(token)
        else:
            logger.info("Peer joined, connection confirmed")
            self.connection.set_connected()
