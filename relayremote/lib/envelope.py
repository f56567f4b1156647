"""
Relay message envelopes.

Every message on the relay is a flat JSON object::

    {"type": "seek", "clientId": "k3j9x0...", "value": 10}

The relay broadcasts within a room, so a client also hears what it sent
itself.  ClientIdentity stamps outgoing envelopes and recognises those
echoes so they can be dropped before dispatch.
"""

import json
import logging
import uuid

logger = logging.getLogger(__name__)

# Message types
IDENTIFY = "client-identify"
PING = "ping"
TOGGLE = "toggle"
MUTE = "mute"
SEEK = "seek"
VOLUME = "volume"
ACK = "ack"
PAIR_SUCCESS = "pair_success"


class ClientIdentity:
    """Random opaque id for this process, stamped on every outbound message."""

    def __init__(self, client_id: str | None = None):
        self.client_id = client_id or uuid.uuid4().hex[:12]

    def stamp(self, message: dict) -> dict:
        return {**message, "clientId": self.client_id}

    def is_self(self, envelope: dict) -> bool:
        return envelope.get("clientId") == self.client_id

    def __repr__(self):
        return f"ClientIdentity({self.client_id!r})"


def encode(message: dict, identity: ClientIdentity) -> str:
    """Serialize *message* with this process's clientId."""
    return json.dumps(identity.stamp(message))


def decode(raw) -> dict | None:
    """Parse a raw frame into an envelope dict.

    Returns None for anything that isn't a JSON object with a string
    ``type``; malformed input is logged and dropped, never raised.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Dropping non-UTF-8 frame (%d bytes)", len(raw))
            return None
    try:
        envelope = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Failed to parse message: %.200r", raw)
        return None
    if not isinstance(envelope, dict) or not isinstance(envelope.get("type"), str):
        logger.warning("Dropping message without a type: %.200r", raw)
        return None
    return envelope
