#!/usr/bin/env python3
"""
Command-line remote (relay-remote).

Joins a relay room as the remote, waits for the player to confirm the
pairing, sends one command and waits for its ack.

    relay-remote 3f2a9c10-... toggle
    relay-remote 3f2a9c10-... seek -10
    relay-remote 3f2a9c10-... volume 0.4

When the room is a fresh pairing token the relay answers with a session
token; it is printed so later runs can use it as the room.
"""

import argparse
import asyncio
import logging
import sys

from relayremote.lib import config, envelope
from relayremote.lib.connection import ConnectionManager

logger = logging.getLogger("relay-remote")

ACTIONS = (envelope.TOGGLE, envelope.MUTE, envelope.SEEK, envelope.VOLUME)


class RemoteSession:
    """One remote-side command exchange."""

    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self.session_token: str | None = None
        self._paired = asyncio.Event()
        self._failed: str | None = None
        self._ack: asyncio.Future | None = None
        connection.on_message(self._on_message)
        connection.on_fatal_error(self._on_fatal)

    def _on_message(self, msg: dict):
        msg_type = msg.get("type")
        if msg_type == envelope.PAIR_SUCCESS:
            token = msg.get("sessionToken")
            if token:
                self.session_token = token
                self.connection.transition_to_room(token)
            else:
                self.connection.set_connected()
                self._paired.set()
        elif msg_type == envelope.ACK:
            if self._ack is not None and not self._ack.done():
                self._ack.set_result(msg)

    def _on_fatal(self, reason: str):
        self._failed = reason
        self._paired.set()
        if self._ack is not None and not self._ack.done():
            self._ack.set_result({"ok": False, "error": reason})

    async def run(self, room: str, action: str, value: float | None, timeout: float) -> bool:
        self.connection.connect(room)
        try:
            await asyncio.wait_for(self._paired.wait(), timeout)
        except asyncio.TimeoutError:
            logger.error("Player did not join within %.0fs", timeout)
            return False
        if self._failed:
            logger.error("Relay rejected the room: %s", self._failed)
            return False

        message = {"type": action}
        if value is not None:
            message["value"] = value

        if action == envelope.VOLUME:
            return await self.connection.send(message)

        self._ack = asyncio.get_running_loop().create_future()
        if not await self.connection.send(message):
            return False
        try:
            ack = await asyncio.wait_for(self._ack, timeout)
        except asyncio.TimeoutError:
            logger.error("No ack for %s within %.0fs", action, timeout)
            return False
        logger.info("Ack: %s", ack)
        return bool(ack.get("ok"))


async def run_remote(relay: str, room: str, action: str, value: float | None = None,
                     timeout: float = 10.0, transport_factory=None) -> tuple[bool, str | None]:
    """Send one command as the remote.  Returns (success, session token if one was issued)."""
    connection = ConnectionManager(relay, "remote", transport_factory=transport_factory)
    session = RemoteSession(connection)
    try:
        ok = await session.run(room, action, value, timeout)
    finally:
        await connection.aclose()
    return ok, session.session_token


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Send a playback command through the relay")
    parser.add_argument("room", help="pairing token or session token")
    parser.add_argument("action", choices=ACTIONS)
    parser.add_argument("value", nargs="?", type=float,
                        help="seconds for seek (relative), level 0..1 for volume")
    parser.add_argument("--relay", default=None, help="relay WebSocket URL")
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args(argv)
    if args.action in (envelope.SEEK, envelope.VOLUME) and args.value is None:
        parser.error(f"{args.action} needs a value")
    return args


def main(argv=None):
    logging.basicConfig(
        level=config.log_level(),
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = parse_args(argv)
    ok, session_token = asyncio.run(run_remote(
        args.relay or config.relay_base_url(), args.room, args.action, args.value, args.timeout))
    if session_token:
        print(f"Session token: {session_token}")
    print("ok" if ok else "failed")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
