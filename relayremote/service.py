#!/usr/bin/env python3
# Relay Remote
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Relay player service (relay-player)

Background process on the player host.  Holds the relay connection,
routes remote commands to the local player service, and exposes a small
command API for the pairing UI:

    POST /relay/command   {"command": "start-pairing" | "disconnect" | "get-status"}
    GET  /relay/status
    GET  /relay/ws        push feed of {"type": "relay_status", "status": ...}

Port: 8780
"""

import functools
import json
import logging

import aiohttp
from aiohttp import web

from relayremote import __version__
from relayremote.command_router import CommandRouter
from relayremote.lib import config
from relayremote.lib.config import DEFAULT_PLAYER_URL, DEFAULT_SERVICE_PORT, cfg
from relayremote.lib.connection import ConnectionManager, ConnectionState
from relayremote.lib.pairing_api import request_pairing_token
from relayremote.lib.player_control import HttpPlayerControl, MediaControl
from relayremote.lib.session_store import SessionStore
from relayremote.pairing import PairingOrchestrator

logger = logging.getLogger("relay-player")

# Command names, plus the camelCase names older popups send
COMMAND_ALIASES = {
    "start-pairing": "start-pairing",
    "startPairing": "start-pairing",
    "disconnect": "disconnect",
    "disconnectRelay": "disconnect",
    "get-status": "get-status",
    "getRelayStatus": "get-status",
}


class RelayService:
    """Wires ConnectionManager, CommandRouter and PairingOrchestrator together."""

    def __init__(self, relay_url: str, token_url: str, player_url: str, *,
                 store: SessionStore | None = None,
                 media: MediaControl | None = None,
                 token_source=None,
                 transport_factory=None,
                 **connection_options):
        self.token_url = token_url
        self.player_url = player_url
        self.store = store or SessionStore()
        self.connection = ConnectionManager(
            relay_url, "player", transport_factory=transport_factory, **connection_options)
        self._media = media
        self._token_source = token_source
        self._http_session: aiohttp.ClientSession | None = None
        self._ws_clients: set[web.WebSocketResponse] = set()
        self.router: CommandRouter | None = None
        self.pairing: PairingOrchestrator | None = None

    async def start(self):
        self._http_session = aiohttp.ClientSession(
            headers={"User-Agent": f"RelayRemote/{__version__}"},
        )
        media = self._media or HttpPlayerControl(self.player_url, self._http_session)
        token_source = self._token_source or functools.partial(
            request_pairing_token, self._http_session, self.token_url)

        self.router = CommandRouter(self.connection, media, self.store)
        self.router.attach()
        self.pairing = PairingOrchestrator(self.connection, self.store, token_source)
        self.connection.on_status_change(self._on_status_change)

        if not self.pairing.resume():
            logger.info("No saved session, waiting for pairing request")

    async def stop(self):
        await self.connection.aclose()
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._http_session:
            await self._http_session.close()
            self._http_session = None
        logger.info("Relay service stopped")

    async def handle_command(self, command: str) -> dict | None:
        """Run a UI command.  None for unknown commands."""
        command = COMMAND_ALIASES.get(command)
        if command == "start-pairing":
            return await self.pairing.start_pairing()
        if command == "disconnect":
            return self.pairing.disconnect_all()
        if command == "get-status":
            return self.pairing.get_status()
        return None

    # ── UI push feed ──

    async def _on_status_change(self, status):
        message = {"type": "relay_status", "status": str(status)}
        if status is ConnectionState.PAIRING and self.pairing.pending_token:
            message["token"] = self.pairing.pending_token
        await self.broadcast(message)

    async def broadcast(self, message: dict):
        if not self._ws_clients:
            return
        text = json.dumps(message)
        disconnected = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send_str(text)
            except Exception:
                disconnected.add(ws)
        self._ws_clients -= disconnected
        logger.debug("Broadcast %s to %d clients", message.get("status"), len(self._ws_clients))


SERVICE_KEY = web.AppKey("relay_service", RelayService)


# ---------------------------------------------------------------------------
# HTTP handlers
# ---------------------------------------------------------------------------
async def handle_command(request: web.Request) -> web.Response:
    """POST /relay/command — pairing UI commands."""
    try:
        data = await request.json()
    except (json.JSONDecodeError, Exception):
        return web.json_response({"error": "invalid json"}, status=400)

    command = data.get("command") if isinstance(data, dict) else None
    result = await request.app[SERVICE_KEY].handle_command(command)
    if result is None:
        return web.json_response({"error": f"unknown command: {command}"}, status=400)
    return web.json_response(result)


async def handle_status(request: web.Request) -> web.Response:
    """GET /relay/status — same as the get-status command."""
    return web.json_response(request.app[SERVICE_KEY].pairing.get_status())


async def handle_ws(request: web.Request) -> web.WebSocketResponse:
    """GET /relay/ws — status push feed for the pairing UI."""
    service = request.app[SERVICE_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    service._ws_clients.add(ws)
    logger.info("UI client connected (%d total)", len(service._ws_clients))
    try:
        await ws.send_json({"type": "relay_status", **service.pairing.get_status()})
        # push-only, client messages are ignored
        async for _ in ws:
            pass
    finally:
        service._ws_clients.discard(ws)
        logger.info("UI client disconnected (%d remaining)", len(service._ws_clients))
    return ws


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------
async def on_startup(app: web.Application):
    await app[SERVICE_KEY].start()


async def on_cleanup(app: web.Application):
    await app[SERVICE_KEY].stop()


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


def create_app(service: RelayService) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[SERVICE_KEY] = service
    app.router.add_post("/relay/command", handle_command)
    app.router.add_get("/relay/status", handle_status)
    app.router.add_get("/relay/ws", handle_ws)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main():
    logging.basicConfig(
        level=config.log_level(),
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    service = RelayService(
        config.relay_base_url(),
        config.token_url(),
        cfg("player", "url", default=DEFAULT_PLAYER_URL),
    )
    port = int(cfg("service", "port", default=DEFAULT_SERVICE_PORT))
    web.run_app(create_app(service), host="0.0.0.0", port=port,
                print=lambda msg: logger.info(msg))


if __name__ == "__main__":
    main()
