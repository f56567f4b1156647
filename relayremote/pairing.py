"""
Pairing orchestration for the player side.

    start_pairing()   fetch an ephemeral token, connect to it, hand the token
                      back so the UI can show it as a QR code
    disconnect_all()  forget everything: pending token, saved session, connection
    get_status()      status, plus the pending token while still pairing
    resume()          reconnect to a saved session on startup
"""

import logging

from .lib import envelope
from .lib.connection import ConnectionManager, ConnectionState
from .lib.pairing_api import TokenRequestFailed
from .lib.session_store import SessionStore

logger = logging.getLogger(__name__)


class PairingOrchestrator:
    def __init__(self, connection: ConnectionManager, store: SessionStore, token_source):
        """*token_source* is an async callable returning a fresh pairing token
        or raising TokenRequestFailed."""
        self.connection = connection
        self.store = store
        self._token_source = token_source
        self.pending_token: str | None = None
        self.last_error: str | None = None

        connection.on_message(self._on_message)
        connection.on_fatal_error(self._on_fatal)

    async def start_pairing(self) -> dict:
        try:
            token = await self._token_source()
        except TokenRequestFailed as e:
            logger.error("Failed to start pairing: %s", e)
            self.pending_token = None
            self.connection.disconnect()
            return {"success": False, "error": str(e), "status": str(self.connection.status)}

        if self.connection.status is not ConnectionState.DISCONNECTED:
            logger.info("Dropping current %s connection for a new pairing", self.connection.status)
            self.connection.disconnect()

        self.pending_token = token
        self.last_error = None
        self.connection.connect(token)
        return {"success": True, "token": token, "status": str(self.connection.status)}

    def disconnect_all(self) -> dict:
        self.pending_token = None
        self.last_error = None
        self.store.remove()
        self.connection.disconnect()
        return {"status": str(self.connection.status)}

    def get_status(self) -> dict:
        status = self.connection.status
        result = {"status": str(status)}
        if status is ConnectionState.PAIRING and self.pending_token:
            result["token"] = self.pending_token
        if status is ConnectionState.DISCONNECTED and self.last_error:
            result["error"] = self.last_error
        return result

    def resume(self) -> bool:
        """Reconnect with the saved session token, if there is one."""
        token = self.store.get()
        if not token:
            return False
        logger.info("Resuming saved relay session")
        self.connection.connect(token)
        return True

    # ── Connection hooks ──

    def _on_message(self, msg: dict):
        if msg.get("type") == envelope.PAIR_SUCCESS:
            self.pending_token = None
            self.last_error = None

    def _on_fatal(self, reason: str):
        logger.warning("Session rejected (%s), clearing saved session", reason)
        self.pending_token = None
        self.last_error = reason
        self.store.remove()
