"""
Durable session token storage.

Keeps the relay's session token in a small JSON file so the player can
reconnect silently after a restart.  Writes are atomic (temp file +
rename) so a crash mid-write never corrupts the file.

Storage locations (first existing, else first writable wins):
  1. session.path from config.json
  2. /etc/relayremote/session.json   (deployed install)
  3. ~/.config/relayremote/session.json
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone

from .config import cfg

logger = logging.getLogger(__name__)

STORE_PATHS = [
    "/etc/relayremote/session.json",
    os.path.join(os.path.expanduser("~"), ".config", "relayremote", "session.json"),
]


def _find_store_path():
    """Find the best store path (configured, first existing, or first writable)."""
    configured = cfg("session", "path")
    if configured:
        return configured
    for path in STORE_PATHS:
        if os.path.exists(path):
            return path
    for path in STORE_PATHS:
        d = os.path.dirname(path)
        if os.path.isdir(d) and os.access(d, os.W_OK):
            return path
    return STORE_PATHS[-1]


class SessionStore:
    """get / set / remove for the one durable session token."""

    def __init__(self, path: str | None = None):
        self.path = path or _find_store_path()

    def get(self) -> str | None:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Unreadable session file %s: %s", self.path, e)
            return None
        token = data.get("session_token") if isinstance(data, dict) else None
        return token or None

    def set(self, token: str) -> None:
        """Atomically save *token* to disk."""
        data = {
            "session_token": token,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        d = os.path.dirname(self.path) or "."
        os.makedirs(d, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp, self.path)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        logger.info("Session token saved to %s", self.path)

    def remove(self) -> None:
        try:
            os.unlink(self.path)
            logger.info("Session token removed from %s", self.path)
        except FileNotFoundError:
            pass
