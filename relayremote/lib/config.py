"""
Shared configuration loader for the relay remote services.

Loads a single JSON config file per host.  Search order:
  1. /etc/relayremote/config.json   (deployed install)
  2. config.json                     (CWD, handy for local dev)
  3. ../../config/default.json       (repo fallback)

Per-run overrides (RELAY_URL, RELAY_TOKEN_URL, LOG_LEVEL) stay in
environment variables.

Usage:
    from relayremote.lib.config import cfg

    relay_url  = cfg("relay", "url", default=DEFAULT_RELAY_URL)
    port       = cfg("service", "port", default=8780)
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

# Protocol constants, fixed for every connection
RECONNECT_DELAY = 2.0            # seconds between a dropped connection and the retry
KEEPALIVE_INTERVAL = 25.0        # seconds between keepalive pings
INVALID_SESSION_CLOSE_CODE = 4001
TOKEN_REQUEST_TIMEOUT = 5.0

DEFAULT_RELAY_URL = "wss://relay.videocontrol.dev/ws"
DEFAULT_TOKEN_URL = "https://relay.videocontrol.dev/api/generate-token"
DEFAULT_PLAYER_URL = "http://localhost:8766/player"
DEFAULT_SERVICE_PORT = 8780

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/relayremote/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    relay = config.get("relay") or {}
    url = relay.get("url")
    if not url:
        logger.warning("Config %s: missing relay.url, using %s", path, DEFAULT_RELAY_URL)
    elif not url.startswith(("ws://", "wss://")):
        logger.warning("Config %s: relay.url '%s' is not a ws:// or wss:// URL", path, url)
    token_url = relay.get("token_url")
    if token_url and not token_url.startswith(("http://", "https://")):
        logger.warning("Config %s: relay.token_url '%s' is not an HTTP URL", path, token_url)
    player = config.get("player") or {}
    if not player.get("url"):
        logger.warning("Config %s: missing player.url, using %s", path, DEFAULT_PLAYER_URL)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found, using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("relay")                      → config["relay"]
    cfg("relay", "url")               → config["relay"]["url"]
    cfg("service", "port", default=8780) → config["service"]["port"] or 8780
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


def relay_base_url() -> str:
    return os.getenv("RELAY_URL") or cfg("relay", "url", default=DEFAULT_RELAY_URL)


def token_url() -> str:
    return os.getenv("RELAY_TOKEN_URL") or cfg("relay", "token_url", default=DEFAULT_TOKEN_URL)


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
