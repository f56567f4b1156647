"""
Media control on the player host.

MediaControl is what the command router drives.  Every operation returns
True when the player acted on it and False when there was nothing to act
on (no player, no media, request failed); failures never raise.

HttpPlayerControl talks to the local player service:

    POST {player_url}/toggle
    POST {player_url}/mute
    POST {player_url}/seek     {"seconds": -10}
    POST {player_url}/volume   {"level": 0.4}

and expects HTTP 200 with {"status": "ok"}.
"""

import logging

import aiohttp

logger = logging.getLogger(__name__)


class MediaControl:
    async def toggle(self) -> bool:
        raise NotImplementedError

    async def mute(self) -> bool:
        raise NotImplementedError

    async def seek(self, seconds: float) -> bool:
        """Seek relative to the current position."""
        raise NotImplementedError

    async def set_volume(self, level: float) -> bool:
        """Set absolute volume, 0.0 to 1.0."""
        raise NotImplementedError


class HttpPlayerControl(MediaControl):
    def __init__(self, player_url: str, session: aiohttp.ClientSession):
        self.player_url = player_url.rstrip("/")
        self._session = session

    async def _post(self, endpoint: str, json_data: dict | None = None) -> bool:
        """POST to the player service, return True on success."""
        try:
            async with self._session.post(
                f"{self.player_url}/{endpoint}",
                json=json_data or {},
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                if resp.status == 200:
                    data = await resp.json(content_type=None)
                    return isinstance(data, dict) and data.get("status") == "ok"
                logger.warning("Player %s returned HTTP %d", endpoint, resp.status)
                return False
        except Exception as e:
            logger.warning("Player %s failed: %s", endpoint, e)
            return False

    async def toggle(self) -> bool:
        return await self._post("toggle")

    async def mute(self) -> bool:
        return await self._post("mute")

    async def seek(self, seconds: float) -> bool:
        return await self._post("seek", {"seconds": seconds})

    async def set_volume(self, level: float) -> bool:
        level = max(0.0, min(1.0, float(level)))
        return await self._post("volume", {"level": level})
