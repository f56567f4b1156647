"""Client for the relay's token issuance endpoint (GET -> {"token": "..."})."""

import asyncio
import logging

import aiohttp

from .config import TOKEN_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class TokenRequestFailed(Exception):
    """No pairing token could be obtained."""


async def request_pairing_token(session: aiohttp.ClientSession, url: str) -> str:
    """Ask the relay for a fresh ephemeral pairing token.

    Raises TokenRequestFailed on a non-2xx response, network error,
    timeout, or a body without a token.
    """
    try:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=TOKEN_REQUEST_TIMEOUT),
        ) as resp:
            if resp.status // 100 != 2:
                raise TokenRequestFailed(f"API error: HTTP {resp.status} {resp.reason or ''}".strip())
            data = await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise TokenRequestFailed("token request timed out") from e
    except aiohttp.ClientError as e:
        raise TokenRequestFailed(f"token request failed: {e}") from e
    except ValueError as e:
        raise TokenRequestFailed("token response is not JSON") from e

    token = data.get("token") if isinstance(data, dict) else None
    if not token or not isinstance(token, str):
        raise TokenRequestFailed("No token received from API")
    logger.info("Received pairing token")
    return token
