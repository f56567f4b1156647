"""Fakes for the relay socket, the player and the session file."""

import asyncio
import json

import pytest

from relayremote.lib.player_control import MediaControl
from relayremote.lib.session_store import SessionStore


async def settle(rounds: int = 25):
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeTransport:
    """In-memory stand-in for WebSocketTransport."""

    def __init__(self, url: str, responder=None):
        self.url = url
        self.sent: list[dict] = []
        self.close_code: int | None = None
        self.closed = False
        self._responder = responder
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def recv(self):
        if self.closed and self._inbox.empty():
            return None
        return await self._inbox.get()

    async def send(self, text: str) -> bool:
        if self.closed:
            return False
        msg = json.loads(text)
        self.sent.append(msg)
        if self._responder:
            self._responder(self, msg)
        return True

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self.close_code = 1000
        self._inbox.put_nowait(None)

    def deliver(self, msg):
        self._inbox.put_nowait(msg if isinstance(msg, (str, bytes)) else json.dumps(msg))

    def drop(self, code: int | None = 1006):
        """Peer closed the socket with *code*."""
        self.closed = True
        self.close_code = code
        self._inbox.put_nowait(None)

    def sent_types(self) -> list[str]:
        return [m["type"] for m in self.sent]


class FakeRelay:
    """transport_factory that records every socket it opens.

    Exceptions queued in ``failures`` are raised by the next open attempts.
    """

    def __init__(self, responder=None):
        self.transports: list[FakeTransport] = []
        self.failures: list[BaseException] = []
        self.attempts: list[str] = []
        self._responder = responder

    async def __call__(self, url: str) -> FakeTransport:
        self.attempts.append(url)
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)
        transport = FakeTransport(url, self._responder)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeMedia(MediaControl):
    def __init__(self, result: bool = True):
        self.result = result
        self.calls: list[tuple] = []

    async def toggle(self) -> bool:
        self.calls.append(("toggle",))
        return self.result

    async def mute(self) -> bool:
        self.calls.append(("mute",))
        return self.result

    async def seek(self, seconds: float) -> bool:
        self.calls.append(("seek", seconds))
        return self.result

    async def set_volume(self, level: float) -> bool:
        self.calls.append(("volume", level))
        return self.result


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def store(tmp_path):
    return SessionStore(str(tmp_path / "session.json"))
