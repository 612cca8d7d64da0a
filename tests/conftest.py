"""pytest configuration and shared fakes for Clawdbot node tests."""

from __future__ import annotations

import asyncio
import json

import pytest

from clawdbot_node.errors import TransportClosed
from clawdbot_node.transport import Transport


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeTransport(Transport):
    """In-memory transport; the test plays the gateway."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.pings = 0
        self.closed = False

    async def send(self, text: str) -> None:
        if self.closed:
            raise TransportClosed("closed")
        self.sent.append(json.loads(text))

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def ping(self) -> None:
        self.pings += 1

    async def close(self) -> None:
        self.closed = True

    def feed(self, frame) -> None:
        self.inbox.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    def drop(self, reason: str = "connection reset") -> None:
        self.inbox.put_nowait(TransportClosed(reason))

    def responses(self, request_id: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == "res" and m.get("id") == request_id]


class FakeGateway:
    """Transport factory handing out :class:`FakeTransport` instances."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.fail:
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeSleep:
    """Records requested delays and yields once instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def fake_sleep():
    return FakeSleep()
