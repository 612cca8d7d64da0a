"""Full-duplex text transport to the gateway.

The gateway client only needs four primitives: send, recv, ping, close.
:class:`WebSocketTransport` provides them on top of :mod:`websockets`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect

from .errors import TransportClosed

logger = logging.getLogger(__name__)


class Transport(ABC):
    """A single open connection."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send one text frame. Raises :class:`TransportClosed`."""

    @abstractmethod
    async def recv(self) -> str | bytes:
        """Wait for the next frame. Raises :class:`TransportClosed`."""

    @abstractmethod
    async def ping(self) -> None:
        """Send a liveness probe."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""


TransportFactory = Callable[[str], Awaitable[Transport]]


class WebSocketTransport(Transport):
    """Transport backed by a ``websockets`` client connection."""

    def __init__(self, ws: ClientConnection):
        self._ws: Optional[ClientConnection] = ws

    @classmethod
    async def open(cls, url: str) -> WebSocketTransport:
        # The gateway dictates the keepalive cadence, so the library's own
        # ping loop is turned off.
        ws = await connect(
            url,
            ping_interval=None,
            close_timeout=5,
            max_size=16 * 1024 * 1024,
        )
        logger.debug("WebSocket opened to %s", url)
        return cls(ws)

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise TransportClosed("transport is closed")
        try:
            await self._ws.send(text)
        except websockets.ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def recv(self) -> str | bytes:
        if self._ws is None:
            raise TransportClosed("transport is closed")
        try:
            return await self._ws.recv()
        except websockets.ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def ping(self) -> None:
        if self._ws is None:
            raise TransportClosed("transport is closed")
        try:
            await self._ws.ping()
        except websockets.ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
