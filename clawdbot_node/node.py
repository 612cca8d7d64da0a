"""Node agent: wires identity, capabilities, dispatcher and gateway client."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from . import __version__
from .activity import ActivityLog
from .capabilities import (
    CameraBackend,
    CameraCapability,
    Capabilities,
    CanvasController,
    LocationBackend,
    LocationCapability,
    NullCameraBackend,
    NullLocationBackend,
    NullScreenBackend,
    NullWebSurface,
    ScreenBackend,
    ScreenRecordCapability,
    WebSurface,
)
from .config import NodeConfig
from .dispatcher import CommandDispatcher
from .gateway import GatewayClient
from .host import HostState, StaticHostState
from .identity import DeviceIdentity, TokenStore
from .transport import TransportFactory, WebSocketTransport

logger = logging.getLogger(__name__)


class NodeAgent:
    """Owns every long-lived object of a running node.

    Backends default to the null implementations so a headless host can
    still pair with the gateway and answer ``camera.list``/``canvas.*``.
    """

    def __init__(
        self,
        config: NodeConfig,
        *,
        host: Optional[HostState] = None,
        camera: Optional[CameraBackend] = None,
        location: Optional[LocationBackend] = None,
        screen: Optional[ScreenBackend] = None,
        surface: Optional[WebSurface] = None,
        transport_factory: TransportFactory = WebSocketTransport.open,
    ):
        self.config = config
        self.host = host or StaticHostState(foreground=True)

        state_dir = Path(config.state_dir)
        self.token_store = TokenStore(state_dir)
        self.identity = DeviceIdentity.load_or_create(state_dir, self.token_store)

        self.capabilities = Capabilities(
            camera=CameraCapability(camera or NullCameraBackend(), config),
            location=LocationCapability(location or NullLocationBackend(), config, self.host),
            screen=ScreenRecordCapability(screen or NullScreenBackend(), config),
            canvas=CanvasController(surface or NullWebSurface()),
        )
        self.activity = ActivityLog()
        self.dispatcher = CommandDispatcher(self.capabilities, self.host, self.activity)
        self.gateway = GatewayClient(
            config,
            self.identity,
            self.token_store,
            self.dispatcher,
            transport_factory=transport_factory,
        )
        self._stopped = asyncio.Event()

    async def start(self, connect: Optional[bool] = None) -> None:
        """Connect (if requested) and run until :meth:`stop` is called."""
        logger.info("=== Clawdbot Node v%s ===", __version__)
        logger.info("Device: %s | Gateway: %s", self.identity.device_id[:16], self.config.gateway_url)

        self._stopped.clear()
        should_connect = self.config.auto_connect if connect is None else connect
        if should_connect:
            await self.gateway.connect()
        try:
            await self._stopped.wait()
        finally:
            await self.gateway.disconnect()

    async def stop(self) -> None:
        """Gracefully shut down."""
        logger.info("Shutting down node...")
        self._stopped.set()
        await self.gateway.disconnect()
