"""Canvas: the embedded web surface the gateway can drive."""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

from ..errors import NodeError
from ..protocol import ErrorCode

logger = logging.getLogger(__name__)


@dataclass
class CanvasFrame:
    x: float = 0
    y: float = 0
    width: Optional[float] = None  # None: full host width
    height: float = 400


class WebSurface(ABC):
    """Platform web view."""

    @abstractmethod
    def load(self, url: str) -> None:
        """Start loading *url*."""

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Run JavaScript and return its JSON-compatible result."""

    @abstractmethod
    async def snapshot(self, fmt: str, max_width: int, quality: float) -> Optional[bytes]:
        """Render the current page to image bytes, or ``None`` on failure."""


class NullWebSurface(WebSurface):
    """Headless stand-in: remembers the URL, renders nothing."""

    def __init__(self) -> None:
        self.url: Optional[str] = None

    def load(self, url: str) -> None:
        self.url = url

    async def evaluate(self, script: str) -> Any:
        return None

    async def snapshot(self, fmt: str, max_width: int, quality: float) -> Optional[bytes]:
        return None


def _valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


class CanvasController:
    """State and commands for the ``canvas.*`` domain."""

    def __init__(self, surface: WebSurface):
        self.surface = surface
        self.visible = False
        self.url: Optional[str] = None
        self.frame = CanvasFrame()

    async def present(self, target: str = "", frame: CanvasFrame | None = None) -> dict:
        if target:
            if not _valid_url(target):
                raise NodeError(ErrorCode.INVALID_PARAMS, f"Invalid URL: {target}")
            self.url = target
            self.frame = frame or CanvasFrame()
            self.surface.load(target)
            self.visible = True
        return {"success": True}

    async def hide(self) -> dict:
        self.visible = False
        self.url = None
        return {"success": True}

    async def navigate(self, url: str) -> dict:
        if not _valid_url(url):
            raise NodeError(ErrorCode.INVALID_PARAMS, f"Invalid URL: {url}")
        self.surface.load(url)
        self.url = url
        return {"success": True}

    async def evaluate(self, script: str) -> dict:
        result = await self.surface.evaluate(script)
        return {"result": result}

    async def snapshot(self, fmt: str = "png", max_width: int = 1200, quality: float = 0.9) -> dict:
        data = await self.surface.snapshot(fmt, max_width, quality)
        if not data:
            raise NodeError(ErrorCode.INVALID_PARAMS, "Failed to capture canvas")
        return {"format": fmt, "base64": base64.b64encode(data).decode("ascii")}
