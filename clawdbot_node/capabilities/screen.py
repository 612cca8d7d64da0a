"""Screen recording capability."""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod

from ..config import NodeConfig
from ..errors import NodeError
from ..protocol import ErrorCode

logger = logging.getLogger(__name__)


class ScreenBackend(ABC):
    """Platform screen recorder."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the platform can record the screen right now."""

    @abstractmethod
    async def record(self, duration_ms: int, fps: int, include_audio: bool) -> bytes:
        """Record for *duration_ms* and return the mp4 bytes."""


class NullScreenBackend(ScreenBackend):
    def is_available(self) -> bool:
        return False

    async def record(self, duration_ms: int, fps: int, include_audio: bool) -> bytes:
        raise NodeError(ErrorCode.SCREEN_RECORDING_PERMISSION_REQUIRED, "Screen recording not available")


class ScreenRecordCapability:
    """``screen.record``."""

    def __init__(self, backend: ScreenBackend, config: NodeConfig):
        self.backend = backend
        self.config = config

    async def record(self, duration_ms: int = 10000, fps: int = 10, include_audio: bool = False) -> dict:
        if not self.config.allow_screen_recording:
            raise NodeError(
                ErrorCode.SCREEN_RECORDING_PERMISSION_REQUIRED,
                "Screen recording is disabled in app settings",
            )
        if not self.backend.is_available():
            raise NodeError(ErrorCode.SCREEN_RECORDING_PERMISSION_REQUIRED, "Screen recording not available")

        logger.info("Recording screen for %d ms at %d fps", duration_ms, fps)
        data = await self.backend.record(duration_ms, fps, include_audio)
        return {
            "format": "mp4",
            "base64": base64.b64encode(data).decode("ascii"),
            "durationMs": duration_ms,
            "fps": fps,
            "hasAudio": include_audio,
        }
