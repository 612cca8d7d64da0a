"""Camera capability: device listing, stills and short clips.

The actual capture is done by a :class:`CameraBackend`; this module owns
the policy around it (settings, permissions, delays, size ceiling) and the
wire payload shape.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..config import NodeConfig
from ..errors import NodeError
from ..protocol import ErrorCode

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5_000_000
STILL_SETTLE_S = 0.5
CLIP_SETTLE_S = 0.3


@dataclass
class EncodedImage:
    data: bytes
    width: int
    height: int


class CameraBackend(ABC):
    """Platform camera access."""

    @abstractmethod
    async def list_devices(self) -> list[dict]:
        """Return ``[{id, name, position, deviceType}]``."""

    @abstractmethod
    async def has_permission(self, media: str) -> bool:
        """Check (and if undetermined, request) access to ``video`` or ``audio``."""

    @abstractmethod
    async def capture_still(self, facing: str) -> Any:
        """Capture one frame from the ``front`` or ``back`` camera.

        Returns an opaque image handle understood by :meth:`encode_image`.
        """

    @abstractmethod
    async def encode_image(self, image: Any, max_width: int, fmt: str, quality: float) -> EncodedImage:
        """Scale *image* down to *max_width* and encode it as ``jpg`` or ``png``."""

    @abstractmethod
    async def record_clip(self, facing: str, duration_ms: int, include_audio: bool) -> bytes:
        """Record a clip of at most *duration_ms* and return the mp4 bytes."""


class NullCameraBackend(CameraBackend):
    """Backend for hosts without a camera."""

    async def list_devices(self) -> list[dict]:
        return []

    async def has_permission(self, media: str) -> bool:
        return False

    async def capture_still(self, facing: str) -> Any:
        raise NodeError(ErrorCode.CAMERA_DISABLED, f"No camera available for position: {facing}")

    async def encode_image(self, image: Any, max_width: int, fmt: str, quality: float) -> EncodedImage:
        raise NodeError(ErrorCode.CAMERA_DISABLED, "Failed to encode image")

    async def record_clip(self, facing: str, duration_ms: int, include_audio: bool) -> bytes:
        raise NodeError(ErrorCode.CAMERA_DISABLED, f"No camera available for position: {facing}")


class CameraCapability:
    """``camera.list``, ``camera.snap`` and ``camera.clip``."""

    def __init__(
        self,
        backend: CameraBackend,
        config: NodeConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.config = config
        self._sleep = sleep
        # One capture session at a time per device.
        self._lock = asyncio.Lock()

    async def list_cameras(self) -> dict:
        return {"devices": await self.backend.list_devices()}

    async def _check_video_access(self) -> None:
        if not await self.backend.has_permission("video"):
            raise NodeError(ErrorCode.CAMERA_PERMISSION_REQUIRED, "Camera permission not granted")
        if not self.config.allow_camera:
            raise NodeError(ErrorCode.CAMERA_DISABLED, "Camera is disabled in app settings")

    async def snap(
        self,
        facing: str = "back",
        max_width: int = 1600,
        quality: float = 0.9,
        fmt: str = "jpg",
        delay_ms: int = 0,
    ) -> dict:
        await self._check_video_access()
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

        is_png = fmt.lower() == "png"
        async with self._lock:
            await self._sleep(STILL_SETTLE_S)
            image = await self.backend.capture_still(facing)

        encoded = await self.backend.encode_image(image, max_width, "png" if is_png else "jpg", quality)
        data = encoded.data
        current = quality
        # Gateway rejects attachments above the ceiling; trade quality for size.
        while len(data) > MAX_IMAGE_BYTES and current > 0.1:
            current = round(current - 0.1, 2)
            data = (await self.backend.encode_image(image, max_width, "jpg", current)).data
        if len(data) > MAX_IMAGE_BYTES:
            logger.warning("Still image still %d bytes after recompression", len(data))

        return {
            "format": "png" if is_png else "jpg",
            "base64": base64.b64encode(data).decode("ascii"),
            "width": encoded.width,
            "height": encoded.height,
        }

    async def clip(
        self,
        facing: str = "back",
        duration_ms: int = 3000,
        include_audio: bool = True,
        fmt: str = "mp4",
    ) -> dict:
        await self._check_video_access()
        if include_audio and not await self.backend.has_permission("audio"):
            raise NodeError(ErrorCode.RECORD_AUDIO_PERMISSION_REQUIRED, "Microphone permission not granted")

        if fmt.lower() != "mp4":
            logger.debug("Clip format %r requested, recording mp4", fmt)
        async with self._lock:
            await self._sleep(CLIP_SETTLE_S)
            data = await self.backend.record_clip(facing, duration_ms, include_audio)

        return {
            "format": "mp4",
            "base64": base64.b64encode(data).decode("ascii"),
            "durationMs": duration_ms,
            "hasAudio": include_audio,
        }
