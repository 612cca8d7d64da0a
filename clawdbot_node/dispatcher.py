"""Routes ``node.invoke`` commands to capabilities.

Every call to :meth:`CommandDispatcher.dispatch` yields exactly one
:class:`Response`, whatever happens inside the handler.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from .activity import ActivityLog
from .capabilities import Capabilities
from .capabilities.canvas import CanvasFrame
from .capabilities.location import ACCURACY_LEVELS
from .errors import NodeError
from .host import HostState
from .protocol import ErrorCode, Response

logger = logging.getLogger(__name__)

MAX_CLIP_DURATION_MS = 60_000
MAX_SCREEN_RECORD_DURATION_MS = 60_000

FOREGROUND_COMMANDS = frozenset({
    "camera.snap",
    "camera.clip",
    "canvas.present",
    "canvas.navigate",
    "canvas.eval",
    "canvas.snapshot",
    "screen.record",
})

Handler = Callable[[dict], Awaitable[dict]]

_MISSING = object()


# ── Parameter helpers ─────────────────────────────────────────────


def _invalid(key: str, expected: str) -> NodeError:
    return NodeError(ErrorCode.INVALID_PARAMS, f"'{key}' must be {expected}")


def _str(params: dict, key: str, default: Any = _MISSING) -> str:
    value = params.get(key)
    if value is None:
        if default is _MISSING:
            raise NodeError(ErrorCode.INVALID_PARAMS, f"{key} required")
        return default
    if not isinstance(value, str):
        raise _invalid(key, "a string")
    return value


def _int(params: dict, key: str, default: int) -> int:
    value = params.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise _invalid(key, "an integer")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, int):
        raise _invalid(key, "an integer")
    return value


def _float(params: dict, key: str, default: float | None) -> float | None:
    value = params.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _invalid(key, "a number")
    return float(value)


def _bool(params: dict, key: str, default: bool) -> bool:
    value = params.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise _invalid(key, "a boolean")
    return value


def _positive_int(params: dict, key: str, default: int) -> int:
    value = _int(params, key, default)
    if value <= 0:
        raise _invalid(key, "positive")
    return value


def _duration(params: dict, key: str, default: int, maximum: int) -> int:
    """Durations above *maximum* are clamped, not rejected."""
    return min(_positive_int(params, key, default), maximum)


# ── Dispatcher ────────────────────────────────────────────────────


class CommandDispatcher:
    """Validates, gates and executes invoke commands."""

    def __init__(self, capabilities: Capabilities, host: HostState, activity: ActivityLog | None = None):
        self.capabilities = capabilities
        self.host = host
        self.activity = activity if activity is not None else ActivityLog()
        self._handlers: dict[str, Handler] = {
            "camera.list": self._camera_list,
            "camera.snap": self._camera_snap,
            "camera.clip": self._camera_clip,
            "canvas.present": self._canvas_present,
            "canvas.hide": self._canvas_hide,
            "canvas.navigate": self._canvas_navigate,
            "canvas.eval": self._canvas_eval,
            "canvas.snapshot": self._canvas_snapshot,
            "location.get": self._location_get,
            "screen.record": self._screen_record,
        }

    @property
    def commands(self) -> list[str]:
        """Command names advertised in the handshake."""
        return list(self._handlers)

    @property
    def caps(self) -> list[str]:
        """Capability domains advertised in the handshake."""
        domains: list[str] = []
        for name in self._handlers:
            domain = name.split(".", 1)[0]
            if domain not in domains:
                domains.append(domain)
        return domains

    async def dispatch(self, request_id: str, command: str, params: dict | None = None) -> Response:
        logger.info("Received command: %s", command)
        params = params or {}

        handler = self._handlers.get(command)
        if handler is None:
            self.activity.record(command, False)
            return Response.failure(request_id, ErrorCode.UNKNOWN_COMMAND, f"Unknown command: {command}")

        if command in FOREGROUND_COMMANDS and not self.host.is_foreground():
            self.activity.record(command, False, "background")
            return Response.failure(
                request_id,
                ErrorCode.NODE_BACKGROUND_UNAVAILABLE,
                "This command requires the app to be in the foreground",
            )

        try:
            payload = await handler(params)
        except NodeError as exc:
            logger.info("Command %s failed: %s %s", command, exc.code, exc.message)
            self.activity.record(command, False)
            return Response.failure(request_id, exc.code, exc.message)
        except Exception as exc:
            logger.exception("Command %s raised", command)
            self.activity.record(command, False)
            return Response.failure(request_id, ErrorCode.UNKNOWN_COMMAND, str(exc) or type(exc).__name__)

        self.activity.record(command, True)
        return Response.success(request_id, payload)

    # ── Camera ────────────────────────────────────────────────────

    async def _camera_list(self, params: dict) -> dict:
        return await self.capabilities.camera.list_cameras()

    async def _camera_snap(self, params: dict) -> dict:
        return await self.capabilities.camera.snap(
            facing=_str(params, "facing", "back"),
            max_width=_int(params, "maxWidth", 1600),
            quality=_float(params, "quality", 0.9),
            fmt=_str(params, "format", "jpg"),
            delay_ms=max(0, _int(params, "delayMs", 0)),
        )

    async def _camera_clip(self, params: dict) -> dict:
        return await self.capabilities.camera.clip(
            facing=_str(params, "facing", "back"),
            duration_ms=_duration(params, "durationMs", 3000, MAX_CLIP_DURATION_MS),
            include_audio=_bool(params, "includeAudio", True),
            fmt=_str(params, "format", "mp4"),
        )

    # ── Canvas ────────────────────────────────────────────────────

    async def _canvas_present(self, params: dict) -> dict:
        frame = CanvasFrame(
            x=_float(params, "x", 0.0),
            y=_float(params, "y", 0.0),
            width=_float(params, "width", None),
            height=_float(params, "height", 400.0),
        )
        return await self.capabilities.canvas.present(_str(params, "target", ""), frame)

    async def _canvas_hide(self, params: dict) -> dict:
        return await self.capabilities.canvas.hide()

    async def _canvas_navigate(self, params: dict) -> dict:
        return await self.capabilities.canvas.navigate(_str(params, "url"))

    async def _canvas_eval(self, params: dict) -> dict:
        return await self.capabilities.canvas.evaluate(_str(params, "javaScript"))

    async def _canvas_snapshot(self, params: dict) -> dict:
        return await self.capabilities.canvas.snapshot(
            fmt=_str(params, "format", "png"),
            max_width=_int(params, "maxWidth", 1200),
            quality=_float(params, "quality", 0.9),
        )

    # ── Location ──────────────────────────────────────────────────

    async def _location_get(self, params: dict) -> dict:
        accuracy = _str(params, "desiredAccuracy", "balanced")
        if accuracy not in ACCURACY_LEVELS:
            raise _invalid("desiredAccuracy", "one of " + ", ".join(ACCURACY_LEVELS))
        return await self.capabilities.location.get_location(
            timeout_ms=max(0, _int(params, "timeoutMs", 10000)),
            max_age_ms=max(0, _int(params, "maxAgeMs", 15000)),
            desired_accuracy=accuracy,
        )

    # ── Screen ────────────────────────────────────────────────────

    async def _screen_record(self, params: dict) -> dict:
        return await self.capabilities.screen.record(
            duration_ms=_duration(params, "durationMs", 10000, MAX_SCREEN_RECORD_DURATION_MS),
            fps=_positive_int(params, "fps", 10),
            include_audio=_bool(params, "includeAudio", False),
        )
