"""Tests for node.invoke command dispatch."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from clawdbot_node.activity import ActivityLog
from clawdbot_node.dispatcher import FOREGROUND_COMMANDS, CommandDispatcher
from clawdbot_node.errors import NodeError
from clawdbot_node.host import StaticHostState
from clawdbot_node.protocol import ErrorCode


def _dispatcher(foreground=True):
    caps = MagicMock()
    caps.camera.list_cameras = AsyncMock(return_value={"devices": []})
    caps.camera.snap = AsyncMock(return_value={"format": "jpg"})
    caps.camera.clip = AsyncMock(return_value={"format": "mp4"})
    caps.canvas.present = AsyncMock(return_value={"success": True})
    caps.canvas.hide = AsyncMock(return_value={"success": True})
    caps.canvas.navigate = AsyncMock(return_value={"success": True})
    caps.canvas.evaluate = AsyncMock(return_value={"result": 2})
    caps.canvas.snapshot = AsyncMock(return_value={"format": "png"})
    caps.location.get_location = AsyncMock(return_value={"lat": 1.0})
    caps.screen.record = AsyncMock(return_value={"format": "mp4"})
    host = StaticHostState(foreground=foreground)
    return CommandDispatcher(caps, host, ActivityLog()), caps, host


class TestAdvertisement:
    def test_commands_and_caps(self):
        dispatcher, _, _ = _dispatcher()
        assert len(dispatcher.commands) == 10
        assert "location.get" in dispatcher.commands
        assert dispatcher.caps == ["camera", "canvas", "location", "screen"]
        assert FOREGROUND_COMMANDS <= set(dispatcher.commands)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_command(self):
        dispatcher, _, _ = _dispatcher()
        response = await dispatcher.dispatch("1", "toaster.toast", {})
        assert not response.ok
        assert response.error.code == "UNKNOWN_COMMAND"
        assert response.error.message == "Unknown command: toaster.toast"
        assert dispatcher.activity.entries[-1].classification == "other"

    @pytest.mark.asyncio
    async def test_defaults_applied(self):
        dispatcher, caps, _ = _dispatcher()
        response = await dispatcher.dispatch("1", "camera.snap", {})
        assert response.ok
        caps.camera.snap.assert_awaited_once_with(
            facing="back", max_width=1600, quality=0.9, fmt="jpg", delay_ms=0,
        )

    @pytest.mark.asyncio
    async def test_clip_duration_clamped(self):
        dispatcher, caps, _ = _dispatcher()
        await dispatcher.dispatch("1", "camera.clip", {"durationMs": 120000})
        assert caps.camera.clip.await_args.kwargs["duration_ms"] == 60000

    @pytest.mark.asyncio
    async def test_screen_duration_clamped(self):
        dispatcher, caps, _ = _dispatcher()
        await dispatcher.dispatch("1", "screen.record", {"durationMs": 90000})
        kwargs = caps.screen.record.await_args.kwargs
        assert kwargs == {"duration_ms": 60000, "fps": 10, "include_audio": False}

    @pytest.mark.asyncio
    async def test_location_defaults(self):
        dispatcher, caps, _ = _dispatcher()
        await dispatcher.dispatch("1", "location.get", None)
        caps.location.get_location.assert_awaited_once_with(
            timeout_ms=10000, max_age_ms=15000, desired_accuracy="balanced",
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command,params", [
        ("camera.snap", {"maxWidth": "big"}),
        ("camera.snap", {"quality": True}),
        ("camera.clip", {"durationMs": 0}),
        ("camera.clip", {"includeAudio": "yes"}),
        ("screen.record", {"fps": 0}),
        ("screen.record", {"fps": -5}),
        ("canvas.navigate", {}),
        ("canvas.eval", {"javaScript": 5}),
        ("location.get", {"desiredAccuracy": "exact"}),
    ])
    async def test_invalid_params(self, command, params):
        dispatcher, _, _ = _dispatcher()
        response = await dispatcher.dispatch("1", command, params)
        assert response.error.code == "INVALID_PARAMS"

    @pytest.mark.asyncio
    async def test_integral_float_accepted(self):
        dispatcher, caps, _ = _dispatcher()
        await dispatcher.dispatch("1", "camera.snap", {"maxWidth": 800.0})
        assert caps.camera.snap.await_args.kwargs["max_width"] == 800

    @pytest.mark.asyncio
    async def test_node_error_code_passed_through(self):
        dispatcher, caps, _ = _dispatcher()
        caps.camera.snap.side_effect = NodeError(ErrorCode.CAMERA_DISABLED, "off")
        response = await dispatcher.dispatch("1", "camera.snap", {})
        assert response.error.code == "CAMERA_DISABLED"
        assert response.error.message == "off"
        entry = dispatcher.activity.entries[-1]
        assert not entry.succeeded
        assert entry.classification == "camera"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_response(self):
        dispatcher, caps, _ = _dispatcher()
        caps.canvas.snapshot.side_effect = RuntimeError("renderer crashed")
        response = await dispatcher.dispatch("1", "canvas.snapshot", {})
        assert response.id == "1"
        assert response.error.code == "UNKNOWN_COMMAND"
        assert response.error.message == "renderer crashed"

    @pytest.mark.asyncio
    async def test_success_recorded(self):
        dispatcher, _, _ = _dispatcher()
        response = await dispatcher.dispatch("7", "canvas.eval", {"javaScript": "1+1"})
        assert response.payload == {"result": 2}
        entry = dispatcher.activity.entries[-1]
        assert entry.command == "canvas.eval"
        assert entry.succeeded


class TestBackgroundGate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", sorted(FOREGROUND_COMMANDS))
    async def test_foreground_commands_refused(self, command):
        dispatcher, caps, _ = _dispatcher(foreground=False)
        response = await dispatcher.dispatch("1", command, {})
        assert response.error.code == "NODE_BACKGROUND_UNAVAILABLE"
        for mock in (caps.camera.snap, caps.camera.clip, caps.canvas.present,
                     caps.canvas.navigate, caps.canvas.evaluate, caps.canvas.snapshot,
                     caps.screen.record):
            mock.assert_not_awaited()
        assert dispatcher.activity.entries[-1].classification == "background"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["camera.list", "canvas.hide", "location.get"])
    async def test_other_commands_allowed(self, command):
        dispatcher, _, _ = _dispatcher(foreground=False)
        response = await dispatcher.dispatch("1", command, {})
        assert response.ok

    @pytest.mark.asyncio
    async def test_gate_reads_host_per_call(self):
        dispatcher, _, host = _dispatcher(foreground=False)
        assert not (await dispatcher.dispatch("1", "camera.snap", {})).ok
        host.foreground = True
        assert (await dispatcher.dispatch("2", "camera.snap", {})).ok
