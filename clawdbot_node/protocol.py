"""Gateway wire protocol.

Every frame is a JSON text message wrapped in one of three envelopes:

  Request   {"type": "req", "id", "method", "params"}
  Response  {"type": "res", "id", "ok", "payload"?, "error"?: {code, message, details?}}
  Event     {"type": "event", "event", "payload", "seq"?, "stateVersion"?}

Handshake: gateway sends ``connect.challenge``, node answers with a signed
``connect`` request, gateway replies with a ``hello-ok`` payload.
Invocation: gateway sends ``node.invoke`` requests, node answers with ``res``.
"""

from __future__ import annotations

import enum
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .errors import FrameDecodeError

PROTOCOL_VERSION = 3
AUTH_PAYLOAD_VERSION = "v2"

EVENT_CONNECT_CHALLENGE = "connect.challenge"
METHOD_CONNECT = "connect"
METHOD_NODE_INVOKE = "node.invoke"
HELLO_OK = "hello-ok"


class ErrorCode(str, enum.Enum):
    """Closed set of error codes the node may put on the wire."""

    CAMERA_DISABLED = "CAMERA_DISABLED"
    CAMERA_PERMISSION_REQUIRED = "CAMERA_PERMISSION_REQUIRED"
    RECORD_AUDIO_PERMISSION_REQUIRED = "RECORD_AUDIO_PERMISSION_REQUIRED"
    NODE_BACKGROUND_UNAVAILABLE = "NODE_BACKGROUND_UNAVAILABLE"
    LOCATION_DISABLED = "LOCATION_DISABLED"
    LOCATION_PERMISSION_REQUIRED = "LOCATION_PERMISSION_REQUIRED"
    LOCATION_BACKGROUND_UNAVAILABLE = "LOCATION_BACKGROUND_UNAVAILABLE"
    LOCATION_TIMEOUT = "LOCATION_TIMEOUT"
    LOCATION_UNAVAILABLE = "LOCATION_UNAVAILABLE"
    SCREEN_RECORDING_PERMISSION_REQUIRED = "SCREEN_RECORDING_PERMISSION_REQUIRED"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    INVALID_PARAMS = "INVALID_PARAMS"

    def __str__(self) -> str:
        return self.value


# ── Envelopes ─────────────────────────────────────────────────────


@dataclass
class ErrorShape:
    code: str
    message: str
    details: Any = None

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class Request:
    id: str
    method: str
    params: dict = field(default_factory=dict)

    @classmethod
    def new(cls, method: str, params: dict | None = None) -> Request:
        """Create a request with a fresh unique id."""
        return cls(id=str(uuid.uuid4()), method=method, params=params or {})

    def to_dict(self) -> dict:
        return {"type": "req", "id": self.id, "method": self.method, "params": self.params}


@dataclass
class Response:
    id: str
    ok: bool
    payload: Optional[dict] = None
    error: Optional[ErrorShape] = None

    @classmethod
    def success(cls, request_id: str, payload: dict) -> Response:
        return cls(id=request_id, ok=True, payload=payload)

    @classmethod
    def failure(cls, request_id: str, code: ErrorCode | str, message: str) -> Response:
        return cls(id=request_id, ok=False, error=ErrorShape(code=str(code), message=message))

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"type": "res", "id": self.id, "ok": self.ok}
        if self.ok:
            data["payload"] = self.payload if self.payload is not None else {}
        elif self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class Event:
    event: str
    payload: Any = None
    seq: Optional[int] = None
    state_version: Optional[int] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"type": "event", "event": self.event, "payload": self.payload}
        if self.seq is not None:
            data["seq"] = self.seq
        if self.state_version is not None:
            data["stateVersion"] = self.state_version
        return data


Envelope = Union[Request, Response, Event]


def encode_frame(envelope: Envelope) -> str:
    """Serialize an envelope to a JSON text frame."""
    return json.dumps(envelope.to_dict(), separators=(",", ":"))


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise FrameDecodeError(f"'{key}' must be a string")
    return value


def _optional_int(data: dict, key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise FrameDecodeError(f"'{key}' must be an integer")
    return value


def decode_frame(raw: str | bytes) -> Envelope:
    """Parse a raw text frame into an envelope.

    Raises :class:`FrameDecodeError` for malformed JSON, unknown envelope
    types or missing required fields.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameDecodeError("frame is not valid UTF-8") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameDecodeError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise FrameDecodeError("frame is not a JSON object")

    msg_type = data.get("type")
    if msg_type == "req":
        params = data.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise FrameDecodeError("'params' must be an object")
        return Request(id=_require_str(data, "id"), method=_require_str(data, "method"), params=params)

    if msg_type == "res":
        ok = data.get("ok")
        if not isinstance(ok, bool):
            raise FrameDecodeError("'ok' must be a boolean")
        error = None
        raw_error = data.get("error")
        if isinstance(raw_error, dict):
            error = ErrorShape(
                code=str(raw_error.get("code", "UNKNOWN")),
                message=str(raw_error.get("message", "Unknown error")),
                details=raw_error.get("details"),
            )
        elif not ok:
            error = ErrorShape(code="UNKNOWN", message="Unknown error")
        payload = data.get("payload")
        if payload is not None and not isinstance(payload, dict):
            payload = {"value": payload}
        return Response(id=_require_str(data, "id"), ok=ok, payload=payload, error=error)

    if msg_type == "event":
        return Event(
            event=_require_str(data, "event"),
            payload=data.get("payload"),
            seq=_optional_int(data, "seq"),
            state_version=_optional_int(data, "stateVersion"),
        )

    raise FrameDecodeError(f"unknown envelope type: {msg_type!r}")


# ── Typed payloads ────────────────────────────────────────────────


@dataclass
class ConnectChallenge:
    nonce: str
    ts: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any) -> ConnectChallenge:
        if not isinstance(payload, dict) or not isinstance(payload.get("nonce"), str):
            raise FrameDecodeError("connect.challenge payload requires a 'nonce'")
        ts = payload.get("ts")
        return cls(nonce=payload["nonce"], ts=ts if isinstance(ts, int) else None)


@dataclass
class HelloOk:
    protocol: int
    tick_interval_ms: Optional[int]
    device_token: Optional[str] = None
    role: str = ""
    scopes: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict) -> HelloOk:
        if payload.get("type") != HELLO_OK:
            raise FrameDecodeError(f"expected {HELLO_OK} payload, got {payload.get('type')!r}")
        policy = payload.get("policy") or {}
        auth = payload.get("auth") or {}
        tick = policy.get("tickIntervalMs") if isinstance(policy, dict) else None
        if isinstance(tick, bool) or not isinstance(tick, (int, float)) or tick <= 0:
            tick = None
        token = auth.get("deviceToken") if isinstance(auth, dict) else None
        return cls(
            protocol=int(payload.get("protocol") or 0),
            tick_interval_ms=int(tick) if tick is not None else None,
            device_token=token if isinstance(token, str) and token else None,
            role=str(auth.get("role", "")) if isinstance(auth, dict) else "",
            scopes=list(auth.get("scopes") or []) if isinstance(auth, dict) else [],
        )


@dataclass
class NodeInvoke:
    command: str
    params: dict = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: dict) -> NodeInvoke:
        command = params.get("command")
        if not isinstance(command, str) or not command:
            raise FrameDecodeError("node.invoke requires a 'command'")
        inner = params.get("params")
        if not isinstance(inner, dict):
            inner = {}
        return cls(command=command, params=inner)


@dataclass
class ClientInfo:
    id: str
    version: str
    platform: str
    mode: str = "node"

    def to_dict(self) -> dict:
        return {"id": self.id, "version": self.version, "platform": self.platform, "mode": self.mode}


@dataclass
class DeviceProof:
    id: str
    public_key: str
    signature: str
    signed_at: int
    nonce: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "publicKey": self.public_key,
            "signature": self.signature,
            "signedAt": self.signed_at,
            "nonce": self.nonce,
        }


def build_connect_params(
    *,
    client: ClientInfo,
    device: DeviceProof,
    caps: list[str],
    commands: list[str],
    permissions: dict[str, bool],
    locale: str,
    token: str | None = None,
    role: str = "node",
    scopes: list[str] | None = None,
) -> dict:
    """Assemble the ``params`` object of the ``connect`` request."""
    auth: dict[str, str] = {}
    if token:
        auth["token"] = token
    return {
        "minProtocol": PROTOCOL_VERSION,
        "maxProtocol": PROTOCOL_VERSION,
        "client": client.to_dict(),
        "role": role,
        "scopes": list(scopes or []),
        "caps": list(caps),
        "commands": list(commands),
        "permissions": dict(permissions),
        "auth": auth,
        "locale": locale,
        "userAgent": f"{client.id}/{client.version}",
        "device": device.to_dict(),
    }
