"""Tests for frame encoding/decoding and typed handshake payloads."""

import json

import pytest

from clawdbot_node.errors import FrameDecodeError
from clawdbot_node.protocol import (
    PROTOCOL_VERSION,
    ClientInfo,
    ConnectChallenge,
    DeviceProof,
    ErrorCode,
    Event,
    HelloOk,
    NodeInvoke,
    Request,
    Response,
    build_connect_params,
    decode_frame,
    encode_frame,
)


class TestEncode:
    def test_request(self):
        frame = json.loads(encode_frame(Request(id="1", method="connect", params={"a": 1})))
        assert frame == {"type": "req", "id": "1", "method": "connect", "params": {"a": 1}}

    def test_new_request_ids_are_unique(self):
        assert Request.new("x").id != Request.new("x").id

    def test_success_response_always_has_payload(self):
        frame = json.loads(encode_frame(Response(id="1", ok=True)))
        assert frame == {"type": "res", "id": "1", "ok": True, "payload": {}}

    def test_failure_response(self):
        frame = json.loads(encode_frame(Response.failure("9", ErrorCode.LOCATION_TIMEOUT, "slow")))
        assert frame["ok"] is False
        assert frame["error"] == {"code": "LOCATION_TIMEOUT", "message": "slow"}
        assert "payload" not in frame

    def test_event_optional_fields(self):
        assert json.loads(encode_frame(Event("tick"))) == {"type": "event", "event": "tick", "payload": None}
        frame = json.loads(encode_frame(Event("chat", {}, seq=3, state_version=7)))
        assert frame["seq"] == 3
        assert frame["stateVersion"] == 7


class TestDecode:
    def test_request(self):
        env = decode_frame('{"type":"req","id":"r","method":"node.invoke","params":{"command":"x"}}')
        assert isinstance(env, Request)
        assert env.params == {"command": "x"}

    def test_request_without_params(self):
        env = decode_frame('{"type":"req","id":"r","method":"m"}')
        assert env.params == {}

    def test_bytes_frame(self):
        env = decode_frame(b'{"type":"event","event":"tick"}')
        assert isinstance(env, Event)

    def test_response_error(self):
        env = decode_frame(json.dumps({
            "type": "res", "id": "1", "ok": False,
            "error": {"code": "AUTH", "message": "bad", "details": {"x": 1}},
        }))
        assert isinstance(env, Response)
        assert env.error.code == "AUTH"
        assert env.error.details == {"x": 1}

    def test_response_error_without_body(self):
        env = decode_frame('{"type":"res","id":"1","ok":false}')
        assert env.error.code == "UNKNOWN"

    def test_non_object_payload_is_wrapped(self):
        env = decode_frame('{"type":"res","id":"1","ok":true,"payload":5}')
        assert env.payload == {"value": 5}

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"type":"nope"}',
        '{"type":"req","method":"m"}',
        '{"type":"req","id":"1","method":"m","params":[]}',
        '{"type":"res","id":"1"}',
        '{"type":"res","ok":true}',
        '{"type":"event"}',
        '{"type":"event","event":"x","seq":"1"}',
        b"\xff\xfe",
    ])
    def test_malformed(self, raw):
        with pytest.raises(FrameDecodeError):
            decode_frame(raw)


class TestPayloads:
    def test_challenge(self):
        challenge = ConnectChallenge.from_payload({"nonce": "abc", "ts": 5})
        assert challenge.nonce == "abc"
        assert challenge.ts == 5

    def test_challenge_requires_nonce(self):
        with pytest.raises(FrameDecodeError):
            ConnectChallenge.from_payload({"ts": 5})
        with pytest.raises(FrameDecodeError):
            ConnectChallenge.from_payload(None)

    def test_hello_ok(self):
        hello = HelloOk.from_payload({
            "type": "hello-ok",
            "protocol": 3,
            "policy": {"tickIntervalMs": 15000},
            "auth": {"deviceToken": "tok", "role": "node", "scopes": ["a"]},
        })
        assert hello.protocol == 3
        assert hello.tick_interval_ms == 15000
        assert hello.device_token == "tok"
        assert hello.role == "node"
        assert hello.scopes == ["a"]

    def test_hello_ok_minimal(self):
        hello = HelloOk.from_payload({"type": "hello-ok"})
        assert hello.tick_interval_ms is None
        assert hello.device_token is None

    def test_hello_ok_ignores_bad_tick(self):
        hello = HelloOk.from_payload({"type": "hello-ok", "policy": {"tickIntervalMs": 0}})
        assert hello.tick_interval_ms is None

    def test_hello_ok_wrong_type(self):
        with pytest.raises(FrameDecodeError):
            HelloOk.from_payload({"type": "hello-nope"})

    def test_node_invoke(self):
        invoke = NodeInvoke.from_params({"command": "camera.snap", "params": {"facing": "front"}})
        assert invoke.command == "camera.snap"
        assert invoke.params == {"facing": "front"}
        assert NodeInvoke.from_params({"command": "x", "params": "junk"}).params == {}

    def test_node_invoke_requires_command(self):
        with pytest.raises(FrameDecodeError):
            NodeInvoke.from_params({"command": ""})


class TestConnectParams:
    def _params(self, token=None):
        return build_connect_params(
            client=ClientInfo(id="clawdbot-node", version="1.0.0", platform="linux"),
            device=DeviceProof(id="dev", public_key="pk", signature="sig", signed_at=1, nonce="n"),
            caps=["camera"],
            commands=["camera.snap"],
            permissions={"camera.capture": True},
            locale="en_US",
            token=token,
        )

    def test_shape(self):
        params = self._params()
        assert params["minProtocol"] == PROTOCOL_VERSION
        assert params["maxProtocol"] == PROTOCOL_VERSION
        assert params["role"] == "node"
        assert params["scopes"] == []
        assert params["client"]["mode"] == "node"
        assert params["userAgent"] == "clawdbot-node/1.0.0"
        assert params["device"] == {
            "id": "dev", "publicKey": "pk", "signature": "sig", "signedAt": 1, "nonce": "n",
        }
        assert params["auth"] == {}

    def test_token_included(self):
        assert self._params(token="t")["auth"] == {"token": "t"}
