"""Tests for request/response correlation."""

import asyncio

import pytest

from clawdbot_node.correlator import RequestCorrelator
from clawdbot_node.errors import ConnectionLostError, GatewayRequestError
from clawdbot_node.protocol import ErrorShape, Response


class TestRequestCorrelator:
    @pytest.mark.asyncio
    async def test_resolve_success(self):
        correlator = RequestCorrelator()
        entry = correlator.register("chat.send")
        assert entry.id in correlator
        assert correlator.resolve(Response(id=entry.id, ok=True, payload={"x": 1}))
        assert await entry.future == {"x": 1}
        assert correlator.pending == 0

    @pytest.mark.asyncio
    async def test_resolve_failure(self):
        correlator = RequestCorrelator()
        entry = correlator.register("connect")
        correlator.resolve(Response(id=entry.id, ok=False, error=ErrorShape("AUTH", "denied")))
        with pytest.raises(GatewayRequestError) as excinfo:
            await entry.future
        assert excinfo.value.code == "AUTH"
        assert excinfo.value.message == "denied"

    @pytest.mark.asyncio
    async def test_unknown_id_is_dropped(self):
        correlator = RequestCorrelator()
        correlator.register("m")
        assert correlator.resolve(Response(id="nobody", ok=True)) is False
        assert correlator.pending == 1

    @pytest.mark.asyncio
    async def test_second_response_for_same_id_is_dropped(self):
        correlator = RequestCorrelator()
        entry = correlator.register("m")
        assert correlator.resolve(Response(id=entry.id, ok=True, payload={"n": 1}))
        assert not correlator.resolve(Response(id=entry.id, ok=True, payload={"n": 2}))
        assert await entry.future == {"n": 1}

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        correlator = RequestCorrelator()
        correlator.register("m", request_id="a")
        with pytest.raises(ValueError):
            correlator.register("m", request_id="a")

    @pytest.mark.asyncio
    async def test_fail_all(self):
        correlator = RequestCorrelator()
        entries = [correlator.register("m") for _ in range(3)]
        assert correlator.fail_all(ConnectionLostError()) == 3
        assert correlator.pending == 0
        for entry in entries:
            with pytest.raises(ConnectionLostError):
                await entry.future

    @pytest.mark.asyncio
    async def test_fail_all_with_abandoned_futures(self):
        correlator = RequestCorrelator()
        correlator.register("m")
        correlator.fail_all(ConnectionLostError())
        await asyncio.sleep(0)
        assert correlator.pending == 0

    @pytest.mark.asyncio
    async def test_discard_cancels(self):
        correlator = RequestCorrelator()
        entry = correlator.register("m")
        correlator.discard(entry.id)
        assert entry.future.cancelled()
        assert entry.id not in correlator
        correlator.discard(entry.id)
