"""Tests for NodeAgent wiring and lifecycle."""

import asyncio

import pytest

from clawdbot_node.config import NodeConfig
from clawdbot_node.gateway import CONNECTING, DISCONNECTED
from clawdbot_node.host import StaticHostState
from clawdbot_node.node import NodeAgent

from conftest import FakeGateway, wait_until


def _agent(tmp_path, gateway, **kwargs):
    config = NodeConfig(gateway_url="ws://gw.test:18789", state_dir=str(tmp_path), locale="en_US", **kwargs)
    return NodeAgent(config, host=StaticHostState(), transport_factory=gateway)


class TestNodeAgent:
    def test_wiring(self, tmp_path):
        agent = _agent(tmp_path, FakeGateway())
        assert agent.gateway.dispatcher is agent.dispatcher
        assert agent.gateway.activity is agent.activity
        assert agent.dispatcher.capabilities is agent.capabilities
        assert (tmp_path / "device_key.pem").exists()

    def test_identity_stable_across_restarts(self, tmp_path):
        first = _agent(tmp_path, FakeGateway())
        second = _agent(tmp_path, FakeGateway())
        assert first.identity.device_id == second.identity.device_id

    @pytest.mark.asyncio
    async def test_start_connects_and_stop_disconnects(self, tmp_path):
        gateway = FakeGateway()
        agent = _agent(tmp_path, gateway)
        runner = asyncio.create_task(agent.start(connect=True))
        await wait_until(lambda: gateway.transports)
        assert agent.gateway.state == CONNECTING

        await agent.stop()
        await asyncio.wait_for(runner, 1)
        assert agent.gateway.state == DISCONNECTED
        assert gateway.last.closed

    @pytest.mark.asyncio
    async def test_auto_connect_off_stays_idle(self, tmp_path):
        gateway = FakeGateway()
        agent = _agent(tmp_path, gateway, auto_connect=False)
        runner = asyncio.create_task(agent.start())
        for _ in range(5):
            await asyncio.sleep(0)
        assert gateway.urls == []
        await agent.stop()
        await asyncio.wait_for(runner, 1)

    @pytest.mark.asyncio
    async def test_headless_defaults(self, tmp_path):
        agent = _agent(tmp_path, FakeGateway())
        response = await agent.dispatcher.dispatch("1", "camera.list", {})
        assert response.payload == {"devices": []}
        response = await agent.dispatcher.dispatch("2", "location.get", {})
        assert response.error.code == "LOCATION_DISABLED"
