"""Tests for the client-side tunnel orchestrator."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from cybershuttle_tunnels.client.orchestrator import TunnelOrchestrator, request_port
from cybershuttle_tunnels.core.config import TunnelClientConfig
from cybershuttle_tunnels.core.exceptions import LeaseRequestError


def make_config(**overrides) -> TunnelClientConfig:
    data = {
        "agent_id": "agent-1",
        "local_ip": "127.0.0.1",
        "local_port": 22,
        "transport": {"protocol": "tcp", "bandwidth_limit_mode": "client"},
        "auth": {"method": "token", "token": "secret"},
        "server_addr": "tunnels.example.org",
        "server_port": 7000,
        "server_api": "http://tunnels.example.org:8000",
    }
    data.update(overrides)
    return TunnelClientConfig.model_validate(data)


def lease_transport(status: int = 200, body: object | None = None, text: str | None = None):
    """MockTransport answering /reserve_port and recording requests."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler), seen


class TestRequestPort:
    """Tests for request_port."""

    @pytest.mark.asyncio
    async def test_success(self):
        transport, seen = lease_transport(
            body={"port": 10004, "success": True, "message": "Port reserved successfully"}
        )

        response = await request_port("http://lease:8000/", "agent-1", transport=transport)

        assert response.port == 10004
        assert response.success is True
        assert str(seen[0].url) == "http://lease:8000/reserve_port"
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"agent_id": "agent-1"}

    @pytest.mark.asyncio
    async def test_server_error_status(self):
        transport, _ = lease_transport(status=500, text="No free ports available")

        with pytest.raises(LeaseRequestError) as exc_info:
            await request_port("http://lease:8000", "agent-1", transport=transport)

        assert "500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_success_false(self):
        transport, _ = lease_transport(body={"port": 0, "success": False, "message": "nope"})

        with pytest.raises(LeaseRequestError, match="nope"):
            await request_port("http://lease:8000", "agent-1", transport=transport)

    @pytest.mark.asyncio
    async def test_undecodable_body(self):
        transport, _ = lease_transport(text="<html>")

        with pytest.raises(LeaseRequestError):
            await request_port("http://lease:8000", "agent-1", transport=transport)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(LeaseRequestError):
            await request_port(
                "http://lease:8000", "agent-1", transport=httpx.MockTransport(handler)
            )


class TestTunnelOrchestrator:
    """Tests for TunnelOrchestrator."""

    def test_frpc_config_uses_leased_port(self):
        orchestrator = TunnelOrchestrator(make_config())

        cfg = orchestrator.build_frpc_config(10007)

        assert cfg["serverAddr"] == "tunnels.example.org"
        assert cfg["serverPort"] == 7000
        assert cfg["auth"] == {"method": "token", "token": "secret"}
        assert cfg["transport"] == {"protocol": "tcp"}
        proxy = cfg["proxies"][0]
        assert proxy["name"] == "agent-1"
        assert proxy["type"] == "tcp"
        assert proxy["localIP"] == "127.0.0.1"
        assert proxy["localPort"] == 22
        assert proxy["remotePort"] == 10007
        assert proxy["transport"] == {"bandwidthLimitMode": "client"}

    @pytest.mark.asyncio
    async def test_start_launches_frpc_with_leased_port(self):
        transport, _ = lease_transport(
            body={"port": 10003, "success": True, "message": "Port reserved successfully"}
        )
        orchestrator = TunnelOrchestrator(make_config(), frpc_binary="/opt/frp/frpc", transport=transport)

        with patch("cybershuttle_tunnels.client.orchestrator.FrpProcess") as process_cls:
            process_cls.return_value.start = AsyncMock()
            port = await orchestrator.start()

        assert port == 10003
        assert orchestrator.remote_port == 10003
        args, kwargs = process_cls.call_args
        assert args[0] == "/opt/frp/frpc"
        assert kwargs["config"]["proxies"][0]["remotePort"] == 10003
        process_cls.return_value.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lease_failure_does_not_start_frpc(self):
        transport, _ = lease_transport(status=500, text="No free ports available")
        orchestrator = TunnelOrchestrator(make_config(), transport=transport)

        with patch("cybershuttle_tunnels.client.orchestrator.FrpProcess") as process_cls:
            with pytest.raises(LeaseRequestError):
                await orchestrator.run()

        process_cls.assert_not_called()
        assert orchestrator.remote_port is None

    @pytest.mark.asyncio
    async def test_run_waits_and_stops(self):
        transport, _ = lease_transport(
            body={"port": 10000, "success": True, "message": "Port reserved successfully"}
        )
        orchestrator = TunnelOrchestrator(make_config(), transport=transport)

        with patch("cybershuttle_tunnels.client.orchestrator.FrpProcess") as process_cls:
            process = process_cls.return_value
            process.start = AsyncMock()
            process.wait = AsyncMock(return_value=0)
            process.stop = AsyncMock()

            await orchestrator.run()

        process.wait.assert_awaited_once()
        process.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wait_before_start(self):
        orchestrator = TunnelOrchestrator(make_config())
        with pytest.raises(RuntimeError):
            await orchestrator.wait()
