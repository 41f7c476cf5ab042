"""Tests for the server runner (lease API + frps)."""

from __future__ import annotations

import socket
import stat

import pytest

from cybershuttle_tunnels.core.config import ServerSettings
from cybershuttle_tunnels.core.exceptions import UpstreamTunnelError
from cybershuttle_tunnels.server.main import create_lease_service, run_server


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def fake_frps(tmp_path, script: str) -> str:
    path = tmp_path / "frps"
    path.write_text(f"#!/bin/sh\n{script}\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def make_settings(tmp_path, script: str) -> ServerSettings:
    return ServerSettings(
        api_host="127.0.0.1",
        api_port=_free_port(),
        port_min=30000,
        port_max=30010,
        lease_ttl_ms=1000,
        sweep_interval=5.0,
        frps_binary=fake_frps(tmp_path, script),
    )


class TestCreateLeaseService:
    """Tests for create_lease_service."""

    def test_allocator_follows_settings(self, tmp_path):
        settings = make_settings(tmp_path, "exit 0")

        service = create_lease_service(settings)

        assert service.host == "127.0.0.1"
        assert service.port == settings.api_port
        assert service.sweep_interval == 5.0
        assert service.allocator.port_min == 30000
        assert service.allocator.port_max == 30010
        assert service.allocator.lease_ttl_ms == 1000


class TestRunServer:
    """Tests for run_server."""

    @pytest.mark.asyncio
    async def test_returns_when_frps_exits_cleanly(self, tmp_path):
        settings = make_settings(tmp_path, "exit 0")

        await run_server(settings)

        # The lease API port is released again.
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", settings.api_port))

    @pytest.mark.asyncio
    async def test_frps_failure_propagates(self, tmp_path):
        settings = make_settings(tmp_path, "exit 2")

        with pytest.raises(UpstreamTunnelError) as exc_info:
            await run_server(settings)

        assert exc_info.value.returncode == 2

    @pytest.mark.asyncio
    async def test_frps_receives_config_path(self, tmp_path):
        frps_config = tmp_path / "frps.toml"
        frps_config.write_text("bindPort = 7000\n")
        marker = tmp_path / "args.txt"
        settings = make_settings(tmp_path, f'echo "$@" > "{marker}"')

        await run_server(settings, frps_config)

        assert marker.read_text().strip() == f"-c {frps_config}"
