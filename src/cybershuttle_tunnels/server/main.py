"""Tunnel server: lease API alongside frps."""

from __future__ import annotations

import functools
from pathlib import Path

import structlog

from cybershuttle_tunnels.core.config import ServerSettings
from cybershuttle_tunnels.leases.allocator import PortAllocator
from cybershuttle_tunnels.leases.probe import is_port_available
from cybershuttle_tunnels.server.api import LeaseService
from cybershuttle_tunnels.tunnel.frp import FrpProcess

logger = structlog.get_logger()


def create_lease_service(settings: ServerSettings) -> LeaseService:
    """Build a lease service with its own allocator from settings."""
    allocator = PortAllocator(
        port_min=settings.port_min,
        port_max=settings.port_max,
        lease_ttl_ms=settings.lease_ttl_ms,
        probe=functools.partial(is_port_available, host=settings.probe_host),
    )
    return LeaseService(
        allocator,
        host=settings.api_host,
        port=settings.api_port,
        sweep_interval=settings.sweep_interval,
    )


async def run_server(settings: ServerSettings, frps_config: str | Path | None = None) -> None:
    """Serve the lease API and run frps until frps exits.

    Without ``frps_config`` frps starts with its built-in defaults.

    Raises:
        UpstreamTunnelError: If frps cannot start or exits with an error
    """
    service = create_lease_service(settings)
    frps = FrpProcess(settings.frps_binary, config_path=frps_config, name="frps")

    await service.start()
    try:
        await frps.start()
        logger.info("frps started successfully", config=str(frps_config) if frps_config else None)
        await frps.wait()
    finally:
        await frps.stop()
        await service.stop()
