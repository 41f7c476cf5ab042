"""Tunnel orchestrator: lease a remote port, then hand off to frpc."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from cybershuttle_tunnels.core.config import TunnelClientConfig
from cybershuttle_tunnels.core.exceptions import LeaseRequestError
from cybershuttle_tunnels.tunnel.frp import FrpProcess, build_frpc_config

logger = structlog.get_logger()


@dataclass
class ReservePortResponse:
    """Decoded ``/reserve_port`` response."""

    port: int
    success: bool
    message: str = ""


async def request_port(
    server_api: str,
    agent_id: str,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReservePortResponse:
    """Ask the lease service for a port.

    Args:
        server_api: Base URL of the lease service
        agent_id: Identifier sent for diagnostics
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)

    Raises:
        LeaseRequestError: If the request fails or the service refuses it
    """
    url = f"{server_api.rstrip('/')}/reserve_port"
    logger.info("Requesting port lease", url=url, agent_id=agent_id)

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(url, json={"agent_id": agent_id})
    except httpx.HTTPError as e:
        logger.error("Lease request failed", url=url, error=str(e))
        raise LeaseRequestError(f"Lease request to {url} failed: {e}") from e

    if resp.status_code != 200:
        detail = resp.text.strip()
        logger.error("Lease service refused request", status=resp.status_code, detail=detail)
        raise LeaseRequestError(
            f"Error response from lease service: {resp.status_code} {detail}".rstrip()
        )

    try:
        data = resp.json()
        response = ReservePortResponse(
            port=int(data["port"]),
            success=bool(data["success"]),
            message=str(data.get("message", "")),
        )
    except (ValueError, KeyError, TypeError) as e:
        logger.error("Error decoding lease response", error=str(e))
        raise LeaseRequestError(f"Undecodable lease response: {e}") from e

    if not response.success:
        logger.error("Lease service reported failure", message=response.message)
        raise LeaseRequestError(f"Error from lease service: {response.message}")

    return response


class TunnelOrchestrator:
    """Starts one frpc tunnel on a freshly leased remote port.

    The lease is acquired once, before frpc starts. It is neither renewed nor
    released afterwards; frpc keeps the tunnel for as long as it runs.
    """

    def __init__(
        self,
        config: TunnelClientConfig,
        frpc_binary: str = "frpc",
        lease_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.frpc_binary = frpc_binary
        self.lease_timeout = lease_timeout
        self._transport = transport
        self.remote_port: int | None = None
        self._process: FrpProcess | None = None

    async def reserve_port(self) -> int:
        response = await request_port(
            self.config.server_api,
            self.config.agent_id,
            timeout=self.lease_timeout,
            transport=self._transport,
        )
        logger.info("Available server port", port=response.port, agent_id=self.config.agent_id)
        return response.port

    def build_frpc_config(self, remote_port: int) -> dict:
        return build_frpc_config(self.config, remote_port)

    async def start(self) -> int:
        """Lease a port and launch frpc on it. Returns the remote port.

        Raises:
            LeaseRequestError: If no lease could be obtained; frpc is not started
            UpstreamTunnelError: If frpc cannot be launched
        """
        port = await self.reserve_port()
        self._process = FrpProcess(
            self.frpc_binary,
            config=self.build_frpc_config(port),
            name="frpc",
        )
        await self._process.start()
        self.remote_port = port
        return port

    async def wait(self) -> None:
        if self._process is None:
            raise RuntimeError("Tunnel has not been started")
        await self._process.wait()

    async def stop(self) -> None:
        if self._process is not None:
            await self._process.stop()

    async def run(self) -> None:
        """Start the tunnel and block until frpc exits."""
        await self.start()
        try:
            await self.wait()
        finally:
            await self.stop()
