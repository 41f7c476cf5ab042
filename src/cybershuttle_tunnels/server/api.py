"""Lease service: HTTP front of the port allocator."""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from typing import Any

import structlog
from aiohttp import web

from cybershuttle_tunnels.core.exceptions import MalformedRequestError, NoFreePortError
from cybershuttle_tunnels.leases.allocator import PortAllocator
from cybershuttle_tunnels.observability.metrics import (
    ACTIVE_LEASES,
    ALLOCATION_DURATION,
    LEASE_REQUESTS,
    LEASES_PURGED,
    generate_metrics,
    get_content_type,
)

logger = structlog.get_logger()

RESERVED_MESSAGE = "Port reserved successfully"


def parse_reserve_request(body: bytes) -> str:
    """Extract the agent id from a ``/reserve_port`` request body.

    A JSON ``null`` body or a ``null`` agent_id yields an empty agent id.

    Raises:
        MalformedRequestError: If the body is not a JSON object with a string agent_id
    """
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise MalformedRequestError(f"Undecodable request body: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedRequestError("Request body must be a JSON object")

    agent_id = data.get("agent_id")
    if agent_id is None:
        agent_id = ""
    if not isinstance(agent_id, str):
        raise MalformedRequestError("agent_id must be a string")
    return agent_id


class LeaseService:
    """HTTP API handing out port leases to tunnel agents.

    Every ``POST /reserve_port`` call leases a fresh port, even for an agent
    that already holds one.
    """

    def __init__(
        self,
        allocator: PortAllocator,
        host: str = "0.0.0.0",
        port: int = 8000,
        sweep_interval: float = 0.0,
    ) -> None:
        self.allocator = allocator
        self.host = host
        self.port = port
        self.sweep_interval = sweep_interval
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._sweep_task: asyncio.Task | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/reserve_port", self._handle_reserve_port)
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/leases", self._handle_leases)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self) -> None:
        """Bind the HTTP API and start the optional sweep loop."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        if self.sweep_interval > 0 and self.allocator.expiry_enabled:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

        logger.info(
            "Lease service started",
            host=self.host,
            port=self.port,
            port_min=self.allocator.port_min,
            port_max=self.allocator.port_max,
            lease_ttl_ms=self.allocator.lease_ttl_ms,
        )

    async def stop(self) -> None:
        """Stop the sweep loop and release the HTTP listener."""
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Lease service stopped")

    async def _sweep_loop(self) -> None:
        """Periodically purge expired leases."""
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                purged = await asyncio.to_thread(self.allocator.purge_expired)
                if purged:
                    LEASES_PURGED.inc(purged)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Lease sweep error", error=str(e))

    async def _handle_reserve_port(self, request: web.Request) -> web.Response:
        body = await request.read()
        try:
            agent_id = parse_reserve_request(body)
        except MalformedRequestError as e:
            LEASE_REQUESTS.labels(result="invalid").inc()
            logger.warning("Invalid reservation request", peer=request.remote, error=e.message)
            return web.Response(status=400, text="Invalid request")

        started = time.perf_counter()
        try:
            port = await asyncio.to_thread(self.allocator.allocate, agent_id)
        except NoFreePortError as e:
            LEASE_REQUESTS.labels(result="exhausted").inc()
            logger.error("Port reservation failed", agent_id=agent_id, error=e.message)
            return web.Response(status=500, text="No free ports available")
        finally:
            ALLOCATION_DURATION.observe(time.perf_counter() - started)

        LEASE_REQUESTS.labels(result="reserved").inc()
        return web.json_response(
            {
                "port": port,
                "success": True,
                "message": RESERVED_MESSAGE,
            }
        )

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _handle_leases(self, request: web.Request) -> web.Response:
        """Current lease table with liveness flags."""
        allocator = self.allocator
        leases: list[dict[str, Any]] = []
        for lease in await asyncio.to_thread(allocator.leases):
            info = lease.to_dict()
            info["live"] = allocator.is_live(lease)
            leases.append(info)

        return web.json_response(
            {
                "port_min": allocator.port_min,
                "port_max": allocator.port_max,
                "lease_ttl_ms": allocator.lease_ttl_ms,
                "total_leases": len(leases),
                "live_leases": sum(1 for info in leases if info["live"]),
                "leases": leases,
            }
        )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint."""
        ACTIVE_LEASES.set(await asyncio.to_thread(self.allocator.live_count))
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )
