"""Supervised frp processes.

frp (``frpc`` / ``frps``) carries the actual tunnel. This module renders its
YAML configuration, launches the executable and relays its output to the
structured log. Anything frp reports as a failure surfaces as
``UpstreamTunnelError``.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
import yaml

from cybershuttle_tunnels.core.config import TunnelClientConfig
from cybershuttle_tunnels.core.exceptions import UpstreamTunnelError

logger = structlog.get_logger()


def build_frpc_config(config: TunnelClientConfig, remote_port: int) -> dict[str, Any]:
    """Translate a client tunnel config into frpc's configuration schema.

    The agent gets a single TCP proxy whose ``remotePort`` is the leased port.
    """
    return {
        "serverAddr": config.server_addr,
        "serverPort": config.server_port,
        "auth": {
            "method": config.auth.method,
            "token": config.auth.token,
        },
        "transport": {
            "protocol": config.transport.protocol,
        },
        "log": {
            "to": config.log.to,
            "level": config.log.level,
        },
        "proxies": [
            {
                "name": config.agent_id,
                "type": "tcp",
                "localIP": config.local_ip,
                "localPort": config.local_port,
                "remotePort": remote_port,
                "transport": {
                    "bandwidthLimitMode": config.transport.bandwidth_limit_mode,
                },
            }
        ],
    }


def write_config(config: dict[str, Any], prefix: str = "frp-") -> Path:
    """Write an frp config to a private temporary YAML file."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".yaml")
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        yaml.safe_dump(config, f, sort_keys=False)
    return Path(name)


class FrpProcess:
    """One running frpc or frps executable.

    Args:
        binary: Executable name or path (``frpc`` / ``frps``)
        config: Rendered configuration, written to a temp file on start
        config_path: Existing config file, used when ``config`` is None
        name: Label used in log events
    """

    def __init__(
        self,
        binary: str,
        config: dict[str, Any] | None = None,
        config_path: str | Path | None = None,
        name: str | None = None,
    ) -> None:
        self.binary = binary
        self.config = config
        self.config_path = Path(config_path) if config_path else None
        self.name = name or Path(binary).name
        self._process: asyncio.subprocess.Process | None = None
        self._output_task: asyncio.Task | None = None
        self._temp_config: Path | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def command(self) -> list[str]:
        args = [self.binary]
        path = self._temp_config or self.config_path
        if path is not None:
            args += ["-c", str(path)]
        return args

    async def start(self) -> None:
        """Launch the executable.

        Raises:
            UpstreamTunnelError: If the executable cannot be started
        """
        if self.running:
            raise UpstreamTunnelError(f"{self.name} is already running")

        if self.config is not None:
            self._temp_config = await asyncio.to_thread(write_config, self.config, f"{self.name}-")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            self._remove_temp_config()
            raise UpstreamTunnelError(f"Failed to start {self.name} ({self.binary}): {e}") from e

        self._output_task = asyncio.create_task(self._relay_output())
        logger.info("frp process started", name=self.name, pid=self._process.pid)

    async def _relay_output(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        async for raw in self._process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.info(line, source=self.name)

    async def wait(self) -> int:
        """Block until the process exits.

        Raises:
            UpstreamTunnelError: If the process exits with a non-zero status
        """
        if self._process is None:
            raise UpstreamTunnelError(f"{self.name} has not been started")

        try:
            returncode = await self._process.wait()
            if self._output_task:
                await self._output_task
        finally:
            self._remove_temp_config()

        if returncode != 0:
            raise UpstreamTunnelError(
                f"{self.name} exited with status {returncode}", returncode=returncode
            )
        logger.info("frp process exited", name=self.name)
        return returncode

    async def stop(self, timeout: float = 5.0) -> None:
        """Terminate the process, killing it if it does not exit in time."""
        process = self._process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout)
            except TimeoutError:
                logger.warning("frp process did not terminate, killing", name=self.name)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if self._output_task:
            self._output_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._output_task
            self._output_task = None

        self._remove_temp_config()

    def _remove_temp_config(self) -> None:
        if self._temp_config is not None:
            with contextlib.suppress(FileNotFoundError):
                self._temp_config.unlink()
            self._temp_config = None
