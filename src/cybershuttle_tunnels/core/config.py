"""Configuration types with environment variable support.

Server settings can be configured via environment variables with the CYBERSHUTTLE_ prefix.
Example: CYBERSHUTTLE_LEASE_TTL_MS=120000 keeps leases live for two minutes.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cybershuttle_tunnels.core.exceptions import ConfigError


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a JSON, YAML or TOML file.

    Args:
        path: Path to the configuration file (.json, .yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix == ".json":
            data = json.loads(content)
        elif path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data


class TransportConfig(BaseModel):
    """Transport options handed to frp."""

    protocol: str = Field(
        default="tcp",
        description="frp transport protocol: 'tcp', 'kcp', 'quic', 'websocket' or 'wss'.",
    )
    bandwidth_limit_mode: str = Field(
        default="client",
        description="Where frp enforces bandwidth limits: 'client' or 'server'.",
    )


class AuthConfig(BaseModel):
    """Authentication against the frp server."""

    method: str = "token"
    token: str = Field(default="", repr=False)


class LogConfig(BaseModel):
    """frp's own log settings."""

    level: str = "info"
    to: str = "console"


class TunnelClientConfig(BaseModel):
    """Client tunnel configuration.

    One agent exposes one local service through one leased remote port.
    """

    agent_id: str
    local_ip: str = "127.0.0.1"
    local_port: int = Field(ge=1, le=65535)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    server_addr: str
    server_port: int = Field(default=7000, ge=1, le=65535)
    server_api: str = Field(
        description="Base URL of the lease service, e.g. http://tunnels.example.org:8000.",
    )
    log: LogConfig = Field(default_factory=LogConfig)


def load_client_config(path: str | Path) -> TunnelClientConfig:
    """Load and validate a client tunnel configuration file.

    Raises:
        ConfigError: If the file is missing, unparsable or fails validation
    """
    try:
        raw = load_config_from_file(path)
        return TunnelClientConfig.model_validate(raw)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        raise ConfigError(f"Failed to load client config {path}: {e}") from e


class ServerSettings(BaseSettings):
    """Lease service and tunnel server settings.

    All settings can be overridden via environment variables:
    - CYBERSHUTTLE_API_PORT: Port of the lease HTTP API
    - CYBERSHUTTLE_PORT_MIN / CYBERSHUTTLE_PORT_MAX: Allocatable port range
    - CYBERSHUTTLE_LEASE_TTL_MS: Lease lifetime in milliseconds (0 disables expiry)
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="CYBERSHUTTLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="Bind address of the lease HTTP API.",
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port of the lease HTTP API.",
    )
    port_min: int = Field(
        default=10000,
        ge=1,
        le=65535,
        description="First port of the allocatable range (inclusive).",
    )
    port_max: int = Field(
        default=15000,
        ge=1,
        le=65535,
        description="Last port of the allocatable range (inclusive).",
    )
    lease_ttl_ms: int = Field(
        default=60000,
        ge=0,
        description="Lease lifetime in milliseconds. 0 keeps leases for the process lifetime.",
    )
    sweep_interval: float = Field(
        default=0.0,
        ge=0.0,
        description="Seconds between background purges of expired leases. 0 disables the sweep.",
    )
    probe_host: str = Field(
        default="localhost",
        description="Interface used by the availability probe.",
    )
    frps_binary: str = Field(
        default="frps",
        description="Path or name of the frp server executable.",
    )
    frpc_binary: str = Field(
        default="frpc",
        description="Path or name of the frp client executable.",
    )
    lease_request_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for the client's lease request.",
    )

    @model_validator(mode="after")
    def _check_port_range(self) -> ServerSettings:
        if self.port_min > self.port_max:
            raise ValueError(
                f"port_min ({self.port_min}) must not exceed port_max ({self.port_max})"
            )
        return self

    def to_display_dict(self) -> dict[str, str]:
        """Export current settings as labelled strings for the startup banner."""
        return {
            "Lease API": f"{self.api_host}:{self.api_port}",
            "Port range": f"{self.port_min}-{self.port_max}",
            "Lease TTL": f"{self.lease_ttl_ms}ms" if self.lease_ttl_ms else "never expires",
            "Sweep interval": f"{self.sweep_interval}s" if self.sweep_interval else "disabled",
            "frps binary": self.frps_binary,
        }


_settings: ServerSettings | None = None


def get_settings() -> ServerSettings:
    """Get the global settings instance.

    Returns a cached instance of ServerSettings that reads from environment variables.
    To reload (e.g., in tests), call clear_settings() first.
    """
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def clear_settings() -> None:
    """Clear the cached settings.

    Call this to force reloading of environment variables on next get_settings() call.
    """
    global _settings
    _settings = None
