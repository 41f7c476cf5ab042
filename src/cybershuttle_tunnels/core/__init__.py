"""Core."""

from .config import (
    AuthConfig,
    LogConfig,
    ServerSettings,
    TransportConfig,
    TunnelClientConfig,
    clear_settings,
    get_settings,
    load_client_config,
    load_config_from_file,
)
from .exceptions import (
    ConfigError,
    LeaseRequestError,
    MalformedRequestError,
    NoFreePortError,
    TunnelsError,
    UpstreamTunnelError,
    format_error_for_user,
)

__all__ = [
    "AuthConfig",
    "ConfigError",
    "LeaseRequestError",
    "LogConfig",
    "MalformedRequestError",
    "NoFreePortError",
    "ServerSettings",
    "TransportConfig",
    "TunnelClientConfig",
    "TunnelsError",
    "UpstreamTunnelError",
    "clear_settings",
    "format_error_for_user",
    "get_settings",
    "load_client_config",
    "load_config_from_file",
]
