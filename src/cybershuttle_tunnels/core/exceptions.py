"""Error types raised by the lease allocator, the lease service and the tunnel runners."""

from __future__ import annotations


class TunnelsError(Exception):
    """Base class for all errors raised by cybershuttle-tunnels.

    Attributes:
        message: Human-readable description
        code: Short machine-readable identifier
    """

    code = "TUNNELS_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigError(TunnelsError):
    """Configuration file could not be read or validated."""

    code = "CONFIG_ERROR"


class MalformedRequestError(TunnelsError):
    """A reservation request body could not be decoded."""

    code = "MALFORMED_REQUEST"


class NoFreePortError(TunnelsError):
    """Every port in the scanned range is leased or unavailable."""

    code = "NO_FREE_PORT"

    def __init__(self, range_start: int, range_end: int) -> None:
        super().__init__(f"No free ports available in range {range_start}-{range_end}")
        self.range_start = range_start
        self.range_end = range_end


class LeaseRequestError(TunnelsError):
    """The client could not obtain a port lease from the lease service."""

    code = "LEASE_REQUEST_FAILED"


class UpstreamTunnelError(TunnelsError):
    """The frp process could not be started or exited with an error."""

    code = "UPSTREAM_TUNNEL_ERROR"

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


def format_error_for_user(error: Exception) -> str:
    """Render an exception as a single line suitable for the console."""
    if isinstance(error, TunnelsError):
        return f"[{error.code}] {error.message}"
    return f"{type(error).__name__}: {error}"
