"""OS-level port availability probe."""

from __future__ import annotations

import socket

import structlog

logger = structlog.get_logger()


def is_port_available(port: int, host: str = "localhost") -> bool:
    """Check whether a TCP listener could bind ``host:port`` right now.

    The socket is bound, put into listening state and closed again before
    returning. Any ``OSError`` (address in use, permission denied, ...) counts
    as unavailable. The answer is only valid at the moment of the call.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(1)
    except OSError as e:
        logger.debug("Port is not available", port=port, host=host, error=str(e))
        return False
    return True
