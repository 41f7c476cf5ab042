"""Client."""

from .orchestrator import ReservePortResponse, TunnelOrchestrator, request_port

__all__ = [
    "ReservePortResponse",
    "TunnelOrchestrator",
    "request_port",
]
