"""Server."""

from .api import LeaseService, parse_reserve_request
from .main import create_lease_service, run_server

__all__ = [
    "LeaseService",
    "create_lease_service",
    "parse_reserve_request",
    "run_server",
]
