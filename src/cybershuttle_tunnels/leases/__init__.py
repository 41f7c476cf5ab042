"""Port leases."""

from .allocator import (
    DEFAULT_LEASE_TTL_MS,
    DEFAULT_PORT_MAX,
    DEFAULT_PORT_MIN,
    PortAllocator,
)
from .probe import is_port_available
from .table import Lease, LeaseTable, now_ms

__all__ = [
    "DEFAULT_LEASE_TTL_MS",
    "DEFAULT_PORT_MAX",
    "DEFAULT_PORT_MIN",
    "Lease",
    "LeaseTable",
    "PortAllocator",
    "is_port_available",
    "now_ms",
]
