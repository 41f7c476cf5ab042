"""Observability."""

from .metrics import (
    ACTIVE_LEASES,
    ALLOCATION_DURATION,
    LEASE_REQUESTS,
    LEASES_PURGED,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "ACTIVE_LEASES",
    "ALLOCATION_DURATION",
    "LEASE_REQUESTS",
    "LEASES_PURGED",
    "generate_metrics",
    "get_content_type",
]
