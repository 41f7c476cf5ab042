"""In-memory lease table keyed by port."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


@dataclass
class Lease:
    """A time-bounded reservation of one port.

    ``agent_id`` is kept for diagnostics only; ports are leased per request,
    not per agent.
    """

    port: int
    reserved_at: int
    agent_id: str = ""

    def age(self, now: int) -> int:
        return now - self.reserved_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "port": self.port,
            "agent_id": self.agent_id,
            "reserved_at": self.reserved_at,
        }


class LeaseTable:
    """Mapping from port to its current lease.

    Not synchronized. The owning allocator holds its lock around every
    read-modify-write sequence.
    """

    def __init__(self) -> None:
        self._leases: dict[int, Lease] = {}

    def __len__(self) -> int:
        return len(self._leases)

    def __contains__(self, port: object) -> bool:
        return port in self._leases

    def get(self, port: int) -> Lease | None:
        return self._leases.get(port)

    def put(self, lease: Lease) -> None:
        self._leases[lease.port] = lease

    def delete(self, port: int) -> Lease | None:
        return self._leases.pop(port, None)

    def values(self) -> list[Lease]:
        """Leases ordered by port."""
        return [self._leases[port] for port in sorted(self._leases)]
