"""Port allocator handing out leased, currently-bindable ports.

Ports are scanned in ascending order. A port is handed out when it has no
live lease in the table and the availability probe can bind it; the new
lease is recorded before the port is returned. Expired leases are dropped
when a scan reaches them.

Example:
    allocator = PortAllocator(port_min=10000, port_max=15000)
    port = allocator.allocate(agent_id="agent-1")
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from cybershuttle_tunnels.core.exceptions import NoFreePortError
from cybershuttle_tunnels.leases.probe import is_port_available
from cybershuttle_tunnels.leases.table import Lease, LeaseTable, now_ms

logger = structlog.get_logger()

DEFAULT_PORT_MIN = 10000
DEFAULT_PORT_MAX = 15000
DEFAULT_LEASE_TTL_MS = 60000


class PortAllocator:
    """Thread-safe allocator owning its lease table and port range.

    Args:
        port_min: First allocatable port (inclusive)
        port_max: Last allocatable port (inclusive)
        lease_ttl_ms: Lease lifetime in milliseconds; 0 means leases never expire
        probe: Callable deciding whether a port can be bound right now
        clock: Callable returning the current time in milliseconds
    """

    def __init__(
        self,
        port_min: int = DEFAULT_PORT_MIN,
        port_max: int = DEFAULT_PORT_MAX,
        lease_ttl_ms: int = DEFAULT_LEASE_TTL_MS,
        probe: Callable[[int], bool] = is_port_available,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        _check_range(port_min, port_max)
        if lease_ttl_ms < 0:
            raise ValueError(f"lease_ttl_ms must be >= 0, got {lease_ttl_ms}")

        self.port_min = port_min
        self.port_max = port_max
        self.lease_ttl_ms = lease_ttl_ms
        self._probe = probe
        self._clock = clock
        self._table = LeaseTable()
        self._lock = threading.Lock()

    @property
    def expiry_enabled(self) -> bool:
        return self.lease_ttl_ms > 0

    def is_live(self, lease: Lease, now: int | None = None) -> bool:
        """Whether ``lease`` still blocks its port at time ``now``."""
        if not self.expiry_enabled:
            return True
        if now is None:
            now = self._clock()
        return lease.age(now) < self.lease_ttl_ms

    def allocate(
        self,
        agent_id: str = "",
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> int:
        """Reserve the lowest free port in the range and return it.

        Args:
            agent_id: Requesting agent, recorded for diagnostics
            range_start: First port to scan, defaults to ``port_min``
            range_end: Last port to scan (inclusive), defaults to ``port_max``

        Raises:
            NoFreePortError: If every port in the range is leased or unavailable
        """
        start = self.port_min if range_start is None else range_start
        end = self.port_max if range_end is None else range_end
        _check_range(start, end)

        with self._lock:
            for port in range(start, end + 1):
                lease = self._table.get(port)
                if lease is not None:
                    now = self._clock()
                    if self.is_live(lease, now):
                        logger.debug("Port is already reserved", port=port)
                        continue
                    logger.debug("Port lease expired", port=port, agent_id=lease.agent_id)
                    self._table.delete(port)

                if not self._probe(port):
                    continue

                self._table.put(Lease(port=port, reserved_at=self._clock(), agent_id=agent_id))
                logger.info("Port reserved", port=port, agent_id=agent_id)
                return port

        logger.warning("No free ports available", range_start=start, range_end=end)
        raise NoFreePortError(start, end)

    def purge_expired(self) -> int:
        """Drop every expired lease. Returns the number removed."""
        if not self.expiry_enabled:
            return 0
        with self._lock:
            now = self._clock()
            expired = [lease.port for lease in self._table.values() if not self.is_live(lease, now)]
            for port in expired:
                self._table.delete(port)
        if expired:
            logger.debug("Purged expired leases", count=len(expired))
        return len(expired)

    def leases(self) -> list[Lease]:
        """Snapshot of the lease table, ordered by port."""
        with self._lock:
            return list(self._table.values())

    def live_count(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for lease in self._table.values() if self.is_live(lease, now))


def _check_range(start: int, end: int) -> None:
    if not (1 <= start <= 65535 and 1 <= end <= 65535):
        raise ValueError(f"Port range {start}-{end} is outside 1-65535")
    if start > end:
        raise ValueError(f"Port range start {start} exceeds end {end}")
