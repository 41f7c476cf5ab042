"""Tests for the OS-level availability probe."""

from __future__ import annotations

import socket

import pytest

from cybershuttle_tunnels.core.exceptions import NoFreePortError
from cybershuttle_tunnels.leases.allocator import PortAllocator
from cybershuttle_tunnels.leases.probe import is_port_available


@pytest.fixture
def listening_socket():
    """A socket listening on an ephemeral loopback port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock
    sock.close()


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestIsPortAvailable:
    """Tests for is_port_available."""

    def test_bound_port_is_unavailable(self, listening_socket):
        port = listening_socket.getsockname()[1]
        assert is_port_available(port, host="127.0.0.1") is False

    def test_free_port_is_available(self):
        port = _free_port()
        assert is_port_available(port, host="127.0.0.1") is True

    def test_probe_releases_the_port(self):
        """A successful probe leaves the port bindable."""
        port = _free_port()
        assert is_port_available(port, host="127.0.0.1") is True

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    def test_bind_error_counts_as_unavailable(self):
        assert is_port_available(1, host="203.0.113.1") is False


class TestAllocatorWithRealProbe:
    """Allocator against real sockets."""

    def test_externally_bound_port_is_never_leased(self, listening_socket):
        port = listening_socket.getsockname()[1]
        allocator = PortAllocator(
            port_min=port,
            port_max=port,
            probe=lambda p: is_port_available(p, host="127.0.0.1"),
        )

        with pytest.raises(NoFreePortError):
            allocator.allocate()

        assert allocator.leases() == []
