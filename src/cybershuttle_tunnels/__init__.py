"""cybershuttle-tunnels - frp tunnels with leased remote ports."""

__version__ = "0.1.0"
