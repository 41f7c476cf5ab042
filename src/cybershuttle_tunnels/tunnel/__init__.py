"""frp tunnel processes."""

from .frp import FrpProcess, build_frpc_config, write_config

__all__ = [
    "FrpProcess",
    "build_frpc_config",
    "write_config",
]
