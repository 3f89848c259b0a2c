"""
Exceptions raised by the load balancer control plane
"""
from typing import Optional


class LoadBalancerError(Exception):
    """Base class for all control plane errors"""


class ConfigError(LoadBalancerError):
    """Invalid launch configuration (fatal at startup)"""


class FastPathError(LoadBalancerError):
    """The XDP program could not be loaded, attached or detached (fatal)"""


class InvalidAddressError(LoadBalancerError):
    """Operator supplied something that is not a usable IPv4 address"""


class InvalidIndexError(LoadBalancerError):
    """Backend index is not an integer in [0, MAX_BACKENDS)"""


class NoCapacityError(LoadBalancerError):
    """Every backend slot is already active"""


class TableAccessError(LoadBalancerError):
    """A lookup or update on a shared table failed"""

    def __init__(self, table: str, index: int, reason: Optional[str] = None):
        self.table = table
        self.index = index
        self.reason = reason or "access failed"
        super().__init__(f"{table}[{index}]: {self.reason}")
