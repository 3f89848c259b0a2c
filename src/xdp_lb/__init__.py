"""
XDP Load Balancer Control Plane Package

This package manages the backend pool and hash ring consumed by a kernel XDP
load balancer, and reports the connection counters it maintains.
"""

# Export main classes for easier importing
from .core import ControlPlane
from .config import ControlPlaneConfig, MAX_BACKENDS, RING_SIZE
from .commands import ControlSurface
from .fastpath import BccFastPath, SimulatedFastPath
from .monitoring import ConnectionStats
from .pool import Backend, BackendPool
from .ring import RingBuilder
from .tables import SharedTables

__version__ = "1.0.0"
__all__ = [
    "ControlPlane",
    "ControlPlaneConfig",
    "ControlSurface",
    "BccFastPath",
    "SimulatedFastPath",
    "ConnectionStats",
    "Backend",
    "BackendPool",
    "RingBuilder",
    "SharedTables",
    "MAX_BACKENDS",
    "RING_SIZE",
]
