"""Shared fixtures for the control plane tests."""

import pytest

from xdp_lb.commands import ControlSurface
from xdp_lb.config import ControlPlaneConfig
from xdp_lb.fastpath import SimulatedFastPath
from xdp_lb.monitoring import ConnectionStats
from xdp_lb.pool import BackendPool
from xdp_lb.ring import RingBuilder
from xdp_lb.tables import SharedTables


@pytest.fixture
def config() -> ControlPlaneConfig:
    return ControlPlaneConfig(port=8080, stats_interval=0.01, simulate=True)


@pytest.fixture
def tables() -> SharedTables:
    return SharedTables()


@pytest.fixture
def pool(tables: SharedTables) -> BackendPool:
    return BackendPool(tables)


@pytest.fixture
def ring(tables: SharedTables, pool: BackendPool) -> RingBuilder:
    builder = RingBuilder(tables, pool)
    builder.bootstrap()
    return builder


@pytest.fixture
def stats(tables: SharedTables, pool: BackendPool) -> ConnectionStats:
    return ConnectionStats(tables, pool)


@pytest.fixture
def surface(pool: BackendPool, ring: RingBuilder, stats: ConnectionStats) -> ControlSurface:
    return ControlSurface(pool, ring, stats)


@pytest.fixture
def fast_path(config: ControlPlaneConfig):
    """Attached simulated dispatcher with the port cell already set."""
    path = SimulatedFastPath(config)
    tables = path.load()
    tables.port.set(0, config.port)
    path.attach()
    yield path
    path.close()
