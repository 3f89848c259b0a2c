"""
Monitoring Module for the XDP Load Balancer

Reads the per-backend connection counters maintained by the fast path.
"""
import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import List

from .pool import BackendPool
from .tables import SharedTables


@dataclass(frozen=True)
class BackendStats:
    """Connection count for one active backend"""
    slot_index: int
    address: IPv4Address
    connections: int = 0

    def __str__(self):
        return f"[{self.slot_index}] {self.address}: {self.connections} connections"


@dataclass
class StatsReport:
    """Counters for every active backend at one point in time"""
    backends: List[BackendStats] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        """No backend is active"""
        return not self.backends

    @property
    def total(self) -> int:
        return sum(stats.connections for stats in self.backends)


class ConnectionStats:
    """Read-only view over the connection counter table"""

    def __init__(self, tables: SharedTables, pool: BackendPool):
        self.counters = tables.counters
        self.pool = pool
        self.logger = logging.getLogger(__name__)

    def collect(self) -> StatsReport:
        """Snapshot counters for the active backends"""
        report = StatsReport()
        for backend in self.pool.list():
            count = self.counters.get(backend.slot_index) or 0
            report.backends.append(BackendStats(backend.slot_index, backend.address, count))

        self.logger.debug(f"Collected stats for {len(report.backends)} backends, {report.total} connections")
        return report

    def render(self, report: StatsReport = None) -> str:
        """Format a report for the operator"""
        if report is None:
            report = self.collect()

        lines = ["", "--- Connection Stats ---"]
        if report.empty:
            lines.append("No active backends")
        else:
            lines.extend(str(stats) for stats in report.backends)
        lines.append("------------------------")
        return "\n".join(lines)
