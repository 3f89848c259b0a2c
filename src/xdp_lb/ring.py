"""
Hash Ring construction

The fast path hashes each flow onto one of RING_SIZE slots and forwards to the
backend index stored there. Slots are filled by plain modulo placement over the
ascending active set: ring[i] = active[i % k]. Any membership change therefore
remaps most slots, moving established flows; this is the placement the fast
path has always been fed and dispatch behaviour depends on it.
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .config import RING_SIZE
from .pool import BackendPool
from .tables import SharedTables


@dataclass(frozen=True)
class RebuildResult:
    """Outcome of a ring rebuild"""
    active: Tuple[int, ...]
    remapped: int = 0

    @property
    def empty(self) -> bool:
        """No active backends; the ring was left as it was"""
        return not self.active

    def __str__(self):
        if self.empty:
            return "Warning: No active backends!"
        return f"Hash ring rebuilt with {len(self.active)} backends"


def placement(active: Sequence[int], size: int = RING_SIZE) -> List[int]:
    """Ring contents for an ascending, non-empty active set"""
    if not active:
        raise ValueError("placement needs at least one active backend")
    k = len(active)
    return [active[i % k] for i in range(size)]


class RingBuilder:
    """Rewrites the shared hash ring from the backend pool"""

    def __init__(self, tables: SharedTables, pool: BackendPool):
        self.ring = tables.ring
        self.pool = pool
        self.logger = logging.getLogger(__name__)

    def bootstrap(self):
        """Point every slot at backend 0 before any backend is known"""
        for i in range(self.ring.capacity):
            self.ring.set(i, 0)

    def rebuild(self) -> RebuildResult:
        """Recompute every ring slot from the current active set

        All slots are rewritten one at a time in ascending order. Slots not
        yet reached keep their previous backend until their turn comes, so a
        reader may briefly see a backend removed just before the rebuild
        started. The remap count compares against the ring as it was before.
        """
        active = tuple(self.pool.active_indices())
        if not active:
            self.logger.warning("No active backends! Hash ring left unchanged")
            return RebuildResult(active)

        before = self.ring.snapshot()
        remapped = 0
        for i, backend_index in enumerate(placement(active, self.ring.capacity)):
            self.ring.set(i, backend_index)
            if before[i] != backend_index:
                remapped += 1

        self.logger.info(
            f"Hash ring rebuilt with {len(active)} backends ({remapped}/{self.ring.capacity} slots remapped)"
        )
        return RebuildResult(active, remapped)

    def snapshot(self) -> Tuple[int, ...]:
        """Current ring contents"""
        return self.ring.snapshot()
