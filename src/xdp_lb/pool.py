"""
Backend Pool

Fixed-capacity registry of backend servers stored in the shared backends
table. Slot index is the backend's identity for as long as it is active.
"""
import logging
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Iterator, List, Optional

from .config import MAX_BACKENDS
from .errors import InvalidAddressError, InvalidIndexError, NoCapacityError
from .tables import INACTIVE, BackendEntry, SharedTables


@dataclass(frozen=True)
class Backend:
    """An active backend server"""
    slot_index: int
    address: IPv4Address
    port: int = 0

    def __str__(self):
        return f"[{self.slot_index}] {self.address}"


class BackendPool:
    """Backend slots in the shared backends table"""

    def __init__(self, tables: SharedTables):
        self.table = tables.backends
        self.logger = logging.getLogger(__name__)

    def add(self, address: IPv4Address) -> int:
        """Claim the first inactive slot for address and return its index"""
        if int(address) == 0:
            raise InvalidAddressError("Backend address must not be 0.0.0.0")

        for index in range(MAX_BACKENDS):
            if self.table.get(index).active:
                continue

            self.table.set(index, BackendEntry(address=address, port=0, active=True))
            self.logger.info(f"Backend {address} activated in slot {index}")
            return index

        raise NoCapacityError(f"All {MAX_BACKENDS} backend slots are active")

    def remove(self, slot_index: int) -> bool:
        """Deactivate a slot; returns False if it was already inactive"""
        if isinstance(slot_index, bool) or not isinstance(slot_index, int) \
                or not 0 <= slot_index < MAX_BACKENDS:
            raise InvalidIndexError(f"Invalid index: {slot_index!r}")

        entry = self.table.get(slot_index)
        if not entry.active:
            return False

        self.table.set(slot_index, INACTIVE)
        self.logger.info(f"Backend {entry.address} removed from slot {slot_index}")
        return True

    def get(self, slot_index: int) -> Optional[Backend]:
        """Return the backend in slot_index, or None if the slot is inactive"""
        entry = self.table.get(slot_index)
        if not entry.usable:
            return None
        return Backend(slot_index, entry.address, entry.port)

    def list(self) -> Iterator[Backend]:
        """Yield active backends in ascending slot order"""
        for index in range(MAX_BACKENDS):
            backend = self.get(index)
            if backend is not None:
                yield backend

    def active_indices(self) -> List[int]:
        """Ascending slot indices of active backends"""
        return [backend.slot_index for backend in self.list()]

    def active_count(self) -> int:
        return len(self.active_indices())

    def __contains__(self, slot_index):
        return isinstance(slot_index, int) and 0 <= slot_index < MAX_BACKENDS \
            and self.get(slot_index) is not None
