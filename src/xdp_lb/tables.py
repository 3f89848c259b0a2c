"""
Shared tables between the control plane and the XDP fast path

Each table is a fixed-capacity array of fixed-size binary entries addressed by
index, mirroring the BPF array maps the fast path reads. A single entry update
is atomic; there is no transaction spanning more than one entry, in the same
table or across tables.
"""
import logging
import struct
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Any, Callable, List

from .config import MAX_BACKENDS, RING_SIZE
from .errors import TableAccessError

PORT_TABLE = "lb_port"
BACKEND_TABLE = "backends"
RING_TABLE = "hash_ring"
COUNTER_TABLE = "conn_count"

# Native byte order, no padding: matches the fast path's struct layouts
U32 = struct.Struct("=I")
U64 = struct.Struct("=Q")
BACKEND = struct.Struct("=4sHH")  # address (network order), port, active


@dataclass(frozen=True)
class BackendEntry:
    """Decoded value of one backends table entry"""
    address: IPv4Address = IPv4Address(0)
    port: int = 0
    active: bool = False

    @property
    def usable(self) -> bool:
        """Whether the fast path would forward to this entry"""
        return self.active and int(self.address) != 0


INACTIVE = BackendEntry()


class Codec(ABC):
    """Converts between table values and their fixed-size binary form"""

    size: int

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        pass

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        pass


class IntCodec(Codec):
    """Unsigned integer entry (u32 or u64)"""

    def __init__(self, layout: struct.Struct):
        self.layout = layout
        self.size = layout.size

    def encode(self, value: int) -> bytes:
        return self.layout.pack(value)

    def decode(self, data: bytes) -> int:
        return self.layout.unpack(data)[0]


class BackendCodec(Codec):
    """Backend entry: 4-byte address, 2-byte port, 2-byte active flag"""

    size = BACKEND.size

    def encode(self, value: BackendEntry) -> bytes:
        return BACKEND.pack(value.address.packed, value.port, 1 if value.active else 0)

    def decode(self, data: bytes) -> BackendEntry:
        packed, port, active = BACKEND.unpack(data)
        return BackendEntry(IPv4Address(packed), port, active == 1)


class TableStore(ABC):
    """Raw per-entry storage behind a shared table"""

    def __init__(self, name: str, capacity: int, value_size: int):
        self.name = name
        self.capacity = capacity
        self.value_size = value_size

    @abstractmethod
    def lookup(self, index: int) -> bytes:
        """Return the raw value stored at index"""

    @abstractmethod
    def update(self, index: int, value: bytes):
        """Replace the raw value stored at index in one step"""

    def close(self):
        """Release the storage"""


class MemoryStore(TableStore):
    """In-process store; entries are immutable bytes swapped in whole"""

    def __init__(self, name: str, capacity: int, value_size: int):
        super().__init__(name, capacity, value_size)
        self._entries: List[bytes] = [bytes(value_size)] * capacity

    def lookup(self, index: int) -> bytes:
        return self._entries[index]

    def update(self, index: int, value: bytes):
        # Single reference assignment, so readers see the old or the new value
        self._entries[index] = value

    def close(self):
        self._entries = [bytes(self.value_size)] * self.capacity


StoreFactory = Callable[[str, int, int], TableStore]


class SharedTable:
    """Typed, bounds-checked view over a table store"""

    def __init__(self, store: TableStore, codec: Codec):
        if store.value_size != codec.size:
            raise ValueError(
                f"{store.name}: store holds {store.value_size}-byte values, codec needs {codec.size}"
            )
        self.store = store
        self.codec = codec
        self.logger = logging.getLogger(__name__)

    @property
    def name(self) -> str:
        return self.store.name

    @property
    def capacity(self) -> int:
        return self.store.capacity

    def __len__(self):
        return self.store.capacity

    def _check(self, index: int):
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self.capacity:
            raise TableAccessError(self.name, index, f"index out of range [0, {self.capacity})")

    def get(self, index: int):
        """Read and decode one entry"""
        self._check(index)
        data = self.store.lookup(index)
        if len(data) != self.codec.size:
            raise TableAccessError(self.name, index, f"short read ({len(data)} bytes)")
        return self.codec.decode(data)

    def set(self, index: int, value):
        """Encode and write one entry atomically"""
        self._check(index)
        self.store.update(index, self.codec.encode(value))
        self.logger.debug(f"{self.name}[{index}] <- {value}")

    def snapshot(self) -> tuple:
        """Read every entry in index order (per-entry consistency only)"""
        return tuple(self.get(i) for i in range(self.capacity))


class SharedTables:
    """The four tables shared with the fast path"""

    def __init__(self, factory: StoreFactory = MemoryStore):
        u32 = IntCodec(U32)
        u64 = IntCodec(U64)
        backend = BackendCodec()

        self.port = SharedTable(factory(PORT_TABLE, 1, u32.size), u32)
        self.backends = SharedTable(factory(BACKEND_TABLE, MAX_BACKENDS, backend.size), backend)
        self.ring = SharedTable(factory(RING_TABLE, RING_SIZE, u32.size), u32)
        self.counters = SharedTable(factory(COUNTER_TABLE, MAX_BACKENDS, u64.size), u64)

        # Serializes read-modify-write on counters for in-process dispatchers,
        # standing in for the fast path's atomic fetch-and-add
        self.counter_lock = threading.Lock()

    def __iter__(self):
        return iter((self.port, self.backends, self.ring, self.counters))

    def close(self):
        """Release every table"""
        for table in self:
            table.store.close()
