"""
Fast-path adapters

The packet dispatcher itself is an XDP program compiled and loaded into the
kernel; the control plane only shares tables with it. BccFastPath loads and
attaches the real program through bcc. SimulatedFastPath keeps the tables in
process and dispatches flows against them the way the XDP program does, for
running without a kernel and for tests.
"""
import logging
import resource
import socket
import struct
from abc import ABC, abstractmethod
from ipaddress import IPv4Address
from typing import Optional

from .config import ControlPlaneConfig, RING_SIZE
from .errors import FastPathError, TableAccessError
from .pool import Backend
from .tables import U32, SharedTables, TableStore

_MASK = 0xFFFFFFFF


class FastPath(ABC):
    """Owner of the shared tables and of the dispatcher's attachment"""

    def __init__(self, config: ControlPlaneConfig):
        self.config = config
        self.tables: Optional[SharedTables] = None
        self.attached = False
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def load(self) -> SharedTables:
        """Load the dispatcher and create its tables"""

    @abstractmethod
    def attach(self):
        """Start dispatching packets on the configured interface"""

    @abstractmethod
    def detach(self):
        """Stop dispatching packets"""

    def close(self):
        """Detach if needed and release the tables"""
        if self.attached:
            self.detach()
        if self.tables is not None:
            self.tables.close()
            self.tables = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def raise_memlock_limit():
    """Lift RLIMIT_MEMLOCK so BPF maps can be created"""
    try:
        resource.setrlimit(resource.RLIMIT_MEMLOCK, (resource.RLIM_INFINITY, resource.RLIM_INFINITY))
    except (OSError, ValueError) as e:
        raise FastPathError(f"Removing memlock: {e}") from e


class BccStore(TableStore):
    """Table store backed by a bcc BPF array map"""

    def __init__(self, name: str, table, capacity: int, value_size: int):
        super().__init__(name, capacity, value_size)
        self._table = table

    def lookup(self, index: int) -> bytes:
        try:
            leaf = self._table[self._table.Key(index)]
        except KeyError:
            raise TableAccessError(self.name, index, "lookup failed") from None
        return bytes(leaf)

    def update(self, index: int, value: bytes):
        try:
            self._table[self._table.Key(index)] = self._table.Leaf.from_buffer_copy(value)
        except Exception as e:
            # bcc reports map update failures as plain Exception
            raise TableAccessError(self.name, index, str(e)) from e


class BccFastPath(FastPath):
    """XDP dispatcher loaded and attached with bcc

    The program source is compiled by bcc, so it must declare its maps with
    bcc's BPF_ARRAY macro (lb_port, backends, hash_ring, conn_count). Maps
    declared libbpf-style in a SEC(".maps") section are not visible to bcc
    and loading fails with "BPF program has no map named ...".
    """

    def __init__(self, config: ControlPlaneConfig):
        super().__init__(config)
        self.bpf = None
        self.fn = None

    def load(self) -> SharedTables:
        raise_memlock_limit()

        try:
            from bcc import BPF
        except ImportError as e:
            raise FastPathError(f"Loading BPF objects: bcc is not available ({e})") from e

        try:
            self.bpf = BPF(src_file=self.config.program_path)
            self.fn = self.bpf.load_func(self.config.program_function, BPF.XDP)
        except Exception as e:
            raise FastPathError(f"Loading BPF objects: {e}") from e

        self.tables = SharedTables(self._store)
        self.logger.info(f"Loaded {self.config.program_function} from {self.config.program_path}")
        return self.tables

    def _store(self, name: str, capacity: int, value_size: int) -> BccStore:
        try:
            table = self.bpf[name]
        except KeyError:
            raise FastPathError(f"BPF program has no map named {name}") from None
        return BccStore(name, table, capacity, value_size)

    def attach(self):
        iface = self.config.interface
        try:
            socket.if_nametoindex(iface)
        except OSError as e:
            raise FastPathError(f"Interface {iface} not found: {e}") from e

        try:
            self.bpf.attach_xdp(dev=iface, fn=self.fn, flags=0)
        except Exception as e:
            raise FastPathError(f"Attaching XDP: {e}") from e

        self.attached = True
        self.logger.info(f"XDP program attached to {iface}")

    def detach(self):
        try:
            self.bpf.remove_xdp(dev=self.config.interface, flags=0)
        except Exception as e:
            raise FastPathError(f"Detaching XDP: {e}") from e
        finally:
            self.attached = False
        self.logger.info(f"XDP program detached from {self.config.interface}")

    def close(self):
        super().close()
        if self.bpf is not None:
            self.bpf.cleanup()
            self.bpf = None


def flow_hash(src_addr: IPv4Address, src_port: int) -> int:
    """The dispatcher's two-word mixing hash over (source address, source port)

    Both words are taken as the program reads them from the packet: raw
    network-order bytes loaded as native integers.
    """
    a = U32.unpack(src_addr.packed)[0]
    b = struct.unpack("=H", struct.pack("!H", src_port))[0]

    h = (a + b) & _MASK
    h = (h + (h << 10)) & _MASK
    h ^= h >> 6
    h = (h + (h << 3)) & _MASK
    h ^= h >> 11
    h = (h + (h << 15)) & _MASK
    return h


class SimulatedFastPath(FastPath):
    """In-process dispatcher over in-memory tables"""

    def load(self) -> SharedTables:
        self.tables = SharedTables()
        self.logger.info("Using simulated fast path (in-memory tables)")
        return self.tables

    def attach(self):
        self.attached = True
        self.logger.info(f"Simulated dispatcher attached to {self.config.interface}")

    def detach(self):
        self.attached = False
        self.logger.info(f"Simulated dispatcher detached from {self.config.interface}")

    def dispatch(self, src_addr: IPv4Address, src_port: int, dst_port: int) -> Optional[Backend]:
        """Pick the backend for one inbound TCP packet, or None to pass it through"""
        if not self.attached:
            return None

        tables = self.tables
        target_port = tables.port.get(0)
        if target_port == 0 or dst_port != target_port:
            return None

        ring_pos = flow_hash(src_addr, src_port) % RING_SIZE
        backend_index = tables.ring.get(ring_pos)

        entry = tables.backends.get(backend_index)
        if not entry.usable:
            return None

        with tables.counter_lock:
            tables.counters.set(backend_index, tables.counters.get(backend_index) + 1)

        return Backend(backend_index, entry.address, entry.port)
