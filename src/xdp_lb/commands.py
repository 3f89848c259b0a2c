"""
Operator command handling

One command per line; the first token selects the command. Mutations go
through the backend pool and always finish with a ring rebuild.
"""
import logging
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Callable, Dict, List

from .config import MAX_BACKENDS
from .errors import (InvalidAddressError, InvalidIndexError, NoCapacityError,
                     TableAccessError)
from .monitoring import ConnectionStats
from .pool import BackendPool
from .ring import RingBuilder

HELP_TEXT = "\n".join([
    "Commands:",
    "  add <ip>      - Add a backend server",
    "  remove <idx>  - Remove backend by index",
    "  list          - List all backends",
    "  stats         - Show connection counts",
    "  help          - Show this help",
])

UNKNOWN_COMMAND = "Unknown command. Type 'help' for usage."


@dataclass
class CommandResult:
    """Output of one operator command"""
    output: str = ""
    changed: bool = False
    ok: bool = True

    def __str__(self):
        return self.output


def parse_address(text: str) -> IPv4Address:
    """Validate an operator-supplied backend address"""
    try:
        address = ip_address(text)
    except ValueError:
        raise InvalidAddressError("Invalid IP address") from None

    if isinstance(address, IPv6Address):
        mapped = address.ipv4_mapped
        if mapped is None:
            raise InvalidAddressError("IPv4 only")
        address = mapped

    if int(address) == 0:
        raise InvalidAddressError("Invalid IP address")
    return address


def parse_index(text: str) -> int:
    """Validate an operator-supplied backend index"""
    if not (text.isascii() and text.isdigit()):
        raise InvalidIndexError("Invalid index")
    index = int(text)
    if index >= MAX_BACKENDS:
        raise InvalidIndexError("Invalid index")
    return index


class ControlSurface:
    """Validated operations over the pool, ring and counters"""

    def __init__(self, pool: BackendPool, ring: RingBuilder, stats: ConnectionStats):
        self.pool = pool
        self.ring = ring
        self.stats = stats
        self.logger = logging.getLogger(__name__)

        self.handlers: Dict[str, Callable[[List[str]], CommandResult]] = {
            "add": self.add,
            "remove": self.remove,
            "list": self.list,
            "stats": self.show_stats,
            "help": self.help,
        }

    def execute(self, line: str) -> CommandResult:
        """Run one command line"""
        parts = line.split()
        if not parts:
            return CommandResult()

        handler = self.handlers.get(parts[0])
        if handler is None:
            return CommandResult(UNKNOWN_COMMAND, ok=False)

        try:
            return handler(parts[1:])
        except TableAccessError as e:
            self.logger.error(f"Command {parts[0]!r} aborted: {e}")
            return CommandResult(f"Error: {e}", ok=False)

    def add(self, args: List[str]) -> CommandResult:
        """add <ip>"""
        if not args:
            return CommandResult("Usage: add <ip>", ok=False)

        try:
            address = parse_address(args[0])
            index = self.pool.add(address)
        except (InvalidAddressError, NoCapacityError) as e:
            message = "No empty slots available" if isinstance(e, NoCapacityError) else str(e)
            self.logger.debug(f"add {args[0]!r} rejected: {e}")
            return CommandResult(message, ok=False)

        result = self.ring.rebuild()
        return CommandResult(f"Added backend[{index}]: {address}\n{result}", changed=True)

    def remove(self, args: List[str]) -> CommandResult:
        """remove <index>"""
        if not args:
            return CommandResult("Usage: remove <index>", ok=False)

        try:
            index = parse_index(args[0])
        except InvalidIndexError as e:
            return CommandResult(str(e), ok=False)

        changed = self.pool.remove(index)
        result = self.ring.rebuild()
        return CommandResult(f"Removed backend[{index}]\n{result}", changed=changed)

    def list(self, args: List[str]) -> CommandResult:
        """list"""
        lines = ["", "--- Backends ---"]
        lines.extend(f"{backend} (active)" for backend in self.pool.list())
        lines.append("----------------")
        return CommandResult("\n".join(lines))

    def show_stats(self, args: List[str]) -> CommandResult:
        """stats"""
        return CommandResult(self.stats.render())

    def help(self, args: List[str]) -> CommandResult:
        """help"""
        return CommandResult(HELP_TEXT)
