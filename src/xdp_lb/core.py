"""
XDP Load Balancer Control Plane
"""
import asyncio
import logging
import signal
import sys
import threading
from typing import AsyncIterator, Callable, Optional

from .commands import ControlSurface
from .config import ControlPlaneConfig, DEFAULT_CONFIG, parse_port, validate_port
from .errors import ConfigError, LoadBalancerError, TableAccessError
from .fastpath import BccFastPath, FastPath, SimulatedFastPath
from .monitoring import ConnectionStats
from .pool import BackendPool
from .ring import RingBuilder

PORT_PROMPT = "Enter port to load balance (e.g., 8080): "


class LineReader:
    """Delivers lines from a text stream to the event loop

    A daemon thread does the blocking reads, so pipes, terminals and regular
    files all work, and a read still pending at shutdown never holds up exit.
    The port prompt and the command loop both read through the same reader.
    """

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else sys.stdin
        self.queue: Optional[asyncio.Queue] = None
        self.thread: Optional[threading.Thread] = None
        self.logger = logging.getLogger(__name__)

    def start(self):
        """Begin reading on the running loop (no-op if already started)"""
        if self.thread is not None:
            return
        loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue()
        self.thread = threading.Thread(target=self._pump, args=(loop,), name="xdp-lb-stdin", daemon=True)
        self.thread.start()

    def _pump(self, loop: asyncio.AbstractEventLoop):
        try:
            for line in iter(self.stream.readline, ''):
                if not self._deliver(loop, line):
                    return
        except (OSError, ValueError) as e:
            self.logger.error(f"Reading commands failed: {e}")
        self._deliver(loop, None)

    def _deliver(self, loop: asyncio.AbstractEventLoop, line: Optional[str]) -> bool:
        try:
            loop.call_soon_threadsafe(self.queue.put_nowait, line)
        except RuntimeError:
            # loop already closed
            return False
        return True

    async def readline(self) -> Optional[str]:
        """Next line, or None once the stream has ended"""
        self.start()
        line = await self.queue.get()
        if line is None:
            # keep end-of-input visible to later readers
            self.queue.put_nowait(None)
        return line

    async def lines(self) -> AsyncIterator[str]:
        """Yield lines until the stream ends"""
        while True:
            line = await self.readline()
            if line is None:
                return
            yield line


class ControlPlane:
    """Control plane for the XDP load balancer using asyncio

    A single event loop serves three sources: operator commands, the periodic
    stats timer and the shutdown request raised by SIGINT/SIGTERM. They share
    the fast path's tables entry by entry, with no ordering between them.
    """

    def __init__(self, config: ControlPlaneConfig = None, fast_path: FastPath = None,
                 output: Callable[[str], None] = print, stdin=None):
        self.config = config or DEFAULT_CONFIG
        self.config.validate()
        self.logger = self._setup_logging()
        self.output = output
        self.input = LineReader(stdin)

        if fast_path is None:
            fast_path = SimulatedFastPath(self.config) if self.config.simulate else BccFastPath(self.config)
        self.fast_path = fast_path

        # Components, created once the fast path has provided its tables
        self.tables = None
        self.pool: Optional[BackendPool] = None
        self.ring: Optional[RingBuilder] = None
        self.stats: Optional[ConnectionStats] = None
        self.surface: Optional[ControlSurface] = None

        self.port: Optional[int] = None
        self.running = False
        self.shutdown_event: Optional[asyncio.Event] = None

    def _setup_logging(self):
        """Setup logging configuration"""
        logger = logging.getLogger('xdp_lb')
        logger.setLevel(self.config.log_level.upper())

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        return logger

    async def _read_port(self) -> int:
        """Port from the config, or asked of the operator"""
        if self.config.port is not None:
            return validate_port(self.config.port)

        self.output(PORT_PROMPT)
        text = await self.input.readline()
        if text is None:
            raise ConfigError("No port given")
        return parse_port(text)

    async def start(self):
        """Load and attach the fast path, then seed its tables"""
        if self.running:
            return

        self.tables = self.fast_path.load()
        try:
            self.port = await self._read_port()
            try:
                self.tables.port.set(0, self.port)
            except TableAccessError as e:
                raise ConfigError(f"Setting LB port: {e}") from e

            self.pool = BackendPool(self.tables)
            self.ring = RingBuilder(self.tables, self.pool)
            self.stats = ConnectionStats(self.tables, self.pool)
            self.surface = ControlSurface(self.pool, self.ring, self.stats)

            # the dispatcher must never see an unseeded ring
            self.ring.bootstrap()
            self.fast_path.attach()
        except LoadBalancerError:
            self.fast_path.close()
            raise

        self.output("\n=== L4 Load Balancer Started ===")
        self.output(f"Interface: {self.config.interface} | Port: {self.port}\n")

        self.running = True
        self.shutdown_event = asyncio.Event()

        # Setup signal handlers (Windows compatible)
        try:
            loop = asyncio.get_running_loop()
            if hasattr(loop, 'add_signal_handler'):
                for sig in [signal.SIGINT, signal.SIGTERM]:
                    loop.add_signal_handler(sig, self.request_shutdown)
        except NotImplementedError:
            # Signal handlers not supported on Windows
            pass

        self.logger.info(f"Control plane started on {self.config.interface}, port {self.port}")
        self.output("Commands: add <ip>, remove <idx>, list, stats, help")
        self.print_stats()

    def request_shutdown(self):
        """Ask the running loop to stop"""
        if self.shutdown_event is not None:
            self.shutdown_event.set()

    async def stop(self):
        """Detach the fast path and release the tables"""
        if not self.running:
            return

        self.running = False
        self.output("\nShutting down...")

        try:
            loop = asyncio.get_running_loop()
            if hasattr(loop, 'remove_signal_handler'):
                for sig in [signal.SIGINT, signal.SIGTERM]:
                    loop.remove_signal_handler(sig)
        except NotImplementedError:
            pass

        try:
            self.fast_path.close()
        except LoadBalancerError as e:
            self.logger.error(f"Error releasing fast path: {e}")

        self.logger.info("Control plane stopped")

    def print_stats(self):
        """Print the connection counts of the active backends"""
        try:
            self.output(self.stats.render())
        except TableAccessError as e:
            self.logger.error(f"Reading stats failed: {e}")

    def handle_command(self, line: str):
        """Run one operator command and print its result"""
        result = self.surface.execute(line)
        if result.output:
            self.output(result.output)
        return result

    async def _command_loop(self, commands: AsyncIterator[str]):
        """Execute commands until the input ends"""
        async for line in commands:
            self.handle_command(line)
        self.logger.info("Command input closed")

    async def _stats_loop(self):
        """Print stats every stats_interval seconds"""
        while True:
            await asyncio.sleep(self.config.stats_interval)
            self.print_stats()

    async def run(self, commands: AsyncIterator[str]):
        """Serve commands and stats until shutdown is requested"""
        waiter = asyncio.create_task(self.shutdown_event.wait())
        pending = {
            waiter,
            asyncio.create_task(self._command_loop(commands)),
            asyncio.create_task(self._stats_loop()),
        }

        try:
            while not waiter.done():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is not waiter and task.exception() is not None:
                        raise task.exception()
        finally:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def serve_forever(self, commands: AsyncIterator[str] = None):
        """Start, serve until interrupted, then stop"""
        await self.start()

        try:
            await self.run(commands if commands is not None else self.input.lines())
        finally:
            await self.stop()


async def main(config: ControlPlaneConfig = None):
    """Main function"""
    control_plane = ControlPlane(config)
    await control_plane.serve_forever()


def run(config: ControlPlaneConfig = None) -> int:
    """Run the control plane to completion and return the exit code"""
    try:
        asyncio.run(main(config))
    except LoadBalancerError as e:
        logging.getLogger('xdp_lb').error(str(e))
        return 1
    except KeyboardInterrupt:
        print("\nShutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(run())
