from __future__ import annotations

import asyncio
import io
import os
from ipaddress import IPv4Address
from pathlib import Path
from typing import AsyncIterator, List

import pytest

from xdp_lb.config import ControlPlaneConfig, RING_SIZE
from xdp_lb.core import ControlPlane, LineReader, run
from xdp_lb.errors import ConfigError, TableAccessError
from xdp_lb.fastpath import SimulatedFastPath
from xdp_lb.tables import RING_TABLE, MemoryStore, SharedTables


class FailingStore(MemoryStore):
    """Store whose writes are rejected, like a bcc map update error."""

    def update(self, index: int, value: bytes) -> None:
        raise TableAccessError(self.name, index, "Could not update table")


class RingFailingFastPath(SimulatedFastPath):
    """Simulated dispatcher whose hash ring cannot be written."""

    attach_calls = 0

    def load(self) -> SharedTables:
        def factory(name: str, capacity: int, value_size: int) -> MemoryStore:
            store = FailingStore if name == RING_TABLE else MemoryStore
            return store(name, capacity, value_size)

        self.tables = SharedTables(factory)
        return self.tables

    def attach(self) -> None:
        self.attach_calls += 1
        super().attach()


def make(config: ControlPlaneConfig, output: List[str], stdin=None) -> ControlPlane:
    return ControlPlane(config, SimulatedFastPath(config), output=output.append, stdin=stdin)


async def wait_for_output(output: List[str], text: str, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not any(text in chunk for chunk in output):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def script(control_plane: ControlPlane, *lines: str, linger: float = 0.0) -> AsyncIterator[str]:
    """Feed command lines, optionally wait, then request shutdown."""
    for line in lines:
        yield line
    if linger:
        await asyncio.sleep(linger)
    control_plane.request_shutdown()


def count(output: List[str], text: str) -> int:
    return sum(text in chunk for chunk in output)


class TestStartup:
    @pytest.mark.asyncio
    async def test_start_seeds_tables(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output)

        await cp.start()
        try:
            assert cp.fast_path.attached
            assert cp.tables.port.get(0) == 8080
            assert cp.ring.snapshot() == (0,) * RING_SIZE
            assert any("=== L4 Load Balancer Started ===" in chunk for chunk in output)
            assert any("Interface: lo | Port: 8080" in chunk for chunk in output)
            assert count(output, "No active backends") == 1
        finally:
            await cp.stop()

    @pytest.mark.asyncio
    async def test_port_prompted(self) -> None:
        output: List[str] = []
        config = ControlPlaneConfig(simulate=True)
        cp = ControlPlane(config, SimulatedFastPath(config), output=output.append,
                          stdin=io.StringIO("9090\n"))

        await cp.start()
        try:
            assert output[0] == "Enter port to load balance (e.g., 8080): "
            assert cp.tables.port.get(0) == 9090
        finally:
            await cp.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["eighty\n", "0\n", ""])
    async def test_bad_or_missing_port_is_fatal(self, text: str) -> None:
        config = ControlPlaneConfig(simulate=True)
        fast_path = SimulatedFastPath(config)
        cp = ControlPlane(config, fast_path, output=lambda text: None, stdin=io.StringIO(text))

        with pytest.raises(ConfigError):
            await cp.start()
        assert not fast_path.attached
        assert fast_path.tables is None
        assert not cp.running

    @pytest.mark.asyncio
    async def test_ring_write_failure_leaves_nothing_attached(self, config: ControlPlaneConfig) -> None:
        fast_path = RingFailingFastPath(config)
        cp = ControlPlane(config, fast_path, output=lambda text: None)

        with pytest.raises(TableAccessError, match="hash_ring"):
            await cp.start()
        assert fast_path.attach_calls == 0
        assert not fast_path.attached
        assert fast_path.tables is None
        assert not cp.running

    def test_run_returns_error_code_on_fatal(self) -> None:
        assert run(ControlPlaneConfig(port=0, simulate=True)) == 1


class TestServe:
    @pytest.mark.asyncio
    async def test_commands_and_shutdown(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output)
        fast_path = cp.fast_path

        await cp.serve_forever(script(cp, "add 10.0.0.1", "add 10.0.0.2", "list", "remove 0", "bogus"))

        text = "\n".join(output)
        assert "Added backend[0]: 10.0.0.1" in text
        assert "Added backend[1]: 10.0.0.2" in text
        assert "[1] 10.0.0.2 (active)" in text
        assert "Removed backend[0]" in text
        assert "Unknown command. Type 'help' for usage." in text
        assert "Shutting down..." in output[-1]

        assert not cp.running
        assert not fast_path.attached
        assert fast_path.tables is None

    @pytest.mark.asyncio
    async def test_periodic_stats(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output)

        await cp.serve_forever(script(cp, linger=0.1))

        # one report at startup plus at least one timer tick
        assert count(output, "--- Connection Stats ---") >= 2

    @pytest.mark.asyncio
    async def test_end_of_input_keeps_running(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output)

        async def no_commands():
            return
            yield

        await cp.start()
        task = asyncio.create_task(cp.run(no_commands()))
        await asyncio.sleep(0.05)
        assert not task.done()

        cp.request_shutdown()
        await asyncio.wait_for(task, timeout=1)
        await cp.stop()

    @pytest.mark.asyncio
    async def test_stats_reflect_dispatch(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output)
        await cp.start()
        try:
            cp.handle_command("add 10.0.0.1")
            for port in range(40000, 40010):
                cp.fast_path.dispatch(IPv4Address("192.168.0.7"), port, 8080)

            output.clear()
            cp.print_stats()
            assert "[0] 10.0.0.1: 10 connections" in output[0]
        finally:
            await cp.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output)
        await cp.start()
        await cp.stop()
        await cp.stop()
        assert count(output, "Shutting down...") == 1


class BrokenStream:
    """Text stream whose reads fail, like a revoked terminal."""

    def readline(self) -> str:
        raise OSError("Input/output error")


class TestLineReader:
    @pytest.mark.asyncio
    async def test_lines_in_order_then_end(self) -> None:
        reader = LineReader(io.StringIO("add 10.0.0.1\nlist\n"))

        assert await reader.readline() == "add 10.0.0.1\n"
        assert await reader.readline() == "list\n"
        assert await reader.readline() is None
        assert await reader.readline() is None

    @pytest.mark.asyncio
    async def test_read_failure_ends_input(self) -> None:
        reader = LineReader(BrokenStream())

        assert [line async for line in reader.lines()] == []

    @pytest.mark.asyncio
    async def test_reads_regular_file(self, tmp_path: Path) -> None:
        path = tmp_path / "commands.txt"
        path.write_text("help\nstats\n")

        with path.open() as stream:
            lines = [line async for line in LineReader(stream).lines()]

        assert lines == ["help\n", "stats\n"]


class TestCommandInput:
    @pytest.mark.asyncio
    async def test_port_and_commands_from_one_pipe(self) -> None:
        read_fd, write_fd = os.pipe()
        with os.fdopen(write_fd, "w") as writer:
            writer.write("8080\nadd 10.0.0.1\nlist\n")

        output: List[str] = []
        with os.fdopen(read_fd) as stdin:
            cp = make(ControlPlaneConfig(simulate=True), output, stdin=stdin)
            task = asyncio.create_task(cp.serve_forever())
            try:
                await wait_for_output(output, "--- Backends ---")
            finally:
                cp.request_shutdown()
                await asyncio.wait_for(task, timeout=2)

        text = "\n".join(output)
        assert cp.port == 8080
        assert "Added backend[0]: 10.0.0.1" in text
        assert "[0] 10.0.0.1 (active)" in text
        assert "Unknown command" not in text

    @pytest.mark.asyncio
    async def test_commands_from_regular_file(self, config: ControlPlaneConfig, tmp_path: Path) -> None:
        path = tmp_path / "commands.txt"
        path.write_text("add 10.0.0.1\nadd 10.0.0.2\nlist\n")

        output: List[str] = []
        with path.open() as stdin:
            cp = make(config, output, stdin=stdin)
            task = asyncio.create_task(cp.serve_forever())
            try:
                await wait_for_output(output, "--- Backends ---")
            finally:
                cp.request_shutdown()
                await asyncio.wait_for(task, timeout=2)

        text = "\n".join(output)
        assert "Added backend[1]: 10.0.0.2" in text
        assert "[1] 10.0.0.2 (active)" in text
        assert "Shutting down..." in output[-1]

    @pytest.mark.asyncio
    async def test_unreadable_input_keeps_serving(self, config: ControlPlaneConfig) -> None:
        output: List[str] = []
        cp = make(config, output, stdin=BrokenStream())

        task = asyncio.create_task(cp.serve_forever())
        await wait_for_output(output, "--- Connection Stats ---")
        await asyncio.sleep(0.05)
        assert not task.done()

        cp.request_shutdown()
        await asyncio.wait_for(task, timeout=2)
        assert not cp.fast_path.attached
