"""Shared pytest fixtures for geoghost tests."""

import asyncio
import itertools
import socket
from collections.abc import Sequence
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from geoghost.config import GeoGhostConfig
from geoghost.context import GeoGhostContext
from geoghost.core.runner import CommandRunner

TOOL = "/usr/local/bin/pymobiledevice3"

_pids = itertools.count(40000)


class FakeStdin:
    """Records what is written to a fake process's stdin"""

    def __init__(self) -> None:
        self.data = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        assert not self.closed, "write after close"
        self.data += data

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process driven by a script.

    Args:
        argv: Command line it was spawned with
        stdout: Bytes available on stdout immediately
        stderr: Bytes available on stderr immediately
        returncode: Exit code; None keeps the process alive until terminated
        exit_after: Delay in seconds before exiting with returncode
        events: (delay, stream, data) chunks written later
    """

    def __init__(
        self,
        argv: Sequence[str],
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int | None = None,
        exit_after: float = 0.0,
        events: Sequence[tuple[float, str, bytes]] = (),
    ):
        loop = asyncio.get_running_loop()
        self.args = list(argv)
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = FakeStdin()
        self.terminated = False
        self.killed = False
        self._done = asyncio.Event()

        if stdout:
            self.stdout.feed_data(stdout)
        if stderr:
            self.stderr.feed_data(stderr)
        for delay, stream, data in events:
            loop.call_later(delay, self._write, stream, data)
        if returncode is not None:
            loop.call_later(exit_after, self.exit, returncode)

    def _write(self, stream: str, data: bytes) -> None:
        if self.returncode is None:
            getattr(self, stream).feed_data(data)

    def exit(self, returncode: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = returncode
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._done.set()

    @property
    def alive(self) -> bool:
        return self.returncode is None

    async def wait(self) -> int:
        await self._done.wait()
        assert self.returncode is not None
        return self.returncode

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:
        stdout = await self.stdout.read()
        stderr = await self.stderr.read()
        await self.wait()
        return stdout, stderr

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


def _contains(argv: Sequence[str], fragment: Sequence[str]) -> bool:
    size = len(fragment)
    return any(list(argv[i:i + size]) == list(fragment) for i in range(len(argv) - size + 1))


class ProcessScript:
    """Replacement for asyncio.create_subprocess_exec.

    Rules are matched in registration order against a contiguous fragment of
    the command line. Unmatched commands exit 1 immediately.
    """

    def __init__(self) -> None:
        self.rules: list[tuple[tuple[str, ...], dict[str, Any]]] = []
        self.spawned: list[FakeProcess] = []
        self.kwargs: list[dict[str, Any]] = []

    def on(self, *fragment: str, **behaviour: Any) -> "ProcessScript":
        self.rules.append((fragment, behaviour))
        return self

    def behaviour_for(self, argv: Sequence[str]) -> dict[str, Any]:
        for fragment, behaviour in self.rules:
            if _contains(argv, fragment):
                return behaviour
        return {"returncode": 1, "stderr": b"unexpected command\n"}

    async def __call__(self, *argv: str, **kwargs: Any) -> FakeProcess:
        process = FakeProcess(argv, **self.behaviour_for(argv))
        self.spawned.append(process)
        self.kwargs.append(kwargs)
        return process

    def matching(self, *fragment: str) -> list[FakeProcess]:
        return [p for p in self.spawned if _contains(p.args, fragment)]

    def alive(self, *fragment: str) -> list[FakeProcess]:
        return [p for p in self.matching(*fragment) if p.alive]


class TunneldStub:
    """Minimal tunneld status endpoint bound to the configured daemon port"""

    def __init__(self, port: int) -> None:
        self.port = port
        self.body: Any = {}
        self.status = 200
        self.requests = 0
        self._server: TestServer | None = None

    async def _handle(self, request: web.Request) -> web.Response:
        self.requests += 1
        return web.json_response(self.body, status=self.status)

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/", self._handle)
        self._server = TestServer(app, host="127.0.0.1", port=self.port)
        await self._server.start_server()

    async def stop(self) -> None:
        if self._server is not None:
            await self._server.close()
            self._server = None


@pytest.fixture
def free_port() -> int:
    """A TCP port with nothing listening on it"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def config(free_port: int) -> GeoGhostConfig:
    """Configuration with timeouts shrunk for tests"""
    return GeoGhostConfig(
        command_timeout=1.0,
        identifier_command_timeout=1.0,
        probe_timeout=1.0,
        tunnel_timeout=0.2,
        settle_window=0.05,
        stop_grace=0.5,
        daemon_port=free_port,
        daemon_start_timeout=1.0,
        daemon_poll_interval=0.05,
        http_timeout=0.5,
    )


@pytest.fixture
def script(monkeypatch: pytest.MonkeyPatch) -> ProcessScript:
    """Scripted subprocess factory patched into asyncio"""
    fake = ProcessScript()
    monkeypatch.setattr("asyncio.create_subprocess_exec", fake)
    return fake


@pytest.fixture
def resolved_tool(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(CommandRunner, "resolve_tool", lambda self: TOOL)
    return TOOL


@pytest_asyncio.fixture
async def context(config: GeoGhostConfig, script: ProcessScript, resolved_tool: str):
    """GeoGhostContext wired to the scripted subprocess factory"""
    ctx = GeoGhostContext(config)
    yield ctx
    await ctx.aclose()


@pytest_asyncio.fixture
async def tunneld(free_port: int):
    """tunneld stub on the daemon port; tests call start() to bring it up"""
    stub = TunneldStub(free_port)
    yield stub
    await stub.stop()
