"""Asyncio driver that feeds a ProcessWatch from a live subprocess."""

import asyncio
import codecs
from collections.abc import Callable, Sequence
from types import TracebackType

from ..common.exceptions import ProcessError
from ..common.logging import get_logger
from .watch import STDERR, STDOUT, ProcessWatch, WatchState

logger = get_logger(__name__)

_READ_SIZE = 4096
_DRAIN_TIMEOUT = 1.0


class WatchedProcess:
    """Manages one external process whose events drive a ProcessWatch"""

    def __init__(
        self,
        argv: Sequence[str],
        watch: ProcessWatch,
        env: dict[str, str] | None = None,
        stdin_data: bytes | None = None,
        label: str = "",
    ):
        """Initialize the watched process.

        Args:
            argv: Command and arguments
            watch: State machine receiving output, exit and timer events
            env: Process environment
            stdin_data: Written once to stdin, which is then closed
            label: Short name used in log events
        """
        self.argv = list(argv)
        self.watch = watch
        self.env = env
        self.label = label or (self.argv[0] if self.argv else "process")
        self._stdin_data = stdin_data
        self._process: asyncio.subprocess.Process | None = None
        self._resolved = asyncio.Event()
        self._exited = asyncio.Event()
        self._pumps: list[asyncio.Task[None]] = []
        self._reaper: asyncio.Task[None] | None = None
        self._exit_callbacks: list[Callable[["WatchedProcess"], None]] = []

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def resolved(self) -> asyncio.Event:
        """Set once the watch reached a terminal state"""
        return self._resolved

    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def add_exit_callback(self, callback: Callable[["WatchedProcess"], None]) -> None:
        """Register a callback invoked once the process has exited"""
        if self._exited.is_set():
            callback(self)
        else:
            self._exit_callbacks.append(callback)

    async def start(self) -> None:
        """Spawn the process and begin pumping its output into the watch.

        Raises:
            ProcessError: If the process cannot be spawned
        """
        if self._process is not None:
            raise ProcessError(f"{self.label} already started")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE if self._stdin_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            logger.error("Failed to start process", label=self.label, error=str(e))
            raise ProcessError(f"Failed to start {self.label}: {e}") from e

        logger.debug("Process started", label=self.label, pid=self._process.pid)

        if self._stdin_data is not None:
            await self._hand_off_stdin(self._stdin_data)
            self._stdin_data = None

        self._pumps = [
            asyncio.create_task(self._pump(self._process.stdout, STDOUT)),
            asyncio.create_task(self._pump(self._process.stderr, STDERR)),
        ]
        self._reaper = asyncio.create_task(self._reap())

    async def _hand_off_stdin(self, data: bytes) -> None:
        stdin = self._process.stdin if self._process else None
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Process closed stdin early", label=self.label, error=str(e))
        finally:
            stdin.close()

    async def _pump(self, stream: asyncio.StreamReader | None, name: str) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_SIZE)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._feed(self.watch.on_output, name, tail)
                return
            self._feed(self.watch.on_output, name, decoder.decode(chunk))

    async def _reap(self) -> None:
        assert self._process is not None
        # Drain output first so the exit event sees every chunk
        await asyncio.gather(*self._pumps, return_exceptions=True)
        returncode = await self._process.wait()
        logger.debug("Process exited", label=self.label, pid=self._process.pid, returncode=returncode)
        self._feed(self.watch.on_exit, returncode)
        self._exited.set()

        callbacks, self._exit_callbacks = self._exit_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error("Exit callback failed", label=self.label, error=str(e))

    def _feed(self, event: Callable[..., WatchState], *args: object) -> None:
        event(*args)
        if self.watch.finished:
            self._resolved.set()

    async def wait(self, timeout: float | None = None) -> WatchState:
        """Wait until the watch reaches a terminal state.

        Args:
            timeout: Seconds until a timer event is fed to the watch; None for no timer

        Returns:
            Terminal watch state
        """
        if self._process is None:
            raise ProcessError(f"{self.label} was never started")

        timer: asyncio.TimerHandle | None = None
        if timeout is not None and not self._resolved.is_set():
            loop = asyncio.get_running_loop()
            timer = loop.call_later(timeout, self._feed, self.watch.on_timer)
        try:
            await self._resolved.wait()
        finally:
            if timer is not None:
                timer.cancel()
        return self.watch.state

    async def stop(self, grace: float = 5.0) -> bool:
        """Terminate the process, force killing it after the grace period.

        Returns:
            True if the process is no longer running
        """
        if self._process is None:
            return True

        if self._process.returncode is None:
            logger.debug("Stopping process", label=self.label, pid=self._process.pid)
            try:
                self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning("Process did not terminate gracefully, force killing", label=self.label, pid=self._process.pid)
                    self._process.kill()
                    await self._process.wait()
            except ProcessLookupError:
                pass
            except Exception as e:
                logger.error("Failed to stop process", label=self.label, error=str(e))
                return False

        await self._finish_reaper()
        return True

    async def _finish_reaper(self) -> None:
        if self._reaper is None:
            return
        # A grandchild holding the pipes open must not block shutdown
        try:
            await asyncio.wait_for(asyncio.shield(self._reaper), timeout=_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            for task in self._pumps:
                task.cancel()
            await asyncio.gather(self._reaper, return_exceptions=True)

    async def __aenter__(self) -> "WatchedProcess":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
