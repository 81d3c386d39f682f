"""Elevated tunneld start with an interactively supplied password."""

import asyncio
import re

import aiohttp

from ..common.exceptions import (
    CredentialRejectedError,
    DaemonStartError,
    GeoGhostError,
)
from ..common.logging import get_logger
from ..config import GeoGhostConfig
from ..core import commands
from ..core.process import WatchedProcess
from ..core.runner import CommandRunner
from ..core.watch import ProcessWatch, WatchState
from ..models import DaemonCheckResult, DaemonHandle
from ..state import CoreState

logger = get_logger(__name__)

REJECTION_PATTERN = re.compile(r"incorrect password|try again", re.IGNORECASE)


class PrivilegedDaemonController:
    """Starts tunneld through sudo and owns it until shutdown"""

    def __init__(self, config: GeoGhostConfig, runner: CommandRunner, state: CoreState):
        self.config = config
        self.runner = runner
        self.state = state

    async def is_running(self) -> bool:
        """Probe the tunneld HTTP port; any response counts as running"""
        timeout = aiohttp.ClientTimeout(total=self.config.http_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.config.daemon_url) as response:
                    logger.debug("tunneld probe answered", status=response.status)
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug("tunneld probe failed", error=str(e))
            return False

    async def check(self) -> DaemonCheckResult:
        return DaemonCheckResult(needs_credential=not await self.is_running())

    async def start_with_credential(self, secret: str) -> bool:
        """Start tunneld elevated unless it is already running.

        The password is written once to sudo's stdin, which is then closed;
        it never appears in arguments or the environment.

        Args:
            secret: The user's sudo password

        Returns:
            True if the daemon was already running, False if it was started here

        Raises:
            ToolNotInstalledError: If pymobiledevice3 cannot be found
            CredentialRejectedError: If sudo rejected the password
            DaemonStartError: If the daemon exited or did not answer in time
        """
        if await self.is_running():
            logger.info("tunneld already running")
            return True

        tool = self.runner.resolve_tool()
        handle = WatchedProcess(
            commands.tunneld_argv(tool),
            ProcessWatch(error_pattern=REJECTION_PATTERN),
            env=self.runner.environment(),
            stdin_data=(secret + "\n").encode(),
            label="tunneld",
        )
        logger.info("Starting tunneld with elevated privileges")
        await handle.start()

        try:
            await self._await_ready(handle)
        except GeoGhostError:
            await handle.stop(self.config.stop_grace)
            raise

        self.state.daemon = DaemonHandle(started_by_us=True, process=handle)
        handle.add_exit_callback(self._on_daemon_exit)
        logger.info("tunneld started", pid=handle.pid)
        return False

    async def _await_ready(self, handle: WatchedProcess) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.daemon_start_timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                # Rejection or exit pre-empts the poll interval
                await asyncio.wait_for(
                    handle.resolved.wait(),
                    timeout=min(self.config.daemon_poll_interval, remaining),
                )
            except asyncio.TimeoutError:
                pass
            else:
                self._raise_for_outcome(handle)

            if await self.is_running():
                return

        raise DaemonStartError(
            f"tunneld did not start within {self.config.daemon_start_timeout:g}s. "
            "Try running: sudo pymobiledevice3 remote tunneld"
        )

    def _raise_for_outcome(self, handle: WatchedProcess) -> None:
        watch = handle.watch
        if watch.state == WatchState.FAILED and watch.rejection:
            logger.warning("sudo rejected the password")
            raise CredentialRejectedError()
        raise DaemonStartError(f"tunneld exited before becoming ready: {watch.describe_failure()}")

    def _on_daemon_exit(self, handle: WatchedProcess) -> None:
        daemon = self.state.daemon
        if daemon is not None and daemon.process is handle:
            logger.warning("tunneld exited", returncode=handle.returncode)
            self.state.daemon = None

    async def shutdown(self) -> None:
        """Terminate a daemon started by this process"""
        daemon = self.state.daemon
        self.state.daemon = None
        if daemon is None or not daemon.started_by_us or daemon.process is None:
            return

        handle: WatchedProcess = daemon.process
        if handle.is_running() and handle.pid is not None:
            try:
                # Cached sudo credentials; -n never prompts
                await self.runner.run(["sudo", "-n", "kill", "-TERM", str(handle.pid)], timeout=self.config.stop_grace)
            except GeoGhostError as e:
                logger.warning("Elevated termination failed", pid=handle.pid, error=str(e))
        await handle.stop(self.config.stop_grace)
        logger.info("tunneld stopped")
