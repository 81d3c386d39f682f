"""One-shot execution of pymobiledevice3 commands."""

import asyncio
import os
import shutil
import subprocess
from collections.abc import Sequence

from ..common.exceptions import (
    CommandError,
    CommandTimeoutError,
    ProcessError,
    ToolNotInstalledError,
)
from ..common.logging import get_logger
from ..config import GeoGhostConfig

logger = get_logger(__name__)


class CommandRunner:
    """Runs external commands against an environment with an augmented PATH"""

    def __init__(self, config: GeoGhostConfig):
        self.config = config

    def environment(self) -> dict[str, str]:
        """Inherited environment with the known install locations appended to PATH"""
        env = dict(os.environ)
        extra = [os.path.expanduser(path) for path in self.config.extra_search_paths]
        env["PATH"] = os.pathsep.join(filter(None, [env.get("PATH", ""), *extra]))
        return env

    def resolve_tool(self) -> str:
        """Find the absolute path of the tool on the augmented PATH.

        sudo resets PATH, so elevated invocations need the absolute path.

        Raises:
            ToolNotInstalledError: If the tool cannot be found
        """
        path = shutil.which(self.config.tool, path=self.environment()["PATH"])
        if path is None:
            raise ToolNotInstalledError(self.config.tool)
        return path

    def probe(self) -> None:
        """Check synchronously that the tool is installed and runs.

        Raises:
            ToolNotInstalledError: If the tool is missing or fails to run
        """
        try:
            subprocess.run(
                [self.config.tool, "--help"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self.environment(),
                timeout=self.config.probe_timeout,
                check=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Capability probe failed", tool=self.config.tool, error=str(e))
            raise ToolNotInstalledError(self.config.tool) from e

    async def run(self, argv: Sequence[str], timeout: float | None = None) -> str:
        """Run a command to completion.

        Args:
            argv: Command and arguments
            timeout: Seconds before the command is killed (default from config)

        Returns:
            Trimmed standard output

        Raises:
            ProcessError: If the command cannot be spawned
            CommandTimeoutError: If the command does not finish in time
            CommandError: If the command exits non-zero
        """
        timeout = self.config.command_timeout if timeout is None else timeout
        logger.debug("Running command", argv=list(argv), timeout=timeout)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.environment(),
            )
        except OSError as e:
            raise ProcessError(f"Failed to run {argv[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Command timed out", argv=list(argv), timeout=timeout)
            raise CommandTimeoutError(
                f"Command timed out after {timeout:g}s: {' '.join(argv)}", argv=argv
            ) from None

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()

        if process.returncode != 0:
            logger.debug("Command failed", argv=list(argv), returncode=process.returncode)
            raise CommandError(
                err or f"Command exited with code {process.returncode}: {' '.join(argv)}",
                argv=argv,
                returncode=process.returncode,
                stderr=err,
            )

        return out
