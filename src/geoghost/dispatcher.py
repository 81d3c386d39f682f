"""Location set/clear through an ordered chain of invocation strategies.

set_location tries, strictly one after another:

    cached-tunnel      the supervisor's current RSD endpoint
    discovered-tunnel  an endpoint reported by a running tunneld
    identifier-tunnel  --tunnel <udid>, resolved by tunneld itself
    new-tunnel         a freshly started start-tunnel process
    legacy             no tunnel arguments, for devices that need none

Each attempt runs as a persistent process. It succeeds if it is still alive
after the settle window with no error on stderr; only legacy invocations may
also succeed by exiting 0 inside the window, since they are short-lived.
"""

import re

from .common.exceptions import DispatchExhaustedError, GeoGhostError
from .common.logging import get_logger
from .config import GeoGhostConfig
from .core import commands
from .core.process import WatchedProcess
from .core.runner import CommandRunner
from .core.watch import ProcessWatch, WatchState
from .device.locator import DeviceLocator
from .models import (
    CommandStrategy,
    LocationResult,
    SpoofSession,
    TunnelEndpoint,
    TunnelResult,
    TunnelStatusResult,
)
from .state import CoreState
from .tunnel.discovery import TunnelDiscovery
from .tunnel.supervisor import TunnelSupervisor

logger = get_logger(__name__)

CACHED_TUNNEL = "cached-tunnel"
DISCOVERED_TUNNEL = "discovered-tunnel"
IDENTIFIER_TUNNEL = "identifier-tunnel"
NEW_TUNNEL = "new-tunnel"
LEGACY = "legacy"

SESSION_ERROR_PATTERN = re.compile(
    r"traceback|exception|error|no device|not connected|connection refused|"
    r"device is not paired|invalid service",
    re.IGNORECASE,
)

Coordinates = tuple[float, float]


class LocationCommandDispatcher:
    """Runs location commands and supervises the active spoof session"""

    def __init__(
        self,
        config: GeoGhostConfig,
        runner: CommandRunner,
        state: CoreState,
        locator: DeviceLocator,
        tunnels: TunnelSupervisor,
        discovery: TunnelDiscovery,
    ):
        self.config = config
        self.runner = runner
        self.state = state
        self.locator = locator
        self.tunnels = tunnels
        self.discovery = discovery

    @property
    def session(self) -> SpoofSession | None:
        return self.state.session

    async def end_session(self) -> bool:
        """Terminate the active spoof session.

        Returns:
            True if a live session process was terminated
        """
        session = self.state.session
        self.state.session = None
        if session is None:
            return False

        handle: WatchedProcess = session.process
        was_running = handle.is_running()
        await handle.stop(self.config.stop_grace)
        logger.info("Spoof session ended", method=session.strategy, pid=handle.pid)
        return was_running

    async def _attempt(
        self,
        method: str,
        argv: list[str],
        accept_clean_exit: bool = False,
    ) -> str | None:
        """Launch one strategy and wait out the settle window.

        Returns:
            None on success, otherwise the failure reason
        """
        await self.end_session()

        watch = ProcessWatch(
            error_pattern=SESSION_ERROR_PATTERN,
            accept_clean_exit=accept_clean_exit,
        )
        watch.begin_settle()
        handle = WatchedProcess(argv, watch, env=self.runner.environment(), label=method)

        try:
            await handle.start()
        except GeoGhostError as e:
            return str(e)

        outcome = await handle.wait(self.config.settle_window)
        if outcome != WatchState.CONFIRMED:
            reason = watch.describe_failure()
            logger.info("Location strategy failed", method=method, reason=reason)
            await handle.stop(self.config.stop_grace)
            return reason

        if handle.is_running():
            # An overlapping call may have installed its session meanwhile
            while self.state.session is not None:
                await self.end_session()
            self.state.session = SpoofSession(process=handle, strategy=method)
        logger.info("Location strategy succeeded", method=method, pid=handle.pid)
        return None

    async def set_location(self, lat: float, lng: float) -> LocationResult:
        """Simulate a location on the device.

        Returns:
            LocationResult with the method that succeeded, or the aggregated error
        """
        tool = self.runner.resolve_tool()
        coordinates: Coordinates = (lat, lng)
        failures: list[tuple[str, str]] = []

        def rsd(endpoint: TunnelEndpoint) -> list[str]:
            return commands.location_argv(tool, "set", CommandStrategy.RSD, coordinates, endpoint=endpoint)

        cached = self.tunnels.endpoint
        if cached is not None:
            reason = await self._attempt(CACHED_TUNNEL, rsd(cached))
            if reason is None:
                return LocationResult(ok=True, method=CACHED_TUNNEL)
            failures.append((CACHED_TUNNEL, reason))

        discovered = await self.discovery.discover()
        if discovered is not None and not discovered.same_address(cached):
            reason = await self._attempt(DISCOVERED_TUNNEL, rsd(discovered))
            if reason is None:
                await self.tunnels.adopt(discovered)
                return LocationResult(ok=True, method=DISCOVERED_TUNNEL)
            failures.append((DISCOVERED_TUNNEL, reason))

        identifier = self.locator.cached_identifier
        if identifier:
            argv = commands.location_argv(
                tool, "set", CommandStrategy.IDENTIFIER, coordinates, identifier=identifier
            )
            reason = await self._attempt(IDENTIFIER_TUNNEL, argv)
            if reason is None:
                return LocationResult(ok=True, method=IDENTIFIER_TUNNEL)
            failures.append((IDENTIFIER_TUNNEL, reason))

        if cached is not None:
            await self.tunnels.invalidate()
        try:
            fresh = await self.tunnels.start()
        except GeoGhostError as e:
            failures.append((NEW_TUNNEL, str(e)))
        else:
            reason = await self._attempt(NEW_TUNNEL, rsd(fresh))
            if reason is None:
                return LocationResult(ok=True, method=NEW_TUNNEL)
            failures.append((NEW_TUNNEL, reason))

        for strategy in commands.LEGACY_STRATEGIES:
            argv = commands.location_argv(tool, "set", strategy, coordinates)
            reason = await self._attempt(LEGACY, argv, accept_clean_exit=True)
            if reason is None:
                return LocationResult(ok=True, method=LEGACY)
            failures.append((f"{LEGACY} ({strategy.value})", reason))

        error = DispatchExhaustedError("set", failures)
        logger.error("All location strategies failed", attempts=len(failures))
        return LocationResult(ok=False, error=str(error))

    async def reset_location(self) -> LocationResult:
        """Stop simulating and restore the device's real location.

        Ending the session is normally enough; an explicit clear is still
        attempted, and its failure is tolerated when a session was ended.
        """
        ended = await self.end_session()
        try:
            tool = self.runner.resolve_tool()
        except GeoGhostError as e:
            if not ended:
                raise
            logger.info("Clear skipped, session already ended", error=str(e))
            return LocationResult(ok=True)
        failures: list[tuple[str, str]] = []

        async def clear(method: str, argv: list[str], timeout: float | None = None) -> bool:
            try:
                await self.runner.run(argv, timeout=timeout)
            except GeoGhostError as e:
                failures.append((method, str(e)))
                return False
            logger.info("Simulated location cleared", method=method)
            return True

        cached = self.tunnels.endpoint
        if cached is not None:
            argv = commands.location_argv(tool, "clear", CommandStrategy.RSD, endpoint=cached)
            if await clear(CACHED_TUNNEL, argv):
                return LocationResult(ok=True)

        discovered = await self.discovery.discover()
        if discovered is not None and not discovered.same_address(cached):
            argv = commands.location_argv(tool, "clear", CommandStrategy.RSD, endpoint=discovered)
            if await clear(DISCOVERED_TUNNEL, argv):
                return LocationResult(ok=True)

        identifier = self.locator.cached_identifier
        if identifier:
            argv = commands.location_argv(tool, "clear", CommandStrategy.IDENTIFIER, identifier=identifier)
            if await clear(IDENTIFIER_TUNNEL, argv, self.config.identifier_command_timeout):
                return LocationResult(ok=True)

        for strategy in commands.LEGACY_STRATEGIES:
            argv = commands.location_argv(tool, "clear", strategy)
            if await clear(f"{LEGACY} ({strategy.value})", argv):
                return LocationResult(ok=True)

        if ended:
            logger.info("Clear command failed, session already ended", attempts=len(failures))
            return LocationResult(ok=True)

        error = DispatchExhaustedError("clear", failures)
        logger.error("All clear strategies failed", attempts=len(failures))
        return LocationResult(ok=False, error=str(error))

    async def start_tunnel(self) -> TunnelResult:
        try:
            endpoint = await self.tunnels.start()
        except GeoGhostError as e:
            return TunnelResult(ok=False, error=str(e))
        return TunnelResult(ok=True, host=endpoint.host, port=endpoint.port)

    def tunnel_status(self) -> TunnelStatusResult:
        return self.tunnels.status()

    async def shutdown(self) -> None:
        await self.end_session()
