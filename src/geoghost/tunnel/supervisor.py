"""Lifecycle of a self-started start-tunnel process."""

from enum import Enum

from ..common.exceptions import GeoGhostError, TunnelEstablishError
from ..common.logging import get_logger
from ..config import GeoGhostConfig
from ..core import commands
from ..core.process import WatchedProcess
from ..core.runner import CommandRunner
from ..core.watch import ProcessWatch, WatchState
from ..models import TunnelEndpoint, TunnelStatusResult
from ..state import CoreState
from .decoder import decode_rsd_endpoint

logger = get_logger(__name__)

MANUAL_TUNNEL_HINT = (
    "Could not establish a tunnel to the device. Start one manually in a "
    "terminal and keep it running: sudo pymobiledevice3 remote tunneld "
    "(or: sudo pymobiledevice3 lockdown start-tunnel)"
)


class TunnelState(str, Enum):
    """Tunnel supervisor state."""

    IDLE = "idle"
    STARTING = "starting"
    ESTABLISHED = "established"
    FAILED = "failed"


class TunnelSupervisor:
    """Starts start-tunnel processes and tracks the current RSD endpoint"""

    def __init__(self, config: GeoGhostConfig, runner: CommandRunner, state: CoreState):
        self.config = config
        self.runner = runner
        self.state = state
        self.tunnel_state = TunnelState.IDLE
        self._pending: WatchedProcess | None = None

    @property
    def endpoint(self) -> TunnelEndpoint | None:
        endpoint = self.state.endpoint
        if endpoint is not None and endpoint.owned and not endpoint.process.is_running():
            self.state.endpoint = None
            self.tunnel_state = TunnelState.IDLE
            return None
        return endpoint

    def status(self) -> TunnelStatusResult:
        endpoint = self.endpoint
        if endpoint is None:
            return TunnelStatusResult(active=False)
        return TunnelStatusResult(active=True, host=endpoint.host, port=endpoint.port)

    async def start(self) -> TunnelEndpoint:
        """Return the current endpoint, establishing a new tunnel if needed.

        Returns:
            Established endpoint

        Raises:
            ToolNotInstalledError: If pymobiledevice3 cannot be found
            TunnelEstablishError: If every tunnel variant failed
        """
        current = self.endpoint
        if current is not None:
            logger.debug("Tunnel already established", host=current.host, port=current.port)
            return current

        if self._pending is not None:
            logger.info("Terminating unestablished tunnel process", pid=self._pending.pid)
            await self._pending.stop(self.config.stop_grace)
            self._pending = None

        tool = self.runner.resolve_tool()
        failures: list[str] = []
        self.tunnel_state = TunnelState.STARTING

        for name, variant in commands.TUNNEL_VARIANTS:
            handle = WatchedProcess(
                commands.tunnel_argv(tool, variant),
                ProcessWatch(matcher=decode_rsd_endpoint),
                env=self.runner.environment(),
                label=f"{name}-tunnel",
            )
            self._pending = handle
            logger.info("Starting tunnel", variant=name)

            try:
                await handle.start()
            except GeoGhostError as e:
                failures.append(f"{name}: {e}")
                self._pending = None
                continue

            outcome = await handle.wait(self.config.tunnel_timeout)
            if outcome == WatchState.MATCHED:
                host, port = handle.watch.match
                endpoint = TunnelEndpoint(host=host, port=port, process=handle)
                self._pending = None
                self._install(endpoint)
                handle.add_exit_callback(self._on_tunnel_exit)
                logger.info("Tunnel established", variant=name, host=host, port=port)
                return endpoint

            reason = handle.watch.describe_failure()
            logger.warning("Tunnel variant failed", variant=name, reason=reason)
            failures.append(f"{name}: {reason}")
            await handle.stop(self.config.stop_grace)
            self._pending = None

        self.tunnel_state = TunnelState.FAILED
        raise TunnelEstablishError(f"{MANUAL_TUNNEL_HINT}. Attempts: {'; '.join(failures)}")

    async def adopt(self, endpoint: TunnelEndpoint) -> None:
        """Make a discovered endpoint current, stopping a replaced owned tunnel"""
        previous = self.state.endpoint
        if previous is not None and previous.same_address(endpoint):
            return
        self._install(endpoint)
        logger.info("Adopted discovered tunnel", host=endpoint.host, port=endpoint.port)
        if previous is not None and previous.owned:
            await previous.process.stop(self.config.stop_grace)

    def _install(self, endpoint: TunnelEndpoint) -> None:
        self.state.endpoint = endpoint
        self.tunnel_state = TunnelState.ESTABLISHED

    def _on_tunnel_exit(self, handle: WatchedProcess) -> None:
        current = self.state.endpoint
        if current is not None and current.process is handle:
            logger.warning("Tunnel process exited", pid=handle.pid, returncode=handle.returncode)
            self.state.endpoint = None
            self.tunnel_state = TunnelState.IDLE

    async def invalidate(self) -> None:
        """Forget the current endpoint, stopping it if this process owns it"""
        endpoint = self.state.endpoint
        self.state.endpoint = None
        self.tunnel_state = TunnelState.IDLE
        if endpoint is not None and endpoint.owned:
            await endpoint.process.stop(self.config.stop_grace)

    async def shutdown(self) -> None:
        """Terminate every tunnel process this supervisor owns"""
        if self._pending is not None:
            await self._pending.stop(self.config.stop_grace)
            self._pending = None
        await self.invalidate()
