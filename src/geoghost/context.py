"""Explicitly constructed owner of the orchestration core's state."""

import logging
from types import TracebackType

from .config import GeoGhostConfig
from .core.runner import CommandRunner
from .daemon.controller import PrivilegedDaemonController
from .device.locator import DeviceLocator
from .dispatcher import LocationCommandDispatcher
from .state import CoreState
from .tunnel.discovery import TunnelDiscovery
from .tunnel.supervisor import TunnelSupervisor

logger = logging.getLogger(__name__)


class GeoGhostContext:
    """Creates the components around one CoreState and disposes of them"""

    def __init__(self, config: GeoGhostConfig | None = None) -> None:
        self.config = config or GeoGhostConfig()
        self.state = CoreState()
        self.runner = CommandRunner(self.config)
        self.locator = DeviceLocator(self.runner, self.state)
        self.tunnels = TunnelSupervisor(self.config, self.runner, self.state)
        self.discovery = TunnelDiscovery(self.config, self.state)
        self.daemon = PrivilegedDaemonController(self.config, self.runner, self.state)
        self.dispatcher = LocationCommandDispatcher(
            self.config,
            self.runner,
            self.state,
            locator=self.locator,
            tunnels=self.tunnels,
            discovery=self.discovery,
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        """Terminate the spoof session, owned tunnel and owned daemon"""
        if self._closed:
            return
        self._closed = True
        logger.debug(f"Closing context: {self.state.snapshot()}")

        for name, shutdown in (
            ("session", self.dispatcher.shutdown),
            ("tunnel", self.tunnels.shutdown),
            ("daemon", self.daemon.shutdown),
        ):
            try:
                await shutdown()
            except Exception as e:
                logger.error(f"Error shutting down {name}: {e}")

    async def __aenter__(self) -> "GeoGhostContext":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
