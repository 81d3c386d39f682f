"""Attached device discovery through the usbmux listing."""

import asyncio
import json
from typing import Any

from ..common.exceptions import DeviceQueryError, GeoGhostError, ToolNotInstalledError
from ..common.logging import get_logger
from ..common.utils import first_present
from ..core import commands
from ..core.runner import CommandRunner
from ..models import DeviceIdentity, DeviceStatus
from ..state import CoreState

logger = get_logger(__name__)

ID_KEYS = ("UniqueDeviceID", "Identifier", "UDID", "udid", "SerialNumber")
NAME_KEYS = ("DeviceName", "Name", "ProductType")
VERSION_KEYS = ("ProductVersion", "iOSVersion", "OSVersion")
CONNECTION_KEYS = ("ConnectionType", "connection_type")


def normalize_device(entry: dict[str, Any]) -> DeviceIdentity:
    """Map one vendor listing entry onto DeviceIdentity"""
    return DeviceIdentity(
        id=str(first_present(entry, ID_KEYS) or ""),
        display_name=str(first_present(entry, NAME_KEYS) or "iOS Device"),
        os_version=str(first_present(entry, VERSION_KEYS) or ""),
        connection_kind=str(first_present(entry, CONNECTION_KEYS) or "USB"),
    )


def parse_listing(output: str) -> list[DeviceIdentity]:
    """Parse usbmux list JSON output.

    Raises:
        ValueError: If the output is not a JSON list or object
    """
    data = json.loads(output)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"Unexpected device listing type: {type(data).__name__}")
    return [normalize_device(entry) for entry in data if isinstance(entry, dict)]


class DeviceLocator:
    """Lists attached devices and caches the active device identifier"""

    def __init__(self, runner: CommandRunner, state: CoreState):
        self.runner = runner
        self.state = state

    @property
    def cached_identifier(self) -> str | None:
        return self.state.identifier

    async def list_devices(self) -> list[DeviceIdentity]:
        """Query attached devices.

        Returns:
            Normalized devices, possibly a single synthesized entry when the
            tool printed something that is not JSON

        Raises:
            ToolNotInstalledError: If the tool cannot be resolved
            DeviceQueryError: If neither listing variant succeeds
        """
        tool = self.runner.resolve_tool()
        devices = await self._query(tool)

        if not devices:
            if self.state.identifier is not None:
                logger.info("No devices attached, clearing cached identifier")
            self.state.identifier = None
        elif devices[0].id:
            # First entry wins; multiple attached devices are not disambiguated
            self.state.identifier = devices[0].id

        logger.debug("Device listing", count=len(devices), identifier=self.state.identifier)
        return devices

    async def _query(self, tool: str) -> list[DeviceIdentity]:
        try:
            output = await self.runner.run(commands.list_devices_argv(tool, json_output=True))
            return parse_listing(output)
        except (GeoGhostError, ValueError) as e:
            logger.debug("JSON device listing failed, retrying plain listing", error=str(e))

        try:
            output = await self.runner.run(commands.list_devices_argv(tool, json_output=False))
        except GeoGhostError as e:
            raise DeviceQueryError(f"Failed to list devices: {e}") from e

        try:
            return parse_listing(output)
        except ValueError:
            if not output:
                return []
            logger.info("Unparseable device listing, assuming one device", output=output[:200])
            return [DeviceIdentity()]

    async def device_status(self) -> DeviceStatus:
        """Connection status of the first attached device"""
        try:
            # The probe blocks; keep the loop free for timers and polls
            await asyncio.to_thread(self.runner.probe)
        except ToolNotInstalledError as e:
            return DeviceStatus(error=str(e))

        try:
            devices = await self.list_devices()
        except GeoGhostError as e:
            logger.error("Device status query failed", error=str(e))
            return DeviceStatus(error=str(e))

        if not devices:
            return DeviceStatus()

        device = devices[0]
        return DeviceStatus(
            connected=True,
            name=device.display_name,
            os_version=device.os_version,
            connection_kind=device.connection_kind,
            developer_mode_enabled=True,
        )
