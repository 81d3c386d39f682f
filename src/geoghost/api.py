"""Request/response operations exposed to the UI layer.

Every operation returns plain JSON-compatible data and never raises for
expected failures; errors are reported in the ``error`` field.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from .common.exceptions import GeoGhostError
from .common.logging import get_logger
from .config import GeoGhostConfig
from .context import GeoGhostContext
from .models import DaemonStartResult

logger = get_logger(__name__)


class GeoGhostService:
    """UI-facing facade over a GeoGhostContext"""

    def __init__(self, context: GeoGhostContext | None = None):
        self.context = context or GeoGhostContext()

    async def get_device_status(self) -> dict[str, Any]:
        status = await self.context.locator.device_status()
        return status.model_dump(exclude_none=True)

    async def list_devices(self) -> list[dict[str, Any]]:
        try:
            devices = await self.context.locator.list_devices()
        except GeoGhostError as e:
            logger.error("Device listing failed", error=str(e))
            return []
        return [device.model_dump() for device in devices]

    async def set_location(self, lat: float, lng: float) -> dict[str, Any]:
        """Simulate a location.

        Example:
            >>> await service.set_location(37.7749, -122.4194)
            {'ok': True, 'method': 'legacy'}
        """
        logger.info("Set location requested", lat=lat, lng=lng)
        try:
            result = await self.context.dispatcher.set_location(lat, lng)
        except GeoGhostError as e:
            return {"ok": False, "error": str(e)}
        return result.model_dump(exclude_none=True)

    async def reset_location(self) -> dict[str, Any]:
        logger.info("Reset location requested")
        try:
            result = await self.context.dispatcher.reset_location()
        except GeoGhostError as e:
            return {"ok": False, "error": str(e)}
        return result.model_dump(exclude_none=True, exclude={"method"})

    async def start_tunnel(self) -> dict[str, Any]:
        try:
            result = await self.context.dispatcher.start_tunnel()
        except GeoGhostError as e:
            return {"ok": False, "error": str(e)}
        return result.model_dump(exclude_none=True)

    async def tunnel_status(self) -> dict[str, Any]:
        return self.context.dispatcher.tunnel_status().model_dump(exclude_none=True)

    async def check_daemon(self) -> dict[str, Any]:
        return (await self.context.daemon.check()).model_dump()

    async def start_daemon(self, secret: str) -> dict[str, Any]:
        """Start tunneld with the user's password; the password is never logged"""
        try:
            already_running = await self.context.daemon.start_with_credential(secret)
        except GeoGhostError as e:
            return DaemonStartResult(ok=False, error=str(e)).model_dump(exclude_none=True)
        return DaemonStartResult(ok=True, already_running=already_running).model_dump(exclude_none=True)

    async def shutdown(self) -> None:
        await self.context.aclose()


@asynccontextmanager
async def managed_service(config: GeoGhostConfig | None = None) -> AsyncIterator[GeoGhostService]:
    """Service whose processes are torn down on exit.

    Example:
        >>> async with managed_service() as service:
        ...     await service.set_location(48.8584, 2.2945)
    """
    context = GeoGhostContext(config)
    try:
        yield GeoGhostService(context)
    finally:
        await context.aclose()
