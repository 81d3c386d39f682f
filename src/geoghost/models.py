"""Data models shared by the orchestration components.

Long-lived state (DeviceIdentity, TunnelEndpoint) is refreshed by its owning
component. DaemonHandle and SpoofSession wrap live processes and are torn
down explicitly.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CommandStrategy(str, Enum):
    """How simulate-location is invoked."""

    NONE = "none"
    LEGACY = "legacy"
    RSD = "rsd"
    IDENTIFIER = "identifier"


class DeviceIdentity(BaseModel):
    """An attached device, normalized from the usbmux listing."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default="", description="Device UDID, empty when unknown")
    display_name: str = Field(default="iOS Device")
    os_version: str = Field(default="")
    connection_kind: str = Field(default="USB")


class TunnelEndpoint(BaseModel):
    """RSD host/port pair of an established tunnel."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    process: Any | None = Field(default=None, exclude=True, description="Owned tunnel process")

    @property
    def owned(self) -> bool:
        return self.process is not None

    def same_address(self, other: "TunnelEndpoint | None") -> bool:
        return other is not None and (self.host, self.port) == (other.host, other.port)


class TunnelCandidate(BaseModel):
    """One tunnel entry reported by the daemon status endpoint."""

    key: str = ""
    identifier: str | None = None
    address: str
    port: int = Field(ge=1, le=65535)
    name: str | None = None

    def matches(self, identifier: str) -> bool:
        return identifier in (self.key, self.identifier)

    def to_endpoint(self) -> TunnelEndpoint:
        return TunnelEndpoint(host=self.address, port=self.port)


class DaemonHandle(BaseModel):
    """A tunneld process started by this application."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    started_by_us: bool = True
    process: Any | None = None


class SpoofSession(BaseModel):
    """The single process currently keeping a simulated location active."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    process: Any
    strategy: str
    started_at: datetime = Field(default_factory=datetime.now)


class DeviceStatus(BaseModel):
    connected: bool = False
    name: str = ""
    os_version: str = ""
    connection_kind: str = ""
    developer_mode_enabled: bool = False
    error: str | None = None


class LocationResult(BaseModel):
    ok: bool
    method: str | None = None
    error: str | None = None


class TunnelResult(BaseModel):
    ok: bool
    host: str | None = None
    port: int | None = None
    error: str | None = None


class TunnelStatusResult(BaseModel):
    active: bool
    host: str | None = None
    port: int | None = None


class DaemonCheckResult(BaseModel):
    needs_credential: bool


class DaemonStartResult(BaseModel):
    ok: bool
    already_running: bool | None = None
    error: str | None = None
