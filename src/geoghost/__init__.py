"""geoghost - simulated device location through pymobiledevice3 tunnels."""

from .api import GeoGhostService, managed_service
from .common.exceptions import (
    CommandError,
    CommandTimeoutError,
    CredentialRejectedError,
    DaemonStartError,
    DeviceQueryError,
    DispatchExhaustedError,
    GeoGhostError,
    ProcessError,
    ToolNotInstalledError,
    TunnelEstablishError,
)
from .common.logging import get_logger, setup_logging
from .config import GeoGhostConfig
from .context import GeoGhostContext
from .dispatcher import LocationCommandDispatcher
from .models import (
    CommandStrategy,
    DeviceIdentity,
    SpoofSession,
    TunnelCandidate,
    TunnelEndpoint,
)

# Setup logging on package initialization
setup_logging(level="INFO")

logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "GeoGhostService",
    "managed_service",
    "GeoGhostContext",
    "GeoGhostConfig",
    "LocationCommandDispatcher",
    # Models
    "CommandStrategy",
    "DeviceIdentity",
    "SpoofSession",
    "TunnelCandidate",
    "TunnelEndpoint",
    # Exceptions
    "GeoGhostError",
    "ToolNotInstalledError",
    "ProcessError",
    "CommandError",
    "CommandTimeoutError",
    "DeviceQueryError",
    "TunnelEstablishError",
    "DaemonStartError",
    "CredentialRejectedError",
    "DispatchExhaustedError",
    # Logging
    "get_logger",
    "setup_logging",
]
