"""Common utilities and shared functionality."""

from .exceptions import (
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
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    coerce_port,
    first_present,
    validate_port,
)

__all__ = [
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
    # Utils
    "validate_port",
    "coerce_port",
    "first_present",
    "MIN_PORT",
    "MAX_PORT",
]
