"""Custom exceptions for geoghost."""

from collections.abc import Sequence


class GeoGhostError(Exception):
    """Base exception for all geoghost errors."""
    pass


class ToolNotInstalledError(GeoGhostError):
    """Raised when pymobiledevice3 cannot be found or does not run."""

    def __init__(self, tool: str = "pymobiledevice3"):
        self.tool = tool
        super().__init__(f"{tool} not installed. Run: pip3 install {tool}")


class ProcessError(GeoGhostError):
    """Raised when an external process cannot be spawned."""
    pass


class CommandError(GeoGhostError):
    """Raised when an external command exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        argv: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """Raised when an external command does not finish in time."""
    pass


class DeviceQueryError(GeoGhostError):
    """Raised when the device listing cannot be obtained."""
    pass


class TunnelEstablishError(GeoGhostError):
    """Raised when no tunnel variant produced an RSD endpoint."""
    pass


class DaemonStartError(GeoGhostError):
    """Raised when the privileged tunnel daemon fails to come up."""
    pass


class CredentialRejectedError(DaemonStartError):
    """Raised when sudo rejects the supplied password."""

    def __init__(self, message: str = "Incorrect password. Please try again."):
        super().__init__(message)


class DispatchExhaustedError(GeoGhostError):
    """Raised when every location command strategy failed."""

    def __init__(self, action: str, failures: Sequence[tuple[str, str]]):
        self.action = action
        self.failures = list(failures)
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        lines = [f"Could not {self.action} simulated location on the device."]
        for method, reason in self.failures:
            lines.append(f"  {method}: {reason}")
        lines.append(
            "Make sure the device is unlocked, trusted and in Developer Mode, "
            "then start the tunnel daemon manually with: "
            "sudo pymobiledevice3 remote tunneld"
        )
        return "\n".join(lines)
