"""Process-wide mutable state shared by the orchestration components."""

from .models import DaemonHandle, SpoofSession, TunnelEndpoint


class CoreState:
    """Caches owned by one GeoGhostContext.

    identifier: UDID of the first device from the latest non-empty listing
    endpoint: current RSD endpoint, self-started or discovered
    daemon: tunneld handle, only when this process started it
    session: the single active spoof session
    """

    def __init__(self) -> None:
        self.identifier: str | None = None
        self.endpoint: TunnelEndpoint | None = None
        self.daemon: DaemonHandle | None = None
        self.session: SpoofSession | None = None

    def snapshot(self) -> dict[str, object]:
        return {
            "identifier": self.identifier,
            "endpoint": f"{self.endpoint.host}:{self.endpoint.port}" if self.endpoint else None,
            "daemon_owned": self.daemon is not None,
            "session": self.session.strategy if self.session else None,
        }
