"""Runtime configuration for geoghost."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.utils import validate_port

DEFAULT_SEARCH_PATHS = [
    "/usr/local/bin",
    "/opt/homebrew/bin",
    "~/.local/bin",
    "~/Library/Python/3.11/bin",
    "~/Library/Python/3.12/bin",
    "~/Library/Python/3.13/bin",
]


class GeoGhostConfig(BaseModel):
    """Pydantic configuration for the tunnel and location orchestration core"""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    tool: str = Field(default="pymobiledevice3", min_length=1, description="Device automation executable")
    extra_search_paths: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SEARCH_PATHS),
        description="Directories appended to PATH when locating the tool",
    )

    command_timeout: float = Field(default=15.0, gt=0, le=300.0, description="One-shot command timeout")
    identifier_command_timeout: float = Field(
        default=20.0, gt=0, le=300.0, description="Timeout for --tunnel <udid> commands"
    )
    probe_timeout: float = Field(default=5.0, gt=0, le=60.0, description="Capability probe timeout")

    tunnel_timeout: float = Field(default=10.0, gt=0, le=120.0, description="Per-variant tunnel establishment timeout")
    settle_window: float = Field(default=3.0, gt=0, le=60.0, description="Spoof session settle window")
    stop_grace: float = Field(default=5.0, gt=0, le=30.0, description="Grace period before force killing")

    daemon_host: str = Field(default="127.0.0.1", min_length=1, description="tunneld status host")
    daemon_port: int = Field(default=49151, description="tunneld status port")
    daemon_start_timeout: float = Field(default=15.0, gt=0, le=120.0, description="Daemon readiness deadline")
    daemon_poll_interval: float = Field(default=1.0, gt=0, le=10.0, description="Daemon readiness poll interval")
    http_timeout: float = Field(default=2.0, gt=0, le=30.0, description="Health probe and discovery timeout")

    @field_validator("daemon_port")
    @classmethod
    def validate_daemon_port(cls, v: int) -> int:
        """Ensure the daemon port is a valid TCP port"""
        validate_port(v, "Daemon port")
        return v

    @field_validator("extra_search_paths")
    @classmethod
    def validate_search_paths(cls, v: list[str]) -> list[str]:
        """Drop blank entries"""
        return [path.strip() for path in v if path and path.strip()]

    @property
    def daemon_url(self) -> str:
        """Base URL of the tunneld HTTP endpoint"""
        return f"http://{self.daemon_host}:{self.daemon_port}/"
