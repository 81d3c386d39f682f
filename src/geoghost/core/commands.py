"""Argument templates for the pymobiledevice3 command line.

The subcommand and flag syntax here must match the external tool exactly.
"""

from ..models import CommandStrategy, TunnelEndpoint

LIST_DEVICES_JSON = ("usbmux", "list", "--no-color", "-o", "json")
LIST_DEVICES_PLAIN = ("usbmux", "list")

# Preferred first; the remote variant depends on elevated privileges
TUNNEL_VARIANTS = (
    ("lockdown", ("lockdown", "start-tunnel")),
    ("remote", ("remote", "start-tunnel")),
)

TUNNELD = ("remote", "tunneld")

_DVT_LOCATION = ("developer", "dvt", "simulate-location")
_LEGACY_LOCATION = ("developer", "simulate-location")

# Identifier-free invocations, tried in this order
LEGACY_STRATEGIES = (CommandStrategy.NONE, CommandStrategy.LEGACY)


def list_devices_argv(tool: str, json_output: bool = True) -> list[str]:
    return [tool, *(LIST_DEVICES_JSON if json_output else LIST_DEVICES_PLAIN)]


def tunnel_argv(tool: str, variant: tuple[str, ...]) -> list[str]:
    return [tool, *variant]


def tunneld_argv(tool: str) -> list[str]:
    """Elevated daemon start; sudo reads the password from stdin."""
    return ["sudo", "-S", "-p", "", tool, *TUNNELD]


def location_argv(
    tool: str,
    action: str,
    strategy: CommandStrategy,
    coordinates: tuple[float, float] | None = None,
    endpoint: TunnelEndpoint | None = None,
    identifier: str | None = None,
) -> list[str]:
    """Build a simulate-location set/clear command line.

    Args:
        tool: Path to pymobiledevice3
        action: "set" or "clear"
        strategy: Invocation mode
        coordinates: (latitude, longitude), required for "set"
        endpoint: RSD endpoint, required for CommandStrategy.RSD
        identifier: Device UDID, required for CommandStrategy.IDENTIFIER

    Returns:
        Argument vector

    Raises:
        ValueError: If a strategy's required argument is missing
    """
    if action not in ("set", "clear"):
        raise ValueError(f"Unknown simulate-location action: {action}")

    base = _LEGACY_LOCATION if strategy == CommandStrategy.LEGACY else _DVT_LOCATION
    argv = [tool, *base, action]

    if strategy == CommandStrategy.RSD:
        if endpoint is None:
            raise ValueError("RSD strategy requires an endpoint")
        argv += ["--rsd", endpoint.host, str(endpoint.port)]
    elif strategy == CommandStrategy.IDENTIFIER:
        if not identifier:
            raise ValueError("Identifier strategy requires a device identifier")
        argv += ["--tunnel", identifier]

    if action == "set":
        if coordinates is None:
            raise ValueError("set requires coordinates")
        lat, lng = coordinates
        # "--" keeps negative coordinates from being parsed as options
        argv += ["--", str(lat), str(lng)]

    return argv
