"""Decoding of start-tunnel output."""

import re

from ..common.utils import coerce_port

ADDRESS_PATTERN = re.compile(r"RSD Address:\s*(?P<host>[0-9A-Fa-f:.%\w-]+)")
PORT_PATTERN = re.compile(r"RSD Port:\s*(?P<port>\d+)")
# "Use the follow connection option:\n--rsd fd7b:e5b:6f53::1 60105"
RSD_OPTION_PATTERN = re.compile(r"--rsd\s+(?P<host>[0-9A-Fa-f:.%\w-]+)\s+(?P<port>\d+)")


def decode_rsd_endpoint(text: str) -> tuple[str, int] | None:
    """Extract the RSD host and port from accumulated tunnel output.

    Args:
        text: Everything the tunnel process has printed so far

    Returns:
        (host, port) once both are present, otherwise None
    """
    address = ADDRESS_PATTERN.search(text)
    port = PORT_PATTERN.search(text)
    if address and port:
        port_number = coerce_port(port.group("port"))
        if port_number is not None:
            return address.group("host"), port_number

    option = RSD_OPTION_PATTERN.search(text)
    if option:
        port_number = coerce_port(option.group("port"))
        if port_number is not None:
            return option.group("host"), port_number

    return None
