"""Utility functions shared across geoghost."""

from collections.abc import Iterable, Mapping
from typing import Any

MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def first_present(data: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """Return the value of the first key that is present and non-empty."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def coerce_port(value: Any) -> int | None:
    """Convert a port-like value to int, or None if it is not a valid port."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        return None
    if not (MIN_PORT <= port <= MAX_PORT):
        return None
    return port
