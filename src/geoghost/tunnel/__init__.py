"""Tunnel establishment and discovery."""

from .decoder import decode_rsd_endpoint
from .discovery import TunnelDiscovery, looks_like_non_phone, normalize_tunnels, select_tunnel
from .supervisor import TunnelState, TunnelSupervisor

__all__ = [
    "TunnelDiscovery",
    "TunnelState",
    "TunnelSupervisor",
    "decode_rsd_endpoint",
    "looks_like_non_phone",
    "normalize_tunnels",
    "select_tunnel",
]
