"""Discovery of tunnels already maintained by a running tunneld daemon."""

import asyncio
import re
from typing import Any

import aiohttp

from ..common.logging import get_logger
from ..common.utils import coerce_port, first_present
from ..config import GeoGhostConfig
from ..models import TunnelCandidate, TunnelEndpoint
from ..state import CoreState

logger = get_logger(__name__)

IDENTIFIER_KEYS = ("udid", "identifier", "UniqueDeviceID", "id")
ADDRESS_KEYS = ("tunnel-address", "address", "host")
PORT_KEYS = ("tunnel-port", "port")
NAME_KEYS = ("name", "device-name", "DeviceName")

# Names of devices that can hold a tunnel but are not the target phone
NON_PHONE_KEYWORDS = (
    "mac",
    "macbook",
    "imac",
    "mac mini",
    "mac pro",
    "mac studio",
    "laptop",
    "desktop",
    "pc",
    "watch",
    "apple tv",
    "appletv",
    "homepod",
    "airpods",
    "vision",
    "keyboard",
    "mouse",
    "trackpad",
    "accessory",
)

_NON_PHONE_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(keyword) for keyword in NON_PHONE_KEYWORDS) + r")\b",
    re.IGNORECASE,
)


def looks_like_non_phone(name: str | None) -> bool:
    """True if a tunnel's display name indicates a computer or accessory"""
    if not name:
        return False
    return _NON_PHONE_PATTERN.search(name) is not None


def _candidate(entry: Any, key: str = "") -> TunnelCandidate | None:
    if not isinstance(entry, dict):
        return None
    address = first_present(entry, ADDRESS_KEYS)
    port = coerce_port(first_present(entry, PORT_KEYS))
    if not address or port is None:
        return None

    identifier = first_present(entry, IDENTIFIER_KEYS)
    name = first_present(entry, NAME_KEYS)
    return TunnelCandidate(
        key=key or str(identifier or ""),
        identifier=str(identifier) if identifier else None,
        address=str(address),
        port=port,
        name=str(name) if name else None,
    )


def normalize_tunnels(body: Any) -> list[TunnelCandidate]:
    """Flatten both status shapes into a list of candidates.

    Accepts an array of entries, or an object keyed by identifier whose values
    are an entry or a list of entries. Malformed entries are skipped.
    """
    candidates: list[TunnelCandidate] = []

    if isinstance(body, list):
        for entry in body:
            candidate = _candidate(entry)
            if candidate is not None:
                candidates.append(candidate)
    elif isinstance(body, dict):
        for key, value in body.items():
            entries = value if isinstance(value, list) else [value]
            for entry in entries:
                candidate = _candidate(entry, key=str(key))
                if candidate is not None:
                    candidates.append(candidate)

    return candidates


def select_tunnel(
    candidates: list[TunnelCandidate], identifier: str | None
) -> TunnelCandidate | None:
    """Pick the tunnel for the current device, or None when ambiguous.

    An exact identifier match wins. Otherwise candidates named like a
    computer or accessory are dropped and a single survivor is accepted.
    """
    if identifier:
        for candidate in candidates:
            if candidate.matches(identifier):
                return candidate

    phones = [c for c in candidates if not looks_like_non_phone(c.name)]
    if len(phones) == 1:
        return phones[0]

    if phones:
        logger.info("Multiple tunnels found, not guessing", count=len(phones))
    return None


class TunnelDiscovery:
    """Finds an existing tunnel for the current device through tunneld"""

    def __init__(self, config: GeoGhostConfig, state: CoreState):
        self.config = config
        self.state = state

    async def fetch_status(self) -> Any | None:
        """GET the daemon status JSON; None on any failure"""
        timeout = aiohttp.ClientTimeout(total=self.config.http_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.config.daemon_url) as response:
                    if response.status < 200 or response.status >= 300:
                        logger.debug("tunneld status request failed", status=response.status)
                        return None
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug("tunneld status unavailable", error=str(e))
            return None

    async def candidates(self) -> list[TunnelCandidate]:
        body = await self.fetch_status()
        if body is None:
            return []
        return normalize_tunnels(body)

    async def discover(self) -> TunnelEndpoint | None:
        """Endpoint of an existing tunnel for the current device, if unambiguous"""
        identifier = self.state.identifier
        candidates = await self.candidates()
        if not candidates:
            return None

        selected = select_tunnel(candidates, identifier)
        if selected is None:
            return None

        logger.info(
            "Discovered tunnel",
            key=selected.key,
            host=selected.address,
            port=selected.port,
            exact=bool(identifier and selected.matches(identifier)),
        )
        return selected.to_endpoint()
