"""
IP range matching and named network lookups.

Ranges are CIDR blocks ("10.0.0.0/8", "2001:db8::/32"), dash ranges
("192.168.1.10-192.168.1.20") or single addresses. Allow-lists whose
location mentions "VPN" or "Office" define the VPN and office networks.
"""

import ipaddress
import logging
from typing import Iterable, Optional

from accessgate.models import IpAllowList
from accessgate.store import Store


logger = logging.getLogger(__name__)


def ip_in_range(ip: str, ip_range: str) -> bool:
    """True if `ip` falls inside `ip_range`. Malformed input never matches."""
    try:
        address = ipaddress.ip_address(ip.strip())
        entry = ip_range.strip()

        if "/" in entry:
            return address in ipaddress.ip_network(entry, strict=False)

        if "-" in entry:
            low, high = (ipaddress.ip_address(part.strip()) for part in entry.split("-", 1))
            if low.version != address.version or high.version != address.version:
                return False
            return low <= address <= high

        return address == ipaddress.ip_address(entry)
    except ValueError:
        logger.debug(f"Unparseable address or range: {ip!r} / {ip_range!r}")
        return False


def ip_in_any(ip: Optional[str], ranges: Iterable[str]) -> bool:
    if not ip:
        return False
    return any(ip_in_range(ip, r) for r in ranges)


class NetworkDirectory:
    """Answers network-membership questions from the stored allow-lists."""

    VPN_MARKER = "VPN"
    OFFICE_MARKER = "Office"

    def __init__(self, store: Store) -> None:
        self.store = store

    def add_allow_list(
        self,
        name: str,
        ip_ranges: Iterable[str],
        location: str = "",
        enabled: bool = True,
    ) -> IpAllowList:
        allow_list = IpAllowList(
            name=name,
            ip_ranges=tuple(ip_ranges),
            location=location,
            enabled=enabled,
        )
        return self.store.save_ip_allow_list(allow_list)

    def _networks(self, marker: Optional[str] = None, ids: Optional[Iterable[str]] = None) -> list[IpAllowList]:
        networks = self.store.list_ip_allow_lists(enabled_only=True)
        if marker is not None:
            networks = [n for n in networks if marker in n.location]
        if ids is not None:
            wanted = set(ids)
            networks = [n for n in networks if n.id in wanted]
        return networks

    def in_allow_lists(self, ip: Optional[str], allow_list_ids: Iterable[str]) -> bool:
        return any(ip_in_any(ip, n.ip_ranges) for n in self._networks(ids=allow_list_ids))

    def is_vpn(self, ip: Optional[str]) -> bool:
        return any(ip_in_any(ip, n.ip_ranges) for n in self._networks(self.VPN_MARKER))

    def is_office_network(self, ip: Optional[str]) -> bool:
        return any(ip_in_any(ip, n.ip_ranges) for n in self._networks(self.OFFICE_MARKER))
