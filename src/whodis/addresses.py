"""Choose which IP addresses to publish for the host.

Brief: Either filter an explicit override list by address family, or detect
the local addresses the machine would use to reach the outside world.

Inputs:
  - AddressMode selecting IPv4, IPv6 or both.
  - Optional explicit addresses (strings or ipaddress objects).

Outputs:
  - Non-empty ordered tuple of ipaddress.IPv4Address / IPv6Address.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
import socket
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import psutil

from .errors import (
    AddressDetectionFailed,
    InvalidAddress,
    NoAddressesAvailable,
    NoCompatibleAddress,
)

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
AddressSet = Tuple[IPAddress, ...]

# Documentation prefixes, routed via the default route. Connecting a UDP
# socket only selects a source address; no packets are sent.
_PROBE_TARGETS = {
    4: "192.0.2.1",
    6: "2001:db8::1",
}

_SOCKET_FAMILIES = {
    4: socket.AF_INET,
    6: socket.AF_INET6,
}


class AddressMode(enum.Enum):
    """Address families to publish."""

    V4 = "v4"
    V6 = "v6"
    BOTH = "both"

    @property
    def families(self) -> Tuple[int, ...]:
        if self is AddressMode.V4:
            return (4,)
        if self is AddressMode.V6:
            return (6,)
        return (4, 6)

    @classmethod
    def parse(cls, value: Union[str, "AddressMode"]) -> "AddressMode":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        aliases = {"ipv4": "v4", "4": "v4", "ipv6": "v6", "6": "v6", "dual": "both"}
        try:
            return cls(aliases.get(text, text))
        except ValueError:
            raise ValueError(
                f"address mode must be one of v4, v6, both; got {value!r}"
            ) from None


def is_usable(address: IPAddress) -> bool:
    """Return True for addresses worth publishing in a public A/AAAA record."""
    return not (
        address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_multicast
    )


def _route_source_address(version: int) -> Optional[IPAddress]:
    """
    Ask the kernel which source address it would use toward a probe target.

    Inputs:
      - version: 4 or 6.
    Outputs:
      - The address, or None when there is no route for that family.
    """
    family = _SOCKET_FAMILIES[version]
    try:
        with socket.socket(family, socket.SOCK_DGRAM) as sock:
            sock.connect((_PROBE_TARGETS[version], 53))
            host = sock.getsockname()[0]
    except OSError as exc:
        logger.debug("No IPv%d route available: %s", version, exc)
        return None
    # Scoped IPv6 addresses come back as "fe80::1%eth0".
    return ipaddress.ip_address(host.split("%", 1)[0])


def _interface_addresses(version: int) -> List[IPAddress]:
    """List addresses of the given family on all local interfaces via psutil."""
    family = _SOCKET_FAMILIES[version]
    found: List[IPAddress] = []
    for name, entries in psutil.net_if_addrs().items():
        for entry in entries:
            if entry.family != family:
                continue
            try:
                addr = ipaddress.ip_address(entry.address.split("%", 1)[0])
            except ValueError:
                continue
            logger.debug("Interface %s has address %s", name, addr)
            found.append(addr)
    return found


def _detect(version: int) -> IPAddress:
    addr = _route_source_address(version)
    if addr is not None and is_usable(addr):
        return addr
    for candidate in _interface_addresses(version):
        if is_usable(candidate):
            return candidate
    raise AddressDetectionFailed(f"no usable local IPv{version} address found")


def detect_ipv4() -> ipaddress.IPv4Address:
    """
    Detect the local IPv4 address.

    Outputs:
      - ipaddress.IPv4Address

    Raises:
      - AddressDetectionFailed when no usable address exists.
    """
    return _detect(4)  # type: ignore[return-value]


def detect_ipv6() -> ipaddress.IPv6Address:
    """Detect the local IPv6 address; raises AddressDetectionFailed."""
    return _detect(6)  # type: ignore[return-value]


Detector = Callable[[], IPAddress]

DEFAULT_DETECTORS: Dict[int, Detector] = {
    4: detect_ipv4,
    6: detect_ipv6,
}


def _parse_explicit(values: Iterable[Union[str, IPAddress]]) -> List[IPAddress]:
    parsed: List[IPAddress] = []
    for value in values:
        if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            addr = value
        else:
            try:
                addr = ipaddress.ip_address(str(value).strip())
            except ValueError as exc:
                raise InvalidAddress(f"invalid IP address {value!r}") from exc
        # A zone index ("fe80::1%eth0") is host-local and has no AAAA form.
        if addr.version == 6 and addr.scope_id:
            raise InvalidAddress(
                f"scoped IPv6 address {value!r} cannot be published"
            )
        parsed.append(addr)
    return parsed


def _dedupe(addresses: Iterable[IPAddress]) -> AddressSet:
    seen = set()
    out: List[IPAddress] = []
    for addr in addresses:
        if addr in seen:
            continue
        seen.add(addr)
        out.append(addr)
    return tuple(out)


def select_addresses(
    mode: Union[AddressMode, str],
    explicit: Optional[Iterable[Union[str, IPAddress]]] = None,
    detectors: Optional[Dict[int, Detector]] = None,
) -> AddressSet:
    """
    Brief: Resolve the AddressSet to publish.

    Inputs:
      - mode: AddressMode (or its string value).
      - explicit: Optional override addresses. When non-empty, no detection
        is attempted.
      - detectors: Optional mapping {4: callable, 6: callable} replacing the
        local detection functions.

    Outputs:
      - Non-empty tuple of addresses, in input order, without duplicates.

    Raises:
      - InvalidAddress: an explicit entry is not an IP address.
      - NoCompatibleAddress: explicit entries exist but none fits the mode.
      - AddressDetectionFailed: single-family mode and detection failed.
      - NoAddressesAvailable: BOTH mode and neither family was detected.

    Example:
      >>> select_addresses("v4", ["192.0.2.10", "2001:db8::10"])
      (IPv4Address('192.0.2.10'),)
    """
    mode = AddressMode.parse(mode)
    families = mode.families

    given = _parse_explicit(explicit or [])
    if given:
        compatible = [a for a in given if a.version in families]
        if not compatible:
            raise NoCompatibleAddress(
                "none of the given addresses ({}) match mode {}".format(
                    ", ".join(str(a) for a in given), mode.value
                )
            )
        return _dedupe(compatible)

    detect = dict(DEFAULT_DETECTORS)
    if detectors:
        detect.update(detectors)

    detected: List[IPAddress] = []
    for version in families:
        try:
            addr = detect[version]()
        except AddressDetectionFailed as exc:
            if mode is AddressMode.BOTH:
                logger.debug("Skipping IPv%d: %s", version, exc)
                continue
            raise
        logger.debug("Detected local IPv%d address %s", version, addr)
        detected.append(addr)

    if not detected:
        raise NoAddressesAvailable(
            "no local IPv4 or IPv6 address could be detected"
        )
    return _dedupe(detected)
