"""Build the RFC 2136 UPDATE message that replaces a host's address records.

Brief: One zone entry (zone SOA) followed by a delete/add pair per address.
The delete clears stale records of the same type so the transaction is
idempotent; A and AAAA are handled independently.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, List, Optional, Set, Union

import dns.exception
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import dns.update

from .addresses import IPAddress
from .errors import InvalidAddress, InvalidName, NoAddressesAvailable

logger = logging.getLogger(__name__)

RECORD_TTL = 300

_RDTYPE_BY_VERSION = {
    4: dns.rdatatype.A,
    6: dns.rdatatype.AAAA,
}


def parse_name(text: Union[str, dns.name.Name], what: str = "name") -> dns.name.Name:
    """
    Parse a domain name into an absolute dns.name.Name.

    Inputs:
      - text: Name in presentation format, with or without trailing dot.
      - what: Label used in the error message ("zone", "hostname").
    Outputs:
      - Absolute dns.name.Name.

    Raises:
      - InvalidName on empty or malformed input.

    Example:
      >>> parse_name("example.com", "zone").to_text()
      'example.com.'
    """
    if isinstance(text, dns.name.Name):
        if not text.is_absolute():
            return text.concatenate(dns.name.root)
        return text
    raw = str(text or "").strip()
    if not raw or raw == ".":
        raise InvalidName(f"{what} must not be empty")
    try:
        return dns.name.from_text(raw)
    except dns.exception.DNSException as exc:
        raise InvalidName(f"invalid {what} {raw!r}: {exc}") from exc


def rdtype_for(address: IPAddress) -> dns.rdatatype.RdataType:
    """Return A for IPv4 and AAAA for IPv6 addresses."""
    return _RDTYPE_BY_VERSION[address.version]


def build_update(
    zone: Union[str, dns.name.Name],
    host: Union[str, dns.name.Name],
    addresses: Iterable[Union[str, IPAddress]],
    *,
    id: Optional[int] = None,
) -> dns.update.UpdateMessage:
    """
    Brief: Construct the UPDATE transaction for ``host``.

    Inputs:
      - zone: Zone apex; becomes the single zone-section entry (SOA, IN).
      - host: Owner name of the records being replaced.
      - addresses: Non-empty ordered addresses; family picks A or AAAA.
      - id: Optional message id; a random one is drawn when omitted.

    Outputs:
      - dns.update.UpdateMessage whose update section holds, per address,
        a delete instruction immediately followed by an add instruction.

    Notes:
      - The first address of each family deletes the whole RRset of that type
        (class ANY). Further addresses of the same family delete only their own
        record (class NONE) so earlier adds in this transaction survive.
      - Record types other than the ones being replaced are never touched.
    """
    zone_name = parse_name(zone, "zone")
    host_name = parse_name(host, "hostname")

    parsed: List[IPAddress] = []
    for a in addresses:
        if isinstance(a, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            parsed.append(a)
            continue
        try:
            parsed.append(ipaddress.ip_address(str(a)))
        except ValueError as exc:
            raise InvalidAddress(f"invalid IP address {a!r}") from exc
    if not parsed:
        raise NoAddressesAvailable("no addresses to publish")

    msg = dns.update.UpdateMessage(zone_name, id=id)
    cleared: Set[dns.rdatatype.RdataType] = set()

    for addr in parsed:
        rdtype = rdtype_for(addr)
        try:
            rdata = dns.rdata.from_text(dns.rdataclass.IN, rdtype, str(addr))
        except dns.exception.DNSException as exc:
            raise InvalidAddress(
                f"cannot encode {addr} as {rdtype.name}: {exc}"
            ) from exc

        if rdtype not in cleared:
            delete = dns.rrset.RRset(
                host_name, dns.rdataclass.IN, rdtype, deleting=dns.rdataclass.ANY
            )
            cleared.add(rdtype)
        else:
            delete = dns.rrset.RRset(
                host_name, dns.rdataclass.IN, rdtype, deleting=dns.rdataclass.NONE
            )
            delete.add(rdata, 0)
        msg.update.append(delete)

        add = dns.rrset.RRset(host_name, dns.rdataclass.IN, rdtype)
        add.add(rdata, RECORD_TTL)
        msg.update.append(add)

    logger.debug(
        "Built update id=%d zone=%s host=%s with %d instruction(s)",
        msg.id,
        zone_name,
        host_name,
        len(msg.update),
    )
    return msg


def describe_update(msg: dns.update.UpdateMessage) -> List[str]:
    """
    Render the update section one instruction per line.

    Outputs:
      - e.g. ["delete host.example.com. A", "add host.example.com. 300 IN A 192.0.2.1"]
    """
    lines: List[str] = []
    for rrset in msg.update:
        rdtype = dns.rdatatype.to_text(rrset.rdtype)
        if rrset.deleting == dns.rdataclass.ANY:
            lines.append(f"delete {rrset.name} {rdtype}")
        elif rrset.deleting == dns.rdataclass.NONE:
            for rd in rrset:
                lines.append(f"delete {rrset.name} {rdtype} {rd.to_text()}")
        else:
            for rd in rrset:
                lines.append(
                    f"add {rrset.name} {rrset.ttl} "
                    f"{dns.rdataclass.to_text(rrset.rdclass)} {rdtype} {rd.to_text()}"
                )
    return lines
