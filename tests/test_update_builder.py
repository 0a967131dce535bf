"""
Brief: Tests for whodis.update_builder.build_update shape and semantics.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress

import dns.message
import dns.name
import dns.opcode
import dns.rdataclass
import dns.rdatatype
import pytest

from whodis.errors import InvalidAddress, InvalidName, NoAddressesAvailable, Phase
from whodis.update_builder import (
    RECORD_TTL,
    build_update,
    describe_update,
    parse_name,
)

ZONE = "example.com."
HOST = "host.example.com."

ADDRESS_SETS = [
    ["192.0.2.1"],
    ["2001:db8::1"],
    ["192.0.2.1", "2001:db8::1"],
    ["2001:db8::1", "192.0.2.1", "192.0.2.2"],
    ["192.0.2.1", "192.0.2.2", "192.0.2.3"],
]


def _is_delete(rrset):
    return rrset.deleting in (dns.rdataclass.ANY, dns.rdataclass.NONE)


@pytest.mark.parametrize("addrs", ADDRESS_SETS)
def test_entry_count_and_pair_order(addrs):
    msg = build_update(ZONE, HOST, addrs)
    assert len(msg.zone) + len(msg.update) == 1 + 2 * len(addrs)

    for i, addr in enumerate(addrs):
        delete, add = msg.update[2 * i], msg.update[2 * i + 1]
        assert _is_delete(delete)
        assert not _is_delete(add)
        expected_type = dns.rdatatype.A if ":" not in addr else dns.rdatatype.AAAA
        assert delete.rdtype == add.rdtype == expected_type
        assert [rd.to_text() for rd in add] == [str(ipaddress.ip_address(addr))]


def test_zone_section_asserts_soa():
    msg = build_update(ZONE, HOST, ["192.0.2.1"])
    assert msg.opcode() == dns.opcode.UPDATE
    (zone_rrset,) = msg.zone
    assert zone_rrset.name == dns.name.from_text(ZONE)
    assert zone_rrset.rdtype == dns.rdatatype.SOA
    assert zone_rrset.rdclass == dns.rdataclass.IN


def test_delete_is_class_any_and_add_is_class_in_with_fixed_ttl():
    msg = build_update(ZONE, HOST, ["192.0.2.1"])
    delete, add = msg.update
    assert delete.deleting == dns.rdataclass.ANY
    assert len(delete) == 0
    assert delete.name == add.name == dns.name.from_text(HOST)
    assert add.rdclass == dns.rdataclass.IN
    assert add.deleting is None
    assert add.ttl == RECORD_TTL == 300


def test_family_isolation():
    v4_only = build_update(ZONE, HOST, ["192.0.2.1", "198.51.100.1"])
    assert all(r.rdtype == dns.rdatatype.A for r in v4_only.update)

    v6_only = build_update(ZONE, HOST, ["2001:db8::1"])
    assert all(r.rdtype == dns.rdatatype.AAAA for r in v6_only.update)


def test_second_same_family_address_deletes_only_its_record():
    msg = build_update(ZONE, HOST, ["192.0.2.1", "192.0.2.2"])
    first_delete, _, second_delete, _ = msg.update
    assert first_delete.deleting == dns.rdataclass.ANY
    assert second_delete.deleting == dns.rdataclass.NONE
    assert [rd.to_text() for rd in second_delete] == ["192.0.2.2"]
    assert second_delete.ttl == 0


def test_explicit_and_random_ids():
    assert build_update(ZONE, HOST, ["192.0.2.1"], id=4242).id == 4242
    ids = {build_update(ZONE, HOST, ["192.0.2.1"]).id for _ in range(20)}
    assert len(ids) > 1


def test_wire_round_trip_preserves_instruction_order():
    msg = build_update(ZONE, HOST, ["192.0.2.1", "2001:db8::1"], id=7)
    parsed = dns.message.from_wire(msg.to_wire(), one_rr_per_rrset=True)
    assert [(r.rdtype, r.deleting) for r in parsed.update] == [
        (dns.rdatatype.A, dns.rdataclass.ANY),
        (dns.rdatatype.A, None),
        (dns.rdatatype.AAAA, dns.rdataclass.ANY),
        (dns.rdatatype.AAAA, None),
    ]


def test_empty_address_set_rejected():
    with pytest.raises(NoAddressesAvailable):
        build_update(ZONE, HOST, [])


def test_address_without_record_encoding_is_invalid_address():
    scoped = ipaddress.ip_address("fe80::1%eth0")
    with pytest.raises(InvalidAddress) as exc:
        build_update(ZONE, HOST, [scoped])
    assert exc.value.phase is Phase.ADDRESS_RESOLUTION


@pytest.mark.parametrize("bad", ["", "   ", ".", "a..b", "x" * 64 + ".example.com"])
def test_invalid_names(bad):
    with pytest.raises(InvalidName):
        build_update(bad, HOST, ["192.0.2.1"])
    with pytest.raises(InvalidName):
        build_update(ZONE, bad, ["192.0.2.1"])


def test_parse_name_makes_absolute():
    assert parse_name("example.com").is_absolute()
    rel = dns.name.from_text("example.com", origin=None)
    assert parse_name(rel) == dns.name.from_text("example.com.")


def test_describe_update_lines():
    msg = build_update(ZONE, HOST, ["192.0.2.1", "192.0.2.2"])
    assert describe_update(msg) == [
        "delete host.example.com. A",
        "add host.example.com. 300 IN A 192.0.2.1",
        "delete host.example.com. A 192.0.2.2",
        "add host.example.com. 300 IN A 192.0.2.2",
    ]
