"""
Brief: Tests for whodis.addresses: explicit filtering, detection policy per
mode, and the local detection helpers.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress
import socket
from types import SimpleNamespace

import pytest

import whodis.addresses as addresses_mod
from whodis.addresses import AddressMode, select_addresses
from whodis.errors import (
    AddressDetectionFailed,
    InvalidAddress,
    NoAddressesAvailable,
    NoCompatibleAddress,
    Phase,
)

V4 = ipaddress.ip_address("192.0.2.10")
V6 = ipaddress.ip_address("2001:db8::10")


def _fail(version):
    def _detector():
        raise AddressDetectionFailed(f"no IPv{version}")

    return _detector


def _fixed(addr):
    return lambda: addr


def _explode():
    raise AssertionError("detection must not run when addresses are given")


def test_explicit_addresses_filtered_by_mode():
    got = select_addresses(AddressMode.V4, ["192.0.2.10", "2001:db8::10"])
    assert got == (V4,)
    got = select_addresses("v6", ["192.0.2.10", "2001:db8::10"])
    assert got == (V6,)


def test_explicit_both_keeps_input_order_and_dedupes():
    got = select_addresses(
        "both", ["2001:db8::10", "192.0.2.10", "2001:db8::10", V4]
    )
    assert got == (V6, V4)


def test_explicit_v4_mode_with_only_ipv6_is_no_compatible_address():
    with pytest.raises(NoCompatibleAddress) as exc:
        select_addresses(AddressMode.V4, ["::1"])
    assert exc.value.phase is Phase.ADDRESS_RESOLUTION


def test_explicit_addresses_skip_detection():
    detectors = {4: _explode, 6: _explode}
    assert select_addresses("both", ["192.0.2.10"], detectors) == (V4,)


def test_invalid_explicit_address():
    with pytest.raises(InvalidAddress):
        select_addresses("v4", ["not-an-ip"])


@pytest.mark.parametrize(
    "value", ["fe80::1%eth0", ipaddress.ip_address("fe80::1%2")]
)
def test_scoped_ipv6_address_is_rejected(value):
    with pytest.raises(InvalidAddress, match="scoped"):
        select_addresses("v6", [value])


def test_both_mode_no_detection_is_no_addresses_available():
    with pytest.raises(NoAddressesAvailable):
        select_addresses("both", None, {4: _fail(4), 6: _fail(6)})


def test_both_mode_partial_detection_succeeds():
    got = select_addresses("both", [], {4: _fail(4), 6: _fixed(V6)})
    assert got == (V6,)
    got = select_addresses("both", [], {4: _fixed(V4), 6: _fail(6)})
    assert got == (V4,)


def test_both_mode_detects_v4_then_v6():
    got = select_addresses("both", None, {4: _fixed(V4), 6: _fixed(V6)})
    assert got == (V4, V6)


@pytest.mark.parametrize("mode,version", [("v4", 4), ("v6", 6)])
def test_single_family_detection_failure_is_fatal(mode, version):
    detectors = {4: _fixed(V4), 6: _fixed(V6)}
    detectors[version] = _fail(version)
    with pytest.raises(AddressDetectionFailed):
        select_addresses(mode, None, detectors)


def test_single_family_mode_only_queries_that_family():
    assert select_addresses("v6", None, {4: _explode, 6: _fixed(V6)}) == (V6,)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("v4", AddressMode.V4),
        ("IPv6", AddressMode.V6),
        ("both", AddressMode.BOTH),
        ("dual", AddressMode.BOTH),
    ],
)
def test_address_mode_parse(text, expected):
    assert AddressMode.parse(text) is expected


def test_address_mode_parse_rejects_unknown():
    with pytest.raises(ValueError):
        AddressMode.parse("v5")


def test_detect_prefers_routed_source_address(monkeypatch):
    monkeypatch.setattr(
        addresses_mod, "_route_source_address", lambda version: ipaddress.ip_address("198.51.100.7")
    )
    monkeypatch.setattr(
        addresses_mod.psutil, "net_if_addrs", lambda: pytest.fail("psutil not needed")
    )
    assert addresses_mod.detect_ipv4() == ipaddress.ip_address("198.51.100.7")


def test_detect_falls_back_to_interfaces(monkeypatch):
    monkeypatch.setattr(addresses_mod, "_route_source_address", lambda version: None)
    monkeypatch.setattr(
        addresses_mod.psutil,
        "net_if_addrs",
        lambda: {
            "lo": [
                SimpleNamespace(family=socket.AF_INET, address="127.0.0.1"),
                SimpleNamespace(family=socket.AF_INET6, address="::1"),
            ],
            "eth0": [
                SimpleNamespace(family=socket.AF_INET6, address="fe80::1%eth0"),
                SimpleNamespace(family=socket.AF_INET6, address="2001:db8::42"),
                SimpleNamespace(family=socket.AF_INET, address="203.0.113.5"),
            ],
        },
    )
    assert addresses_mod.detect_ipv6() == ipaddress.ip_address("2001:db8::42")
    assert addresses_mod.detect_ipv4() == ipaddress.ip_address("203.0.113.5")


def test_detect_skips_unusable_route_address(monkeypatch):
    monkeypatch.setattr(
        addresses_mod, "_route_source_address", lambda version: ipaddress.ip_address("127.0.0.1")
    )
    monkeypatch.setattr(addresses_mod.psutil, "net_if_addrs", lambda: {})
    with pytest.raises(AddressDetectionFailed):
        addresses_mod.detect_ipv4()


def test_route_source_address_none_without_route(monkeypatch):
    class _NoRoute:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def connect(self, addr):
            raise OSError("Network is unreachable")

    monkeypatch.setattr(addresses_mod.socket, "socket", _NoRoute)
    assert addresses_mod._route_source_address(6) is None
