import logging
import socket

import pytest

from visionary.netlink import NetLink, addr_to_string, string_to_addr


def _free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.parametrize("ip", ["192.168.1.10", "10.0.0.1", "0.0.0.0", "255.255.255.0", "127.0.0.1"])
def test_address_round_trip(ip):
    assert addr_to_string(string_to_addr(ip)) == ip


def test_pinned_addresses():
    assert string_to_addr("255.255.255.255") == 0xFFFFFFFF
    assert string_to_addr("0.0.0.0") == 0
    assert addr_to_string(0xFFFFFFFF) == "255.255.255.255"


def test_address_is_host_order():
    assert string_to_addr("1.0.0.0") > string_to_addr("0.0.0.255")


@pytest.mark.parametrize("ip", ["", "256.1.1.1", "1.2.3", "not an ip", "::1"])
def test_invalid_address_raises(ip):
    with pytest.raises(ValueError):
        string_to_addr(ip)


@pytest.mark.parametrize("addr", [-1, 1 << 32])
def test_address_out_of_range_raises(addr):
    with pytest.raises(ValueError):
        addr_to_string(addr)


@pytest.mark.parametrize(
    "prefix, mask",
    [(24, "255.255.255.0"), (8, "255.0.0.0"), (32, "255.255.255.255"), (0, "0.0.0.0")],
)
def test_network_mask(prefix, mask):
    with NetLink("127.0.0.1", prefix, _free_udp_port(), "127.0.0.1") as link:
        assert link.network_mask == string_to_addr(mask)


def test_invalid_prefix_raises():
    with pytest.raises(ValueError):
        NetLink("127.0.0.1", 33, _free_udp_port(), "127.0.0.1")


def test_invalid_local_ip_raises():
    with pytest.raises(ValueError):
        NetLink("127.0.0.300", 8, _free_udp_port(), "127.0.0.1")


def test_unicast_link_properties():
    port = _free_udp_port()
    with NetLink("127.0.0.1", 8, port, "127.0.0.1") as link:
        assert link.broadcast is False
        assert link.local_addr == string_to_addr("127.0.0.1")
        assert link.remote_addr == string_to_addr("127.0.0.1")
        assert link.port == port


def test_limited_broadcast_becomes_subnet_broadcast():
    with NetLink("127.0.0.1", 8, _free_udp_port()) as link:
        assert link.broadcast is True
        assert link.remote_addr == string_to_addr("127.255.255.255")


def test_explicit_subnet_broadcast_sets_broadcast():
    with NetLink("127.0.0.1", 8, _free_udp_port(), "127.255.255.255") as link:
        assert link.broadcast is True
        assert link.remote_addr == string_to_addr("127.255.255.255")


def test_remote_in_other_network_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="visionary.netlink"):
        with NetLink("127.0.0.1", 8, _free_udp_port(), "10.0.0.1") as link:
            assert link.remote_addr == string_to_addr("10.0.0.1")
    assert any("different network" in record.getMessage() for record in caplog.records)


def test_loopback_write_and_read():
    payload = bytes([0x10, 0x00, 0x00, 0x08, 0xFF, 0xFF])
    with NetLink("127.0.0.1", 8, _free_udp_port(), "127.0.0.1") as link:
        assert link.write(payload) == len(payload)
        assert link.read(1500) == payload


def test_read_truncates_to_size():
    payload = b"abcdefgh"
    with NetLink("127.0.0.1", 8, _free_udp_port(), "127.0.0.1") as link:
        link.write(payload)
        assert link.read(4) == payload[:4]


def test_read_without_data_returns_empty():
    with NetLink("127.0.0.1", 8, _free_udp_port(), "127.0.0.1") as link:
        assert link.read(1500) == b""


def test_read_negative_size_raises():
    with NetLink("127.0.0.1", 8, _free_udp_port(), "127.0.0.1") as link:
        with pytest.raises(ValueError):
            link.read(-1)


def test_closed_link_raises_on_use():
    link = NetLink("127.0.0.1", 8, _free_udp_port(), "127.0.0.1")
    link.close()
    link.close()
    assert link.is_open is False
    with pytest.raises(OSError):
        link.read(10)
    with pytest.raises(OSError):
        link.write(b"x")