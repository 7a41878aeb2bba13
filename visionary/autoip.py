"""Discovering sensors on a network and assigning their IP configuration."""

from __future__ import annotations

import logging
import random
import re
import struct
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import IntEnum

from .netlink import NetLink, addr_to_string, string_to_addr

_log = logging.getLogger(__name__)

AUTOIP_PORT = 30718
AUTOIP_TIMEOUT_S = 10.0
INVALID_MAC = "invalid"

_CMD_SCAN = 0x10
_CMD_IPCONFIG = 0x11
_RPL_SCAN_COLA_B = 0x90
_RPL_IPCONFIG = 0x91
_RPL_NETSCAN = 0x95

_MIN_REPLY_SIZE = 16
_RECEIVE_SIZE = 1500
_BROADCAST_MAC = b"\xff" * 6
_SCAN_FLAGS = b"\x01\x00"
_SUL2_AUTH_VERSION = b"1.0.0.0R"

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")

_INT_PATTERNS = {
    10: re.compile(r"\s*([+-]?)([0-9]+)"),
    16: re.compile(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)"),
}
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1


class ColaVersion(IntEnum):
    """Command protocol generation spoken by a device."""

    COLA_1 = 1
    COLA_2 = 2


class AuthVersion(IntEnum):
    """Authentication scheme supported by a device."""

    SUL1 = 1
    SUL2 = 2


@dataclass
class DeviceInfo:
    """What a device reports about itself in reply to a scan."""

    cola_version: ColaVersion = ColaVersion.COLA_1
    device_ident: str = ""
    serial_number: str = ""
    order_number: str = ""
    auth_version: AuthVersion = AuthVersion.SUL1
    mac_address: str = ""
    cola_port: int = 0
    ip_address: str = ""
    network_mask: str = ""
    gateway: str = ""
    dhcp_enabled: bool = False
    reconfiguration_time_ms: int = 0


def _stoi(text: str, base: int = 10) -> int:
    """Parse a leading integer like the C library does; ValueError if none."""
    match = _INT_PATTERNS[base].match(text)
    if match is None:
        raise ValueError(f"not an integer: {text!r}")
    sign, digits = match.groups()
    value = int(digits, base)
    if sign == "-":
        value = -value
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return value


def mac_to_bytes(text: str) -> bytes:
    """Convert a colon separated hexadecimal MAC address to six bytes.

    Missing trailing parts are zero.
    """
    parts = text.split(":")
    if parts and parts[-1] == "":
        parts.pop()
    if len(parts) > 6:
        raise ValueError(f"MAC address has too many parts: {text!r}")
    octets = bytes(_stoi(part, 16) & 0xFF for part in parts)
    return octets.ljust(6, b"\x00")


def mac_to_string(mac) -> str:
    """Format the first six bytes of ``mac`` as lower case ``aa:bb:cc:dd:ee:ff``."""
    octets = bytes(mac)
    if len(octets) < 6:
        raise ValueError("a MAC address needs six bytes")
    return ":".join(f"{octet:02x}" for octet in octets[:6])


def parse_autoip_xml(text) -> DeviceInfo:
    """Parse the XML scan reply of a CoLa 1 device.

    Raises ``ValueError`` (or ``xml.etree.ElementTree.ParseError``) when the
    document is not a well formed scan result.
    """
    root = ET.fromstring(text)
    if root.tag != "NetScanResult":
        raise ValueError(f"unexpected root element {root.tag!r}")
    mac = root.get("MACAddr")
    if mac is None:
        raise ValueError("scan result has no MACAddr attribute")

    info = DeviceInfo(
        cola_version=ColaVersion.COLA_1,
        auth_version=AuthVersion.SUL1,
        mac_address=mac,
    )
    for item in root:
        key = item.get("key")
        value = item.get("value")
        if key is None or value is None:
            raise ValueError(f"element {item.tag!r} lacks key or value")
        if key == "IPAddress":
            info.ip_address = value
        elif key == "IPMask":
            info.network_mask = value
        elif key == "IPGateway":
            info.gateway = value
        elif key == "HostPortNo":
            info.cola_port = _stoi(value) & 0xFFFF
        elif key == "DeviceType":
            info.device_ident = value
        elif key == "SerialNumber":
            info.serial_number = value
        elif key == "OrderNumber":
            info.order_number = value
        elif key == "DHCPClientEnabled":
            info.dhcp_enabled = value == "TRUE"
        elif key == "IPConfigDuration":
            info.reconfiguration_time_ms = _stoi(value) & 0xFFFFFFFF
    return info


class _Truncated(Exception):
    """The reply ended before a field it announced."""


class _Reader:
    """Cursor over a binary reply with a running minimum-size check."""

    def __init__(self, buffer: bytes, offset: int) -> None:
        self._buffer = buffer
        self.offset = offset
        self._min_size = 0

    def need(self, count: int) -> None:
        self._min_size += count
        if len(self._buffer) < self._min_size:
            raise _Truncated

    def skip(self, count: int) -> None:
        self.offset += count

    def peek(self, count: int) -> bytes:
        end = self.offset + count
        if end > len(self._buffer):
            raise _Truncated
        return self._buffer[self.offset:end]

    def take(self, count: int) -> bytes:
        data = self.peek(count)
        self.offset += count
        return data

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return _U16.unpack(self.take(2))[0]

    def u32(self) -> int:
        return _U32.unpack(self.take(4))[0]

    def length_prefixed(self) -> bytes:
        self.need(2)
        length = self.u16()
        self.need(length)
        return self.take(length)


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _parse_binary_fields(reader: _Reader, info: DeviceInfo) -> None:
    reader.need(18)
    reader.skip(2)  # device info version
    reader.need(2)
    cid_name_len = reader.u16()
    reader.need(cid_name_len)
    info.device_ident = _text(reader.take(cid_name_len))
    # CID version (major, minor, patch, build, classifier), device state, user action
    reader.skip(14)

    reader.need(16)
    device_name_len = reader.u16()
    reader.need(device_name_len)
    reader.skip(device_name_len)

    reader.length_prefixed()  # application name
    reader.length_prefixed()  # project name
    info.serial_number = _text(reader.length_prefixed())
    reader.length_prefixed()  # type code
    reader.length_prefixed()  # firmware version
    info.order_number = _text(reader.length_prefixed())

    reader.skip(1)  # flags
    reader.need(3)
    for _ in range(reader.u16()):
        reader.need(4)
        key = reader.take(4)
        reader.need(2)
        length = reader.u16()
        reader.need(length)
        if key == b"AutV" and reader.peek(length) == _SUL2_AUTH_VERSION:
            info.auth_version = AuthVersion.SUL2
        reader.skip(length)

    reader.need(2)
    for _ in range(reader.u16()):
        reader.need(2)
        reader.skip(2)  # interface number
        reader.need(2)
        name_len = reader.u16()
        reader.need(name_len)
        reader.skip(name_len)


def _parse_com_settings(reader: _Reader, info: DeviceInfo) -> str:
    mac = ""
    reader.need(2)
    for _ in range(reader.u16()):
        reader.need(4)
        key = reader.take(4)
        reader.need(2)
        length = reader.u16()
        reader.need(length)
        if key == b"EMAC":
            mac = mac_to_string(reader.take(6))
        elif key == b"EIPa":
            info.ip_address = addr_to_string(reader.u32())
        elif key == b"ENMa":
            info.network_mask = addr_to_string(reader.u32())
        elif key == b"EDGa":
            info.gateway = addr_to_string(reader.u32())
        elif key == b"EDhc":
            info.dhcp_enabled = reader.u8() != 0
        elif key == b"ECDu":
            info.reconfiguration_time_ms = (reader.u32() * 1000) & 0xFFFFFFFF
        else:
            reader.skip(length)
    return mac


def _parse_endpoint_ports(reader: _Reader) -> list[int]:
    ports: list[int] = []
    reader.need(2)
    for _ in range(reader.u16()):
        reader.need(1)
        reader.skip(1)  # CoLa version of the endpoint
        reader.need(2)
        for _ in range(reader.u16()):
            reader.need(4)
            key = reader.take(4)
            reader.need(2)
            length = reader.u16()
            reader.need(length)
            if key == b"DPNo":
                ports.append(reader.u16())
            else:
                reader.skip(length)
    return ports


def parse_autoip_binary(buffer) -> DeviceInfo:
    """Parse the binary scan reply of a CoLa 2 device.

    A truncated reply, or one naming no port, yields a result whose
    ``mac_address`` is ``"invalid"``.
    """
    info = DeviceInfo(
        cola_version=ColaVersion.COLA_2,
        auth_version=AuthVersion.SUL1,
        mac_address=INVALID_MAC,
    )
    reader = _Reader(bytes(buffer), _MIN_REPLY_SIZE)
    try:
        _parse_binary_fields(reader, info)
        mac = _parse_com_settings(reader, info)
        ports = _parse_endpoint_ports(reader)
    except _Truncated:
        return info
    if not ports:
        return info
    info.cola_port = ports[0]
    info.mac_address = mac
    return info


def build_scan_packet(telegram_id: int, local_addr: int, network_mask: int) -> bytes:
    """Build the broadcast telegram asking all devices to report themselves."""
    return b"".join(
        (
            bytes((_CMD_SCAN, 0x00)),
            _U16.pack(8),
            _BROADCAST_MAC,
            _U32.pack(telegram_id & 0xFFFFFFFF),
            _SCAN_FLAGS,
            _U32.pack(local_addr),
            _U32.pack(network_mask),
        )
    )


def _assign_payload(
    destination_mac: str,
    cola_version: ColaVersion,
    ip_addr: str,
    ip_mask: str,
    ip_gateway: str,
    dhcp_enabled: bool,
) -> bytes:
    if cola_version == ColaVersion.COLA_1:
        dhcp = "TRUE" if dhcp_enabled else "FALSE"
        request = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<IPconfig MACAddr="{destination_mac}">'
            f'<Item key="IPAddress" value="{ip_addr}" />'
            f'<Item key="IPMask" value="{ip_mask}" />'
            f'<Item key="IPGateway" value="{ip_gateway}" />'
            f'<Item key="DHCPClientEnabled" value="{dhcp}" /></IPconfig>'
        )
        return request.encode("utf-8")
    return b"".join(
        (
            _U32.pack(string_to_addr(ip_addr)),
            _U32.pack(string_to_addr(ip_mask)),
            _U32.pack(string_to_addr(ip_gateway)),
            bytes((1 if dhcp_enabled else 0,)),
        )
    )


def build_assign_packet(
    telegram_id: int,
    destination_mac: str,
    cola_version: ColaVersion,
    ip_addr: str,
    ip_mask: str,
    ip_gateway: str,
    dhcp_enabled: bool,
) -> bytes:
    """Build the telegram that sets a device's IP configuration."""
    payload = _assign_payload(destination_mac, cola_version, ip_addr, ip_mask, ip_gateway, dhcp_enabled)
    if len(payload) > 0xFFFF:
        raise ValueError("IP configuration payload is too large")
    return b"".join(
        (
            bytes((_CMD_IPCONFIG, 0x00)),
            _U16.pack(len(payload)),
            mac_to_bytes(destination_mac),
            _U32.pack(telegram_id & 0xFFFFFFFF),
            _SCAN_FLAGS,
            payload,
        )
    )


class VisionaryAutoIP:
    """Finds devices on the network of one interface and reconfigures them.

    ``link`` replaces the broadcast link that is otherwise opened on
    ``interface_ip``; ``timeout`` bounds how long replies are awaited.
    """

    def __init__(
        self,
        interface_ip: str,
        prefix: int,
        *,
        timeout: float = AUTOIP_TIMEOUT_S,
        link=None,
    ) -> None:
        self.timeout = timeout
        self._link = link if link is not None else NetLink(interface_ip, prefix, AUTOIP_PORT)
        self._random = random.SystemRandom()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying link."""
        self._link.close()

    def _replies(self):
        """Yield replies of useful size until the timeout has passed."""
        start = time.monotonic()
        while time.monotonic() - start <= self.timeout:
            data = self._link.read(_RECEIVE_SIZE)
            if len(data) > _MIN_REPLY_SIZE:
                yield data

    def scan(self) -> list[DeviceInfo]:
        """Broadcast a scan and collect the replying devices, one per MAC address."""
        telegram_id = self._random.getrandbits(32)
        self._link.write(
            build_scan_packet(telegram_id, self._link.local_addr, self._link.network_mask)
        )

        devices: dict[str, DeviceInfo] = {}
        for reply in self._replies():
            info = self._parse_reply(reply, telegram_id)
            if info is not None and info.mac_address not in devices:
                devices[info.mac_address] = info

        if not devices:
            _log.warning("scan timed out without replies")
        return list(devices.values())

    @staticmethod
    def _parse_reply(reply: bytes, telegram_id: int) -> DeviceInfo | None:
        kind = reply[0]
        if kind == _RPL_NETSCAN:
            (received_id,) = _U32.unpack_from(reply, 10)
            if received_id != telegram_id:
                return None
            info = parse_autoip_binary(reply)
            return None if info.mac_address == INVALID_MAC else info
        if kind == _RPL_SCAN_COLA_B:
            (payload_size,) = _U16.unpack_from(reply, 2)
            (received_id,) = _U32.unpack_from(reply, 10)
            if received_id != telegram_id:
                return None
            start = _MIN_REPLY_SIZE
            if len(reply) < start + payload_size:
                _log.warning("received invalid AutoIP packet")
                return None
            try:
                return parse_autoip_xml(reply[start:start + payload_size])
            except (ValueError, ET.ParseError):
                _log.warning("parsing XML scan reply failed")
        return None

    def assign(
        self,
        destination_mac: str,
        cola_version: ColaVersion,
        ip_addr: str = "192.168.1.10",
        ip_mask: str = "255.255.255.0",
        ip_gateway: str = "0.0.0.0",
        dhcp_enabled: bool = False,
        reconfiguration_time_ms: int = 5000,
    ) -> bool:
        """Send a new IP configuration to the device with ``destination_mac``.

        On confirmation waits ``reconfiguration_time_ms`` for the device to
        come back and returns True; returns False if no confirmation arrives.
        """
        telegram_id = self._random.getrandbits(32)
        self._link.write(
            build_assign_packet(
                telegram_id, destination_mac, cola_version, ip_addr, ip_mask, ip_gateway, dhcp_enabled
            )
        )
        for reply in self._replies():
            if reply[0] == _RPL_IPCONFIG:
                time.sleep(reconfiguration_time_ms / 1000.0)
                return True
        _log.warning("assign timed out")
        return False