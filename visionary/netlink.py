"""Datagram link bound to one network interface, with subnet broadcast support."""

from __future__ import annotations

import errno
import logging
import socket
import sys

_log = logging.getLogger(__name__)

SOCKET_TIMEOUT_S = 0.1
BROADCAST_IP = "255.255.255.255"
INADDR_BROADCAST = 0xFFFFFFFF
_RECEIVE_BUFFER_SIZE = 4 * 1024 * 1024
_ADDR_MASK = 0xFFFFFFFF


def string_to_addr(ip: str) -> int:
    """Convert a dotted IPv4 address to an integer in host order."""
    try:
        packed = socket.inet_pton(socket.AF_INET, ip)
    except (OSError, TypeError) as exc:
        raise ValueError(f"invalid IPv4 address: {ip!r}") from exc
    return int.from_bytes(packed, "big")


def addr_to_string(addr: int) -> str:
    """Convert an integer IPv4 address in host order to dotted notation."""
    if not 0 <= addr <= _ADDR_MASK:
        raise ValueError(f"IPv4 address out of range: {addr}")
    return socket.inet_ntop(socket.AF_INET, addr.to_bytes(4, "big"))


def _prefix_to_mask(prefix: int) -> int:
    if not 0 <= prefix <= 32:
        raise ValueError(f"invalid network prefix: {prefix}")
    return (_ADDR_MASK << (32 - prefix)) & _ADDR_MASK


def _try_setsockopt(sock: socket.socket, option: int, value: int, name: str) -> None:
    try:
        sock.setsockopt(socket.SOL_SOCKET, option, value)
    except OSError:
        _log.warning("set %s failed", name)


def _try_bind(sock: socket.socket, address: tuple[str, int]) -> None:
    try:
        sock.bind(address)
    except OSError:
        _log.warning("bind to %s:%d failed", *address)


class NetLink:
    """A UDP link that sends through the interface owning ``local_ip``.

    Giving the limited broadcast address or the subnet broadcast address as
    remote makes the link broadcast to both, so that devices in any network
    configuration are reached.
    """

    def __init__(self, local_ip: str, prefix: int, port: int, remote_ip: str = BROADCAST_IP) -> None:
        self._local = string_to_addr(local_ip)
        remote = string_to_addr(remote_ip)
        self._port = port
        self._netmask = _prefix_to_mask(prefix)

        subnet_broadcast = self._local | (~self._netmask & _ADDR_MASK)
        self._broadcast = remote in (INADDR_BROADCAST, subnet_broadcast)
        if self._broadcast:
            remote = subnet_broadcast
        self._remote = remote

        if (self._local & self._netmask) != (self._remote & self._netmask):
            _log.warning("remote in different network")

        self._rxsock: socket.socket | None = None
        self._sock: socket.socket | None = None
        try:
            self._open_sockets()
        except BaseException:
            self.close()
            raise

    def _open_sockets(self) -> None:
        separate_rx = self._broadcast and sys.platform != "win32"
        if separate_rx:
            self._rxsock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._rxsock.settimeout(SOCKET_TIMEOUT_S)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.settimeout(SOCKET_TIMEOUT_S)

        if self._broadcast:
            _try_setsockopt(self._sock, socket.SO_BROADCAST, 1, "SO_BROADCAST")
            if self._rxsock is not None:
                _try_setsockopt(self._rxsock, socket.SO_BROADCAST, 1, "SO_BROADCAST")
        else:
            _try_setsockopt(self._sock, socket.SO_RCVBUF, _RECEIVE_BUFFER_SIZE, "SO_RCVBUF")

        # Bind to the local address so traffic leaves through the intended interface.
        _try_bind(self._sock, (addr_to_string(self._local), self._port))
        if self._rxsock is not None:
            _try_bind(self._rxsock, (BROADCAST_IP, self._port))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def port(self) -> int:
        return self._port

    @property
    def local_addr(self) -> int:
        """Local address in host order."""
        return self._local

    @property
    def network_mask(self) -> int:
        """Network mask in host order."""
        return self._netmask

    @property
    def remote_addr(self) -> int:
        """Effective remote address in host order."""
        return self._remote

    @property
    def broadcast(self) -> bool:
        return self._broadcast

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise OSError(errno.EBADF, "link is closed")
        return self._sock

    def write(self, data) -> int:
        """Send ``data`` to the remote; broadcasts also go to the limited broadcast address."""
        sock = self._socket()
        if self._broadcast:
            sock.sendto(data, (BROADCAST_IP, self._port))
        return sock.sendto(data, (addr_to_string(self._remote), self._port))

    def read(self, size: int = 1500) -> bytes:
        """Receive one datagram of at most ``size`` bytes; empty if none arrived in time."""
        if size < 0:
            raise ValueError("size must not be negative")
        sock = self._socket()
        data = b""
        try:
            data = sock.recv(size)
        except OSError:
            data = b""
        if not data and self._rxsock is not None:
            try:
                data = self._rxsock.recv(size)
            except OSError:
                data = b""
        return data

    def close(self) -> None:
        """Close the sockets; closing a closed link does nothing."""
        for sock in (self._sock, self._rxsock):
            if sock is not None:
                sock.close()
        self._sock = None
        self._rxsock = None