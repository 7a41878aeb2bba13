"""Stream and datagram transports used to talk to a sensor."""

from __future__ import annotations

import errno
import socket
from abc import ABC, abstractmethod

_UDP_TIMEOUT_SECONDS = 5.0
_DEFAULT_CONNECT_TIMEOUT = 5.0


def _check_ipv4(ipaddr: str) -> None:
    """Raise ValueError unless ``ipaddr`` is a dotted IPv4 address."""
    try:
        socket.inet_pton(socket.AF_INET, ipaddr)
    except (OSError, TypeError) as exc:
        raise ValueError(f"invalid IPv4 address: {ipaddr!r}") from exc


class Transport(ABC):
    """A byte transport to a device.

    Failures surface as ``OSError``; a receive timeout raises ``TimeoutError``.
    """

    _sock: socket.socket | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise OSError(errno.EBADF, "socket is not open")
        return self._sock

    @abstractmethod
    def send(self, data) -> int:
        """Send ``data`` and return the number of bytes sent."""

    def recv(self, max_bytes: int) -> bytes:
        """Receive at most ``max_bytes`` with a single receive call."""
        if max_bytes < 0:
            raise ValueError("max_bytes must not be negative")
        return self._socket().recv(max_bytes)

    @abstractmethod
    def read(self, n_bytes: int) -> bytes:
        """Receive ``n_bytes``, repeating receive calls as needed."""

    def shutdown(self) -> None:
        """Close the socket; closing a closed transport does nothing."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def last_error(self) -> int:
        """Return and clear the pending socket error (0 if none)."""
        return self._socket().getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


class TcpSocket(Transport):
    """A TCP connection to a device."""

    def __init__(self) -> None:
        self._sock = None

    def connect(self, ipaddr: str, port: int, timeout: float | None = _DEFAULT_CONNECT_TIMEOUT) -> None:
        """Connect to ``ipaddr:port``.

        ``timeout`` (seconds) bounds the connection attempt and each later
        receive. Raises ValueError for a malformed address and OSError when
        the peer cannot be reached.
        """
        self.shutdown()
        _check_ipv4(ipaddr)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
        try:
            sock.settimeout(timeout)
            sock.connect((ipaddr, port))
        except BaseException:
            sock.close()
            raise
        self._sock = sock

    def shutdown(self) -> None:
        super().shutdown()

    def send(self, data) -> int:
        return self._socket().send(data)

    def recv(self, max_bytes: int) -> bytes:
        return super().recv(max_bytes)

    def read(self, n_bytes: int) -> bytes:
        """Receive ``n_bytes``; fewer are returned if the peer closes the stream."""
        if n_bytes < 0:
            raise ValueError("n_bytes must not be negative")
        sock = self._socket()
        buffer = bytearray()
        while len(buffer) < n_bytes:
            chunk = sock.recv(n_bytes - len(buffer))
            if not chunk:
                break
            buffer += chunk
        return bytes(buffer)

    def last_error(self) -> int:
        return super().last_error()


class UdpSocket(Transport):
    """A datagram socket bound to a fixed peer address."""

    def __init__(self) -> None:
        self._sock = None
        self._peer: tuple[str, int] | None = None

    def connect(self, ipaddr: str, port: int) -> None:
        """Create the socket and remember ``ipaddr:port`` as the peer.

        No datagram is exchanged; the receive timeout is five seconds and
        broadcasting is allowed.
        """
        self.shutdown()
        _check_ipv4(ipaddr)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.settimeout(_UDP_TIMEOUT_SECONDS)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except BaseException:
            sock.close()
            raise
        self._sock = sock
        self._peer = (ipaddr, port)

    @property
    def peer(self) -> tuple[str, int] | None:
        return self._peer

    def shutdown(self) -> None:
        super().shutdown()

    def send(self, data) -> int:
        sock = self._socket()
        return sock.sendto(data, self._peer)

    def recv(self, max_bytes: int) -> bytes:
        return super().recv(max_bytes)

    def read(self, n_bytes: int) -> bytes:
        """Receive datagrams until ``n_bytes`` have arrived.

        Empty datagrams are accepted and the loop continues.
        """
        if n_bytes < 0:
            raise ValueError("n_bytes must not be negative")
        sock = self._socket()
        buffer = bytearray()
        while len(buffer) < n_bytes:
            buffer += sock.recv(n_bytes - len(buffer))
        return bytes(buffer)

    def last_error(self) -> int:
        return super().last_error()