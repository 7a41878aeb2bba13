import socket

import pytest

from visionary.transport import TcpSocket, UdpSocket


@pytest.fixture
def tcp_server():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    server.settimeout(5)
    yield server
    server.close()


@pytest.fixture
def tcp_pair(tcp_server):
    client = TcpSocket()
    client.connect("127.0.0.1", tcp_server.getsockname()[1], 2.0)
    peer, _ = tcp_server.accept()
    peer.settimeout(5)
    yield client, peer
    client.shutdown()
    peer.close()


@pytest.fixture
def udp_server():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(5)
    yield server
    server.close()


def test_tcp_send_reaches_peer(tcp_pair):
    client, peer = tcp_pair
    assert client.send(b"BlbRqst") == 7
    assert peer.recv(16) == b"BlbRqst"


def test_tcp_read_collects_split_writes(tcp_pair):
    client, peer = tcp_pair
    peer.sendall(b"abc")
    peer.sendall(b"defg")
    assert client.read(7) == b"abcdefg"


def test_tcp_read_short_when_peer_closes(tcp_pair):
    client, peer = tcp_pair
    peer.sendall(b"xy")
    peer.close()
    assert client.read(10) == b"xy"


def test_tcp_recv_limits_size(tcp_pair):
    client, peer = tcp_pair
    peer.sendall(b"0123456789")
    data = client.recv(4)
    assert len(data) <= 4
    assert b"0123456789".startswith(data)


def test_tcp_read_zero_bytes(tcp_pair):
    client, _ = tcp_pair
    assert client.read(0) == b""


def test_tcp_last_error_is_zero_when_healthy(tcp_pair):
    client, _ = tcp_pair
    assert client.last_error() == 0


def test_tcp_recv_times_out(tcp_server):
    client = TcpSocket()
    client.connect("127.0.0.1", tcp_server.getsockname()[1], 0.2)
    try:
        with pytest.raises(TimeoutError):
            client.recv(1)
    finally:
        client.shutdown()


def test_tcp_invalid_address():
    client = TcpSocket()
    with pytest.raises(ValueError):
        client.connect("not-an-ip", 2112)
    assert client.is_open is False


def test_tcp_connection_refused():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    client = TcpSocket()
    with pytest.raises(OSError):
        client.connect("127.0.0.1", port, 1.0)
    assert client.is_open is False


def test_tcp_operations_on_closed_socket_raise():
    client = TcpSocket()
    with pytest.raises(OSError):
        client.send(b"x")
    with pytest.raises(OSError):
        client.read(1)
    with pytest.raises(OSError):
        client.last_error()


def test_tcp_shutdown_and_context_manager(tcp_server):
    with TcpSocket() as client:
        client.connect("127.0.0.1", tcp_server.getsockname()[1])
        assert client.is_open is True
    assert client.is_open is False
    client.shutdown()
    assert client.is_open is False


def test_tcp_negative_read_rejected(tcp_pair):
    client, _ = tcp_pair
    with pytest.raises(ValueError):
        client.read(-1)


def test_udp_send_and_recv(udp_server):
    port = udp_server.getsockname()[1]
    with UdpSocket() as client:
        client.connect("127.0.0.1", port)
        assert client.peer == ("127.0.0.1", port)
        assert client.send(b"hello") == 5
        data, addr = udp_server.recvfrom(64)
        assert data == b"hello"
        udp_server.sendto(b"reply", addr)
        assert client.recv(64) == b"reply"


def test_udp_read_concatenates_datagrams(udp_server):
    with UdpSocket() as client:
        client.connect("127.0.0.1", udp_server.getsockname()[1])
        client.send(b"?")
        _, addr = udp_server.recvfrom(8)
        udp_server.sendto(b"ab", addr)
        udp_server.sendto(b"cd", addr)
        assert client.read(4) == b"abcd"


def test_udp_broadcast_enabled(udp_server):
    with UdpSocket() as client:
        client.connect("127.0.0.1", udp_server.getsockname()[1])
        assert client.last_error() == 0
        assert client.is_open is True


def test_udp_invalid_address():
    client = UdpSocket()
    with pytest.raises(ValueError):
        client.connect("300.1.2.3", 2114)
    assert client.is_open is False


def test_udp_send_before_connect_raises():
    client = UdpSocket()
    with pytest.raises(OSError):
        client.send(b"x")


def test_udp_reconnect_replaces_peer(udp_server):
    port = udp_server.getsockname()[1]
    client = UdpSocket()
    client.connect("127.0.0.2", port)
    client.connect("127.0.0.1", port)
    try:
        assert client.peer == ("127.0.0.1", port)
        client.send(b"z")
        assert udp_server.recvfrom(8)[0] == b"z"
    finally:
        client.shutdown()
    assert client.is_open is False