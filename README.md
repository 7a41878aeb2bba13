# visionary

Networking helpers for Visionary 3D cameras: plain TCP and UDP transports,
a datagram link bound to one network interface that handles subnet
broadcast, and AutoIP discovery and IP reconfiguration of devices.
It uses only the standard library.

## Modules

- `visionary.transport`: `Transport` (abstract base), `TcpSocket` and
  `UdpSocket`.
- `visionary.netlink`: `NetLink`, `string_to_addr` and `addr_to_string`.
- `visionary.autoip`: `VisionaryAutoIP`, `DeviceInfo`, `ColaVersion`,
  `AuthVersion`, the reply parsers `parse_autoip_xml` and
  `parse_autoip_binary`, the telegram builders `build_scan_packet` and
  `build_assign_packet`, and `mac_to_bytes` / `mac_to_string`.

## Installation

```
pip install .
```

## Transports

`TcpSocket.connect(ipaddr, port, timeout=5.0)` connects to a dotted IPv4
address. The timeout, in seconds, bounds the connection attempt and every
later receive. A malformed address raises `ValueError`, and an unreachable
peer raises `OSError`.

`UdpSocket.connect(ipaddr, port)` creates a datagram socket with a
five-second receive timeout and broadcasting enabled, and remembers the peer
that `send` will address. It exchanges no datagram.

Both transports offer the same methods:

- `send(data)` returns the number of bytes sent.
- `recv(max_bytes)` makes one receive call.
- `read(n_bytes)` keeps receiving until `n_bytes` have arrived. A TCP read
  returns fewer bytes if the peer closes the stream.
- `last_error()` returns and clears the pending socket error.
- `shutdown()` closes the socket. Calling it on a closed transport does
  nothing.

Both can be used as context managers.

```python
from visionary.transport import TcpSocket

with TcpSocket() as sock:
    sock.connect("192.168.1.10", 2114, timeout=5.0)
    header = sock.read(8)
```

## Interface-bound links

`NetLink(local_ip, prefix, port, remote_ip="255.255.255.255")` binds a UDP
socket to `local_ip` so that traffic leaves through that interface. An
invalid address or a prefix outside 0 to 32 raises `ValueError`.

When the remote is the limited broadcast address or the subnet's broadcast
address, the link works in broadcast mode:

- `write(data)` sends to both broadcast addresses.
- On POSIX systems, `read` also listens on a second socket bound to the
  broadcast address.

`read(size=1500)` returns one datagram, or `b""` if nothing arrived within
0.1 s. The properties `local_addr`, `network_mask`, `remote_addr`,
`broadcast`, `port` and `is_open` describe the link. `close()` releases the
sockets.

`string_to_addr("192.168.1.1")` returns `3232235777`. `addr_to_string`
converts such an integer back to dotted notation.

## Finding and configuring devices

```python
from visionary.autoip import ColaVersion, VisionaryAutoIP

with VisionaryAutoIP("192.168.1.100", 24) as autoip:
    for device in autoip.scan():
        print(device.mac_address, device.ip_address, device.device_ident, device.cola_port)

    autoip.assign(
        "00:00:5e:00:53:01",
        ColaVersion.COLA_2,
        ip_addr="192.168.1.20",
        ip_mask="255.255.255.0",
        ip_gateway="0.0.0.0",
        dhcp_enabled=False,
        reconfiguration_time_ms=5000,
    )
```

`scan()` broadcasts a discovery telegram on port 30718. It collects replies
until the timeout passes, which is 10 s by default; pass `timeout=` to the
constructor to change it. The result holds one `DeviceInfo` per MAC address.
Both the XML replies of CoLa 1 devices and the binary replies of CoLa 2
devices are understood.

`assign(...)` sends a new IP configuration to one MAC address: XML for
`COLA_1`, binary for `COLA_2`. When the device confirms, it sleeps for
`reconfiguration_time_ms` and returns `True`. If no confirmation arrives
before the timeout, it returns `False`.

The constructor also accepts `link=` to use an existing object with the
`NetLink` interface instead of opening one.

The parsers and builders can be used on their own:

- `parse_autoip_binary(reply)` returns a `DeviceInfo` whose `mac_address` is
  `"invalid"` when the reply is truncated or names no port.
- `mac_to_bytes("00:00:5e:00:53:01")` gives the six address bytes.
- `mac_to_string` formats six bytes as lower-case hex separated by colons.

## What this package does not do

It does not decode the image frames a camera streams. It does not compute
point clouds from distance maps, and it does not write point clouds to files.
The transports carry the bytes, and interpreting them is left to the caller.
It also has no command-line program.

## Running the tests

```
pip install .[test]
pytest
```