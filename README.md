# wgtun

Building blocks for a userspace WireGuard-style tunnel device. The package
is plain Python and has no third-party dependencies.

## What is inside

- `wgtun.allowed_ips`
  - `AllowedIP.parse("addr/cidr")` reads an address and a prefix length and
    raises `ValueError` for malformed text or a prefix that is too long.
  - `AllowedIps` is a longest-prefix-match table that maps IPv4 and IPv6
    networks to any data. `insert(addr, cidr, data)` truncates host bits and
    returns the data it replaced. `find(addr)` returns the most specific
    match or `None`. `remove(predicate)` drops matching entries and `clear()`
    empties the table. Iteration yields `(data, network_address,
    prefix_length)`, IPv4 first, in address order.
- `wgtun.lock`: `Lock` is a read-mostly lock. `Lock.read()` returns a
  `LockReadGuard`, which can be used as a context manager. Its
  `try_writeable(prep_func, mut_func)` upgrades cooperatively: new readers
  are held back, `prep_func` runs, and `mut_func` runs once the other readers
  have released their guards.
- `wgtun.privileges`: `get_saved_ids()` returns the uid and gid of the
  logged-in user. `drop_privileges()` switches to them and checks that root
  cannot be regained. Failures raise `DropPrivilegesError`.
- `wgtun.udp`: `UDPSocket.ipv4()` and `UDPSocket.ipv6()` create sockets with
  chainable `set_non_blocking()`, `set_reuse()`, `bind(port)` and
  `connect((host, port))`. It also has `set_fwmark` (Linux only),
  `sendto`, `recvfrom`, `read`, `write` and `shutdown`. Errors raise
  `UDPError`. `sendto` and `write` return 0 on failure.
- `wgtun.peer`: `Peer` holds a tunnel object, an index, an `Endpoint`, its
  allowed IPs and an optional preshared key. `connect_endpoint(port,
  fwmark)` opens a connected `UDPSocket` to the endpoint.
- `wgtun.tun`: `TunSocket.open(name)` opens a TUN interface. On Linux this
  uses `/dev/net/tun`, and a decimal name is taken as an already open file
  descriptor. On macOS the name must be `utun` or `utunN`, and
  `parse_utun_name` checks it. The socket has `read`, `write4`, `write6`,
  `mtu()` and `name()`.
- `wgtun.api`: the line-based `get=1` / `set=1` configuration protocol.
  `handle_command(reader, writer, guard)` serves one request from
  text streams and ends the reply with `errno=N`. `socket_path(name)` gives
  `/var/run/wireguard/<name>.sock`. `parse_key`, `parse_bool` and
  `parse_endpoint` parse the protocol's values. The device object it is
  given must provide the attributes and methods listed in the module
  docstring.

## Example

```python
from ipaddress import ip_address
from wgtun.allowed_ips import AllowedIP, AllowedIps

table = AllowedIps()
table.insert(ip_address("192.168.4.0"), 24, "a")
table.insert(ip_address("192.168.4.4"), 32, "b")

assert table.find(ip_address("192.168.4.20")) == "a"
assert table.find(ip_address("192.168.4.4")) == "b"

entry = AllowedIP.parse("10.0.0.0/8")
print(entry)  # 10.0.0.0/8
```

## What it does not do

The package does not provide a running tunnel. It has no device object, no
event loop, no socket listener and no command-line program. `wgtun.api`
handles requests on streams that you supply. It expects you to bring the
device and the tunnel (the handshake and encryption state that a `Peer`
wraps).

Opening TUN devices, binding privileged ports and changing user IDs need
the usual system privileges.

## Running the tests

```
pip install -e ".[test]"
pytest
```