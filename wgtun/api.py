"""Line-based configuration protocol spoken over the device's control socket.

A request starts with ``get=1`` or ``set=1`` on its own line. The reply ends
with ``errno=N`` and an empty line, where ``N`` is zero on success.

The device handed to these functions is expected to provide:

* ``key_pair``: ``None`` or ``(private_key, public_key)`` as 32-byte values
* ``listen_port``: the port in use, 0 when none
* ``fwmark``: ``None`` or the firewall mark
* ``peers``: a mapping from public key bytes to :class:`wgtun.peer.Peer`
* ``set_key(key)``, ``open_listen_socket(port)``, ``set_fwmark(mark)``,
  ``clear_peers()``, ``trigger_yield()``, ``cancel_yield()`` and
  ``update_peer(public_key, remove, replace_ips, endpoint, allowed_ips,
  keepalive, preshared_key)``
"""

from __future__ import annotations

import errno
import os
import re
from ipaddress import ip_address
from typing import Any, List, Optional, TextIO, Tuple

from wgtun.allowed_ips import AllowedIP
from wgtun.lock import LockReadGuard
from wgtun.privileges import DropPrivilegesError, get_saved_ids
from wgtun.udp import SocketAddr

SOCK_DIR = "/var/run/wireguard"

_KEY_RE = re.compile(r"[0-9a-fA-F]{64}")
_UINT_RE = re.compile(r"\+?[0-9]+")
_PORT_RE = re.compile(r"[0-9]+")


def socket_path(name: str) -> str:
    """Path of the control socket for the interface ``name``."""
    return os.path.join(SOCK_DIR, f"{name}.sock")


def create_sock_dir() -> None:
    """Create the socket directory and hand it to the user who started us.

    Failures are ignored: the directory may exist already, and the owner
    only matters for cleaning up after privileges have been dropped.
    """
    try:
        os.mkdir(SOCK_DIR)
    except OSError:
        pass
    try:
        uid, gid = get_saved_ids()
    except DropPrivilegesError:
        return
    try:
        os.chown(SOCK_DIR, uid, gid)
    except OSError:
        pass


def parse_key(text: str) -> bytes:
    """Parse a 32-byte key written as 64 hexadecimal digits."""
    if not _KEY_RE.fullmatch(text):
        raise ValueError(f"invalid key: {text!r}")
    return bytes.fromhex(text)


def parse_bool(text: str) -> bool:
    """Parse exactly ``true`` or ``false``."""
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError(f"invalid boolean: {text!r}")


def parse_endpoint(text: str) -> SocketAddr:
    """Parse ``a.b.c.d:port`` or ``[v6]:port`` into ``(host, port)``."""
    if text.startswith("["):
        host, sep, port_text = text[1:].partition("]:")
        if not sep:
            raise ValueError(f"invalid endpoint: {text!r}")
        version = 6
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep:
            raise ValueError(f"invalid endpoint: {text!r}")
        version = 4
    if "%" in host or not _PORT_RE.fullmatch(port_text):
        raise ValueError(f"invalid endpoint: {text!r}")
    try:
        addr = ip_address(host)
    except ValueError:
        raise ValueError(f"invalid endpoint: {text!r}") from None
    port = int(port_text)
    if addr.version != version or port > 0xFFFF:
        raise ValueError(f"invalid endpoint: {text!r}")
    return str(addr), port


def _parse_uint(text: str, bits: int) -> int:
    if not _UINT_RE.fullmatch(text):
        raise ValueError(f"invalid number: {text!r}")
    value = int(text)
    if value >= 1 << bits:
        raise ValueError(f"number out of range: {text!r}")
    return value


def _format_endpoint(addr: SocketAddr) -> str:
    host, port = addr[0], addr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _read_line(reader: TextIO) -> Optional[str]:
    """Read one line without its newline; None if reading failed."""
    try:
        line = reader.readline()
    except (OSError, ValueError):
        return None
    if line.endswith("\n"):
        line = line[:-1]
    return line


def handle_command(reader: TextIO, writer: TextIO, guard: LockReadGuard) -> Optional[int]:
    """Serve one request and write its status; return the status.

    Returns None, writing nothing, when the request line cannot be read,
    which usually means the other side has gone away.
    """
    command = _read_line(reader)
    if command is None:
        return None
    if command == "get=1":
        status = api_get(writer, guard.value)
    elif command == "set=1":
        status = api_set(reader, guard)
    else:
        status = errno.EIO
    try:
        writer.write(f"errno={status}\n\n")
        writer.flush()
    except OSError:
        pass
    return status


def api_get(writer: TextIO, device: Any) -> int:
    """Write the device's configuration and statistics; return 0."""
    lines: List[str] = []
    if device.key_pair is not None:
        lines.append(f"private_key={bytes(device.key_pair[0]).hex()}")
    if device.listen_port != 0:
        lines.append(f"listen_port={device.listen_port}")
    if device.fwmark is not None:
        lines.append(f"fwmark={device.fwmark}")

    for public_key, peer in device.peers.items():
        lines.append(f"public_key={bytes(public_key).hex()}")
        preshared = peer.preshared_key()
        if preshared is not None:
            lines.append(f"preshared_key={bytes(preshared).hex()}")
        keepalive = peer.persistent_keepalive()
        if keepalive is not None:
            lines.append(f"persistent_keepalive_interval={keepalive}")
        addr = peer.endpoint().addr
        if addr is not None:
            lines.append(f"endpoint={_format_endpoint(addr)}")
        for ip, cidr in peer.allowed_ips():
            lines.append(f"allowed_ip={ip}/{cidr}")
        elapsed = peer.time_since_last_handshake()
        if elapsed is not None:
            seconds = elapsed.days * 86400 + elapsed.seconds
            lines.append(f"last_handshake_time_sec={seconds}")
            lines.append(f"last_handshake_time_nsec={elapsed.microseconds * 1000}")
        stats = peer.tunnel.stats()
        tx_bytes, rx_bytes = stats[1], stats[2]
        lines.append(f"rx_bytes={rx_bytes}")
        lines.append(f"tx_bytes={tx_bytes}")

    try:
        writer.write("".join(line + "\n" for line in lines))
    except OSError:
        pass
    return 0


def api_set(reader: TextIO, guard: LockReadGuard) -> int:
    """Apply interface settings and peer sections read from ``reader``."""

    def apply(device: Any) -> int:
        device.cancel_yield()
        while True:
            line = _read_line(reader)
            if line is None:
                return 0
            if not line:
                return 0
            parts = line.split("=")
            if len(parts) != 2:
                return errno.EPROTO
            key, value = parts

            if key == "private_key":
                try:
                    device.set_key(parse_key(value))
                except ValueError:
                    return errno.EINVAL
            elif key == "listen_port":
                try:
                    port = _parse_uint(value, 16)
                except ValueError:
                    return errno.EINVAL
                try:
                    device.open_listen_socket(port)
                except Exception:
                    return errno.EADDRINUSE
            elif key == "fwmark":
                try:
                    mark = _parse_uint(value, 32)
                except ValueError:
                    return errno.EINVAL
                try:
                    device.set_fwmark(mark)
                except Exception:
                    return errno.EADDRINUSE
            elif key == "replace_peers":
                try:
                    replace = parse_bool(value)
                except ValueError:
                    return errno.EINVAL
                if replace:
                    device.clear_peers()
            elif key == "public_key":
                try:
                    public_key = parse_key(value)
                except ValueError:
                    return errno.EINVAL
                return api_set_peer(reader, device, public_key)
            else:
                return errno.EINVAL

    result = guard.try_writeable(lambda device: device.trigger_yield(), apply)
    return errno.EIO if result is None else result


def api_set_peer(reader: TextIO, device: Any, public_key: bytes) -> int:
    """Apply peer sections, starting with the peer ``public_key``."""
    while True:
        remove = False
        replace_ips = False
        endpoint: Optional[Tuple[str, int]] = None
        keepalive: Optional[int] = None
        preshared_key: Optional[bytes] = None
        allowed_ips: List[AllowedIP] = []
        next_key: Optional[bytes] = None

        while next_key is None:
            line = _read_line(reader)
            if line is None:
                return 0
            if not line:
                device.update_peer(
                    public_key, remove, replace_ips, endpoint, allowed_ips,
                    keepalive, preshared_key,
                )
                return 0
            key, sep, value = line.partition("=")
            if not sep:
                return errno.EPROTO

            try:
                if key == "remove":
                    remove = parse_bool(value)
                elif key == "preshared_key":
                    preshared_key = parse_key(value)
                elif key == "endpoint":
                    endpoint = parse_endpoint(value)
                elif key == "persistent_keepalive_interval":
                    keepalive = _parse_uint(value, 16)
                elif key == "replace_allowed_ips":
                    replace_ips = parse_bool(value)
                elif key == "allowed_ip":
                    allowed_ips.append(AllowedIP.parse(value))
                elif key == "public_key":
                    # A new peer section: commit the current peer first.
                    device.update_peer(
                        public_key, remove, replace_ips, endpoint, allowed_ips,
                        keepalive, preshared_key,
                    )
                    next_key = parse_key(value)
                elif key == "protocol_version":
                    if _parse_uint(value, 32) != 1:
                        return errno.EINVAL
                else:
                    return errno.EINVAL
            except ValueError:
                return errno.EINVAL

        public_key = next_key