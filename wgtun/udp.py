"""UDP sockets for sending and receiving tunnel traffic."""

from __future__ import annotations

import errno as _errno
import socket
import sys
from ipaddress import ip_address
from typing import Optional, Tuple

SocketAddr = Tuple[str, int]

# Value of SO_MARK on Linux, for interpreters whose socket module lacks it.
_SO_MARK_LINUX = 36


class UDPError(Exception):
    """A socket operation failed.

    ``errno`` holds the operating-system error number when there is one.
    """

    def __init__(self, message: str, errno: Optional[int] = None) -> None:
        super().__init__(message)
        self.errno = errno


def _error(exc: OSError) -> UDPError:
    return UDPError(exc.strerror or str(exc), exc.errno)


def _address_version(addr: SocketAddr) -> int:
    return ip_address(addr[0]).version


class UDPSocket:
    """A UDP socket bound to one address family (4 or 6).

    Configuration methods return the socket itself so calls can be chained.
    """

    def __init__(self, version: int) -> None:
        if version not in (4, 6):
            raise ValueError(f"IP version must be 4 or 6, not {version}")
        family = socket.AF_INET if version == 4 else socket.AF_INET6
        try:
            self._sock = socket.socket(family, socket.SOCK_DGRAM, 0)
        except OSError as exc:
            raise _error(exc) from exc
        self.version = version

    @classmethod
    def ipv4(cls) -> "UDPSocket":
        """Create a new IPv4 UDP socket."""
        return cls(4)

    @classmethod
    def ipv6(cls) -> "UDPSocket":
        """Create a new IPv6 UDP socket."""
        return cls(6)

    def _check_version(self, addr: SocketAddr) -> None:
        if _address_version(addr) != self.version:
            raise ValueError(
                f"cannot use IPv{self.version} socket with address {addr[0]}"
            )

    def _sockaddr(self, addr: SocketAddr) -> tuple:
        host, port = addr[0], addr[1]
        if self.version == 6:
            return (host, port, 0, 0)
        return (host, port)

    def bind(self, port: int) -> "UDPSocket":
        """Bind to ``port`` on every local address."""
        host = "0.0.0.0" if self.version == 4 else "::"
        try:
            self._sock.bind(self._sockaddr((host, port)))
        except OSError as exc:
            raise _error(exc) from exc
        return self

    def connect(self, addr: SocketAddr) -> "UDPSocket":
        """Connect to a remote ``(host, port)``; the family must match the socket."""
        self._check_version(addr)
        try:
            self._sock.connect(self._sockaddr(addr))
        except OSError as exc:
            raise _error(exc) from exc
        return self

    def set_non_blocking(self) -> "UDPSocket":
        """Put the socket in non-blocking mode."""
        try:
            self._sock.setblocking(False)
        except OSError as exc:
            raise _error(exc) from exc
        return self

    def set_reuse(self) -> "UDPSocket":
        """Allow several sockets to bind the same port."""
        if sys.platform.startswith("linux"):
            # SO_REUSEPORT on Linux won't prefer a connected IPv6 socket.
            option = socket.SO_REUSEADDR
        else:
            option = getattr(socket, "SO_REUSEPORT", socket.SO_REUSEADDR)
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, option, 1)
        except OSError as exc:
            raise _error(exc) from exc
        return self

    def set_fwmark(self, mark: int) -> None:
        """Mark every packet sent by this socket (Linux only; a no-op elsewhere)."""
        if not sys.platform.startswith("linux"):
            return
        option = getattr(socket, "SO_MARK", _SO_MARK_LINUX)
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, option, mark)
        except OSError as exc:
            raise _error(exc) from exc

    def port(self) -> int:
        """Return the local port of an IPv4 socket."""
        if self.version != 4:
            raise ValueError("Can only query ports of IPv4 sockets")
        try:
            return self._sock.getsockname()[1]
        except OSError as exc:
            raise _error(exc) from exc

    def sendto(self, data: bytes, addr: SocketAddr) -> int:
        """Send ``data`` to ``addr``; return the bytes sent, or 0 on error."""
        self._check_version(addr)
        try:
            return self._sock.sendto(data, self._sockaddr(addr))
        except OSError:
            return 0

    def recvfrom(self, size: int) -> Tuple[SocketAddr, bytes]:
        """Receive one datagram of at most ``size`` bytes with its origin."""
        try:
            data, origin = self._sock.recvfrom(size)
        except OSError as exc:
            raise _error(exc) from exc
        return (origin[0], origin[1]), data

    def read(self, size: int) -> bytes:
        """Receive one datagram on a connected socket."""
        try:
            return self._sock.recv(size)
        except OSError as exc:
            raise _error(exc) from exc

    def write(self, data: bytes) -> int:
        """Send on a connected socket; return the bytes sent, or 0 on error."""
        try:
            return self._sock.send(data)
        except OSError:
            return 0

    def shutdown(self) -> None:
        """Shut both directions of the socket down, waking any pollers."""
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            if exc.errno not in (_errno.ENOTCONN, _errno.EBADF):
                raise _error(exc) from exc

    def fileno(self) -> int:
        """The underlying file descriptor."""
        return self._sock.fileno()

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()

    def __enter__(self) -> "UDPSocket":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"UDPSocket(version={self.version}, fd={self._sock.fileno()})"