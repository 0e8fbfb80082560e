"""Access to the kernel's TUN interface (Linux ``/dev/net/tun``, macOS utun)."""

from __future__ import annotations

import fcntl
import os
import re
import socket
import struct
import sys
from typing import Optional

_DARWIN = sys.platform == "darwin"

_IFNAMSIZ = 16
_IFREQ_SIZE = 40

# Linux
_TUNSETIFF = 0x4004_54CA
_SIOCGIFMTU_LINUX = 0x8921
_IFF_TUN = 0x0001
_IFF_NO_PI = 0x1000
_IFF_MULTI_QUEUE = 0x0100
_LINUX_DEFAULT_MTU = 1500

# Darwin
_CTRL_NAME = "com.apple.net.utun_control"
_SIOCGIFMTU_DARWIN = 0xC020_6933
_UTUN_OPT_IFNAME = 2
_UTUN_HEADER = 4

_U32_RE = re.compile(r"\+?[0-9]+")
_I32_RE = re.compile(r"[+-]?[0-9]+")


class TunError(Exception):
    """An operation on the TUN interface failed.

    ``errno`` holds the operating-system error number when there is one.
    """

    def __init__(self, message: str, errno: Optional[int] = None) -> None:
        super().__init__(message)
        self.errno = errno


class InvalidTunnelName(TunError):
    """The requested interface name cannot be used."""

    def __init__(self, message: str = "Invalid tunnel name") -> None:
        super().__init__(message)


def _error(exc: OSError, suffix: str = "") -> TunError:
    return TunError((exc.strerror or str(exc)) + suffix, exc.errno)


def parse_utun_name(name: str) -> int:
    """Return the utun control unit for a name of the form ``utun`` or ``utunN``.

    ``utun`` gives 0 (let the kernel choose) and ``utunN`` gives ``N + 1``.
    """
    if not name.startswith("utun"):
        raise InvalidTunnelName()
    index = name[4:]
    if not index:
        return 0
    if not _U32_RE.fullmatch(index):
        raise InvalidTunnelName()
    value = int(index)
    if value >= 0xFFFF_FFFF:
        raise InvalidTunnelName()
    return value + 1


def _fd_from_name(name: str) -> Optional[int]:
    if not _I32_RE.fullmatch(name):
        return None
    value = int(name)
    if not -(2**31) <= value < 2**31:
        return None
    return value


def _encode_ifname(name: str) -> bytes:
    raw = name.encode()
    if len(raw) >= _IFNAMSIZ:
        raise InvalidTunnelName()
    return raw


def _interface_mtu(name: str, request: int) -> int:
    raw = _encode_ifname(name)
    try:
        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM, 0)
    except OSError as exc:
        raise _error(exc) from exc
    with probe:
        buf = struct.pack("16si", raw, 0).ljust(_IFREQ_SIZE, b"\0")
        try:
            result = fcntl.ioctl(probe.fileno(), request, buf)
        except OSError as exc:
            raise _error(exc) from exc
    return struct.unpack_from("i", result, _IFNAMSIZ)[0]


class TunSocket:
    """An open TUN device carrying raw IP packets."""

    def __init__(self, fd: int, name: Optional[str] = None) -> None:
        self._fd = fd
        self._name = name
        self._closed = False
        self._sock: Optional[socket.socket] = None
        if _DARWIN:
            self._sock = socket.socket(
                getattr(socket, "PF_SYSTEM"),
                socket.SOCK_DGRAM,
                getattr(socket, "SYSPROTO_CONTROL"),
                fileno=fd,
            )

    @classmethod
    def open(cls, name: str) -> "TunSocket":
        """Create or attach to the TUN interface called ``name``.

        On Linux a name that is a decimal integer is taken to be an already
        open file descriptor. On macOS the name must be ``utun`` or ``utunN``.
        """
        if _DARWIN:
            return cls._open_darwin(name)
        return cls._open_linux(name)

    @classmethod
    def _open_linux(cls, name: str) -> "TunSocket":
        provided = _fd_from_name(name)
        if provided is not None:
            return cls(provided, name)

        try:
            fd = os.open("/dev/net/tun", os.O_RDWR)
        except OSError as exc:
            raise _error(exc) from exc
        try:
            raw = _encode_ifname(name)
            flags = _IFF_TUN | _IFF_NO_PI | _IFF_MULTI_QUEUE
            request = struct.pack("16sh", raw, flags).ljust(_IFREQ_SIZE, b"\0")
            try:
                fcntl.ioctl(fd, _TUNSETIFF, request)
            except OSError as exc:
                raise _error(exc) from exc
        except BaseException:
            os.close(fd)
            raise
        return cls(fd, name)

    @classmethod
    def _open_darwin(cls, name: str) -> "TunSocket":
        unit = parse_utun_name(name)
        try:
            sock = socket.socket(
                getattr(socket, "PF_SYSTEM"),
                socket.SOCK_DGRAM,
                getattr(socket, "SYSPROTO_CONTROL"),
            )
        except OSError as exc:
            raise _error(exc) from exc
        try:
            sock.connect((_CTRL_NAME, unit))
        except OSError as exc:
            sock.close()
            raise _error(exc, "(did you run with sudo?)") from exc
        return cls(sock.detach())

    def set_non_blocking(self) -> "TunSocket":
        """Put the device in non-blocking mode and return it."""
        try:
            os.set_blocking(self._fd, False)
        except OSError as exc:
            raise _error(exc) from exc
        return self

    def name(self) -> str:
        """The interface name."""
        if self._sock is None:
            return self._name if self._name is not None else ""
        try:
            raw = self._sock.getsockopt(
                getattr(socket, "SYSPROTO_CONTROL"), _UTUN_OPT_IFNAME, 256
            )
        except OSError as exc:
            raise _error(exc) from exc
        if not raw:
            raise TunError("empty interface name")
        return raw[:-1].decode(errors="replace")

    def mtu(self) -> int:
        """The current MTU of the interface."""
        if self._sock is None:
            if _fd_from_name(self.name()) is not None:
                return _LINUX_DEFAULT_MTU
            return _interface_mtu(self.name(), _SIOCGIFMTU_LINUX)
        return _interface_mtu(self.name(), _SIOCGIFMTU_DARWIN)

    def _write(self, data: bytes, family: int) -> int:
        try:
            if self._sock is None:
                return os.write(self._fd, data)
            header = bytes((0, 0, 0, family))
            return self._sock.sendmsg([header, data])
        except OSError:
            return 0

    def write4(self, data: bytes) -> int:
        """Write an IPv4 packet; return the bytes written, or 0 on error."""
        return self._write(data, int(socket.AF_INET))

    def write6(self, data: bytes) -> int:
        """Write an IPv6 packet; return the bytes written, or 0 on error."""
        return self._write(data, int(socket.AF_INET6))

    def read(self, size: int) -> bytes:
        """Read one packet of at most ``size`` bytes."""
        try:
            if self._sock is None:
                return os.read(self._fd, size)
            data = self._sock.recv(size + _UTUN_HEADER)
        except OSError as exc:
            raise TunError(exc.strerror or str(exc), exc.errno) from exc
        if len(data) <= _UTUN_HEADER:
            return b""
        return data[_UTUN_HEADER:]

    def fileno(self) -> int:
        """The underlying file descriptor."""
        return self._fd

    def close(self) -> None:
        """Close the device; calling it again does nothing."""
        if self._closed:
            return
        self._closed = True
        if self._sock is not None:
            self._sock.close()
        else:
            try:
                os.close(self._fd)
            except OSError:
                pass

    def __enter__(self) -> "TunSocket":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"TunSocket(fd={self._fd}, name={self._name!r})"